"""Shared fixtures for storefront tests."""

import pytest
from fastapi.testclient import TestClient

from storefront.app.core.config import settings
from storefront.app.middleware.rate_limit import reset_rate_limiter

TEST_SESSION_SECRET = "test-session-secret-0123456789abcdef"


@pytest.fixture(autouse=True)
def fresh_rate_limiter():
    """Give every test an empty process-wide limiter."""
    reset_rate_limiter()
    yield
    reset_rate_limiter()


@pytest.fixture
def session_secret(monkeypatch):
    monkeypatch.setattr(settings, "session_secret", TEST_SESSION_SECRET)
    return TEST_SESSION_SECRET


@pytest.fixture
def client(session_secret):
    """TestClient over a freshly built app with a signing secret configured."""
    from storefront.app.main import create_app

    with TestClient(create_app()) as test_client:
        yield test_client
