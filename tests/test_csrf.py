"""Tests for CSRF token issuance and validation."""

import re
from unittest.mock import AsyncMock, Mock, patch

import pytest

from storefront.app.core.config import settings
from storefront.app.core.security import constant_time_equals, hmac_sha256_hex
from storefront.app.middleware.rate_limit import (
    InMemoryRateLimitStore,
    RateLimitStoreError,
    get_rate_limiter,
)
from storefront.app.services.csrf import (
    CSRFTokenManager,
    generate_csrf_token,
    validate_csrf_token,
)

SECRET = "unit-test-secret"
UNSIGNED_RE = re.compile(r"^[0-9a-f]{64}$")
SIGNED_RE = re.compile(r"^[0-9a-f]{64}\.[0-9a-f]{64}$")


class TestGenerateToken:

    def test_unsigned_token_format(self):
        assert UNSIGNED_RE.match(generate_csrf_token())

    def test_signed_token_format(self):
        token = generate_csrf_token(SECRET)
        assert SIGNED_RE.match(token)

        value, signature = token.split(".")
        assert signature == hmac_sha256_hex(value, SECRET)

    def test_tokens_are_unique(self):
        tokens = {generate_csrf_token() for _ in range(100)}
        assert len(tokens) == 100

    def test_signing_failure_falls_back_to_unsigned(self):
        with patch(
            "storefront.app.services.csrf.hmac_sha256_hex",
            side_effect=RuntimeError("no crypto"),
        ):
            token = generate_csrf_token(SECRET)

        assert UNSIGNED_RE.match(token)


class TestValidateToken:

    def test_unsigned_match(self):
        token = generate_csrf_token()
        assert validate_csrf_token(token, token) is True

    def test_unsigned_mismatch(self):
        assert validate_csrf_token(generate_csrf_token(), generate_csrf_token()) is False

    @pytest.mark.parametrize(
        ("submitted", "expected"),
        [
            (None, "abc"),
            ("abc", None),
            ("", ""),
            ("", "abc"),
            (123, "123"),
            (["abc"], "abc"),
        ],
    )
    def test_missing_or_non_string_tokens(self, submitted, expected):
        assert validate_csrf_token(submitted, expected) is False

    def test_signed_match(self):
        token = generate_csrf_token(SECRET)
        assert validate_csrf_token(token, token, SECRET) is True

    def test_signed_with_wrong_secret(self):
        token = generate_csrf_token(SECRET)
        assert validate_csrf_token(token, token, "other-secret") is False

    def test_signed_tampered_value(self):
        token = generate_csrf_token(SECRET)
        value, signature = token.split(".")
        forged_value = ("0" if value[0] != "0" else "1") + value[1:]

        assert validate_csrf_token(f"{forged_value}.{signature}", token, SECRET) is False

    def test_signed_tampered_signature(self):
        token = generate_csrf_token(SECRET)
        value, _ = token.split(".")

        assert validate_csrf_token(f"{value}.{'0' * 64}", token, SECRET) is False

    def test_signed_value_without_signature(self):
        token = generate_csrf_token(SECRET)
        value, _ = token.split(".")

        assert validate_csrf_token(value, token, SECRET) is False

    def test_forged_expected_token_rejected(self):
        """A stored token whose signature was not made with the secret never matches."""
        value = "a" * 64
        forged = f"{value}.{'b' * 64}"

        assert validate_csrf_token(forged, forged, SECRET) is False

    @pytest.mark.parametrize(
        "expected",
        [
            "short.sig",
            f"{'g' * 64}.{'a' * 64}",
            f"{'a' * 64}.{'a' * 63}",
            f"{'a' * 64}.{'a' * 64}.extra",
        ],
    )
    def test_malformed_signed_token(self, expected):
        assert validate_csrf_token(expected, expected, SECRET) is False

    def test_signed_token_without_secret_compares_whole_string(self):
        token = generate_csrf_token(SECRET)
        assert validate_csrf_token(token, token) is True

    def test_unsigned_token_with_secret_compares_whole_string(self):
        token = generate_csrf_token()
        assert validate_csrf_token(token, token, SECRET) is True


class TestConstantTimeEquals:

    def test_equal_and_unequal(self):
        assert constant_time_equals("abc", "abc") is True
        assert constant_time_equals("abc", "abd") is False
        assert constant_time_equals("abc", "abcd") is False
        assert constant_time_equals("", "") is True

    def test_non_strings(self):
        assert constant_time_equals(None, "a") is False
        assert constant_time_equals(b"a", "a") is False

    def test_work_does_not_depend_on_mismatch_position(self):
        reference = "a" * 64
        early = "b" + "a" * 63
        late = "a" * 63 + "b"

        with patch("storefront.app.core.security.ord", side_effect=ord, create=True) as spy:
            constant_time_equals(early, reference)
            early_calls = spy.call_count
            spy.reset_mock()
            constant_time_equals(late, reference)
            late_calls = spy.call_count

        assert early_calls == late_calls == 128


class TestCSRFTokenManager:

    @pytest.fixture
    def manager(self):
        return CSRFTokenManager(session_secret=SECRET)

    def test_issue_stores_token(self, manager):
        session = {}
        token = manager.issue(session)

        assert session["csrf_token"] == token
        assert SIGNED_RE.match(token)

    def test_token_is_single_use(self, manager):
        session = {}
        token = manager.issue(session)

        assert manager.validate_and_consume(session, token) is True
        assert "csrf_token" not in session
        assert manager.validate_and_consume(session, token) is False

    def test_failed_attempt_burns_token(self, manager):
        session = {}
        token = manager.issue(session)

        assert manager.validate_and_consume(session, "wrong") is False
        assert manager.validate_and_consume(session, token) is False

    def test_reissue_replaces_previous_token(self, manager):
        session = {}
        old = manager.issue(session)
        new = manager.issue(session)

        assert manager.validate_and_consume(session, old) is False
        session["csrf_token"] = new
        assert manager.validate_and_consume(session, new) is True

    def test_no_stored_token(self, manager):
        assert manager.validate_and_consume({}, generate_csrf_token(SECRET)) is False

    def test_secret_falls_back_to_settings(self, monkeypatch):
        from storefront.app.core.config import settings

        monkeypatch.setattr(settings, "session_secret", "")
        assert CSRFTokenManager().session_secret is None

        monkeypatch.setattr(settings, "session_secret", SECRET)
        assert CSRFTokenManager().session_secret == SECRET


class TestTokenClaims:
    """Tests for server-side recording of accepted tokens."""

    @pytest.fixture
    def manager(self):
        return CSRFTokenManager(session_secret=SECRET, store=InMemoryRateLimitStore())

    @pytest.mark.asyncio
    async def test_first_claim_succeeds(self, manager):
        assert await manager.claim(generate_csrf_token(SECRET)) is True

    @pytest.mark.asyncio
    async def test_token_cannot_be_claimed_twice(self, manager):
        token = generate_csrf_token(SECRET)

        assert await manager.claim(token) is True
        assert await manager.claim(token) is False

    @pytest.mark.asyncio
    async def test_replayed_session_still_rejected(self, manager):
        """A copy of the session taken before the token was used cannot revive it."""
        session = {}
        token = manager.issue(session)
        saved_session = dict(session)

        assert manager.validate_and_consume(session, token) is True
        assert await manager.claim(token) is True

        assert manager.validate_and_consume(saved_session, token) is True
        assert await manager.claim(token) is False

    @pytest.mark.asyncio
    async def test_claims_keyed_on_token_value(self, manager):
        token = generate_csrf_token(SECRET)
        value = token.partition(".")[0]

        assert await manager.claim(token) is True
        assert await manager.claim(f"{value}.{'0' * 64}") is False

    @pytest.mark.asyncio
    async def test_defaults_to_rate_limiter_store(self):
        manager = CSRFTokenManager(session_secret=SECRET)
        token = generate_csrf_token(SECRET)

        await manager.claim(token)

        store = get_rate_limiter().store
        assert await store.consume(f"csrf:{token.partition('.')[0]}", 1_000, 0) is False

    @pytest.mark.parametrize(("fail_closed", "expected"), [(False, True), (True, False)])
    @pytest.mark.asyncio
    async def test_store_outage_follows_fail_policy(self, monkeypatch, fail_closed, expected):
        monkeypatch.setattr(settings, "rate_limit_fail_closed", fail_closed)
        store = Mock(spec=InMemoryRateLimitStore)
        store.consume = AsyncMock(side_effect=RateLimitStoreError("redis_error"))
        manager = CSRFTokenManager(session_secret=SECRET, store=store)

        assert await manager.claim(generate_csrf_token(SECRET)) is expected
