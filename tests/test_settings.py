import pytest
from pydantic import ValidationError

from storefront.app.core.config import Settings


def test_cors_origins_accepts_plain_list(monkeypatch) -> None:
    monkeypatch.setenv("CORS_ORIGINS", "https://wornvault.com, https://www.wornvault.com")

    settings = Settings(_env_file=None)
    assert settings.cors_origins == ["https://wornvault.com", "https://www.wornvault.com"]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ('["https://wornvault.com"]', ["https://wornvault.com"]),
        ("*", ["*"]),
        ("[]", []),
        ("", []),
        ("a.com a.com b.com", ["a.com", "b.com"]),
    ],
)
def test_cors_origins_parsing_variants(monkeypatch, raw: str, expected: list[str]) -> None:
    monkeypatch.setenv("CORS_ORIGINS", raw)

    settings = Settings(_env_file=None)
    assert settings.cors_origins == expected


def test_allowed_site_domains_default() -> None:
    settings = Settings(_env_file=None)
    assert settings.allowed_site_domains == ["wornvault.com", "www.wornvault.com"]


def test_allowed_site_domains_from_env(monkeypatch) -> None:
    monkeypatch.setenv("ALLOWED_SITE_DOMAINS", '["shop.example.com"]')

    settings = Settings(_env_file=None)
    assert settings.allowed_site_domains == ["shop.example.com"]


def test_rate_limit_defaults() -> None:
    settings = Settings(_env_file=None)

    assert settings.rate_limit_default_max_requests == 10
    assert settings.rate_limit_default_window_ms == 60_000
    assert settings.rate_limit_cleanup_interval_ms == 300_000
    assert settings.rate_limit_fail_closed is False


@pytest.mark.parametrize(
    "env",
    [
        {"RATE_LIMIT_DEFAULT_MAX_REQUESTS": "0"},
        {"RATE_LIMIT_DEFAULT_WINDOW_MS": "-1"},
        {"UPLOAD_MAX_FILE_SIZE": "0"},
        {"REQUEST_TIMEOUT_SECONDS": "0"},
        {"LOG_FORMAT": "xml"},
    ],
)
def test_invalid_values_rejected(monkeypatch, env: dict) -> None:
    for key, value in env.items():
        monkeypatch.setenv(key, value)

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_log_format_normalized(monkeypatch) -> None:
    monkeypatch.setenv("LOG_FORMAT", " JSON ")

    assert Settings(_env_file=None).log_format == "json"
