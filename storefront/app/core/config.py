import json
import re
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_list(raw: Any) -> list[str]:
    """Parse a list setting given as JSON or as a comma/space separated string."""
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []

    if raw.startswith(("[", '"')):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]
        if isinstance(parsed, str):
            raw = parsed.strip()

    seen: set[str] = set()
    result: list[str] = []
    for part in re.split(r"[,\s]+", raw):
        if part and part not in seen:
            seen.add(part)
            result.append(part)
    return result


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Session / CSRF settings
    # Empty secret means CSRF tokens are issued unsigned.
    session_secret: str = ""
    session_cookie_name: str = "wornvault_session"
    session_https_only: bool = False
    session_max_age: int = 14 * 24 * 60 * 60

    # Rate limiting settings (milliseconds, like the limiter contract)
    rate_limit_default_max_requests: int = 10
    rate_limit_default_window_ms: int = 60_000
    rate_limit_cleanup_interval_ms: int = 5 * 60 * 1000
    rate_limit_fail_closed: bool = (
        False  # If True, deny requests when Redis is unavailable
    )

    # Redis settings (optional, for multi-instance rate limiting)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"

    # Upload validation settings
    upload_max_file_size: int = 10 * 1024 * 1024  # 10MB
    upload_max_dimension: int = 5000
    upload_min_dimension: int = 1

    # Request timeout applied by RequestTimeoutMiddleware
    request_timeout_seconds: float = 30.0

    # Public site settings
    site_base_url: str = "https://wornvault.com"
    allowed_site_domains: Annotated[list[str], NoDecode] = [
        "wornvault.com",
        "www.wornvault.com",
    ]

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # CORS settings
    cors_origins: Annotated[list[str], NoDecode] = []

    @field_validator("cors_origins", "allowed_site_domains", mode="before")
    @classmethod
    def decode_list(cls, v: Any) -> list[str]:
        return _parse_list(v)

    @field_validator(
        "rate_limit_default_max_requests",
        "rate_limit_default_window_ms",
        "rate_limit_cleanup_interval_ms",
    )
    @classmethod
    def validate_rate_limit_positive(cls, v: int) -> int:
        """Validate rate limit values are positive."""
        if v < 1:
            raise ValueError("Rate limit values must be at least 1")
        return v

    @field_validator("upload_max_file_size", "upload_max_dimension", "upload_min_dimension")
    @classmethod
    def validate_upload_limits(cls, v: int) -> int:
        """Validate upload limits are positive."""
        if v < 1:
            raise ValueError("upload limits must be at least 1")
        return v

    @field_validator("request_timeout_seconds")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("request_timeout_seconds must be positive")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("text", "structured", "json"):
            raise ValueError("log_format must be one of: text, structured, json")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
