"""Core utilities for the storefront application."""

from storefront.app.core.config import settings
from storefront.app.core.logging import get_logger, setup_logging
from storefront.app.core.security import (
    constant_time_equals,
    generate_request_id,
    get_client_ip,
    hmac_sha256_hex,
)

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
    "constant_time_equals",
    "generate_request_id",
    "get_client_ip",
    "hmac_sha256_hex",
]
