"""Middleware package for the storefront."""

from storefront.app.middleware.rate_limit import RateLimit, RateLimiter
from storefront.app.middleware.request_id import RequestIdMiddleware, get_request_id
from storefront.app.middleware.request_timeout import RequestTimeoutMiddleware

__all__ = [
    "RateLimit",
    "RateLimiter",
    "RequestIdMiddleware",
    "RequestTimeoutMiddleware",
    "get_request_id",
]
