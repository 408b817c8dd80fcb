"""Rate limiting for storefront routes.

Counts requests per identifier over a fixed window. Each route handler picks
its own budget through the RateLimit dependency, keyed by route class and
client IP. Supports in-memory and Redis stores.
"""

import math
import time
from typing import Callable, Optional

from fastapi import Request, Response

from storefront.app.core.config import settings
from storefront.app.core.logging import get_log_context, get_logger
from storefront.app.core.security import get_client_ip
from storefront.app.exceptions import RateLimitExceededError

# Re-export models
from storefront.app.middleware.rate_limit.models import (
    RateLimitEntry,
    RateLimitResult,
)

# Re-export backends
from storefront.app.middleware.rate_limit.backends import (
    InMemoryRateLimitStore,
    RateLimitStore,
    RateLimitStoreError,
    RedisRateLimitStore,
)

logger = get_logger(__name__)

__all__ = [
    # Models
    "RateLimitEntry",
    "RateLimitResult",
    # Backends
    "RateLimitStore",
    "RateLimitStoreError",
    "InMemoryRateLimitStore",
    "RedisRateLimitStore",
    # Main classes
    "RateLimiter",
    "RateLimit",
    "check_rate_limit",
    "get_rate_limiter",
    "reset_rate_limiter",
]


def _now_ms() -> int:
    return int(time.time() * 1000)


class RateLimiter:
    """Fixed-window request counter over a pluggable store.

    check_rate_limit never raises: store outages are resolved by the
    rate_limit_fail_closed setting.
    """

    def __init__(
        self,
        store: Optional[RateLimitStore] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """Initialize rate limiter.

        Args:
            store: Counter store (defaults to a fresh in-memory store)
            clock: Callable returning the current epoch milliseconds
        """
        self.store = store if store is not None else InMemoryRateLimitStore()
        self.clock = clock or _now_ms

    async def check_rate_limit(
        self,
        identifier: str,
        max_requests: int = 10,
        window_ms: int = 60_000,
    ) -> RateLimitResult:
        """Count a request for identifier and decide whether it is allowed.

        Args:
            identifier: Unique key (e.g. IP address, or route class plus IP)
            max_requests: Maximum number of requests allowed per window
            window_ms: Window length in milliseconds

        Returns:
            RateLimitResult with allowed flag, remaining budget and reset time
        """
        if max_requests < 1 or window_ms <= 0:
            logger.warning(
                f"Invalid rate limit parameters for {identifier!r}: "
                f"max_requests={max_requests}, window_ms={window_ms}; clamping"
            )
            max_requests = max(1, max_requests)
            window_ms = max(1, window_ms)

        now = self.clock()
        try:
            entry = await self.store.increment(identifier, window_ms, now)
        except RateLimitStoreError as e:
            return self._handle_store_failure(str(e), max_requests, window_ms, now)
        except Exception as e:
            logger.exception(f"Unexpected rate limit error: {e}")
            return self._handle_store_failure("unexpected", max_requests, window_ms, now)

        if entry.count > max_requests:
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_at=entry.window_expires_at,
                limit=max_requests,
                retry_after=max(1, math.ceil((entry.window_expires_at - now) / 1000)),
            )

        return RateLimitResult(
            allowed=True,
            remaining=max_requests - entry.count,
            reset_at=entry.window_expires_at,
            limit=max_requests,
        )

    async def is_allowed(
        self,
        identifier: str,
        max_requests: int = 10,
        window_ms: int = 60_000,
    ) -> bool:
        """Return True if allowed, False if rate limited."""
        result = await self.check_rate_limit(identifier, max_requests, window_ms)
        return result.allowed

    async def cleanup(self) -> int:
        """Clean up expired entries."""
        return await self.store.cleanup(self.clock())

    def _handle_store_failure(
        self, error_type: str, max_requests: int, window_ms: int, now: int
    ) -> RateLimitResult:
        """Handle store failure with configurable fail-open/fail-closed policy."""
        if settings.rate_limit_fail_closed:
            logger.warning(
                f"Rate limiting fail-closed triggered due to {error_type}. "
                "Request denied."
            )
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_at=now + window_ms,
                limit=max_requests,
                retry_after=max(1, math.ceil(window_ms / 1000)),
            )

        logger.warning(
            f"Rate limiting fail-open triggered due to {error_type}. "
            "Request allowed without rate limit check."
        )
        return RateLimitResult(
            allowed=True,
            remaining=max_requests - 1,
            reset_at=now + window_ms,
            limit=max_requests,
        )


_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get the process-wide limiter, choosing the store from settings."""
    global _rate_limiter
    if _rate_limiter is None:
        if settings.redis_enabled:
            store: RateLimitStore = RedisRateLimitStore()
            logger.info("Using Redis rate limit store")
        else:
            store = InMemoryRateLimitStore()
            logger.debug("Using in-memory rate limit store")
        _rate_limiter = RateLimiter(store=store)
    return _rate_limiter


def reset_rate_limiter(limiter: Optional[RateLimiter] = None) -> None:
    """Replace the process-wide limiter (None rebuilds it on next use)."""
    global _rate_limiter
    _rate_limiter = limiter


async def check_rate_limit(
    identifier: str,
    max_requests: int = 10,
    window_ms: int = 60_000,
) -> RateLimitResult:
    """Check a request against the process-wide limiter."""
    return await get_rate_limiter().check_rate_limit(identifier, max_requests, window_ms)


class RateLimit:
    """FastAPI dependency enforcing a per-route-class budget per client IP.

    Usage:
        @router.post("/contact", dependencies=[Depends(RateLimit("contact-form", 5, 15 * 60 * 1000))])
    """

    def __init__(
        self,
        route_class: str,
        max_requests: Optional[int] = None,
        window_ms: Optional[int] = None,
    ):
        self.route_class = route_class
        self.max_requests = max_requests
        self.window_ms = window_ms

    async def __call__(self, request: Request, response: Response) -> RateLimitResult:
        client_ip = get_client_ip(request)
        max_requests = self.max_requests or settings.rate_limit_default_max_requests
        window_ms = self.window_ms or settings.rate_limit_default_window_ms

        result = await get_rate_limiter().check_rate_limit(
            f"{self.route_class}:{client_ip}", max_requests, window_ms
        )
        request.state.rate_limit = result

        if not result.allowed:
            logger.warning(
                "Rate limit exceeded",
                extra=get_log_context(
                    request_id=getattr(request.state, "request_id", None),
                    client_ip=client_ip,
                    route_class=self.route_class,
                ),
            )
            raise RateLimitExceededError(
                limit=result.limit,
                reset_at=result.reset_at,
                retry_after=result.retry_after or 1,
            )

        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        response.headers["X-RateLimit-Reset"] = str(result.reset_at)
        return result
