"""Rate limit storage backends.

The limiter keeps its counters in an injected store so tests can start from
a clean slate and multi-instance deployments can share state through Redis.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import redis
import redis.asyncio as aioredis

from storefront.app.core.config import settings
from storefront.app.core.logging import get_logger
from storefront.app.middleware.rate_limit.models import RateLimitEntry

logger = get_logger(__name__)


class RateLimitStoreError(Exception):
    """Raised by a store when its backing service is unavailable."""


class RateLimitStore(ABC):
    """Abstract base class for rate limit stores."""

    @abstractmethod
    async def increment(self, key: str, window_ms: int, now_ms: int) -> RateLimitEntry:
        """Count one request for key.

        Starts a fresh window with count=1 when no entry exists or the
        existing window has expired, otherwise increments the count.
        The read-increment-write must be atomic per key.

        Args:
            key: Rate limit key
            window_ms: Window length in milliseconds
            now_ms: Current time in epoch milliseconds

        Returns:
            The entry after counting this request
        """

    @abstractmethod
    async def consume(self, key: str, ttl_ms: int, now_ms: int) -> bool:
        """Record key as used for ttl_ms.

        Returns True for the first caller and False while the record is
        still live. Check-and-set must be atomic per key.
        """

    @abstractmethod
    async def cleanup(self, now_ms: int) -> int:
        """Remove expired entries and return how many were removed."""

    @abstractmethod
    async def reset(self) -> None:
        """Forget all counters."""


class InMemoryRateLimitStore(RateLimitStore):
    """Process-local store for single-instance deployments.

    Expired entries are purged lazily, at most once per cleanup interval,
    so memory can grow with key cardinality between purges. State is lost
    on restart.
    """

    def __init__(self, cleanup_interval_ms: Optional[int] = None):
        self._entries: Dict[str, RateLimitEntry] = {}
        self._consumed: Dict[str, int] = {}
        self._cleanup_interval_ms = (
            cleanup_interval_ms
            if cleanup_interval_ms is not None
            else settings.rate_limit_cleanup_interval_ms
        )
        self._last_cleanup = 0
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[RateLimitEntry]:
        return self._entries.get(key)

    async def increment(self, key: str, window_ms: int, now_ms: int) -> RateLimitEntry:
        async with self._lock:
            self._maybe_purge(now_ms)

            entry = self._entries.get(key)
            if entry is None or entry.is_expired(now_ms):
                entry = RateLimitEntry(
                    key=key, count=1, window_expires_at=now_ms + window_ms
                )
                self._entries[key] = entry
            else:
                entry.count += 1

            # Copy so callers never mutate shared state
            return RateLimitEntry(entry.key, entry.count, entry.window_expires_at)

    async def consume(self, key: str, ttl_ms: int, now_ms: int) -> bool:
        async with self._lock:
            self._maybe_purge(now_ms)

            expires_at = self._consumed.get(key)
            if expires_at is not None and expires_at >= now_ms:
                return False
            self._consumed[key] = now_ms + ttl_ms
            return True

    def _maybe_purge(self, now_ms: int) -> None:
        if now_ms - self._last_cleanup > self._cleanup_interval_ms:
            self._purge_expired(now_ms)
            self._last_cleanup = now_ms

    def _purge_expired(self, now_ms: int) -> int:
        expired = [k for k, e in self._entries.items() if e.is_expired(now_ms)]
        for key in expired:
            del self._entries[key]
        spent = [k for k, expires_at in self._consumed.items() if expires_at < now_ms]
        for key in spent:
            del self._consumed[key]
        if expired:
            logger.debug(f"Purged {len(expired)} expired rate limit entries")
        return len(expired)

    async def cleanup(self, now_ms: int) -> int:
        async with self._lock:
            self._last_cleanup = now_ms
            return self._purge_expired(now_ms)

    async def reset(self) -> None:
        async with self._lock:
            self._entries.clear()
            self._consumed.clear()
            self._last_cleanup = 0


class RedisRateLimitStore(RateLimitStore):
    """Redis-backed store shared by every application instance.

    Uses INCR plus PEXPIRE NX inside a MULTI/EXEC pipeline, so concurrent
    requests on different instances never lose an increment. Consumed keys
    are recorded with SET NX PX.
    """

    KEY_PREFIX = "ratelimit:"
    CONSUMED_PREFIX = "consumed:"

    def __init__(self, redis_client: Optional[Any] = None, redis_url: Optional[str] = None):
        self._redis_url = redis_url or settings.redis_url
        self._redis = redis_client

    def _get_redis(self) -> Any:
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    async def increment(self, key: str, window_ms: int, now_ms: int) -> RateLimitEntry:
        redis_key = f"{self.KEY_PREFIX}{key}"
        try:
            client = self._get_redis()
            pipe = client.pipeline(transaction=True)
            pipe.incr(redis_key)
            pipe.pexpire(redis_key, window_ms, nx=True)
            pipe.pttl(redis_key)
            count, _, ttl_ms = await pipe.execute()
        except redis.ConnectionError as e:
            logger.error(f"Redis connection failed: {e}")
            raise RateLimitStoreError("connection_error") from e
        except redis.TimeoutError as e:
            logger.warning(f"Redis timeout: {e}")
            raise RateLimitStoreError("timeout") from e
        except redis.RedisError as e:
            logger.error(f"Redis error: {e}")
            raise RateLimitStoreError("redis_error") from e

        if ttl_ms is None or int(ttl_ms) < 0:
            ttl_ms = window_ms
        return RateLimitEntry(
            key=key, count=int(count), window_expires_at=now_ms + int(ttl_ms)
        )

    async def consume(self, key: str, ttl_ms: int, now_ms: int) -> bool:
        try:
            created = await self._get_redis().set(
                f"{self.CONSUMED_PREFIX}{key}", now_ms, px=ttl_ms, nx=True
            )
        except redis.RedisError as e:
            logger.error(f"Redis error recording consumed key: {e}")
            raise RateLimitStoreError("redis_error") from e
        return bool(created)

    async def cleanup(self, now_ms: int) -> int:
        """No-op for Redis (keys expire automatically)."""
        return 0

    async def reset(self) -> None:
        client = self._get_redis()
        keys = []
        for prefix in (self.KEY_PREFIX, self.CONSUMED_PREFIX):
            keys.extend([k async for k in client.scan_iter(match=f"{prefix}*")])
        if keys:
            await client.delete(*keys)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
