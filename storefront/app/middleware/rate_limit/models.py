"""Rate limiting data models.

This module contains dataclasses for rate limit state and results.
All timestamps are epoch milliseconds.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class RateLimitEntry:
    """Request counter for one identifier within one fixed window."""
    key: str
    count: int
    window_expires_at: int

    def is_expired(self, now_ms: int) -> bool:
        return self.window_expires_at < now_ms


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""
    allowed: bool
    remaining: int
    reset_at: int
    limit: int = 0
    retry_after: Optional[int] = None
