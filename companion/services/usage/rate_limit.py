"""Short-window request rate limiting."""
import logging
import math
import time
from collections import deque
from typing import Callable, Deque, Dict

from companion.services.usage.models import RateLimitConfig, RateLimitResult

logger = logging.getLogger(__name__)


RATE_LIMITS: Dict[str, RateLimitConfig] = {
    "voice_turn": RateLimitConfig(window_seconds=60.0, max_requests=30),
    "usage_track": RateLimitConfig(window_seconds=60.0, max_requests=10),
    "token_request": RateLimitConfig(window_seconds=60.0, max_requests=5),
    "usage_check": RateLimitConfig(window_seconds=60.0, max_requests=15),
}


class SlidingWindowRateLimiter:
    """In-memory sliding window counter per key.

    Each key keeps the timestamps of its accepted requests inside the
    window. This blunts request floods; it does not replace the daily
    budget check.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}

    def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        """Count a request against ``key`` if it fits in the window."""
        now = self._clock()
        hits = self._hits.setdefault(key, deque())
        cutoff = now - config.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()

        if len(hits) >= config.max_requests:
            reset_at = hits[0] + config.window_seconds
            retry_after = max(1, math.ceil(reset_at - now))
            logger.warning(f"[RATE LIMIT] Rejected - Key: {key}, Retry after: {retry_after}s")
            return RateLimitResult(
                allowed=False, remaining=0, reset_at=reset_at, retry_after=retry_after
            )

        hits.append(now)
        return RateLimitResult(
            allowed=True,
            remaining=config.max_requests - len(hits),
            reset_at=hits[0] + config.window_seconds,
        )

    def check_operation(self, operation: str, user_id: int) -> RateLimitResult:
        """Check the configured limit for an operation type and user."""
        return self.check(f"{operation}:{user_id}", RATE_LIMITS[operation])

    def clear(self) -> None:
        """Forget every tracked key."""
        self._hits.clear()


rate_limiter = SlidingWindowRateLimiter()
