"""Usage governor models."""
from typing import Optional

from pydantic import BaseModel

# Remaining-seconds value reported for premium users
UNLIMITED_DAILY_SECONDS = 999999


class AuthenticatedUser(BaseModel):
    """Identity resolved from a bearer credential."""

    user_id: int
    external_id: str
    is_premium: bool = False


class UsageCheck(BaseModel):
    """Result of a pre-turn budget check."""

    allowed: bool
    remaining_seconds: int
    total_seconds: int = 0
    is_premium: bool = False


class UsageRecord(BaseModel):
    """Ledger totals after recording call time."""

    total_seconds: int
    remaining_seconds: int
    limit_reached: bool
    is_premium: bool = False
    recorded_seconds: int = 0


class RateLimitConfig(BaseModel):
    """Sliding window size and request ceiling for one operation."""

    window_seconds: float = 60.0
    max_requests: int


class RateLimitResult(BaseModel):
    """Outcome of a rate limit check."""

    allowed: bool
    remaining: int
    reset_at: float
    retry_after: Optional[int] = None
