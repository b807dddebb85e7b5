"""FastAPI dependencies."""
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from companion.core.config import settings
from companion.db.database import get_db
from companion.services.realtime.sessions import RealtimeSessionService
from companion.services.turn.orchestrator import TurnOrchestrator
from companion.services.usage.governor import UsageGovernor
from companion.services.usage.rate_limit import SlidingWindowRateLimiter, rate_limiter


@lru_cache
def get_orchestrator() -> TurnOrchestrator:
    """Get the shared turn orchestrator (one set of upstream clients per process)."""
    return TurnOrchestrator()


@lru_cache
def get_realtime_sessions() -> RealtimeSessionService:
    return RealtimeSessionService()


def get_rate_limiter() -> SlidingWindowRateLimiter:
    return rate_limiter


def get_usage_governor(db: AsyncSession = Depends(get_db)) -> UsageGovernor:
    """Get usage governor bound to the request's session."""
    return UsageGovernor(
        db,
        daily_limit_seconds=settings.free_tier_daily_limit_seconds,
        max_call_duration_seconds=settings.max_call_duration_seconds,
    )
