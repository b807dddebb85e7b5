"""Usage tracking endpoints."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from companion.api.auth import require_user
from companion.api.responses import rate_limited_response
from companion.core.dependencies import get_rate_limiter, get_usage_governor
from companion.services.usage.governor import UsageGovernor
from companion.services.usage.models import AuthenticatedUser
from companion.services.usage.rate_limit import SlidingWindowRateLimiter

router = APIRouter()
logger = logging.getLogger(__name__)


class TrackUsageRequest(BaseModel):
    """Duration of a finished call as measured by the client."""

    duration_seconds: Optional[float] = None


class UsageResponse(BaseModel):
    success: bool = True
    total_seconds: int
    remaining_seconds: int
    limit_reached: bool
    is_premium: bool


@router.post("/track-usage", response_model=UsageResponse)
async def track_usage(
    body: TrackUsageRequest,
    user: AuthenticatedUser = Depends(require_user),
    limiter: SlidingWindowRateLimiter = Depends(get_rate_limiter),
    governor: UsageGovernor = Depends(get_usage_governor),
):
    """Add a finished call's duration to today's usage."""
    rate = limiter.check_operation("usage_track", user.user_id)
    if not rate.allowed:
        return rate_limited_response(rate)

    record = await governor.record_usage(user, body.duration_seconds)
    return UsageResponse(
        total_seconds=record.total_seconds,
        remaining_seconds=record.remaining_seconds,
        limit_reached=record.limit_reached,
        is_premium=record.is_premium,
    )


@router.get("/usage", response_model=UsageResponse)
async def get_usage(
    user: AuthenticatedUser = Depends(require_user),
    limiter: SlidingWindowRateLimiter = Depends(get_rate_limiter),
    governor: UsageGovernor = Depends(get_usage_governor),
):
    """Today's usage and premium status."""
    rate = limiter.check_operation("usage_check", user.user_id)
    if not rate.allowed:
        return rate_limited_response(rate)

    record = await governor.current_usage(user)
    logger.debug(f"[USAGE] Status - User: {user.user_id}, Total: {record.total_seconds}s")
    return UsageResponse(
        total_seconds=record.total_seconds,
        remaining_seconds=record.remaining_seconds,
        limit_reached=record.limit_reached,
        is_premium=record.is_premium,
    )
