"""Realtime session token endpoint."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from companion.api.auth import require_user
from companion.api.responses import error_response, limit_reached_response, rate_limited_response
from companion.core.dependencies import get_rate_limiter, get_realtime_sessions, get_usage_governor
from companion.core.errors import TurnFailure, UpstreamQuotaExhausted
from companion.services.realtime.sessions import RealtimeSessionService
from companion.services.usage.governor import UsageGovernor
from companion.services.usage.models import AuthenticatedUser
from companion.services.usage.rate_limit import SlidingWindowRateLimiter

router = APIRouter()
logger = logging.getLogger(__name__)


class RealtimeTokenResponse(BaseModel):
    token: str
    expires_at: Optional[int] = None
    remaining_seconds: int
    is_premium: bool


@router.post("/realtime-token", response_model=RealtimeTokenResponse)
async def realtime_token(
    user: AuthenticatedUser = Depends(require_user),
    limiter: SlidingWindowRateLimiter = Depends(get_rate_limiter),
    governor: UsageGovernor = Depends(get_usage_governor),
    sessions: RealtimeSessionService = Depends(get_realtime_sessions),
):
    """Issue an ephemeral realtime credential if today's budget allows a call."""
    rate = limiter.check_operation("token_request", user.user_id)
    if not rate.allowed:
        return rate_limited_response(rate)

    check = await governor.check_and_reserve(user)
    if not check.allowed:
        return limit_reached_response(check)

    try:
        session = await sessions.create_session()
    except UpstreamQuotaExhausted:
        return error_response("Service temporarily unavailable. Please try again later.", 503)
    except TurnFailure:
        return error_response("Failed to create realtime session", 500)

    logger.info(
        f"[REALTIME] Token issued - User: {user.user_id}, "
        f"Remaining: {check.remaining_seconds}s, Premium: {check.is_premium}"
    )
    return RealtimeTokenResponse(
        token=session.token,
        expires_at=session.expires_at,
        remaining_seconds=check.remaining_seconds,
        is_premium=check.is_premium,
    )
