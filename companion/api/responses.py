"""Shared error responses for the API routers."""
from datetime import datetime

from fastapi.responses import JSONResponse

from companion.services.usage.governor import seconds_until_next_day
from companion.services.usage.models import RateLimitResult, UsageCheck


def error_response(message: str, status_code: int) -> JSONResponse:
    """Generic failure body; upstream details stay in the server log."""
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def rate_limited_response(result: RateLimitResult) -> JSONResponse:
    retry_after = result.retry_after or 1
    return JSONResponse(
        status_code=429,
        headers={"Retry-After": str(retry_after)},
        content={
            "success": False,
            "error": "Too many requests. Please slow down.",
            "retry_after": retry_after,
        },
    )


def limit_reached_response(check: UsageCheck) -> JSONResponse:
    """Daily budget exhausted; retry once the server's calendar day rolls over."""
    retry_after = seconds_until_next_day(datetime.now())
    return JSONResponse(
        status_code=429,
        headers={"Retry-After": str(retry_after)},
        content={
            "success": False,
            "error": "Daily limit reached",
            "limit_reached": True,
            "is_premium": check.is_premium,
            "remaining_seconds": 0,
            "retry_after": retry_after,
        },
    )
