"""Health check endpoint."""
import logging

from fastapi import APIRouter, Request

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check(request: Request):
    """Liveness probe; touches no upstream provider."""
    logger.debug(
        f"[HEALTH] Check from {request.client.host if request.client else 'unknown'}"
    )
    return {"status": "healthy", "service": "companion"}
