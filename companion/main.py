"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from companion.api import health, realtime, usage, voice_turn
from companion.core.logging import setup_logging
from companion.db.database import init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    setup_logging()
    await init_db()
    yield


app = FastAPI(
    title="Voice Companion",
    description="Voice turn, usage and realtime session API for the companion app",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report malformed requests as 400 with the first problem found."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    logger.info(f"[VALIDATION] {request.url.path} rejected: {field}: {message}")
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": f"{field}: {message}" if field else message},
    )


app.include_router(health.router, tags=["health"])
app.include_router(voice_turn.router, tags=["voice"])
app.include_router(usage.router, tags=["usage"])
app.include_router(realtime.router, tags=["realtime"])
