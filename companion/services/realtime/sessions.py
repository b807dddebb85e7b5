"""Ephemeral realtime session tokens."""
import logging
from typing import Optional

import httpx
from pydantic import BaseModel

from companion.core.config import settings
from companion.core.errors import TurnFailure, UpstreamQuotaExhausted

logger = logging.getLogger(__name__)

REALTIME_SESSIONS_URL = "https://api.openai.com/v1/realtime/sessions"


class RealtimeSession(BaseModel):
    """Short-lived client secret for a realtime model session."""

    token: str
    expires_at: Optional[int] = None


class RealtimeSessionService:
    """Mints ephemeral realtime credentials so the API key never leaves the server."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        self.http_client = http_client or httpx.AsyncClient(timeout=15.0)

    async def create_session(self) -> RealtimeSession:
        try:
            response = await self.http_client.post(
                REALTIME_SESSIONS_URL,
                headers={
                    "Authorization": f"Bearer {settings.openai_api_key}",
                    "Content-Type": "application/json",
                },
                json={"model": settings.realtime_model, "voice": settings.realtime_voice},
            )
        except httpx.HTTPError as e:
            logger.error(f"[REALTIME] Session request failed: {type(e).__name__}: {str(e)}")
            raise TurnFailure("Failed to create realtime session") from e

        if response.status_code != 200:
            logger.error(f"[REALTIME] OpenAI error {response.status_code}: {response.text}")
            if "insufficient_quota" in response.text:
                raise UpstreamQuotaExhausted("Realtime quota exhausted")
            raise TurnFailure("Failed to create realtime session")

        secret = response.json().get("client_secret") or {}
        if not secret.get("value"):
            raise TurnFailure("Realtime session carried no client secret")
        return RealtimeSession(token=secret["value"], expires_at=secret.get("expires_at"))
