"""HTTP transport between the call client and the backend."""
import base64
import binascii
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from companion.core.errors import (
    AuthenticationFailure,
    ConnectionLost,
    RateLimited,
    TurnFailure,
    TurnRejected,
    UpstreamQuotaExhausted,
    UsageLimitExceeded,
)

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[str]]
ModelT = TypeVar("ModelT", bound=BaseModel)


class LatencyMs(BaseModel):
    stt: int = 0
    llm: int = 0
    tts: int = 0
    total: int = 0


class TurnResponse(BaseModel):
    """Backend reply to one voice turn."""

    success: bool = True
    user_transcript: Optional[str] = None
    assistant_response: Optional[str] = None
    audio_base64: Optional[str] = None
    audio_format: str = "mp3"
    latency_ms: LatencyMs = LatencyMs()
    error: Optional[str] = None

    @property
    def audio(self) -> bytes:
        if not self.audio_base64:
            return b""
        try:
            return base64.b64decode(self.audio_base64, validate=True)
        except binascii.Error as e:
            raise TurnFailure(f"Invalid audio payload: {e}") from e


class UsageReport(BaseModel):
    total_seconds: int
    remaining_seconds: int
    limit_reached: bool = False
    is_premium: bool = False


class RealtimeToken(BaseModel):
    token: str
    expires_at: Optional[int] = None
    remaining_seconds: int = 0
    is_premium: bool = False


def parse_body(model: Type[ModelT], body: Dict[str, Any]) -> ModelT:
    try:
        return model(**body)
    except ValidationError as e:
        raise TurnFailure(f"Unexpected {model.__name__} payload") from e


def _error_message(body: Dict[str, Any], default: str) -> str:
    return body.get("error") or body.get("detail") or default


def raise_for_status(response: httpx.Response) -> None:
    """Map a non-2xx backend response to the client error taxonomy."""
    if response.is_success:
        return
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    status = response.status_code

    if status == 401:
        raise AuthenticationFailure(_error_message(body, "Authentication required"))
    if status == 429:
        if body.get("limit_reached"):
            raise UsageLimitExceeded(
                _error_message(body, "Daily limit reached"),
                is_premium=bool(body.get("is_premium")),
            )
        retry_after = body.get("retry_after") or response.headers.get("retry-after") or 1
        try:
            retry_after = max(1, int(retry_after))
        except (TypeError, ValueError):
            retry_after = 1
        raise RateLimited(retry_after, _error_message(body, "Too many requests"))
    if status == 400:
        raise TurnRejected(_error_message(body, "Request rejected"))
    if status == 503:
        raise UpstreamQuotaExhausted(_error_message(body, "Service temporarily unavailable"))
    raise TurnFailure(_error_message(body, f"Backend error {status}"))


class TurnClient:
    """Authenticated client for the voice companion backend.

    A fresh bearer credential is requested from ``token_provider`` for every
    call, so token refresh stays with the identity layer.
    """

    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ):
        self.token_provider = token_provider
        self.http_client = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        token = await self.token_provider()
        try:
            response = await self.http_client.request(
                method, path, json=json, headers={"Authorization": f"Bearer {token}"}
            )
        except httpx.TransportError as e:
            logger.warning(f"[TRANSPORT] {method} {path} failed: {type(e).__name__}: {e}")
            raise ConnectionLost(f"Network error: {e}") from e
        except httpx.HTTPError as e:
            raise TurnFailure(f"Request failed: {e}") from e
        raise_for_status(response)
        try:
            body = response.json()
        except ValueError as e:
            raise TurnFailure(f"Malformed response from {path}") from e
        if not isinstance(body, dict):
            raise TurnFailure(f"Malformed response from {path}")
        return body

    async def send_turn(
        self,
        audio: bytes,
        audio_format: str,
        persona_id: str,
        system_prompt: str,
        history: Sequence[Dict[str, str]],
    ) -> TurnResponse:
        """Upload one recorded utterance and get the persona's spoken reply."""
        body = await self._request(
            "POST",
            "/voice-turn",
            json={
                "audio_base64": base64.b64encode(audio).decode(),
                "audio_format": audio_format,
                "persona_id": persona_id,
                "system_prompt": system_prompt,
                "conversation_history": list(history),
            },
        )
        response = parse_body(TurnResponse, body)
        if not response.success:
            raise TurnFailure(response.error or "Voice turn failed")
        return response

    async def synthesize_opener(
        self, persona_id: str, opener_text: str, system_prompt: str = ""
    ) -> TurnResponse:
        body = await self._request(
            "POST",
            "/voice-turn",
            json={
                "persona_id": persona_id,
                "system_prompt": system_prompt,
                "generate_opener": True,
                "opener_text": opener_text,
            },
        )
        return parse_body(TurnResponse, body)

    async def record_usage(self, duration_seconds: float) -> UsageReport:
        body = await self._request(
            "POST", "/track-usage", json={"duration_seconds": duration_seconds}
        )
        return parse_body(UsageReport, body)

    async def fetch_usage(self) -> UsageReport:
        return parse_body(UsageReport, await self._request("GET", "/usage"))

    async def fetch_realtime_token(self) -> RealtimeToken:
        return parse_body(RealtimeToken, await self._request("POST", "/realtime-token"))

    async def aclose(self) -> None:
        await self.http_client.aclose()
