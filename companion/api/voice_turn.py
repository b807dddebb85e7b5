"""Voice turn endpoint."""
import base64
import binascii
import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator

from companion.api.auth import require_user
from companion.api.responses import error_response, limit_reached_response, rate_limited_response
from companion.core.dependencies import get_orchestrator, get_rate_limiter, get_usage_governor
from companion.core.errors import TurnFailure, UpstreamQuotaExhausted
from companion.services.personas.voices import PersonaId
from companion.services.turn.models import HistoryMessage, LatencyBreakdown, TurnResult
from companion.services.turn.orchestrator import TurnOrchestrator
from companion.services.usage.governor import UsageGovernor
from companion.services.usage.models import AuthenticatedUser
from companion.services.usage.rate_limit import SlidingWindowRateLimiter

router = APIRouter()
logger = logging.getLogger(__name__)

MAX_AUDIO_BASE64_CHARS = 50 * 1024 * 1024
MAX_SYSTEM_PROMPT_CHARS = 50_000
MAX_HISTORY_MESSAGES = 50

AudioFormat = Literal["wav", "pcm16", "mp3", "m4a", "3gp", "webm", "ogg"]


class VoiceTurnRequest(BaseModel):
    """Voice turn request model."""

    audio_base64: Optional[str] = Field(None, max_length=MAX_AUDIO_BASE64_CHARS)
    audio_format: AudioFormat = "wav"
    persona_id: PersonaId
    system_prompt: str = Field("", max_length=MAX_SYSTEM_PROMPT_CHARS)
    conversation_history: List[HistoryMessage] = Field(
        default_factory=list, max_length=MAX_HISTORY_MESSAGES
    )
    generate_opener: bool = False
    opener_text: Optional[str] = Field(None, max_length=1000)

    @field_validator("audio_base64")
    @classmethod
    def audio_must_be_base64(cls, value: Optional[str]) -> Optional[str]:
        if value:
            try:
                base64.b64decode(value, validate=True)
            except binascii.Error as e:
                raise ValueError("Invalid base64 encoding") from e
        return value


class VoiceTurnResponse(BaseModel):
    """Voice turn response model."""

    success: bool
    user_transcript: Optional[str] = None
    assistant_response: Optional[str] = None
    audio_base64: Optional[str] = None
    audio_format: str = "mp3"
    latency_ms: LatencyBreakdown = LatencyBreakdown()
    error: Optional[str] = None

    @classmethod
    def from_result(cls, result: TurnResult, include_transcript: bool = True) -> "VoiceTurnResponse":
        audio = base64.b64encode(result.reply_audio).decode() if result.reply_audio else ""
        return cls(
            success=True,
            user_transcript=result.transcript if include_transcript else None,
            assistant_response=result.reply_text,
            audio_base64=audio,
            audio_format=result.audio_format,
            latency_ms=result.latency,
        )


@router.post("/voice-turn", response_model=VoiceTurnResponse)
async def voice_turn(
    body: VoiceTurnRequest,
    user: AuthenticatedUser = Depends(require_user),
    limiter: SlidingWindowRateLimiter = Depends(get_rate_limiter),
    governor: UsageGovernor = Depends(get_usage_governor),
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
):
    """
    Process one conversation turn.

    Order: auth, rate limit, daily budget, then the pipeline. An opener
    request skips transcription and generation.
    """
    logger.info(
        f"[VOICE TURN] Request - User: {user.user_id}, Persona: {body.persona_id.value}, "
        f"Format: {body.audio_format}, Opener: {body.generate_opener}"
    )

    rate = limiter.check_operation("voice_turn", user.user_id)
    if not rate.allowed:
        return rate_limited_response(rate)

    check = await governor.check_and_reserve(user)
    if not check.allowed:
        return limit_reached_response(check)

    try:
        if body.generate_opener and body.opener_text:
            result = await orchestrator.synthesize_opener(body.persona_id.value, body.opener_text)
            return VoiceTurnResponse.from_result(result, include_transcript=False)

        if not body.audio_base64:
            return error_response("Missing audio_base64", 400)

        result = await orchestrator.process_turn(
            audio=base64.b64decode(body.audio_base64),
            audio_format=body.audio_format,
            persona_id=body.persona_id.value,
            system_prompt=body.system_prompt,
            history=body.conversation_history,
        )
    except UpstreamQuotaExhausted:
        return error_response("Service temporarily unavailable. Please try again later.", 503)
    except TurnFailure as e:
        logger.error(
            f"[VOICE TURN] Turn failed - User: {user.user_id}, "
            f"Error: {type(e).__name__}: {str(e)}"
        )
        return error_response("Voice turn failed", 500)

    return VoiceTurnResponse.from_result(result)
