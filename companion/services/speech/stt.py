"""Speech-to-text service."""
import logging
from typing import Optional

import openai
from openai import AsyncOpenAI

from companion.core.config import settings
from companion.core.errors import TranscriptionFailure, UpstreamQuotaExhausted

logger = logging.getLogger(__name__)

MIME_TYPES = {
    "wav": "audio/wav",
    "mp3": "audio/mpeg",
    "m4a": "audio/mp4",
    "3gp": "audio/3gpp",
    "webm": "audio/webm",
    "ogg": "audio/ogg",
    "pcm16": "audio/wav",
}


def is_quota_error(error: Exception) -> bool:
    """Check whether an OpenAI error means the account ran out of quota."""
    return getattr(error, "code", None) == "insufficient_quota"


class SpeechToTextService:
    """Service for converting speech to text."""

    def __init__(self, client: Optional[AsyncOpenAI] = None):
        self.client = client or AsyncOpenAI(api_key=settings.openai_api_key)
        self.model = settings.transcription_model
        self.language = settings.transcription_language

    async def transcribe_audio(self, audio_data: bytes, format: str = "wav") -> str:
        """
        Transcribe audio to text using OpenAI Whisper.

        Args:
            audio_data: Raw audio bytes
            format: Audio format (wav, m4a, 3gp, ...)

        Returns:
            Transcribed text, stripped
        """
        mime_type = MIME_TYPES.get(format, "audio/mpeg")
        extension = "wav" if format == "pcm16" else format
        try:
            transcript = await self.client.audio.transcriptions.create(
                model=self.model,
                file=(f"audio.{extension}", audio_data, mime_type),
                language=self.language,
            )
        except openai.OpenAIError as e:
            logger.error(
                f"[STT] Transcription failed - Format: {format}, "
                f"Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            if is_quota_error(e):
                raise UpstreamQuotaExhausted("Transcription quota exhausted") from e
            raise TranscriptionFailure("Transcription failed") from e
        return (transcript.text or "").strip()
