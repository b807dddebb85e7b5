"""Turn pipeline models."""
from typing import Literal, Optional

from pydantic import BaseModel


class HistoryMessage(BaseModel):
    """One prior message of the conversation."""

    role: Literal["user", "assistant"]
    content: str


class LatencyBreakdown(BaseModel):
    """Per-stage timings of a turn in milliseconds."""

    stt: int = 0
    llm: int = 0
    tts: int = 0
    total: int = 0


class TurnResult(BaseModel):
    """Outcome of one processed turn.

    An empty transcript means the audio held no usable speech; reply fields
    are then empty too.
    """

    transcript: str = ""
    reply_text: str = ""
    reply_audio: Optional[bytes] = None
    audio_format: str = "mp3"
    latency: LatencyBreakdown = LatencyBreakdown()

    @property
    def is_empty(self) -> bool:
        return not self.transcript
