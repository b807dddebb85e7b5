"""Call session state."""
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, List, Optional


class CallState(str, Enum):
    IDLE = "idle"
    CALLING = "calling"
    CONNECTED = "connected"
    ENDING = "ending"
    ENDED = "ended"


class ProcessingState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    THINKING = "thinking"
    SPEAKING = "speaking"


class EndReason(str, Enum):
    HANGUP = "hangup"
    TIME_LIMIT = "time_limit"
    AUTH_FAILED = "auth_failed"
    ERROR = "error"


@dataclass
class CallSession:
    """Everything the client knows about one call.

    ``processing_state`` is only meaningful while connected; any other call
    state forces it back to idle.
    """

    persona_id: str
    history_limit: int = 20
    state: CallState = CallState.IDLE
    processing_state: ProcessingState = ProcessingState.IDLE
    started_at: Optional[float] = None
    elapsed_seconds: int = 0
    is_muted: bool = False
    is_speaker_on: bool = True
    is_listening: bool = False
    is_speaking: bool = False
    end_reason: Optional[EndReason] = None
    error: Optional[str] = None
    warning_shown: bool = False
    last_minute: int = 0
    history: Deque[Dict[str, str]] = field(init=False)

    def __post_init__(self):
        self.history = deque(maxlen=self.history_limit)

    def set_state(self, state: CallState) -> None:
        self.state = state
        if state != CallState.CONNECTED:
            self.processing_state = ProcessingState.IDLE

    def set_processing(self, processing_state: ProcessingState) -> None:
        if self.state == CallState.CONNECTED:
            self.processing_state = processing_state

    def add_message(self, role: str, content: str) -> None:
        self.history.append({"role": role, "content": content})

    def history_payload(self, limit: Optional[int] = None) -> List[Dict[str, str]]:
        messages = list(self.history)
        return messages[-limit:] if limit else messages

    @property
    def formatted_duration(self) -> str:
        return f"{self.elapsed_seconds // 60}:{self.elapsed_seconds % 60:02d}"
