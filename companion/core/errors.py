"""Error taxonomy shared by the backend and the call client."""
from typing import Optional


class CompanionError(Exception):
    """Base class for all companion errors."""


class PermissionDenied(CompanionError):
    """Microphone access was refused."""


class TransientIOError(CompanionError):
    """Recording or playback hiccup; the listen loop recovers from it."""


class ConnectionLost(TransientIOError):
    """The underlying transport dropped."""


class TurnFailure(CompanionError):
    """A single conversation turn failed. The call stays connected."""


class TranscriptionFailure(TurnFailure):
    """Speech-to-text failed."""


class GenerationFailure(TurnFailure):
    """Reply generation failed."""


class SynthesisFailure(TurnFailure):
    """Speech synthesis failed for at least one sentence."""


class UpstreamQuotaExhausted(TurnFailure):
    """An upstream provider ran out of quota."""


class TurnRejected(CompanionError):
    """The backend rejected the request as invalid."""


class UsageLimitExceeded(CompanionError):
    """The daily voice budget is used up."""

    def __init__(self, message: str = "Daily limit reached", is_premium: bool = False):
        super().__init__(message)
        self.is_premium = is_premium


class RateLimited(CompanionError):
    """Too many requests in the short rate window."""

    def __init__(self, retry_after: int, message: str = "Too many requests"):
        super().__init__(message)
        self.retry_after = retry_after


class AuthenticationFailure(CompanionError):
    """Missing, invalid or expired bearer credential."""

    def __init__(self, message: str = "Authentication required", detail: Optional[str] = None):
        super().__init__(message)
        self.detail = detail
