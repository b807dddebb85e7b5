"""Voice activity detection over input level readings."""
import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

# Reported by input devices that cannot meter
SENTINEL_DB = -160.0


@dataclass(frozen=True)
class VadProfile:
    """Platform-tuned detector thresholds."""

    speech_threshold_db: float
    fallback_seconds: float
    silence_seconds: float = 1.5
    min_recording_seconds: float = 1.0
    trailing_grace_seconds: float = 0.1
    probe_ticks: int = 10


VAD_PROFILES: Dict[str, VadProfile] = {
    "ios": VadProfile(speech_threshold_db=-40.0, fallback_seconds=15.0),
    "android": VadProfile(speech_threshold_db=-35.0, fallback_seconds=5.0),
    "desktop": VadProfile(speech_threshold_db=-45.0, fallback_seconds=10.0),
}


def is_valid_level(level_db: Optional[float]) -> bool:
    return level_db is not None and not math.isnan(level_db) and level_db > SENTINEL_DB


@dataclass
class VADState:
    """Per-recording detector state."""

    started_at: float
    ticks: int = 0
    valid_readings: int = 0
    speech_detected: bool = False
    silence_started_at: Optional[float] = None
    metering_disabled: bool = False
    fired: bool = False
    cancelled: bool = False

    @property
    def done(self) -> bool:
        return self.fired or self.cancelled


class VoiceActivityDetector:
    """Ends a recording on sustained silence, or when the fallback timer runs out.

    Two independent paths can end a recording: level metering and a
    wall-clock fallback timer. ``on_silence`` is invoked at most once per
    ``start()``; the path that fires first cancels the other.
    """

    def __init__(
        self,
        on_silence: Callable[[], None],
        profile: VadProfile,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.on_silence = on_silence
        self.profile = profile
        self._clock = clock
        self.state: Optional[VADState] = None
        self._fallback: Optional[asyncio.TimerHandle] = None
        self._grace: Optional[asyncio.TimerHandle] = None

    def start(self) -> None:
        """Reset state and arm the fallback timer for a new recording."""
        self.cancel()
        self.state = VADState(started_at=self._clock())
        loop = asyncio.get_running_loop()
        self._fallback = loop.call_later(self.profile.fallback_seconds, self._fire, "fallback")

    def process_level(self, level_db: Optional[float], now: Optional[float] = None) -> None:
        """Feed one metering reading (one status tick)."""
        state = self.state
        if state is None or state.done or state.metering_disabled:
            return
        now = self._clock() if now is None else now
        state.ticks += 1

        if not is_valid_level(level_db):
            if state.valid_readings == 0 and state.ticks >= self.profile.probe_ticks:
                state.metering_disabled = True
                logger.info(
                    f"[VAD] No metering data after {state.ticks} ticks; "
                    f"relying on {self.profile.fallback_seconds}s fallback"
                )
            return

        state.valid_readings += 1
        if level_db > self.profile.speech_threshold_db:
            state.speech_detected = True
            state.silence_started_at = None
            return

        if state.silence_started_at is None:
            state.silence_started_at = now
        silent_for = now - state.silence_started_at
        recorded_for = now - state.started_at
        if (
            silent_for >= self.profile.silence_seconds
            and recorded_for >= self.profile.min_recording_seconds
            and self._grace is None
        ):
            logger.debug(f"[VAD] Silence for {silent_for:.1f}s, ending recording")
            loop = asyncio.get_running_loop()
            self._grace = loop.call_later(
                self.profile.trailing_grace_seconds, self._fire, "silence"
            )

    def cancel(self) -> None:
        """Disarm both paths without firing."""
        if self.state is not None:
            self.state.cancelled = True
        self._clear_timers()

    def _clear_timers(self) -> None:
        if self._fallback is not None:
            self._fallback.cancel()
            self._fallback = None
        if self._grace is not None:
            self._grace.cancel()
            self._grace = None

    def _fire(self, reason: str) -> None:
        state = self.state
        if state is None or state.done:
            return
        state.fired = True
        self._clear_timers()
        logger.info(f"[VAD] Recording ended by {reason}")
        self.on_silence()
