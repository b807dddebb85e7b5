"""Turn-based call controller."""
import asyncio
import logging
import os
import random
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Set

from companion.client.audio.devices import AudioPlayer
from companion.client.audio.recorder import AudioRecorder
from companion.client.config import ClientSettings
from companion.client.opener_cache import OpenerCache
from companion.client.session import CallSession, CallState, EndReason, ProcessingState
from companion.client.timer import CallTimer
from companion.client.transport import TurnClient
from companion.core.errors import (
    AuthenticationFailure,
    CompanionError,
    PermissionDenied,
    RateLimited,
    TransientIOError,
    TurnFailure,
    TurnRejected,
    UsageLimitExceeded,
)
from companion.services.personas.registry import PersonaRegistry, persona_registry
from companion.services.speech.filters import is_garbage_transcript

logger = logging.getLogger(__name__)


@dataclass
class CallCallbacks:
    """Optional hooks for the UI layer."""

    on_state_change: Optional[Callable[[CallState], Any]] = None
    on_minute_used: Optional[Callable[[int], Any]] = None
    on_time_warning: Optional[Callable[[int], Any]] = None
    on_time_limit_reached: Optional[Callable[[], Any]] = None
    on_user_message: Optional[Callable[[str], Any]] = None
    on_assistant_message: Optional[Callable[[str], Any]] = None
    on_error: Optional[Callable[[str], Any]] = None


class CallController:
    """Drives one phone-call-style conversation with a persona.

    Listening, thinking and speaking alternate strictly: at most one turn is
    in flight and the microphone is never open while the persona speaks.
    """

    def __init__(
        self,
        persona_id: str,
        transport: TurnClient,
        recorder: AudioRecorder,
        player: AudioPlayer,
        settings: Optional[ClientSettings] = None,
        callbacks: Optional[CallCallbacks] = None,
        opener_cache: Optional[OpenerCache] = None,
        registry: Optional[PersonaRegistry] = None,
        is_premium: bool = False,
        can_make_call: Optional[Callable[[], bool]] = None,
        ringtone: Optional[bytes] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.persona_id = persona_id
        self.transport = transport
        self.recorder = recorder
        self.player = player
        self.settings = settings or ClientSettings()
        self.callbacks = callbacks or CallCallbacks()
        self.opener_cache = opener_cache
        self.registry = registry or persona_registry
        self.can_make_call = can_make_call
        self.ringtone = ringtone
        self.rng = rng or random.Random()
        self._clock = clock
        self.session = CallSession(persona_id, history_limit=self.settings.history_limit)
        self.timer = CallTimer(
            self.settings.free_call_limit_seconds,
            self.settings.warning_before_end_seconds,
            is_premium=is_premium,
        )
        self._tick_task: Optional[asyncio.Task] = None
        self._turn_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    # ---- callbacks -------------------------------------------------------

    def _emit(self, name: str, *args: Any) -> None:
        callback = getattr(self.callbacks, name)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception(f"[CALL] Callback {name} raised")

    def _set_state(self, state: CallState) -> None:
        self.session.set_state(state)
        logger.info(f"[CALL] State -> {state.value}")
        self._emit("on_state_change", state)

    def _report_error(self, message: str) -> None:
        self.session.error = message
        self._emit("on_error", message)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _system_prompt(self) -> str:
        return self.registry.system_prompt(self.persona_id)

    # ---- lifecycle ---------------------------------------------------------

    async def start_call(self) -> None:
        """
        Ring, connect and play the persona's opener.

        Raises:
            PermissionDenied: microphone access was refused
        """
        if self.session.state not in (CallState.IDLE, CallState.ENDED):
            logger.debug(f"[CALL] start_call ignored in state {self.session.state.value}")
            return
        if self.can_make_call is not None and not self.can_make_call():
            self._report_error("No minutes remaining. Upgrade to premium!")
            return

        session = CallSession(self.persona_id, history_limit=self.settings.history_limit)
        self.session = session
        self.timer.reset()
        self._set_state(CallState.CALLING)

        if not await self.recorder.request_permission():
            self._report_error("Microphone permission denied")
            self._set_state(CallState.IDLE)
            raise PermissionDenied("Microphone permission denied")

        await self._ring()
        if self.session is not session or session.state != CallState.CALLING:
            logger.info("[CALL] Call abandoned while ringing")
            return

        session.started_at = self._clock()
        self._set_state(CallState.CONNECTED)
        self._tick_task = asyncio.create_task(self._run_ticks(session))
        await self._play_opener(session)

    async def _ring(self) -> None:
        duration = self.rng.uniform(self.settings.ring_min_seconds, self.settings.ring_max_seconds)
        ringing = None
        if self.ringtone:
            ringing = asyncio.create_task(self.player.play(self.ringtone, "mp3"))
        try:
            await asyncio.sleep(duration)
        finally:
            if ringing is not None:
                self.player.stop()
                ringing.cancel()

    async def _run_ticks(self, session: CallSession) -> None:
        while session.state == CallState.CONNECTED:
            await asyncio.sleep(1.0)
            if session.state != CallState.CONNECTED or session.started_at is None:
                return
            await self.handle_tick(int(self._clock() - session.started_at))

    async def handle_tick(self, elapsed: int) -> None:
        """Apply one duration tick: minute accounting, warning, hard limit."""
        session = self.session
        session.elapsed_seconds = elapsed
        events = self.timer.update(elapsed)
        if events.minute_used is not None:
            session.last_minute = events.minute_used
            self._emit("on_minute_used", events.minute_used)
        if events.warning_remaining is not None:
            session.warning_shown = True
            self._emit("on_time_warning", events.warning_remaining)
        if events.limit_reached and session.state == CallState.CONNECTED:
            logger.info(f"[CALL] Free call limit reached at {elapsed}s")
            self._emit("on_time_limit_reached")
            await self.end_call(EndReason.TIME_LIMIT)

    async def end_call(self, reason: EndReason = EndReason.HANGUP) -> None:
        """Tear the call down from any state; repeated calls are no-ops."""
        session = self.session
        if session.state in (CallState.IDLE, CallState.ENDING, CallState.ENDED):
            return
        session.end_reason = reason
        self._set_state(CallState.ENDING)
        session.is_listening = False

        current = asyncio.current_task()
        for task in [self._tick_task, self._turn_task, *self._tasks]:
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._tick_task = None

        await self.recorder.cancel_recording()
        self.player.stop()
        session.is_speaking = False

        if session.started_at is not None:
            duration = int(self._clock() - session.started_at)
            session.elapsed_seconds = duration
            if duration > 0:
                try:
                    await self.transport.record_usage(duration)
                except CompanionError as e:
                    logger.warning(f"[CALL] Failed to report {duration}s of usage: {e}")

        session.history.clear()
        self._set_state(CallState.ENDED)
        logger.info(f"[CALL] Ended ({reason.value}) after {session.formatted_duration}")
        self._spawn(self._reset_after_delay(session))

    async def _reset_after_delay(self, session: CallSession) -> None:
        await asyncio.sleep(self.settings.call_end_delay_seconds)
        if self.session is session and session.state == CallState.ENDED:
            session.elapsed_seconds = 0
            session.last_minute = 0
            self._set_state(CallState.IDLE)

    # ---- turns -------------------------------------------------------------

    async def _play_opener(self, session: CallSession) -> None:
        cached = self.opener_cache.take(self.persona_id) if self.opener_cache else None
        audio, audio_format = b"", "mp3"
        if cached is not None:
            text, audio, audio_format = cached.text, cached.audio, cached.audio_format
            logger.debug("[CALL] Using prefetched opener")
        else:
            text = self.registry.random_opener(self.persona_id)
            try:
                response = await self.transport.synthesize_opener(
                    self.persona_id, text, self._system_prompt()
                )
                audio, audio_format = response.audio, response.audio_format
            except AuthenticationFailure as e:
                self._report_error(str(e))
                await self.end_call(EndReason.AUTH_FAILED)
                return
            except CompanionError as e:
                logger.warning(f"[CALL] Opener synthesis failed, listening instead: {e}")

        if session.state != CallState.CONNECTED:
            return
        session.add_message("assistant", text)
        self._emit("on_assistant_message", text)
        if audio:
            await self._speak(session, audio, audio_format)
        self.resume_listening(self.settings.resume_listening_delay_seconds)

    async def _speak(self, session: CallSession, audio: bytes, audio_format: str) -> None:
        session.is_speaking = True
        session.set_processing(ProcessingState.SPEAKING)
        try:
            await self.player.play(audio, audio_format)
        except Exception as e:
            logger.warning(f"[CALL] Playback failed: {type(e).__name__}: {e}")
        finally:
            session.is_speaking = False
            session.set_processing(ProcessingState.IDLE)

    def resume_listening(self, delay: float) -> None:
        """Reopen the microphone after ``delay`` seconds."""
        self._spawn(self._listen_after(delay))

    async def _listen_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.start_listening()

    async def start_listening(self) -> None:
        """Open the microphone for the next utterance; silently skipped when not possible."""
        session = self.session
        if (
            session.is_listening
            or session.is_muted
            or session.is_speaking
            or session.state != CallState.CONNECTED
        ):
            return

        session.is_listening = True
        try:
            await self.recorder.start_recording(self._on_silence_detected)
        except PermissionDenied as e:
            session.is_listening = False
            session.set_processing(ProcessingState.IDLE)
            self._report_error(str(e))
            return
        except (TransientIOError, OSError) as e:
            session.is_listening = False
            session.set_processing(ProcessingState.IDLE)
            logger.warning(f"[CALL] Could not start recording: {e}")
            self.resume_listening(self.settings.error_retry_delay_seconds)
            return
        session.set_processing(ProcessingState.LISTENING)

    def _on_silence_detected(self) -> None:
        if self.session.is_listening:
            self._turn_task = asyncio.create_task(self.process_recording())

    async def process_recording(self) -> None:
        """Send the finished utterance and play the persona's reply."""
        session = self.session
        if not session.is_listening:
            return
        session.is_listening = False
        session.set_processing(ProcessingState.THINKING)

        try:
            path = await self.recorder.stop_recording()
            if not path or session.state != CallState.CONNECTED:
                session.set_processing(ProcessingState.IDLE)
                self.resume_listening(self.settings.resume_listening_delay_seconds)
                return

            audio = await asyncio.to_thread(Path(path).read_bytes)
            os.remove(path)
            response = await self.transport.send_turn(
                audio,
                "wav",
                self.persona_id,
                self._system_prompt(),
                session.history_payload(),
            )

            transcript = (response.user_transcript or "").strip()
            if is_garbage_transcript(transcript):
                logger.debug(f"[CALL] Ignoring non-speech transcript: '{transcript}'")
                session.set_processing(ProcessingState.IDLE)
                self.resume_listening(self.settings.resume_listening_delay_seconds)
                return

            session.add_message("user", transcript)
            self._emit("on_user_message", transcript)
            if response.assistant_response:
                session.add_message("assistant", response.assistant_response)
                self._emit("on_assistant_message", response.assistant_response)

            if response.audio and session.state == CallState.CONNECTED:
                await self._speak(session, response.audio, response.audio_format)
            session.set_processing(ProcessingState.IDLE)
            self.resume_listening(self.settings.resume_listening_delay_seconds)

        except UsageLimitExceeded:
            logger.info("[CALL] Daily limit reached mid-call")
            self._emit("on_time_limit_reached")
            await self.end_call(EndReason.TIME_LIMIT)
        except AuthenticationFailure as e:
            self._report_error(str(e))
            await self.end_call(EndReason.AUTH_FAILED)
        except RateLimited as e:
            self._report_error(str(e))
            session.set_processing(ProcessingState.IDLE)
            self.resume_listening(float(e.retry_after))
        except (TurnFailure, TurnRejected, TransientIOError, OSError) as e:
            logger.warning(f"[CALL] Turn failed: {type(e).__name__}: {e}")
            self._report_error(str(e) or "Failed to process voice")
            session.set_processing(ProcessingState.IDLE)
            self.resume_listening(self.settings.error_retry_delay_seconds)
        except Exception as e:
            logger.error(f"[CALL] Unexpected turn error: {type(e).__name__}: {e}", exc_info=True)
            self._report_error("Failed to process voice")
            session.set_processing(ProcessingState.IDLE)
            self.resume_listening(self.settings.error_retry_delay_seconds)

    # ---- controls ----------------------------------------------------------

    async def toggle_mute(self) -> None:
        session = self.session
        session.is_muted = not session.is_muted
        if session.is_muted:
            if session.is_listening:
                session.is_listening = False
                await self.recorder.cancel_recording()
                session.set_processing(ProcessingState.IDLE)
        elif session.state == CallState.CONNECTED and not session.is_speaking:
            self.resume_listening(self.settings.resume_listening_delay_seconds)

    def toggle_speaker(self) -> None:
        self.session.is_speaker_on = not self.session.is_speaker_on
        self.player.set_speaker(self.session.is_speaker_on)

    def clear_error(self) -> None:
        self.session.error = None
