"""Realtime streaming call over a speech-to-speech model session."""
import asyncio
import base64
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from companion.client.audio.devices import AudioInputDevice, AudioPlayer
from companion.client.audio.pcm import pcm16_to_wav, strip_wav_header
from companion.client.call import CallCallbacks
from companion.client.config import ClientSettings
from companion.client.session import CallSession, CallState, EndReason, ProcessingState
from companion.client.timer import CallTimer
from companion.client.transport import TurnClient
from companion.core.errors import (
    CompanionError,
    ConnectionLost,
    UsageLimitExceeded,
)
from companion.services.personas.registry import PersonaRegistry, persona_registry

logger = logging.getLogger(__name__)


class RealtimeEventType(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"
    LIMIT_REACHED = "limit_reached"
    SPEECH_STARTED = "speech_started"
    SPEECH_STOPPED = "speech_stopped"
    TRANSCRIPTION = "transcription"
    RESPONSE_STARTED = "response_started"
    RESPONSE_TEXT = "response_text"
    RESPONSE_AUDIO = "response_audio"
    RESPONSE_DONE = "response_done"


@dataclass
class RealtimeEvent:
    type: RealtimeEventType
    text: Optional[str] = None
    is_final: bool = False
    audio: Optional[str] = None
    message: Optional[str] = None
    is_premium: bool = False
    remaining_seconds: Optional[int] = None


def session_config(instructions: str, voice: str) -> Dict[str, Any]:
    """The session.update payload for a persona call."""
    return {
        "type": "session.update",
        "session": {
            "modalities": ["text", "audio"],
            "instructions": instructions,
            "voice": voice,
            "input_audio_format": "pcm16",
            "output_audio_format": "pcm16",
            "input_audio_transcription": {"model": "whisper-1"},
            "turn_detection": {
                "type": "server_vad",
                "threshold": 0.7,
                "prefix_padding_ms": 400,
                "silence_duration_ms": 800,
            },
            "temperature": 0.8,
            "max_response_output_tokens": 150,
        },
    }


class AudioChunkQueue:
    """Buffers base64 PCM16 deltas until there is enough to play smoothly.

    A segment is ready once the queue holds ``min_chars`` base64 characters
    or ``min_chunks`` chunks, or the response is complete.
    """

    def __init__(self, min_chars: int = 20000, min_chunks: int = 5):
        self.min_chars = min_chars
        self.min_chunks = min_chunks
        self._chunks: List[str] = []
        self._chars = 0
        self.response_done = False

    def __len__(self) -> int:
        return len(self._chunks)

    @property
    def queued_chars(self) -> int:
        return self._chars

    def push(self, chunk: str) -> None:
        self._chunks.append(chunk)
        self._chars += len(chunk)

    def start_response(self) -> None:
        self.response_done = False

    def mark_response_done(self) -> None:
        self.response_done = True

    def is_ready(self) -> bool:
        if not self._chunks:
            return False
        return (
            self._chars >= self.min_chars
            or len(self._chunks) >= self.min_chunks
            or self.response_done
        )

    def take_segment(self) -> bytes:
        """Decode and concatenate everything queued."""
        chunks, self._chunks, self._chars = self._chunks, [], 0
        return b"".join(base64.b64decode(chunk) for chunk in chunks)

    def clear(self) -> None:
        self._chunks = []
        self._chars = 0


class RealtimeCallClient:
    """Streams microphone audio to a realtime model and plays its replies."""

    def __init__(
        self,
        transport: TurnClient,
        input_device: AudioInputDevice,
        player: AudioPlayer,
        on_event: Callable[[RealtimeEvent], Any],
        settings: Optional[ClientSettings] = None,
        connect: Callable[..., Any] = websockets.connect,
    ):
        self.transport = transport
        self.input_device = input_device
        self.player = player
        self.on_event = on_event
        self.settings = settings or ClientSettings()
        self._connect = connect
        self.queue = AudioChunkQueue(
            self.settings.playback_min_base64_chars, self.settings.playback_min_chunks
        )
        self.ws = None
        self.is_connected = False
        self.is_speaking = False
        self.is_streaming = False
        self.remaining_seconds: Optional[int] = None
        self.is_premium = False
        self._response_text = ""
        self._receiver: Optional[asyncio.Task] = None
        self._sender: Optional[asyncio.Task] = None
        self._playback: Optional[asyncio.Task] = None

    def _emit(self, event: RealtimeEvent) -> None:
        try:
            self.on_event(event)
        except Exception:
            logger.exception(f"[REALTIME] Event handler raised on {event.type.value}")

    async def connect(self, instructions: str) -> None:
        """
        Fetch a session token, open the socket and start the greeting.

        Raises:
            UsageLimitExceeded: no budget left today
            ConnectionLost: the socket could not be opened
        """
        try:
            token = await self.transport.fetch_realtime_token()
        except UsageLimitExceeded as e:
            self._emit(RealtimeEvent(RealtimeEventType.LIMIT_REACHED, is_premium=e.is_premium))
            raise
        self.remaining_seconds = token.remaining_seconds
        self.is_premium = token.is_premium

        url = f"{self.settings.realtime_url}?model={self.settings.realtime_model}"
        try:
            self.ws = await self._connect(
                url,
                additional_headers={
                    "Authorization": f"Bearer {token.token}",
                    "OpenAI-Beta": "realtime=v1",
                },
                max_size=None,
            )
        except (OSError, InvalidHandshake) as e:
            logger.error(f"[REALTIME] Connection failed: {type(e).__name__}: {e}")
            self._emit(RealtimeEvent(RealtimeEventType.ERROR, message="Failed to connect"))
            raise ConnectionLost("Failed to connect to realtime session") from e

        self.is_connected = True
        self._receiver = asyncio.create_task(self._receive_loop())
        self._playback = asyncio.create_task(self._playback_loop())
        await self.send(session_config(instructions, self.settings.realtime_voice))
        await self.send({"type": "response.create", "response": {"modalities": ["text", "audio"]}})
        logger.info("[REALTIME] Connected")
        self._emit(
            RealtimeEvent(
                RealtimeEventType.CONNECTED,
                remaining_seconds=self.remaining_seconds,
                is_premium=self.is_premium,
            )
        )

    async def send(self, message: Dict[str, Any]) -> None:
        if self.ws is None or not self.is_connected:
            return
        try:
            await self.ws.send(json.dumps(message))
        except ConnectionClosed:
            logger.warning(f"[REALTIME] Dropped {message.get('type')}: socket closed")

    # ---- microphone --------------------------------------------------------

    def start_streaming(self) -> None:
        if self.is_streaming or not self.is_connected:
            return
        self.input_device.start(None)
        self.is_streaming = True
        self._sender = asyncio.create_task(self._send_audio_loop())

    def stop_streaming(self) -> None:
        if not self.is_streaming:
            return
        self.is_streaming = False
        if self._sender is not None:
            self._sender.cancel()
            self._sender = None
        self.input_device.stop()

    async def _send_audio_loop(self) -> None:
        while self.is_streaming:
            await asyncio.sleep(self.settings.realtime_chunk_seconds)
            pcm = strip_wav_header(self.input_device.read_chunk())
            if pcm:
                await self.send(
                    {"type": "input_audio_buffer.append", "audio": base64.b64encode(pcm).decode()}
                )

    # ---- server events -----------------------------------------------------

    async def _receive_loop(self) -> None:
        try:
            async for raw in self.ws:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(f"[REALTIME] Invalid JSON: {str(raw)[:100]}")
                    continue
                if not isinstance(message, dict):
                    logger.warning(f"[REALTIME] Ignoring non-object frame: {str(raw)[:100]}")
                    continue
                await self.handle_server_event(message)
        except ConnectionClosed as e:
            logger.warning(f"[REALTIME] Connection closed: {e}")
        if self.is_connected:
            self.is_connected = False
            self.stop_streaming()
            self._emit(RealtimeEvent(RealtimeEventType.DISCONNECTED))

    async def handle_server_event(self, message: Dict[str, Any]) -> None:
        """Translate one server message into client state and events."""
        event_type = message.get("type", "")

        if event_type == "input_audio_buffer.speech_started":
            if self.is_speaking or len(self.queue):
                await self.interrupt()
            self._emit(RealtimeEvent(RealtimeEventType.SPEECH_STARTED))
        elif event_type == "input_audio_buffer.speech_stopped":
            self._emit(RealtimeEvent(RealtimeEventType.SPEECH_STOPPED))
        elif event_type == "conversation.item.input_audio_transcription.completed":
            text = (message.get("transcript") or "").strip()
            if text:
                self._emit(RealtimeEvent(RealtimeEventType.TRANSCRIPTION, text=text, is_final=True))
        elif event_type == "response.created":
            self._response_text = ""
            self.queue.start_response()
            self._emit(RealtimeEvent(RealtimeEventType.RESPONSE_STARTED))
        elif event_type in ("response.text.delta", "response.audio_transcript.delta"):
            self._response_text += message.get("delta", "")
            self._emit(RealtimeEvent(RealtimeEventType.RESPONSE_TEXT, text=self._response_text))
        elif event_type in ("response.text.done", "response.audio_transcript.done"):
            text = message.get("text") or message.get("transcript") or self._response_text
            self._emit(RealtimeEvent(RealtimeEventType.RESPONSE_TEXT, text=text, is_final=True))
        elif event_type == "response.audio.delta":
            chunk = message.get("delta")
            if chunk:
                self.queue.push(chunk)
                self._emit(RealtimeEvent(RealtimeEventType.RESPONSE_AUDIO, audio=chunk))
        elif event_type == "response.done":
            self.queue.mark_response_done()
            self._emit(RealtimeEvent(RealtimeEventType.RESPONSE_DONE))
        elif event_type == "error":
            error = message.get("error") or {}
            text = error.get("message") if isinstance(error, dict) else str(error)
            logger.error(f"[REALTIME] Server error: {text}")
            self._emit(RealtimeEvent(RealtimeEventType.ERROR, message=text or "Realtime error"))
        else:
            logger.debug(f"[REALTIME] Unhandled message: {event_type}")

    async def interrupt(self) -> None:
        """User barged in: stop playback, drop queued audio, cancel the response."""
        logger.info("[REALTIME] User interrupted the response")
        self.player.stop()
        self.queue.clear()
        self.is_speaking = False
        await self.send({"type": "response.cancel"})

    # ---- playback ----------------------------------------------------------

    async def _playback_loop(self) -> None:
        while self.is_connected:
            if not self.queue.is_ready():
                if self.is_speaking and self.queue.response_done and not len(self.queue):
                    self.is_speaking = False
                await asyncio.sleep(self.settings.playback_poll_seconds)
                continue
            await self.play_next_segment()

    async def play_next_segment(self) -> None:
        pcm = self.queue.take_segment()
        if not pcm:
            return
        self.is_speaking = True
        wav = pcm16_to_wav(pcm, self.settings.realtime_sample_rate)
        try:
            await asyncio.wait_for(
                self.player.play(wav, "wav"),
                timeout=self.settings.playback_segment_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("[REALTIME] Playback segment timed out")
            self.player.stop()

    async def disconnect(self) -> None:
        was_connected = self.is_connected
        self.is_connected = False
        self.stop_streaming()
        self.player.stop()
        self.queue.clear()
        self.is_speaking = False
        current = asyncio.current_task()
        for task in (self._receiver, self._playback):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._receiver = self._playback = None
        if self.ws is not None:
            await self.ws.close()
            self.ws = None
        if was_connected:
            self._emit(RealtimeEvent(RealtimeEventType.DISCONNECTED))


class RealtimeCallState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ENDING = "ending"
    ENDED = "ended"


SESSION_STATES = {
    RealtimeCallState.IDLE: CallState.IDLE,
    RealtimeCallState.CONNECTING: CallState.CALLING,
    RealtimeCallState.CONNECTED: CallState.CONNECTED,
    RealtimeCallState.ENDING: CallState.ENDING,
    RealtimeCallState.ENDED: CallState.ENDED,
}


class RealtimeCallController:
    """Call lifecycle for the realtime variant.

    Turn-taking is left to the server's voice activity detection; a dropped
    socket while connected is surfaced as an error and the call stays up
    until the user hangs up.
    """

    def __init__(
        self,
        persona_id: str,
        client_factory: Callable[[Callable[[RealtimeEvent], Any]], RealtimeCallClient],
        transport: TurnClient,
        permission_check: Callable[[], bool],
        settings: Optional[ClientSettings] = None,
        callbacks: Optional[CallCallbacks] = None,
        registry: Optional[PersonaRegistry] = None,
        is_premium: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.persona_id = persona_id
        self.transport = transport
        self.permission_check = permission_check
        self.settings = settings or ClientSettings()
        self.callbacks = callbacks or CallCallbacks()
        self.registry = registry or persona_registry
        self._clock = clock
        self.client = client_factory(self.handle_event)
        self.session = CallSession(persona_id, history_limit=self.settings.history_limit)
        self.state = RealtimeCallState.IDLE
        self.timer = CallTimer(
            self.settings.free_call_limit_seconds,
            self.settings.warning_before_end_seconds,
            is_premium=is_premium,
        )
        self._tick_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    def _emit(self, name: str, *args: Any) -> None:
        callback = getattr(self.callbacks, name)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception(f"[REALTIME] Callback {name} raised")

    def _set_state(self, state: RealtimeCallState) -> None:
        self.state = state
        self.session.set_state(SESSION_STATES[state])
        logger.info(f"[REALTIME] Call state -> {state.value}")
        self._emit("on_state_change", state)

    def _report_error(self, message: str) -> None:
        self.session.error = message
        self._emit("on_error", message)

    async def start_call(self) -> None:
        if self.state not in (RealtimeCallState.IDLE, RealtimeCallState.ENDED):
            return
        self.session = CallSession(self.persona_id, history_limit=self.settings.history_limit)
        self.timer.reset()
        self._set_state(RealtimeCallState.CONNECTING)

        if not self.permission_check():
            self._report_error("Microphone permission denied")
            self._set_state(RealtimeCallState.IDLE)
            return

        try:
            await self.client.connect(self.registry.system_prompt(self.persona_id))
        except UsageLimitExceeded:
            self._emit("on_time_limit_reached")
            self._set_state(RealtimeCallState.IDLE)
            return
        except CompanionError as e:
            self._report_error(str(e) or "Failed to connect")
            self._set_state(RealtimeCallState.IDLE)
            return

        if self.state != RealtimeCallState.CONNECTING:
            await self.client.disconnect()
            return
        self.session.started_at = self._clock()
        self._set_state(RealtimeCallState.CONNECTED)
        self._tick_task = asyncio.create_task(self._run_ticks())
        if not self.session.is_muted:
            self.client.start_streaming()
            self.session.set_processing(ProcessingState.LISTENING)

    async def _run_ticks(self) -> None:
        while self.state == RealtimeCallState.CONNECTED:
            await asyncio.sleep(1.0)
            if self.state != RealtimeCallState.CONNECTED:
                return
            await self.handle_tick(int(self._clock() - self.session.started_at))

    async def handle_tick(self, elapsed: int) -> None:
        self.session.elapsed_seconds = elapsed
        events = self.timer.update(elapsed)
        if events.minute_used is not None:
            self.session.last_minute = events.minute_used
            self._emit("on_minute_used", events.minute_used)
        if events.warning_remaining is not None:
            self.session.warning_shown = True
            self._emit("on_time_warning", events.warning_remaining)
        if self.state != RealtimeCallState.CONNECTED:
            return
        if events.limit_reached or self.daily_budget_exhausted(elapsed):
            self._emit("on_time_limit_reached")
            await self.end_call(EndReason.TIME_LIMIT)

    def daily_budget_exhausted(self, elapsed: int) -> bool:
        """True once a free call has used what was left of today's allowance at connect time."""
        budget = self.client.remaining_seconds
        if self.timer.is_premium or self.client.is_premium or budget is None:
            return False
        if elapsed >= budget:
            logger.info(f"[REALTIME] Daily budget of {budget}s used up after {elapsed}s")
            return True
        return False

    def handle_event(self, event: RealtimeEvent) -> None:
        """Client event sink."""
        if event.type == RealtimeEventType.TRANSCRIPTION and event.text:
            self.session.add_message("user", event.text)
            self._emit("on_user_message", event.text)
        elif event.type == RealtimeEventType.RESPONSE_TEXT and event.is_final and event.text:
            self.session.add_message("assistant", event.text)
            self._emit("on_assistant_message", event.text)
        elif event.type == RealtimeEventType.SPEECH_STARTED:
            self.session.is_speaking = False
            self.session.set_processing(ProcessingState.LISTENING)
        elif event.type == RealtimeEventType.SPEECH_STOPPED:
            self.session.set_processing(ProcessingState.THINKING)
        elif event.type == RealtimeEventType.RESPONSE_STARTED:
            self.session.is_speaking = True
            self.session.set_processing(ProcessingState.SPEAKING)
        elif event.type == RealtimeEventType.RESPONSE_DONE:
            self.session.set_processing(
                ProcessingState.IDLE if self.session.is_muted else ProcessingState.LISTENING
            )
        elif event.type == RealtimeEventType.ERROR:
            self._report_error(event.message or "Realtime error")
        elif event.type == RealtimeEventType.LIMIT_REACHED:
            self._emit("on_time_limit_reached")
            if self.state == RealtimeCallState.CONNECTED:
                self._spawn(self.end_call(EndReason.TIME_LIMIT))
        elif event.type == RealtimeEventType.DISCONNECTED:
            if self.state == RealtimeCallState.CONNECTED:
                logger.warning("[REALTIME] Lost connection mid-call")
                self._report_error(str(ConnectionLost("Connection lost")))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def toggle_mute(self) -> None:
        self.session.is_muted = not self.session.is_muted
        if self.session.is_muted:
            self.client.stop_streaming()
            self.session.set_processing(ProcessingState.IDLE)
        elif self.state == RealtimeCallState.CONNECTED:
            self.client.start_streaming()
            self.session.set_processing(ProcessingState.LISTENING)

    def toggle_speaker(self) -> None:
        self.session.is_speaker_on = not self.session.is_speaker_on
        self.client.player.set_speaker(self.session.is_speaker_on)

    def clear_error(self) -> None:
        self.session.error = None

    async def end_call(self, reason: EndReason = EndReason.HANGUP) -> None:
        if self.state in (RealtimeCallState.IDLE, RealtimeCallState.ENDING, RealtimeCallState.ENDED):
            return
        self.session.end_reason = reason
        self._set_state(RealtimeCallState.ENDING)
        current = asyncio.current_task()
        if self._tick_task is not None and self._tick_task is not current:
            self._tick_task.cancel()
        self._tick_task = None
        await self.client.disconnect()

        if self.session.started_at is not None:
            duration = int(self._clock() - self.session.started_at)
            self.session.elapsed_seconds = duration
            if duration > 0:
                try:
                    await self.transport.record_usage(duration)
                except CompanionError as e:
                    logger.warning(f"[REALTIME] Failed to report {duration}s of usage: {e}")

        self.session.history.clear()
        self._set_state(RealtimeCallState.ENDED)
        self._spawn(self._reset_after_delay())

    async def _reset_after_delay(self) -> None:
        await asyncio.sleep(self.settings.call_end_delay_seconds)
        if self.state == RealtimeCallState.ENDED:
            self._set_state(RealtimeCallState.IDLE)
