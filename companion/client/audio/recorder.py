"""Microphone recording with automatic end-of-speech detection."""
import asyncio
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from companion.client.audio.devices import AudioInputDevice
from companion.client.audio.vad import VadProfile, VoiceActivityDetector
from companion.core.errors import PermissionDenied

logger = logging.getLogger(__name__)


@dataclass
class RecordingHandle:
    """An in-progress recording."""

    path: str
    detector: VoiceActivityDetector
    started_at: float = field(default_factory=time.monotonic)


class AudioRecorder:
    """Records one utterance at a time.

    While recording, the input level is polled every status tick and fed to
    a fresh ``VoiceActivityDetector``; ``on_silence_detected`` runs once when
    the detector decides the user stopped talking.
    """

    def __init__(
        self,
        device: AudioInputDevice,
        profile: VadProfile,
        status_interval_seconds: float = 0.1,
        directory: Optional[str] = None,
    ):
        self.device = device
        self.profile = profile
        self.status_interval_seconds = status_interval_seconds
        self.directory = directory
        self.handle: Optional[RecordingHandle] = None
        self._poller: Optional[asyncio.Task] = None

    @property
    def is_recording(self) -> bool:
        return self.handle is not None

    async def request_permission(self) -> bool:
        return self.device.request_permission()

    async def start_recording(self, on_silence_detected: Callable[[], None]) -> RecordingHandle:
        """
        Start capturing to a new temporary WAV file.

        Raises:
            PermissionDenied: the input device refused access
        """
        if self.handle is not None:
            await self.cancel_recording()

        fd, path = tempfile.mkstemp(prefix="turn_", suffix=".wav", dir=self.directory)
        os.close(fd)
        try:
            self.device.start(path)
        except PermissionDenied:
            self._discard(path)
            raise
        except Exception:
            self._discard(path)
            self.handle = None
            logger.error("[RECORDER] Failed to start recording", exc_info=True)
            raise

        detector = VoiceActivityDetector(on_silence_detected, self.profile)
        detector.start()
        self.handle = RecordingHandle(path=path, detector=detector)
        self._poller = asyncio.create_task(self._poll_levels(detector))
        logger.debug(f"[RECORDER] Recording to {path}")
        return self.handle

    async def _poll_levels(self, detector: VoiceActivityDetector) -> None:
        while True:
            await asyncio.sleep(self.status_interval_seconds)
            detector.process_level(self.device.level_db())

    async def _stop_polling(self) -> None:
        if self._poller is not None:
            poller, self._poller = self._poller, None
            if poller is not asyncio.current_task():
                poller.cancel()
                try:
                    await poller
                except asyncio.CancelledError:
                    pass

    async def stop_recording(self) -> Optional[str]:
        """Finalize the recording; returns its file path, or None when nothing was captured."""
        handle = self.handle
        if handle is None:
            return None
        self.handle = None
        handle.detector.cancel()
        await self._stop_polling()
        try:
            path = self.device.stop()
        except OSError as e:
            logger.warning(f"[RECORDER] Failed to finalize recording: {e}")
            self._discard(handle.path)
            return None
        if path is None:
            self._discard(handle.path)
        return path

    async def cancel_recording(self) -> None:
        """Discard the current recording; no-op when idle."""
        handle = self.handle
        if handle is None:
            return
        self.handle = None
        handle.detector.cancel()
        await self._stop_polling()
        try:
            self.device.stop()
        except OSError as e:
            logger.debug(f"[RECORDER] Error while cancelling: {e}")
        self._discard(handle.path)

    @staticmethod
    def _discard(path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
