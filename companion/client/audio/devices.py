"""Audio input and output devices."""
import asyncio
import io
import logging
import threading
from typing import List, Optional, Protocol

import numpy as np
import soundfile as sf

from companion.client.audio.pcm import SILENCE_DB, float_to_pcm16, level_dbfs
from companion.core.errors import PermissionDenied

logger = logging.getLogger(__name__)


class AudioInputDevice(Protocol):
    """Microphone capture used by the recorder and the realtime streamer."""

    def request_permission(self) -> bool: ...

    def start(self, path: Optional[str] = None) -> None: ...

    def level_db(self) -> Optional[float]: ...

    def read_chunk(self) -> bytes: ...

    def stop(self) -> Optional[str]: ...

    def close(self) -> None: ...


class AudioPlayer(Protocol):
    """Speaker output. ``play`` returns once playback finished or was stopped."""

    async def play(self, data: bytes, audio_format: str) -> None: ...

    def stop(self) -> None: ...

    def set_speaker(self, on: bool) -> None: ...


class SoundDeviceInput:
    """Microphone capture through PortAudio.

    Blocks arrive on the PortAudio thread; the level of the latest block is
    kept for metering. With a target path, blocks are buffered until ``stop``
    writes them to a 16-bit WAV file. Without one, capture is streamed and
    only the PCM16 not yet taken by ``read_chunk`` is held.
    """

    def __init__(self, sample_rate: int = 16000, device: Optional[int] = None, block_size: int = 1600):
        self.sample_rate = sample_rate
        self.device = device
        self.block_size = block_size
        self._stream = None
        self._path: Optional[str] = None
        self._blocks: List[np.ndarray] = []
        self._pending = bytearray()
        self._level: Optional[float] = None
        self._lock = threading.Lock()

    def request_permission(self) -> bool:
        import sounddevice as sd

        try:
            sd.check_input_settings(device=self.device, channels=1, samplerate=self.sample_rate)
        except (sd.PortAudioError, ValueError) as e:
            logger.warning(f"[AUDIO] Input device unavailable: {e}")
            return False
        return True

    def _on_audio(self, data: np.ndarray, frames: int, time_info, status) -> None:
        if status:
            logger.debug(f"[AUDIO] Input status: {status}")
        block = np.array(data[:, 0], dtype=np.float32)
        with self._lock:
            if self._path:
                self._blocks.append(block)
            else:
                self._pending.extend(float_to_pcm16(block))
            self._level = level_dbfs(block)

    def start(self, path: Optional[str] = None) -> None:
        import sounddevice as sd

        with self._lock:
            self._blocks = []
            self._pending = bytearray()
            self._level = None
        self._path = path
        try:
            self._stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self.block_size,
                callback=self._on_audio,
                device=self.device,
            )
            self._stream.start()
        except sd.PortAudioError as e:
            self._stream = None
            raise PermissionDenied(f"Microphone unavailable: {e}") from e

    def level_db(self) -> Optional[float]:
        with self._lock:
            return self._level if self._level is not None else SILENCE_DB

    def read_chunk(self) -> bytes:
        """Take the PCM16 captured since the previous call."""
        with self._lock:
            chunk = bytes(self._pending)
            self._pending.clear()
        return chunk

    def stop(self) -> Optional[str]:
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None
        with self._lock:
            blocks, self._blocks = self._blocks, []
        if not self._path or not blocks:
            return None
        sf.write(self._path, np.concatenate(blocks), self.sample_rate, subtype="PCM_16")
        return self._path

    def close(self) -> None:
        if self._stream is not None:
            self._stream.abort()
            self._stream.close()
            self._stream = None


class SoundDevicePlayer:
    """Plays WAV or MP3 payloads on the default output device."""

    def __init__(self, device: Optional[int] = None):
        self.device = device
        self.speaker_on = True

    async def play(self, data: bytes, audio_format: str) -> None:
        import sounddevice as sd

        samples, sample_rate = sf.read(io.BytesIO(data), dtype="float32")
        logger.debug(f"[AUDIO] Playing {audio_format}: {len(samples) / sample_rate:.1f}s")
        sd.play(samples, sample_rate, device=self.device)
        # sd.wait blocks until the buffer drains or sd.stop() is called
        await asyncio.to_thread(sd.wait)

    def stop(self) -> None:
        import sounddevice as sd

        sd.stop()

    def set_speaker(self, on: bool) -> None:
        # Desktop output has no earpiece/speaker split; remember the choice only
        self.speaker_on = on
