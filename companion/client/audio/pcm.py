"""PCM and WAV helpers."""
import io
import math
from typing import Optional

import numpy as np
import soundfile as sf

WAV_HEADER_BYTES = 44
SILENCE_DB = -160.0


def strip_wav_header(data: bytes) -> bytes:
    """Return raw PCM from a canonical 44-byte-header WAV; other data is returned as is."""
    if len(data) >= WAV_HEADER_BYTES and data[:4] == b"RIFF" and data[8:12] == b"WAVE":
        return data[WAV_HEADER_BYTES:]
    return data


def pcm16_to_wav(pcm: bytes, sample_rate: int, channels: int = 1) -> bytes:
    """Wrap little-endian 16-bit PCM in a WAV container."""
    samples = np.frombuffer(pcm, dtype="<i2")
    if channels > 1:
        samples = samples.reshape(-1, channels)
    buffer = io.BytesIO()
    sf.write(buffer, samples, sample_rate, format="WAV", subtype="PCM_16")
    return buffer.getvalue()


def float_to_pcm16(block: np.ndarray) -> bytes:
    block = np.clip(block, -1.0, 1.0)
    return (block * 32767.0).astype("<i2").tobytes()


def level_dbfs(block: Optional[np.ndarray]) -> float:
    """RMS level of a float block in dBFS; -160 for an empty or silent block."""
    if block is None or block.size == 0:
        return SILENCE_DB
    rms = float(np.sqrt(np.mean(np.square(block, dtype=np.float64))))
    if rms <= 0.0 or not math.isfinite(rms):
        return SILENCE_DB
    return max(SILENCE_DB, 20.0 * math.log10(rms))
