"""Text-to-speech service."""
import base64
import io
import logging
import wave
from typing import List, Optional, Sequence

import httpx

from companion.core.config import settings
from companion.core.errors import SynthesisFailure
from companion.services.personas.voices import ElevenLabsVoice, SarvamVoice, VoiceProfile

logger = logging.getLogger(__name__)

ELEVENLABS_TTS_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"
SARVAM_TTS_URL = "https://api.sarvam.ai/text-to-speech"


class SpeechSynthesizer:
    """Synthesizes speech with the provider named by a persona's voice profile."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        elevenlabs_api_key: Optional[str] = None,
        sarvam_api_key: Optional[str] = None,
    ):
        self.http_client = http_client or httpx.AsyncClient(
            timeout=settings.synthesis_timeout_seconds
        )
        self.elevenlabs_api_key = elevenlabs_api_key or settings.elevenlabs_api_key
        self.sarvam_api_key = sarvam_api_key or settings.sarvam_api_key

    async def synthesize_speech(self, text: str, voice: VoiceProfile) -> bytes:
        """
        Synthesize one sentence of speech.

        Args:
            text: Text to speak
            voice: Persona voice profile selecting the provider

        Returns:
            Audio bytes (MP3 for ElevenLabs, WAV for Sarvam)
        """
        logger.debug(f"[TTS] Synthesizing with {type(voice).__name__}: '{text[:50]}'")
        try:
            if isinstance(voice, SarvamVoice):
                return await self._synthesize_sarvam(text, voice)
            if isinstance(voice, ElevenLabsVoice):
                return await self._synthesize_elevenlabs(text, voice)
        except httpx.HTTPError as e:
            logger.error(f"[TTS] Provider request failed: {type(e).__name__}: {str(e)}")
            raise SynthesisFailure("Speech synthesis failed") from e
        raise SynthesisFailure(f"Unsupported voice profile: {type(voice).__name__}")

    async def _synthesize_elevenlabs(self, text: str, voice: ElevenLabsVoice) -> bytes:
        response = await self.http_client.post(
            ELEVENLABS_TTS_URL.format(voice_id=voice.voice_id),
            headers={
                "Accept": "audio/mpeg",
                "Content-Type": "application/json",
                "xi-api-key": self.elevenlabs_api_key,
            },
            json={
                "text": text,
                "model_id": settings.elevenlabs_model,
                "voice_settings": {
                    "stability": voice.stability,
                    "similarity_boost": voice.similarity_boost,
                    "style": voice.style,
                    "use_speaker_boost": voice.use_speaker_boost,
                },
            },
        )
        if response.status_code != 200:
            logger.error(f"[TTS] ElevenLabs error {response.status_code}: {response.text}")
            raise SynthesisFailure(f"ElevenLabs TTS failed: {response.status_code}")
        return response.content

    async def _synthesize_sarvam(self, text: str, voice: SarvamVoice) -> bytes:
        response = await self.http_client.post(
            SARVAM_TTS_URL,
            headers={
                "Content-Type": "application/json",
                "api-subscription-key": self.sarvam_api_key,
            },
            json={
                "text": text,
                "target_language_code": voice.language_code,
                "speaker": voice.voice_id,
                "model": voice.model,
                "pitch": voice.pitch,
                "pace": voice.pace,
                "loudness": voice.loudness,
                "speech_sample_rate": voice.sample_rate,
                "enable_preprocessing": True,
            },
        )
        if response.status_code != 200:
            logger.error(f"[TTS] Sarvam error {response.status_code}: {response.text}")
            raise SynthesisFailure(f"Sarvam TTS failed: {response.status_code}")

        audios = response.json().get("audios") or []
        if not audios:
            raise SynthesisFailure("Sarvam TTS returned no audio")
        return base64.b64decode(audios[0])

    async def aclose(self) -> None:
        await self.http_client.aclose()


def merge_wav_segments(segments: Sequence[bytes]) -> bytes:
    """Merge WAV files with identical parameters into one RIFF container."""
    if len(segments) == 1:
        return segments[0]

    params = None
    frames: List[bytes] = []
    for index, segment in enumerate(segments):
        try:
            with wave.open(io.BytesIO(segment), "rb") as reader:
                if params is None:
                    params = reader.getparams()
                frames.append(reader.readframes(reader.getnframes()))
        except (wave.Error, EOFError) as e:
            logger.error(f"[TTS] Sentence {index} is not a valid WAV segment: {e}")
            raise SynthesisFailure("Synthesized audio could not be merged") from e

    output = io.BytesIO()
    with wave.open(output, "wb") as writer:
        writer.setnchannels(params.nchannels)
        writer.setsampwidth(params.sampwidth)
        writer.setframerate(params.framerate)
        writer.writeframes(b"".join(frames))
    return output.getvalue()


def join_audio_segments(segments: Sequence[bytes], audio_format: str) -> bytes:
    """Concatenate synthesized sentences in order into one payload."""
    if not segments:
        return b""
    if audio_format == "wav":
        return merge_wav_segments(segments)
    # MP3 frames are self-delimiting; plain concatenation plays back in order
    return b"".join(segments)
