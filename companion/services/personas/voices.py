"""Persona identities and their synthesis voice profiles."""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Union


class PersonaId(str, Enum):
    """The fixed set of callable personas."""

    PREETHI = "preethi"
    IRA = "ira"
    RIYA = "riya"


DEFAULT_PERSONA = PersonaId.PREETHI


@dataclass(frozen=True)
class ElevenLabsVoice:
    """ElevenLabs voice with its style settings."""

    voice_id: str
    stability: float
    similarity_boost: float
    style: float
    use_speaker_boost: bool = True
    language_code: str = "en-IN"


@dataclass(frozen=True)
class SarvamVoice:
    """Sarvam AI speaker for Indic language synthesis."""

    voice_id: str
    model: str
    language_code: str
    pace: float = 1.0
    loudness: float = 1.0
    pitch: float = 0.0
    sample_rate: int = 22050


VoiceProfile = Union[ElevenLabsVoice, SarvamVoice]


VOICE_PROFILES: Dict[PersonaId, VoiceProfile] = {
    PersonaId.PREETHI: ElevenLabsVoice(
        voice_id="ryIIztHPLYSJ74ueXxnO",
        stability=0.25,
        similarity_boost=0.85,
        style=0.8,
    ),
    PersonaId.IRA: ElevenLabsVoice(
        voice_id="mg9npuuaf8WJphS6E0Rt",
        stability=0.55,
        similarity_boost=0.75,
        style=0.35,
    ),
    PersonaId.RIYA: SarvamVoice(
        voice_id="manisha",
        model="bulbul:v2",
        language_code="te-IN",
        pace=1.1,
        loudness=1.2,
    ),
}

_missing = set(PersonaId) - set(VOICE_PROFILES)
if _missing:
    raise RuntimeError(f"Personas without a voice profile: {sorted(p.value for p in _missing)}")


def get_voice_profile(persona_id: PersonaId) -> VoiceProfile:
    """Get the synthesis voice for a persona."""
    return VOICE_PROFILES[PersonaId(persona_id)]


def output_format(profile: VoiceProfile) -> str:
    """Audio container produced by the profile's provider."""
    if isinstance(profile, SarvamVoice):
        return "wav"
    if isinstance(profile, ElevenLabsVoice):
        return "mp3"
    raise TypeError(f"Unknown voice profile: {type(profile).__name__}")
