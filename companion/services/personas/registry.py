"""Persona registry backed by YAML configuration."""
import random
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel

from companion.services.personas.voices import PersonaId, VoiceProfile, get_voice_profile


class Persona(BaseModel):
    """Static persona configuration. Not user-mutable."""

    id: PersonaId
    name: str
    language: str = "en-IN"
    system_prompt: str
    openers: List[str] = []

    model_config = {"frozen": True}

    @property
    def voice(self) -> VoiceProfile:
        return get_voice_profile(self.id)


class PersonaRegistry:
    """Registry of the fixed persona set keyed by persona id."""

    def __init__(self, persona_file: Optional[str] = None):
        """Initialize with optional persona file path."""
        if persona_file is None:
            persona_file = Path(__file__).parent / "personas.yaml"
        self.persona_file = Path(persona_file)
        self._personas: Optional[Dict[PersonaId, Persona]] = None

    def _load(self) -> Dict[PersonaId, Persona]:
        """Load personas from the YAML file."""
        if self._personas is None:
            with open(self.persona_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            personas = [Persona(**entry) for entry in data.get("personas", [])]
            loaded = {persona.id: persona for persona in personas}
            missing = set(PersonaId) - set(loaded)
            if missing:
                raise ValueError(
                    f"Persona file {self.persona_file} is missing: "
                    f"{sorted(p.value for p in missing)}"
                )
            self._personas = loaded
        return self._personas

    def get_persona(self, persona_id: str) -> Persona:
        """Get a persona; raises ValueError for unknown ids."""
        return self._load()[PersonaId(persona_id)]

    def list_personas(self) -> List[Persona]:
        return list(self._load().values())

    def system_prompt(self, persona_id: str) -> str:
        return self.get_persona(persona_id).system_prompt

    def random_opener(self, persona_id: str, rng: Optional[random.Random] = None) -> str:
        """Pick an opening line for a call."""
        persona = self.get_persona(persona_id)
        if not persona.openers:
            return f"Hi, it's {persona.name}!"
        return (rng or random).choice(persona.openers)


persona_registry = PersonaRegistry()
