"""Persona catalog and read-only registry."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Optional

try:
    from ..config import Settings
    from ..errors import ConfigurationInvalid
except ImportError:  # pragma: no cover - script-style execution fallback
    from app.config import Settings
    from app.errors import ConfigurationInvalid

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Persona:
    """A named preset of voice and behavioral instructions."""

    id: str
    name: str
    description: str
    voice_id: str
    system_instructions: str
    icon: str = "🎙️"


DEFAULT_PERSONAS: tuple[Persona, ...] = (
    Persona(
        id="assistant",
        name="Assistant",
        description="A friendly general-purpose helper.",
        voice_id="alloy",
        system_instructions=(
            "You are a helpful AI assistant. Speak naturally and conversationally, "
            "and keep answers short enough to be spoken aloud."
        ),
        icon="🎙️",
    ),
    Persona(
        id="tech-mentor",
        name="Tech Mentor",
        description="A patient senior engineer for backend and architecture questions.",
        voice_id="echo",
        system_instructions=(
            "You are a senior backend engineer mentoring a colleague. Explain trade-offs "
            "plainly, ask clarifying questions, and avoid reading code out verbatim."
        ),
        icon="🧑‍💻",
    ),
    Persona(
        id="storyteller",
        name="Storyteller",
        description="A warm narrator who turns any topic into a short story.",
        voice_id="shimmer",
        system_instructions=(
            "You are a warm, expressive storyteller. Answer with short vivid stories and "
            "vary your pacing for dramatic effect."
        ),
        icon="📖",
    ),
)


class PersonaRegistry:
    """Immutable lookup table of personas in catalog order."""

    def __init__(self, personas: Iterable[Persona]) -> None:
        table: dict[str, Persona] = {}
        for persona in personas:
            if not persona.id:
                raise ConfigurationInvalid("Persona catalog entry is missing an id")
            if persona.id in table:
                raise ConfigurationInvalid(f"Duplicate persona id in catalog: {persona.id}")
            table[persona.id] = persona
        self._personas = MappingProxyType(table)

    def lookup(self, persona_id: str) -> Optional[Persona]:
        return self._personas.get(persona_id)

    def list(self) -> list[Persona]:
        return list(self._personas.values())

    def __len__(self) -> int:
        return len(self._personas)

    @classmethod
    def from_file(cls, path: str | Path) -> "PersonaRegistry":
        """Load a JSON catalog: a list of persona objects, or ``{"personas": [...]}``."""

        catalog_path = Path(path)
        try:
            raw = json.loads(catalog_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise ConfigurationInvalid(f"Unable to read persona catalog {catalog_path}: {exc}") from exc

        if isinstance(raw, dict):
            raw = raw.get("personas")
        if not isinstance(raw, list):
            raise ConfigurationInvalid(f"Persona catalog {catalog_path} must contain a list of personas")

        registry = cls(_persona_from_entry(entry) for entry in raw)
        logger.info("Loaded %d personas from %s", len(registry), catalog_path)
        return registry

    @classmethod
    def from_settings(cls, settings: Settings) -> "PersonaRegistry":
        if settings.personas_file:
            return cls.from_file(settings.personas_file)
        return cls(DEFAULT_PERSONAS)


def _persona_from_entry(entry: Any) -> Persona:
    if not isinstance(entry, dict):
        raise ConfigurationInvalid("Persona catalog entries must be objects")

    def pick(*keys: str, default: str = "") -> str:
        for key in keys:
            value = entry.get(key)
            if isinstance(value, str):
                return value
        return default

    persona_id = pick("id").strip()
    if not persona_id:
        raise ConfigurationInvalid("Persona catalog entry is missing an id")
    return Persona(
        id=persona_id,
        name=pick("name", default=persona_id),
        description=pick("description"),
        voice_id=pick("voiceId", "voice_id", "voice", default="alloy"),
        system_instructions=pick("systemInstructions", "system_instructions", "instructions"),
        icon=pick("icon", default="🎙️"),
    )
