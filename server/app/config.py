"""Configuration helpers for the realtime relay service."""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


def _split_origins(raw: str) -> tuple[str, ...]:
    return tuple(origin.strip() for origin in raw.split(",") if origin.strip())


@dataclass
class Settings:
    """Centralized environment-driven configuration.

    Values are read from the environment when this module is imported, after the
    package bootstrap has loaded ``.env`` files. Tests build ``Settings(...)``
    directly instead of touching the environment.
    """

    azure_openai_endpoint: Optional[str] = os.getenv("AZURE_OPENAI_ENDPOINT")
    azure_openai_api_key: Optional[str] = os.getenv("AZURE_OPENAI_API_KEY")
    realtime_model: str = os.getenv("REALTIME_MODEL", "gpt-4o-mini-realtime-preview")
    default_voice: str = os.getenv("REALTIME_VOICE", "alloy")
    default_instructions: str = os.getenv(
        "REALTIME_INSTRUCTIONS",
        "You are a helpful AI assistant. Speak naturally and conversationally.",
    )
    region: str = os.getenv("AZURE_OPENAI_REGION", "swedencentral")
    # Explicit upstream socket URL; derived from the endpoint when unset.
    realtime_ws_url: Optional[str] = os.getenv("REALTIME_WS_URL")
    personas_file: Optional[str] = os.getenv("PERSONAS_FILE")
    relay_token_ttl_seconds: int = int(os.getenv("RELAY_TOKEN_TTL_SECONDS", "300"))
    upstream_timeout_seconds: float = float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "30"))
    cors_origins: tuple[str, ...] = _split_origins(
        os.getenv("CORS_ORIGINS", "http://localhost:4200,https://localhost:4200")
    )
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance to avoid repeated environment reads."""

    return Settings()


settings = get_settings()
