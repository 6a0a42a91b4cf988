"""Upstream realtime provider endpoints and session configuration payloads."""
from __future__ import annotations

from typing import Any
from urllib.parse import urlencode, urlparse

try:
    from ..config import Settings
    from ..errors import ConfigurationInvalid
except ImportError:  # pragma: no cover - script-style execution fallback
    from app.config import Settings
    from app.errors import ConfigurationInvalid


API_VERSION = "2025-04-01-preview"
BETA_HEADER = ("OpenAI-Beta", "realtime=v1")
AUDIO_FORMAT = "pcm16"
MODALITIES = ("text", "audio")
TURN_DETECTION: dict[str, Any] = {
    "type": "server_vad",
    "threshold": 0.5,
    "prefix_padding_ms": 300,
    "silence_duration_ms": 200,
}
WEBRTC_URL_TEMPLATE = "https://{region}.realtimeapi-preview.ai.azure.com/v1/realtimertc"


def normalize_path(path: str, fallback: str) -> str:
    """Strip trailing separators and guarantee exactly one leading separator."""

    trimmed = (path or "").strip().rstrip("/")
    if not trimmed:
        return fallback
    return trimmed if trimmed.startswith("/") else f"/{trimmed}"


def combine_path(base_path: str, relative_path: str) -> str:
    prefix = normalize_path(base_path, "/")
    relative = relative_path.lstrip("/")
    if prefix == "/":
        return f"/{relative}"
    return f"{prefix}/{relative}"


def require_upstream(settings: Settings) -> tuple[str, str]:
    """Return ``(base_url, api_key)`` or raise ``ConfigurationInvalid``."""

    base_url = (settings.azure_openai_endpoint or "").strip()
    api_key = (settings.azure_openai_api_key or "").strip()
    if not base_url:
        raise ConfigurationInvalid("AZURE_OPENAI_ENDPOINT is required")
    if not api_key:
        raise ConfigurationInvalid("AZURE_OPENAI_API_KEY is required")
    parsed = urlparse(base_url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ConfigurationInvalid(f"Invalid upstream base URL: '{base_url}'")
    return base_url, api_key


def session_endpoint(base_url: str) -> str:
    """Session-creation URL for the configured upstream base address."""

    parsed = urlparse(base_url.rstrip("/"))
    path = combine_path(normalize_path(parsed.path, "/openai"), "realtimeapi/sessions")
    return f"{parsed.scheme}://{parsed.netloc}{path}?api-version={API_VERSION}"


def realtime_socket_url(settings: Settings) -> str:
    """Upstream realtime WebSocket URL; an explicit override wins."""

    if settings.realtime_ws_url:
        return settings.realtime_ws_url
    base_url, _ = require_upstream(settings)
    parsed = urlparse(base_url.rstrip("/"))
    scheme = "wss" if parsed.scheme == "https" else "ws"
    path = combine_path(normalize_path(parsed.path, "/openai"), "realtime")
    query = urlencode({"api-version": API_VERSION, "deployment": settings.realtime_model})
    return f"{scheme}://{parsed.netloc}{path}?{query}"


def webrtc_url_for_region(region: str) -> str:
    return WEBRTC_URL_TEMPLATE.format(region=region)


def session_settings(voice: str, instructions: str) -> dict[str, Any]:
    """Session parameters shared by the creation request and the relay handshake."""

    return {
        "modalities": list(MODALITIES),
        "voice": voice,
        "instructions": instructions,
        "input_audio_format": AUDIO_FORMAT,
        "output_audio_format": AUDIO_FORMAT,
        "turn_detection": dict(TURN_DETECTION),
    }


def session_create_body(model: str, voice: str, instructions: str) -> dict[str, Any]:
    return {"model": model, **session_settings(voice, instructions)}


def session_update_message(voice: str, instructions: str) -> dict[str, Any]:
    return {"type": "session.update", "session": session_settings(voice, instructions)}
