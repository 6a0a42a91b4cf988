"""Session token issuance against the upstream realtime provider.

The upstream response shape has changed between provider versions: the secret may
be a bare string or nested under ``client_secret.value``, the signaling URL may or
may not be present, and the expiry lives at different paths. Each of these is read
through an ordered tuple of named extraction strategies; the first strategy that
yields a value wins.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Sequence

import httpx

try:
    from ..config import Settings
    from ..errors import MalformedUpstreamResponse, UpstreamRejected, UpstreamUnavailable
    from .personas import PersonaRegistry
    from .upstream import (
        BETA_HEADER,
        require_upstream,
        session_create_body,
        session_endpoint,
        webrtc_url_for_region,
    )
except ImportError:  # pragma: no cover - script-style execution fallback
    from app.config import Settings
    from app.errors import MalformedUpstreamResponse, UpstreamRejected, UpstreamUnavailable
    from app.services.personas import PersonaRegistry
    from app.services.upstream import (
        BETA_HEADER,
        require_upstream,
        session_create_body,
        session_endpoint,
        webrtc_url_for_region,
    )

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY = timedelta(minutes=1)

Strategy = tuple[str, Callable[[dict[str, Any]], Any]]


@dataclass(frozen=True, slots=True)
class VoiceProfile:
    """Voice and instructions resolved for one session."""

    voice_id: str
    instructions: str


@dataclass(frozen=True, slots=True)
class SessionCredential:
    secret: str
    expires_at: datetime
    realtime_endpoint: str
    voice_id: str
    system_instructions: str

    def __repr__(self) -> str:
        return (
            f"SessionCredential(secret='***', expires_at={self.expires_at!r}, "
            f"realtime_endpoint={self.realtime_endpoint!r}, voice_id={self.voice_id!r})"
        )


def _nested(*keys: str) -> Callable[[dict[str, Any]], Any]:
    def extract(payload: dict[str, Any]) -> Any:
        value: Any = payload
        for key in keys:
            if not isinstance(value, dict):
                return None
            value = value.get(key)
        return value

    return extract


def _non_empty_string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _parse_expiry(value: Any) -> Optional[datetime]:
    # bool is an int subclass; reject it before the numeric branch.
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    return None


SECRET_STRATEGIES: Sequence[Strategy] = (
    ("client_secret", lambda payload: _non_empty_string(payload.get("client_secret"))),
    ("client_secret.value", lambda payload: _non_empty_string(_nested("client_secret", "value")(payload))),
)

EXPIRY_STRATEGIES: Sequence[Strategy] = (
    ("expires_at", lambda payload: _parse_expiry(payload.get("expires_at"))),
    ("client_secret.expires_at", lambda payload: _parse_expiry(_nested("client_secret", "expires_at")(payload))),
)

ENDPOINT_STRATEGIES: Sequence[Strategy] = (
    ("webrtc_url", lambda payload: _non_empty_string(payload.get("webrtc_url"))),
    ("realtime_url", lambda payload: _non_empty_string(payload.get("realtime_url"))),
    ("url", lambda payload: _non_empty_string(payload.get("url"))),
)


def first_match(payload: dict[str, Any], strategies: Sequence[Strategy]) -> tuple[Optional[str], Any]:
    """Run strategies in order; return ``(name, value)`` for the first non-None value."""

    for name, strategy in strategies:
        value = strategy(payload)
        if value is not None:
            return name, value
    return None, None


class SessionTokenIssuer:
    """Creates persona-scoped realtime sessions upstream."""

    def __init__(
        self,
        settings: Settings,
        registry: PersonaRegistry,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._settings = settings
        self._registry = registry
        self._transport = transport
        self._clock = clock

    def resolve_voice(self, persona_id: Optional[str]) -> VoiceProfile:
        """Pick persona voice/instructions, falling back to the process defaults."""

        if persona_id:
            persona = self._registry.lookup(persona_id)
            if persona is not None:
                logger.info("Using voice '%s' for persona %s (ID: %s)", persona.voice_id, persona.name, persona_id)
                return VoiceProfile(persona.voice_id, persona.system_instructions)
            logger.warning("Persona %s not found, using default settings", persona_id)
        return VoiceProfile(self._settings.default_voice, self._settings.default_instructions)

    async def create_session_token(self, persona_id: Optional[str] = None) -> SessionCredential:
        base_url, api_key = require_upstream(self._settings)
        profile = self.resolve_voice(persona_id)
        endpoint = session_endpoint(base_url)
        body = session_create_body(self._settings.realtime_model, profile.voice_id, profile.instructions)
        headers = {"api-key": api_key, BETA_HEADER[0]: BETA_HEADER[1]}

        logger.info("Creating realtime session at %s", endpoint)
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.upstream_timeout_seconds, transport=self._transport
            ) as client:
                resp = await client.post(endpoint, json=body, headers=headers)
        except httpx.RequestError as exc:
            logger.error("Realtime session request failed: %s", exc)
            raise UpstreamUnavailable(f"Upstream session endpoint unreachable: {exc}") from exc

        if not resp.is_success:
            logger.error(
                "Failed to create realtime session. Status: %s. Response: %s",
                resp.status_code,
                resp.text,
            )
            raise UpstreamRejected(resp.status_code, resp.text)

        try:
            data = resp.json()
        except ValueError as exc:
            raise MalformedUpstreamResponse("Realtime session response was not valid JSON") from exc
        if not isinstance(data, dict):
            raise MalformedUpstreamResponse("Realtime session response was not a JSON object")

        return self.parse_session_response(data, profile)

    def parse_session_response(self, data: dict[str, Any], profile: VoiceProfile) -> SessionCredential:
        if "client_secret" not in data:
            raise MalformedUpstreamResponse("Realtime session response did not contain a client_secret")
        source, secret = first_match(data, SECRET_STRATEGIES)
        if secret is None:
            raise MalformedUpstreamResponse("Realtime session response client_secret was not in expected format")
        logger.debug("Session secret read from %s", source)

        _, expires_at = first_match(data, EXPIRY_STRATEGIES)
        if expires_at is None:
            expires_at = self._clock() + DEFAULT_EXPIRY

        endpoint_source, realtime_endpoint = first_match(data, ENDPOINT_STRATEGIES)
        if realtime_endpoint is None:
            realtime_endpoint = webrtc_url_for_region(self._settings.region)
            endpoint_source = "region"
        logger.info("Realtime session created; endpoint from %s, expires at %s", endpoint_source, expires_at.isoformat())

        return SessionCredential(
            secret=secret,
            expires_at=expires_at,
            realtime_endpoint=realtime_endpoint,
            voice_id=profile.voice_id,
            system_instructions=profile.instructions,
        )
