"""Process-wide service instances handed to routers through ``Depends``."""
from __future__ import annotations

from datetime import timedelta
from functools import lru_cache

try:
    from .config import get_settings
    from .services.personas import PersonaRegistry
    from .services.realtime_voice import RealtimeRelay
    from .services.session_tokens import SessionTokenIssuer
    from .services.token_store import TokenStore
except ImportError:  # pragma: no cover - script-style execution fallback
    from app.config import get_settings
    from app.services.personas import PersonaRegistry
    from app.services.realtime_voice import RealtimeRelay
    from app.services.session_tokens import SessionTokenIssuer
    from app.services.token_store import TokenStore


@lru_cache(maxsize=1)
def get_persona_registry() -> PersonaRegistry:
    return PersonaRegistry.from_settings(get_settings())


@lru_cache(maxsize=1)
def get_token_store() -> TokenStore:
    return TokenStore(lifetime=timedelta(seconds=get_settings().relay_token_ttl_seconds))


@lru_cache(maxsize=1)
def get_session_token_issuer() -> SessionTokenIssuer:
    return SessionTokenIssuer(get_settings(), get_persona_registry())


@lru_cache(maxsize=1)
def get_realtime_relay() -> RealtimeRelay:
    return RealtimeRelay(get_settings())
