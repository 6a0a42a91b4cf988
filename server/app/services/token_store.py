"""In-memory relay token store.

Maps the credential a caller presents to the relay entry point onto the upstream
bearer secret and the voice settings resolved when the token was issued. All access
goes through one lock; expired entries are swept on every call.
"""
from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RelayGrant:
    """What a relay token entitles its holder to."""

    secret: str
    voice_id: str
    instructions: str
    expires_at: datetime


class TokenStore:
    def __init__(
        self,
        lifetime: timedelta = timedelta(minutes=5),
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._lifetime = lifetime
        self._clock = clock
        self._grants: dict[str, RelayGrant] = {}
        self._lock = threading.Lock()

    def issue(self, secret: str, voice_id: str, instructions: str) -> tuple[str, datetime]:
        """Mint an opaque relay token for the given upstream secret."""

        token = secrets.token_urlsafe(32)
        expires_at = self._clock() + self._lifetime
        with self._lock:
            self._sweep()
            self._grants[token] = RelayGrant(secret, voice_id, instructions, expires_at)
        return token, expires_at

    def register(self, token: str, voice_id: str, instructions: str) -> RelayGrant:
        """Accept an upstream-issued secret as its own relay token."""

        grant = RelayGrant(token, voice_id, instructions, self._clock() + self._lifetime)
        with self._lock:
            self._sweep()
            self._grants[token] = grant
        return grant

    def validate(self, token: Optional[str]) -> Optional[RelayGrant]:
        if not token:
            return None
        with self._lock:
            self._sweep()
            return self._grants.get(token)

    def __len__(self) -> int:
        with self._lock:
            self._sweep()
            return len(self._grants)

    def _sweep(self) -> None:
        now = self._clock()
        expired = [token for token, grant in self._grants.items() if grant.expires_at <= now]
        for token in expired:
            del self._grants[token]
        if expired:
            logger.debug("Swept %d expired relay tokens", len(expired))
