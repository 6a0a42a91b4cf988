"""Error taxonomy shared by token issuance and the realtime relay."""
from __future__ import annotations

from typing import Optional


class RealtimeRelayError(Exception):
    """Base class for all service errors."""


class ConfigurationInvalid(RealtimeRelayError):
    """Local configuration is missing or unusable. Not retried."""


class UpstreamUnavailable(RealtimeRelayError):
    """The upstream provider could not be reached."""


class UpstreamConnectFailed(UpstreamUnavailable):
    """The upstream realtime socket could not be opened."""


class UpstreamRejected(RealtimeRelayError):
    """The upstream provider answered with a non-success status."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"Upstream rejected the request with status {status_code}")
        self.status_code = status_code
        self.body = body


class MalformedUpstreamResponse(RealtimeRelayError):
    """The upstream response did not match any known shape."""


class InvalidCredential(RealtimeRelayError):
    """The caller presented a missing, unknown or expired relay token."""


class SessionTeardownError(RealtimeRelayError):
    """Releasing a relay session's resources failed. Logged, never raised to callers."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class CallerDisconnected(RealtimeRelayError):
    """The caller-facing transport went away while the relay was writing to it."""
