"""Realtime voice relay between a caller stream and the upstream realtime socket."""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

from typing_extensions import assert_never
from websockets.asyncio.client import connect as websockets_connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

try:
    from ..config import Settings
    from ..errors import CallerDisconnected, ConfigurationInvalid, SessionTeardownError, UpstreamConnectFailed
    from .token_store import RelayGrant
    from .upstream import BETA_HEADER, realtime_socket_url, session_update_message
except ImportError:  # pragma: no cover - script-style execution fallback
    from app.config import Settings
    from app.errors import CallerDisconnected, ConfigurationInvalid, SessionTeardownError, UpstreamConnectFailed
    from app.services.token_store import RelayGrant
    from app.services.upstream import BETA_HEADER, realtime_socket_url, session_update_message

logger = logging.getLogger(__name__)

Frame = Union[str, bytes]

SESSION_READY_EVENTS = frozenset({"session.created", "session.updated"})


class FrameReader(Protocol):
    async def read(self) -> Optional[Frame]: ...


class FrameWriter(Protocol):
    async def write(self, frame: Frame) -> None: ...

    async def flush(self) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


class UpstreamSocket(Protocol):
    async def send(self, message: Frame) -> None: ...

    async def recv(self) -> Frame: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


Connector = Callable[..., Awaitable[UpstreamSocket]]


class RelayState(Enum):
    """Lifecycle of a relay session."""
    IDLE = "idle"
    CONNECTING = "connecting"
    CONFIGURING = "configuring"
    RELAYING = "relaying"
    CLOSED_BY_CALLER = "closed_by_caller"
    CLOSED_BY_UPSTREAM = "closed_by_upstream"
    FAILED = "failed"


@dataclass
class RelaySession:
    voice_id: str
    instructions: str
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: RelayState = RelayState.IDLE
    error: Optional[str] = None
    frames_to_upstream: int = 0
    frames_to_caller: int = 0


def is_session_ready(frame: Frame) -> bool:
    """Recognize the upstream acknowledgement of the session configuration."""

    if not isinstance(frame, str) or '"session.' not in frame:
        return False
    try:
        event = json.loads(frame)
    except ValueError:
        return False
    return isinstance(event, dict) and event.get("type") in SESSION_READY_EVENTS


def _log_outcome(session: RelaySession) -> None:
    state = session.state
    prefix = f"[Session {session.session_id}]"
    counts = f"(to upstream: {session.frames_to_upstream}, to caller: {session.frames_to_caller})"
    if state is RelayState.FAILED:
        logger.warning(f"{prefix} Relay failed: {session.error} {counts}")
    elif state is RelayState.CLOSED_BY_CALLER:
        logger.info(f"{prefix} Relay closed by caller {counts}")
    elif state is RelayState.CLOSED_BY_UPSTREAM:
        logger.info(f"{prefix} Relay closed by upstream {counts}")
    elif state in (RelayState.IDLE, RelayState.CONNECTING, RelayState.CONFIGURING, RelayState.RELAYING):
        logger.error(f"{prefix} Relay ended without reaching a terminal state ({state.value})")
    else:
        assert_never(state)


class RealtimeRelay:
    """Pipes frames between one caller and the upstream realtime socket.

    A session connects upstream, sends a single ``session.update`` handshake, then
    runs two pumps concurrently. The session ends when the upstream pump finishes,
    when either pump fails, or when ``cancelled`` is set. End of caller input
    (``None`` from the reader) only stops the caller pump; empty frames are
    forwarded like any other.
    """

    def __init__(self, settings: Settings, *, connect: Optional[Connector] = None) -> None:
        self._settings = settings
        self._connect = connect or websockets_connect

    async def run(
        self,
        grant: RelayGrant,
        reader: FrameReader,
        writer: FrameWriter,
        cancelled: Optional[asyncio.Event] = None,
    ) -> RelaySession:
        cancelled = cancelled or asyncio.Event()
        session = RelaySession(voice_id=grant.voice_id, instructions=grant.instructions)
        upstream: Optional[UpstreamSocket] = None
        tasks: list[asyncio.Task[Any]] = []
        try:
            session.state = RelayState.CONNECTING
            upstream = await self._until_cancelled(self._open_upstream(session, grant), cancelled)
            if upstream is None:
                session.state = RelayState.CLOSED_BY_CALLER
                return session

            session.state = RelayState.CONFIGURING
            handshake = json.dumps(session_update_message(grant.voice_id, grant.instructions))
            if not await self._until_cancelled(self._configure(upstream, handshake), cancelled):
                session.state = RelayState.CLOSED_BY_CALLER
                return session
            logger.info(f"[Session {session.session_id}] Session configuration sent (voice={grant.voice_id})")

            session.state = RelayState.RELAYING
            caller_pump = asyncio.create_task(self._pump_caller_to_upstream(session, reader, upstream))
            upstream_pump = asyncio.create_task(self._pump_upstream_to_caller(session, upstream, writer))
            watcher = asyncio.create_task(cancelled.wait())
            tasks = [caller_pump, upstream_pump, watcher]
            session.state = await self._race(session, caller_pump, upstream_pump, watcher)
            return session
        except (UpstreamConnectFailed, ConfigurationInvalid) as exc:
            session.state = RelayState.FAILED
            session.error = str(exc)
            return session
        except (ConnectionClosed, OSError) as exc:
            session.state = RelayState.FAILED
            session.error = f"Upstream handshake failed: {exc}"
            return session
        except asyncio.CancelledError:
            session.state = RelayState.CLOSED_BY_CALLER
            raise
        finally:
            await self._teardown(session, tasks, upstream, writer)
            _log_outcome(session)

    async def _open_upstream(self, session: RelaySession, grant: RelayGrant) -> UpstreamSocket:
        url = realtime_socket_url(self._settings)
        headers = [("Authorization", f"Bearer {grant.secret}"), BETA_HEADER]
        logger.info(f"[Session {session.session_id}] Connecting to upstream realtime socket")
        try:
            upstream = await self._connect(url, additional_headers=headers, max_size=None)
        except (OSError, TimeoutError, WebSocketException) as exc:
            raise UpstreamConnectFailed(f"Could not connect to upstream realtime socket: {exc}") from exc
        logger.info(f"[Session {session.session_id}] Connected to upstream realtime socket")
        return upstream

    async def _configure(self, upstream: UpstreamSocket, handshake: str) -> bool:
        await upstream.send(handshake)
        return True

    async def _until_cancelled(self, coro: Awaitable[Any], cancelled: asyncio.Event) -> Any:
        """Await ``coro`` unless ``cancelled`` fires first; then return None."""

        work = asyncio.ensure_future(coro)
        watcher = asyncio.create_task(cancelled.wait())
        try:
            await asyncio.wait({work, watcher}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            watcher.cancel()
            if not work.done():
                work.cancel()
                await asyncio.wait({work})
        if work.cancelled():
            return None
        # A result that landed together with cancellation is still returned so an
        # opened socket gets closed by teardown.
        return work.result()

    async def _race(
        self,
        session: RelaySession,
        caller_pump: asyncio.Task[Any],
        upstream_pump: asyncio.Task[Any],
        watcher: asyncio.Task[Any],
    ) -> RelayState:
        pending = {caller_pump, upstream_pump, watcher}
        while True:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            if watcher in done:
                return RelayState.CLOSED_BY_CALLER
            if upstream_pump in done:
                exc = upstream_pump.exception()
                if exc is None:
                    return RelayState.CLOSED_BY_UPSTREAM
                if isinstance(exc, CallerDisconnected):
                    return RelayState.CLOSED_BY_CALLER
                session.error = f"Upstream to caller relay failed: {exc!r}"
                return RelayState.FAILED
            if caller_pump in done:
                exc = caller_pump.exception()
                if exc is not None:
                    session.error = f"Caller to upstream relay failed: {exc!r}"
                    return RelayState.FAILED
                logger.info(f"[Session {session.session_id}] Caller input ended; waiting for upstream")

    async def _pump_caller_to_upstream(
        self, session: RelaySession, reader: FrameReader, upstream: UpstreamSocket
    ) -> None:
        while True:
            chunk = await reader.read()
            if chunk is None:
                return
            await upstream.send(chunk)
            session.frames_to_upstream += 1

    async def _pump_upstream_to_caller(
        self, session: RelaySession, upstream: UpstreamSocket, writer: FrameWriter
    ) -> None:
        while True:
            try:
                frame = await upstream.recv()
            except ConnectionClosedOK:
                logger.info(f"[Session {session.session_id}] Upstream closed the realtime socket")
                return
            if is_session_ready(frame):
                logger.info(f"[Session {session.session_id}] Upstream acknowledged session configuration")
            await writer.write(frame)
            await writer.flush()
            session.frames_to_caller += 1

    async def _teardown(
        self,
        session: RelaySession,
        tasks: list[asyncio.Task[Any]],
        upstream: Optional[UpstreamSocket],
        writer: FrameWriter,
    ) -> None:
        for task in tasks:
            task.cancel()
        if tasks:
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception) and not isinstance(result, (ConnectionClosed, CallerDisconnected)):
                    logger.debug(f"[Session {session.session_id}] Pump ended with {result!r}")

        if upstream is not None:
            try:
                await upstream.close(code=1000, reason="Session ended")
            except Exception as exc:
                err = SessionTeardownError("Failed to close upstream realtime socket", exc)
                logger.warning(f"[Session {session.session_id}] {err}: {exc!r}")

        try:
            await writer.close()
        except Exception as exc:
            err = SessionTeardownError("Failed to close caller stream", exc)
            logger.warning(f"[Session {session.session_id}] {err}: {exc!r}")
