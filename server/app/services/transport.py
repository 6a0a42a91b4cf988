"""Caller-facing WebSocket bridge for the realtime relay.

Splits an accepted WebSocket into a read half and a write half. Each read returns
exactly one inbound message; each write sends exactly one outbound message.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Union

from fastapi import WebSocket, WebSocketDisconnect, status
from starlette.websockets import WebSocketState

try:
    from ..errors import CallerDisconnected
except ImportError:  # pragma: no cover - script-style execution fallback
    from app.errors import CallerDisconnected

logger = logging.getLogger(__name__)

Frame = Union[str, bytes]


class _Channel:
    """State shared by both halves of one WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self.disconnected = asyncio.Event()

    @property
    def connected(self) -> bool:
        if self.disconnected.is_set():
            return False
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def mark_disconnected(self) -> None:
        self.disconnected.set()


class WebSocketReader:
    """Inbound half: one message per read, ``None`` once the caller is gone.

    An empty message is still a message and is returned as such; only the
    disconnect ends input.
    """

    def __init__(self, channel: _Channel) -> None:
        self._channel = channel

    async def read(self) -> Optional[Frame]:
        if self._channel.disconnected.is_set():
            return None
        message = await self._channel.websocket.receive()
        if message["type"] == "websocket.disconnect":
            logger.info("Caller disconnected (code=%s)", message.get("code"))
            self._channel.mark_disconnected()
            return None
        if message.get("bytes") is not None:
            return message["bytes"]
        text = message.get("text")
        return text if text is not None else ""


class WebSocketWriter:
    """Outbound half: one message per write, no buffering."""

    def __init__(self, channel: _Channel) -> None:
        self._channel = channel

    async def write(self, frame: Frame) -> None:
        if not self._channel.connected:
            raise CallerDisconnected("Caller WebSocket is no longer connected")
        websocket = self._channel.websocket
        try:
            if isinstance(frame, bytes):
                await websocket.send_bytes(frame)
            else:
                await websocket.send_text(frame)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            self._channel.mark_disconnected()
            raise CallerDisconnected(f"Caller WebSocket send failed: {exc}") from exc

    async def flush(self) -> None:
        # Frames go out on write; nothing is held back.
        return None

    async def close(self, code: int = status.WS_1000_NORMAL_CLOSURE, reason: str = "") -> None:
        if not self._channel.connected:
            return
        try:
            await self._channel.websocket.close(code=code, reason=reason)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            logger.debug("Caller WebSocket close failed: %s", exc)
        finally:
            self._channel.mark_disconnected()


def open_websocket_streams(websocket: WebSocket) -> tuple[WebSocketReader, WebSocketWriter, asyncio.Event]:
    """Wrap an accepted WebSocket as ``(reader, writer, disconnected)``."""

    channel = _Channel(websocket)
    return WebSocketReader(channel), WebSocketWriter(channel), channel.disconnected
