"""Realtime voice relay endpoints."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, status
from fastapi.responses import PlainTextResponse

from ..dependencies import get_realtime_relay, get_token_store
from ..errors import InvalidCredential
from ..services.realtime_voice import RealtimeRelay
from ..services.token_store import RelayGrant, TokenStore
from ..services.transport import open_websocket_streams

router = APIRouter(prefix="/api/realtime", tags=["realtime"])
logger = logging.getLogger(__name__)


def _presented_token(websocket: WebSocket, token: Optional[str]) -> Optional[str]:
    if token:
        return token
    authorization = websocket.headers.get("authorization", "")
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None


def _authorize(store: TokenStore, token: Optional[str]) -> RelayGrant:
    grant = store.validate(token)
    if grant is None:
        raise InvalidCredential("Invalid or expired token")
    return grant


async def _reject(websocket: WebSocket, status_code: int, message: str) -> None:
    if "websocket.http.response" in websocket.scope.get("extensions", {}):
        await websocket.send_denial_response(PlainTextResponse(message, status_code=status_code))
    else:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=message)


@router.get("/ws", status_code=400, response_class=PlainTextResponse)
async def realtime_requires_upgrade() -> PlainTextResponse:
    """Plain HTTP requests to the relay entry point are rejected."""

    return PlainTextResponse("WebSocket upgrade required", status_code=400)


@router.websocket("/ws")
async def realtime_voice_gateway(
    websocket: WebSocket,
    token: Optional[str] = Query(default=None),
    store: TokenStore = Depends(get_token_store),
    relay: RealtimeRelay = Depends(get_realtime_relay),
) -> None:
    """Relay a caller's WebSocket to the upstream realtime API.

    The caller presents a relay token as the ``token`` query parameter or as a
    bearer ``Authorization`` header. Frames are forwarded unchanged in both
    directions after the relay has configured the upstream session.
    """

    try:
        grant = _authorize(store, _presented_token(websocket, token))
    except InvalidCredential as exc:
        logger.warning("Rejected realtime connection: %s", exc)
        await _reject(websocket, 401, str(exc))
        return

    await websocket.accept()
    reader, writer, disconnected = open_websocket_streams(websocket)
    session = await relay.run(grant, reader, writer, cancelled=disconnected)
    logger.info("Realtime session %s finished with state %s", session.session_id, session.state.value)
