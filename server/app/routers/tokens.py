"""Session token endpoints."""
from __future__ import annotations

import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from ..config import Settings, get_settings
from ..dependencies import get_session_token_issuer, get_token_store
from ..errors import (
    ConfigurationInvalid,
    MalformedUpstreamResponse,
    RealtimeRelayError,
    UpstreamRejected,
    UpstreamUnavailable,
)
from ..models import schemas
from ..services.session_tokens import SessionTokenIssuer
from ..services.token_store import TokenStore

router = APIRouter(prefix="/api/token", tags=["tokens"])
logger = logging.getLogger(__name__)

_ERROR_STATUS: dict[type[RealtimeRelayError], int] = {
    ConfigurationInvalid: 500,
    UpstreamUnavailable: 503,
    UpstreamRejected: 502,
    MalformedUpstreamResponse: 502,
}


def _error_response(exc: RealtimeRelayError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in _ERROR_STATUS.items() if isinstance(exc, error_type)),
        500,
    )
    payload = schemas.ErrorResponse(
        error="Failed to create session token",
        message=str(exc),
        upstream_status=exc.status_code if isinstance(exc, UpstreamRejected) else None,
        upstream_body=exc.body if isinstance(exc, UpstreamRejected) else None,
    )
    return JSONResponse(status_code=status_code, content=payload.model_dump(by_alias=True, exclude_none=True))


@router.get(
    "",
    response_model=schemas.SessionTokenResponse,
    responses={500: {"model": schemas.ErrorResponse}, 502: {"model": schemas.ErrorResponse}, 503: {"model": schemas.ErrorResponse}},
)
async def create_session_token(
    persona_id: Optional[str] = Query(default=None, alias="personaId"),
    issuer: SessionTokenIssuer = Depends(get_session_token_issuer),
    store: TokenStore = Depends(get_token_store),
) -> Union[schemas.SessionTokenResponse, JSONResponse]:
    """Create an upstream realtime session, optionally scoped to a persona."""

    logger.info("Token requested for persona: %s", persona_id or "default")
    try:
        credential = await issuer.create_session_token(persona_id)
    except RealtimeRelayError as exc:
        logger.error("Error creating session token: %s", exc)
        return _error_response(exc)

    # The upstream secret doubles as the relay entry point credential.
    store.register(credential.secret, credential.voice_id, credential.system_instructions)
    return schemas.SessionTokenResponse(
        secret=credential.secret,
        expires_at=credential.expires_at,
        realtime_endpoint=credential.realtime_endpoint,
        voice_id=credential.voice_id,
        system_instructions=credential.system_instructions,
    )


@router.get(
    "/relay",
    response_model=schemas.RelayTokenResponse,
    responses={500: {"model": schemas.ErrorResponse}},
)
async def create_relay_token(
    persona_id: Optional[str] = Query(default=None, alias="personaId"),
    issuer: SessionTokenIssuer = Depends(get_session_token_issuer),
    store: TokenStore = Depends(get_token_store),
    settings: Settings = Depends(get_settings),
) -> Union[schemas.RelayTokenResponse, JSONResponse]:
    """Mint an opaque relay token; the relay presents the service API key upstream."""

    api_key = (settings.azure_openai_api_key or "").strip()
    if not api_key:
        return _error_response(ConfigurationInvalid("AZURE_OPENAI_API_KEY is required"))

    profile = issuer.resolve_voice(persona_id)
    token, expires_at = store.issue(api_key, profile.voice_id, profile.instructions)
    return schemas.RelayTokenResponse(token=token, expires_at=expires_at)
