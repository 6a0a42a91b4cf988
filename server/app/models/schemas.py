"""Pydantic models describing request and response payloads."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PersonaResponse(BaseModel):
    """A selectable conversational persona."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Unique persona identifier")
    name: str
    description: str = ""
    voice_id: str = Field(..., alias="voiceId", description="Upstream voice used for this persona")
    system_instructions: str = Field(..., alias="systemInstructions")
    icon: str = "🎙️"


class SessionTokenResponse(BaseModel):
    """Short-lived credential for one realtime call attempt."""

    model_config = ConfigDict(populate_by_name=True)

    secret: str = Field(..., description="Opaque bearer credential; also accepted by the relay entry point")
    expires_at: datetime = Field(..., alias="expiresAt")
    realtime_endpoint: str = Field(..., alias="realtimeEndpoint", description="Signaling endpoint for the call")
    voice_id: str = Field(..., alias="voiceId")
    system_instructions: str = Field(..., alias="systemInstructions")


class RelayTokenResponse(BaseModel):
    """Opaque token accepted by the relay WebSocket entry point."""

    model_config = ConfigDict(populate_by_name=True)

    token: str
    expires_at: datetime = Field(..., alias="expiresAt")


class ErrorResponse(BaseModel):
    """Structured failure returned by the token endpoints."""

    model_config = ConfigDict(populate_by_name=True)

    error: str
    message: str
    upstream_status: Optional[int] = Field(default=None, alias="upstreamStatus")
    upstream_body: Optional[str] = Field(default=None, alias="upstreamBody")
