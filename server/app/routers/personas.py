"""Persona catalog endpoints."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from ..dependencies import get_persona_registry
from ..models import schemas
from ..services.personas import Persona, PersonaRegistry

router = APIRouter(prefix="/api/personas", tags=["personas"])
logger = logging.getLogger(__name__)


def _to_response(persona: Persona) -> schemas.PersonaResponse:
    return schemas.PersonaResponse(
        id=persona.id,
        name=persona.name,
        description=persona.description,
        voice_id=persona.voice_id,
        system_instructions=persona.system_instructions,
        icon=persona.icon,
    )


@router.get("", response_model=list[schemas.PersonaResponse])
async def list_personas(
    registry: PersonaRegistry = Depends(get_persona_registry),
) -> list[schemas.PersonaResponse]:
    """Return every persona in catalog order."""

    logger.info("Retrieving all personas")
    return [_to_response(persona) for persona in registry.list()]


@router.get("/{persona_id}", response_model=schemas.PersonaResponse)
async def get_persona(
    persona_id: str,
    registry: PersonaRegistry = Depends(get_persona_registry),
) -> schemas.PersonaResponse:
    persona = registry.lookup(persona_id)
    if persona is None:
        logger.warning("Persona with id %s not found", persona_id)
        raise HTTPException(status_code=404, detail=f"Persona with id '{persona_id}' not found")
    return _to_response(persona)
