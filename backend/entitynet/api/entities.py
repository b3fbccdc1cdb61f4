from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from entitynet.api.graph import get_session_store
from entitynet.models.graph import ConnectionsByType, EntityStats
from entitynet.services.graph import NodeNotFoundError
from entitynet.services.session import SessionNotFoundError, SessionStore


router = APIRouter(prefix="/graph/sessions/{session_id}/entities", tags=["entities"])


@router.get("/{entity_name}/connections", response_model=ConnectionsByType)
async def api_entity_connections(
    session_id: str,
    entity_name: str,
    limit: Optional[int] = Query(default=5, ge=1, le=100),
    store: SessionStore = Depends(get_session_store),
) -> ConnectionsByType:
    try:
        return store.get(session_id).connections(entity_name, limit=limit)
    except (SessionNotFoundError, NodeNotFoundError) as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.get("/{entity_name}/stats", response_model=EntityStats)
async def api_entity_stats(
    session_id: str,
    entity_name: str,
    store: SessionStore = Depends(get_session_store),
) -> EntityStats:
    try:
        return store.get(session_id).stats(entity_name)
    except (SessionNotFoundError, NodeNotFoundError) as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
