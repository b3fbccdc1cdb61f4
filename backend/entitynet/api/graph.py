from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from entitynet.models.graph import GraphResponse
from entitynet.models.session import DragRequest, FilterOptions, LayoutStepRequest, ViewportRequest
from entitynet.services.graph import NodeNotFoundError
from entitynet.services.mentions import SourceUnavailableError
from entitynet.services.session import (
    GraphSession,
    OriginalStateMissingError,
    SessionNotFoundError,
    SessionStore,
    create_session,
)


router = APIRouter(prefix="/graph", tags=["graph"])


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.sessions


def _session(store: SessionStore, session_id: str) -> GraphSession:
    try:
        return store.get(session_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


async def _apply(
    session: GraphSession,
    operation: Optional[Callable[..., Any]] = None,
    *args: Any,
    offload: bool = False,
    **kwargs: Any,
) -> GraphResponse:
    """Run ``operation`` under the session lock and render the result.

    Layout work is CPU-bound, so ``offload`` moves it to a worker thread.
    """

    async with session.lock:
        if operation is not None:
            if offload:
                await asyncio.to_thread(operation, *args, **kwargs)
            else:
                operation(*args, **kwargs)
        return session.render()


@router.post("/sessions", response_model=GraphResponse, status_code=201)
async def api_create_session(
    filters: Optional[FilterOptions] = None,
    store: SessionStore = Depends(get_session_store),
) -> GraphResponse:
    try:
        session = await create_session(store, filters=filters)
    except SourceUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return await _apply(session)


@router.get("/sessions/{session_id}", response_model=GraphResponse)
async def api_get_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
) -> GraphResponse:
    return await _apply(_session(store, session_id))


@router.delete("/sessions/{session_id}", status_code=204)
async def api_delete_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
) -> Response:
    try:
        store.remove(session_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@router.put("/sessions/{session_id}/filters", response_model=GraphResponse)
async def api_apply_filters(
    session_id: str,
    filters: FilterOptions,
    store: SessionStore = Depends(get_session_store),
) -> GraphResponse:
    session = _session(store, session_id)
    return await _apply(session, session.apply_filters, filters, offload=True)


@router.post("/sessions/{session_id}/layout/step", response_model=GraphResponse)
async def api_layout_step(
    session_id: str,
    payload: Optional[LayoutStepRequest] = None,
    store: SessionStore = Depends(get_session_store),
) -> GraphResponse:
    session = _session(store, session_id)
    steps = (payload or LayoutStepRequest()).steps
    return await _apply(session, session.step, steps, offload=True)


@router.post("/sessions/{session_id}/layout/reset", response_model=GraphResponse)
async def api_layout_reset(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
) -> GraphResponse:
    session = _session(store, session_id)
    return await _apply(session, session.reset_layout, offload=True)


@router.post("/sessions/{session_id}/layout/restore", response_model=GraphResponse)
async def api_layout_restore(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
) -> GraphResponse:
    session = _session(store, session_id)
    try:
        return await _apply(session, session.restore_original, offload=True)
    except OriginalStateMissingError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@router.post("/sessions/{session_id}/nodes/{node_id}/hover", response_model=GraphResponse)
async def api_hover_node(
    session_id: str,
    node_id: str,
    store: SessionStore = Depends(get_session_store),
) -> GraphResponse:
    session = _session(store, session_id)
    try:
        return await _apply(session, session.hover, node_id)
    except NodeNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.post("/sessions/{session_id}/nodes/{node_id}/unhover", response_model=GraphResponse)
async def api_unhover_node(
    session_id: str,
    node_id: str,
    store: SessionStore = Depends(get_session_store),
) -> GraphResponse:
    session = _session(store, session_id)
    return await _apply(session, session.unhover, node_id)


@router.post("/sessions/{session_id}/nodes/{node_id}/click", response_model=GraphResponse)
async def api_click_node(
    session_id: str,
    node_id: str,
    store: SessionStore = Depends(get_session_store),
) -> GraphResponse:
    session = _session(store, session_id)
    try:
        return await _apply(session, session.click, node_id)
    except NodeNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.post("/sessions/{session_id}/nodes/{node_id}/drag", response_model=GraphResponse)
async def api_drag_node(
    session_id: str,
    node_id: str,
    payload: DragRequest,
    store: SessionStore = Depends(get_session_store),
) -> GraphResponse:
    session = _session(store, session_id)
    try:
        return await _apply(session, session.drag, node_id, payload.phase, payload.x, payload.y)
    except NodeNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post("/sessions/{session_id}/detail/close", response_model=GraphResponse)
async def api_close_detail(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
) -> GraphResponse:
    session = _session(store, session_id)
    return await _apply(session, session.close_detail)


@router.post("/sessions/{session_id}/highlight/clear", response_model=GraphResponse)
async def api_clear_highlight(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
) -> GraphResponse:
    session = _session(store, session_id)
    return await _apply(session, session.clear_highlight)


@router.post("/sessions/{session_id}/viewport", response_model=GraphResponse)
async def api_viewport(
    session_id: str,
    payload: ViewportRequest,
    store: SessionStore = Depends(get_session_store),
) -> GraphResponse:
    session = _session(store, session_id)
    try:
        return await _apply(
            session,
            session.viewport,
            payload.action,
            zoom=payload.zoom,
            dx=payload.dx,
            dy=payload.dy,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
