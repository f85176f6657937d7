"""
Layer Routes
=============

API routes for layer management: add, update, delete, select, reorder and
drag / slider gestures.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..canvas.session import SessionManager
from ..models.layer_models import BlendMode, Layer, LayerKind

router = APIRouter(prefix="/api/layer", tags=["layers"])

# Injected by server
session_manager: Optional[SessionManager] = None


def get_session_manager() -> SessionManager:
    """Dependency to get session manager."""
    if session_manager is None:
        raise HTTPException(500, "Session manager not initialized")
    return session_manager


class LayerRequest(BaseModel):
    """Request to add a layer from a source reference (upload, URL or path)."""
    url: str
    kind: LayerKind = LayerKind.OVERLAY
    name: Optional[str] = None
    position: int = 0
    select: bool = True
    opacity: float = 100.0
    blend_mode: BlendMode = BlendMode.NORMAL


class LayerUpdateRequest(BaseModel):
    """Attribute changes, e.g. ``{"changes": {"opacity": 50, "visible": false}}``."""
    changes: Dict[str, Any]


class SelectRequest(BaseModel):
    layer_id: Optional[str] = None


class ReorderRequest(BaseModel):
    index: int


class LayerResponse(BaseModel):
    """Response for layer operations."""
    layer: Optional[Layer] = None
    message: str
    state: Dict[str, Any]


@router.post("/{session_id}")
async def add_layer(
    session_id: str,
    request: LayerRequest,
    sm: SessionManager = Depends(get_session_manager)
) -> LayerResponse:
    """Add a layer (at the top by default) and select it."""
    session = sm.get_session(session_id)
    prefix = "upload" if request.kind != LayerKind.VIDEO else "video"
    layer = Layer.create(request.url, kind=request.kind, name=request.name, prefix=prefix)
    layer = layer.with_changes(opacity=request.opacity, blend_mode=request.blend_mode)
    session.add_layer(layer, position=request.position, select=request.select)
    return LayerResponse(layer=layer, message="Layer added", state=session.to_dict())


@router.put("/{session_id}/{layer_id}")
async def update_layer(
    session_id: str,
    layer_id: str,
    request: LayerUpdateRequest,
    sm: SessionManager = Depends(get_session_manager)
) -> LayerResponse:
    """Change one or more attributes as a single undoable step."""
    session = sm.get_session(session_id)
    layer = session.update_attributes(layer_id, **request.changes)
    return LayerResponse(layer=layer, message="Layer updated", state=session.to_dict())


@router.delete("/{session_id}/{layer_id}")
async def remove_layer(
    session_id: str,
    layer_id: str,
    sm: SessionManager = Depends(get_session_manager)
) -> LayerResponse:
    session = sm.get_session(session_id)
    layer = session.remove_layer(layer_id)
    return LayerResponse(layer=layer, message="Layer removed", state=session.to_dict())


@router.post("/{session_id}/select")
async def select_layer(
    session_id: str,
    request: SelectRequest,
    sm: SessionManager = Depends(get_session_manager)
) -> Dict[str, Any]:
    session = sm.get_session(session_id)
    session.select_layer(request.layer_id)
    return session.to_dict()


@router.post("/{session_id}/{layer_id}/reorder")
async def reorder_layer(
    session_id: str,
    layer_id: str,
    request: ReorderRequest,
    sm: SessionManager = Depends(get_session_manager)
) -> Dict[str, Any]:
    session = sm.get_session(session_id)
    session.reorder_layer(layer_id, request.index)
    return session.to_dict()


@router.post("/{session_id}/{layer_id}/gesture/begin")
async def begin_gesture(
    session_id: str,
    layer_id: str,
    sm: SessionManager = Depends(get_session_manager)
) -> Dict[str, Any]:
    """Start a drag / zoom / slider gesture on a layer."""
    session = sm.get_session(session_id)
    session.begin_gesture(layer_id)
    return session.to_dict()


@router.post("/{session_id}/{layer_id}/gesture/preview")
async def preview_gesture(
    session_id: str,
    layer_id: str,
    request: LayerUpdateRequest,
    sm: SessionManager = Depends(get_session_manager)
) -> LayerResponse:
    """Apply an intermediate gesture frame. Not recorded for undo."""
    session = sm.get_session(session_id)
    layer = session.preview_layer(layer_id, **request.changes)
    return LayerResponse(layer=layer, message="Gesture preview applied", state=session.to_dict())


@router.post("/{session_id}/gesture/end")
async def end_gesture(session_id: str, sm: SessionManager = Depends(get_session_manager)) -> Dict[str, Any]:
    """Finish the gesture; the whole gesture becomes one undo step."""
    session = sm.get_session(session_id)
    session.end_gesture()
    return session.to_dict()
