"""
Canvas Routes
==============

API routes for edit sessions: state, undo/redo, mode, aspect ratio and export.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel

from ..canvas.compositor import Compositor
from ..canvas.session import SessionManager
from ..models.layer_models import DEFAULT_ASPECT_RATIO, EditMode, Layer

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/canvas", tags=["canvas"])

# Injected by server
session_manager: Optional[SessionManager] = None
compositor: Optional[Compositor] = None


def get_session_manager() -> SessionManager:
    """Dependency to get session manager."""
    if session_manager is None:
        raise HTTPException(500, "Session manager not initialized")
    return session_manager


def get_compositor() -> Compositor:
    """Dependency to get compositor."""
    if compositor is None:
        raise HTTPException(500, "Compositor not initialized")
    return compositor


class CreateSessionRequest(BaseModel):
    """Request to open an edit session."""
    session_id: Optional[str] = None
    aspect_ratio: str = DEFAULT_ASPECT_RATIO
    layers: List[Layer] = []


class ModeRequest(BaseModel):
    mode: EditMode


class AspectRatioRequest(BaseModel):
    aspect_ratio: str


class VideoDurationRequest(BaseModel):
    duration: int


@router.post("/session")
async def create_session(
    request: Optional[CreateSessionRequest] = None,
    sm: SessionManager = Depends(get_session_manager)
) -> Dict[str, Any]:
    """Create a new edit session."""
    request = request or CreateSessionRequest()
    session = sm.create_session(
        session_id=request.session_id,
        layers=request.layers,
        aspect_ratio=request.aspect_ratio,
    )
    return {"session_id": session.id, "message": "Session created", "state": session.to_dict()}


@router.get("/state/{session_id}")
async def get_state(session_id: str, sm: SessionManager = Depends(get_session_manager)) -> Dict[str, Any]:
    """Get the layer collection, selection and settings of a session."""
    return sm.get_session(session_id).to_dict()


@router.delete("/session/{session_id}")
async def close_session(session_id: str, sm: SessionManager = Depends(get_session_manager)):
    """Tear down a session."""
    sm.close_session(session_id)
    return {"message": "Session closed", "session_id": session_id}


@router.post("/{session_id}/undo")
async def undo(session_id: str, sm: SessionManager = Depends(get_session_manager)) -> Dict[str, Any]:
    session = sm.get_session(session_id)
    session.undo()
    return session.to_dict()


@router.post("/{session_id}/redo")
async def redo(session_id: str, sm: SessionManager = Depends(get_session_manager)) -> Dict[str, Any]:
    session = sm.get_session(session_id)
    session.redo()
    return session.to_dict()


@router.put("/{session_id}/mode")
async def set_mode(
    session_id: str,
    request: ModeRequest,
    sm: SessionManager = Depends(get_session_manager)
) -> Dict[str, Any]:
    """Switch editing mode. Clears the mask; video mode coerces the aspect ratio."""
    session = sm.get_session(session_id)
    session.set_mode(request.mode)
    return session.to_dict()


@router.put("/{session_id}/aspect-ratio")
async def set_aspect_ratio(
    session_id: str,
    request: AspectRatioRequest,
    sm: SessionManager = Depends(get_session_manager)
) -> Dict[str, Any]:
    session = sm.get_session(session_id)
    session.set_aspect_ratio(request.aspect_ratio)
    return session.to_dict()


@router.put("/{session_id}/video-duration")
async def set_video_duration(
    session_id: str,
    request: VideoDurationRequest,
    sm: SessionManager = Depends(get_session_manager)
) -> Dict[str, Any]:
    session = sm.get_session(session_id)
    session.set_video_duration(request.duration)
    return session.to_dict()


@router.get("/{session_id}/export")
async def export_png(
    session_id: str,
    sm: SessionManager = Depends(get_session_manager),
    comp: Compositor = Depends(get_compositor)
):
    """Render the composite at the active aspect ratio's resolution as PNG."""
    session = sm.get_session(session_id)
    width, height = session.target_dimensions
    png = await comp.render_png(session.layers, width, height)
    logger.info(f"[CANVAS] Exported session {session_id} at {width}x{height}")
    return Response(
        content=png,
        media_type="image/png",
        headers={"Content-Disposition": f'attachment; filename="composition-{session_id}.png"'},
    )
