"""
Mask Routes
============

API routes for painting the inpainting mask of a session.
"""

import io
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel, Field

from ..canvas.session import EditSession, SessionManager
from ..errors import StudioValidationError

router = APIRouter(prefix="/api/mask", tags=["mask"])

# Injected by server
session_manager: Optional[SessionManager] = None


def get_session_manager() -> SessionManager:
    """Dependency to get session manager."""
    if session_manager is None:
        raise HTTPException(500, "Session manager not initialized")
    return session_manager


class PointRequest(BaseModel):
    """A point in export-resolution pixels."""
    x: float
    y: float


class StrokePathRequest(BaseModel):
    points: List[PointRequest] = Field(..., min_length=1)


class BrushRequest(BaseModel):
    brush_size: float = Field(..., gt=0)


def _mask_state(session: EditSession) -> Dict[str, Any]:
    width, height = session.mask.size
    return {
        "session_id": session.id,
        "width": width,
        "height": height,
        "brush_size": session.mask.brush_size,
        "stroke_width": session.mask.stroke_width,
        "is_drawing": session.mask.is_drawing,
        "has_mask": session.mask.has_paint,
    }


@router.get("/{session_id}")
async def get_mask_state(session_id: str, sm: SessionManager = Depends(get_session_manager)):
    return _mask_state(sm.get_session(session_id))


@router.post("/{session_id}/stroke/begin")
async def begin_stroke(
    session_id: str,
    request: PointRequest,
    sm: SessionManager = Depends(get_session_manager)
):
    session = sm.get_session(session_id)
    session.begin_stroke((request.x, request.y))
    return _mask_state(session)


@router.post("/{session_id}/stroke/extend")
async def extend_stroke(
    session_id: str,
    request: StrokePathRequest,
    sm: SessionManager = Depends(get_session_manager)
):
    """Continue the open stroke through one or more points."""
    session = sm.get_session(session_id)
    for point in request.points:
        session.extend_stroke((point.x, point.y))
    return _mask_state(session)


@router.post("/{session_id}/stroke/end")
async def end_stroke(session_id: str, sm: SessionManager = Depends(get_session_manager)):
    session = sm.get_session(session_id)
    session.end_stroke()
    return _mask_state(session)


@router.put("/{session_id}/brush")
async def set_brush(
    session_id: str,
    request: BrushRequest,
    sm: SessionManager = Depends(get_session_manager)
):
    session = sm.get_session(session_id)
    session.mask.brush_size = request.brush_size
    return _mask_state(session)


@router.delete("/{session_id}")
async def clear_mask(session_id: str, sm: SessionManager = Depends(get_session_manager)):
    session = sm.get_session(session_id)
    session.mask.clear()
    return _mask_state(session)


@router.get("/{session_id}/preview")
async def preview_mask(session_id: str, sm: SessionManager = Depends(get_session_manager)):
    """The binary mask exactly as it would be sent, as PNG."""
    mask = sm.get_session(session_id).mask.binarize()
    if mask is None:
        raise StudioValidationError("Paint a mask first", field="mask")
    out = io.BytesIO()
    mask.save(out, format="PNG")
    return Response(content=out.getvalue(), media_type="image/png")
