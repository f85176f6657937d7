"""
History Routes
===============

API routes for browsing, re-using and deleting History Records.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException

from ..canvas.record_store import RecordStore
from ..canvas.session import SessionManager
from ..models.history_models import HistoryRecord

router = APIRouter(prefix="/api/history", tags=["history"])

# Injected by server
session_manager: Optional[SessionManager] = None
record_store: Optional[RecordStore] = None


def get_session_manager() -> SessionManager:
    """Dependency to get session manager."""
    if session_manager is None:
        raise HTTPException(500, "Session manager not initialized")
    return session_manager


def get_record_store() -> RecordStore:
    """Dependency to get record store."""
    if record_store is None:
        raise HTTPException(500, "Record store not initialized")
    return record_store


@router.get("")
async def list_records(limit: int = 50, rs: RecordStore = Depends(get_record_store)) -> List[HistoryRecord]:
    """Newest first."""
    return rs.records[:limit]


@router.get("/{record_id}")
async def get_record(record_id: str, rs: RecordStore = Depends(get_record_store)) -> Dict[str, Any]:
    """The record plus its full-resolution locator (cached copy when available)."""
    record = rs.get(record_id)
    return {"record": record, "full_url": rs.resolve_full(record)}


@router.post("/{record_id}/canvas/{session_id}")
async def add_to_canvas(
    record_id: str,
    session_id: str,
    rs: RecordStore = Depends(get_record_store),
    sm: SessionManager = Depends(get_session_manager)
) -> Dict[str, Any]:
    """Place a past result on top of a session's layers."""
    session = sm.get_session(session_id)
    record = rs.get(record_id)
    layer = session.add_history_layer(rs.resolve_full(record), is_video=record.is_video)
    return {"layer": layer, "state": session.to_dict()}


@router.delete("/{record_id}")
async def delete_record(record_id: str, rs: RecordStore = Depends(get_record_store)):
    """Delete a record and its cached full-resolution asset."""
    rs.delete(record_id)
    return {"message": "Record deleted", "record_id": record_id}
