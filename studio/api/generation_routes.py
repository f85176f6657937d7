"""
Generation Routes
==================

API routes that start generation jobs against the external service and
report their progress.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..canvas.session import SessionManager
from ..models.job_models import GenerationJob, JobStatus
from ..services.job_orchestrator import JobOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/generation", tags=["generation"])

# Injected by server
session_manager: Optional[SessionManager] = None
orchestrator: Optional[JobOrchestrator] = None


def get_session_manager() -> SessionManager:
    """Dependency to get session manager."""
    if session_manager is None:
        raise HTTPException(500, "Session manager not initialized")
    return session_manager


def get_orchestrator() -> JobOrchestrator:
    """Dependency to get job orchestrator."""
    if orchestrator is None:
        raise HTTPException(500, "Job orchestrator not initialized")
    return orchestrator


class PromptRequest(BaseModel):
    prompt: str = ""


class RemoveBackgroundRequest(BaseModel):
    layer_id: Optional[str] = None


class JobResponse(BaseModel):
    """Response for a generation request."""
    success: bool
    job: GenerationJob
    error: Optional[str] = None
    state: Optional[Dict[str, Any]] = None


def _job_response(job: GenerationJob, state: Optional[Dict[str, Any]] = None) -> JobResponse:
    return JobResponse(
        success=job.status != JobStatus.FAILED,
        job=job,
        error=job.error,
        state=state,
    )


@router.post("/{session_id}/generate", response_model=JobResponse)
async def generate(
    session_id: str,
    request: PromptRequest,
    sm: SessionManager = Depends(get_session_manager),
    jo: JobOrchestrator = Depends(get_orchestrator)
):
    """Text-to-image; the result becomes the new background layer."""
    session = sm.get_session(session_id)
    job = await jo.generate(session, request.prompt)
    return _job_response(job, session.to_dict())


@router.post("/{session_id}/compose", response_model=JobResponse)
async def compose(
    session_id: str,
    request: PromptRequest,
    sm: SessionManager = Depends(get_session_manager),
    jo: JobOrchestrator = Depends(get_orchestrator)
):
    """Blend the foreground layer into the background layer."""
    session = sm.get_session(session_id)
    job = await jo.compose(session, request.prompt)
    return _job_response(job, session.to_dict())


@router.post("/{session_id}/mask-edit", response_model=JobResponse)
async def mask_edit(
    session_id: str,
    request: PromptRequest,
    sm: SessionManager = Depends(get_session_manager),
    jo: JobOrchestrator = Depends(get_orchestrator)
):
    """Edit the painted region of the selected layer."""
    session = sm.get_session(session_id)
    job = await jo.mask_edit(session, request.prompt)
    return _job_response(job, session.to_dict())


@router.post("/{session_id}/remove-background", response_model=JobResponse)
async def remove_background(
    session_id: str,
    request: Optional[RemoveBackgroundRequest] = None,
    sm: SessionManager = Depends(get_session_manager),
    jo: JobOrchestrator = Depends(get_orchestrator)
):
    session = sm.get_session(session_id)
    job = await jo.remove_background(session, request.layer_id if request else None)
    return _job_response(job, session.to_dict())


@router.post("/{session_id}/video", response_model=JobResponse)
async def generate_video(
    session_id: str,
    request: PromptRequest,
    sm: SessionManager = Depends(get_session_manager),
    jo: JobOrchestrator = Depends(get_orchestrator)
):
    """Submit a video task. Poll ``/jobs/{job_id}`` for the outcome."""
    session = sm.get_session(session_id)
    job = await jo.start_video(session, request.prompt)
    logger.info(f"[GENERATION] Video job {job.id} started for session {session_id}")
    return _job_response(job)


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, jo: JobOrchestrator = Depends(get_orchestrator)):
    return _job_response(jo.get_job(job_id))


@router.get("/{session_id}/jobs")
async def list_jobs(
    session_id: str,
    jo: JobOrchestrator = Depends(get_orchestrator)
) -> List[GenerationJob]:
    return jo.list_jobs(session_id)
