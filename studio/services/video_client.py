"""
Video Client for Layer Studio
=============================

HTTP client for the asynchronous video endpoints: submit a task, then query
its status. Status payloads are interpreted by ``interpret_status`` so the
polling loop only ever sees one of three outcomes.
"""

import json
import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import BaseModel, Field

from ..errors import TransientNetworkError
from ..models.config_models import API_BASE_URL

logger = logging.getLogger(__name__)

VIDEO_API_HEADERS = {"X-Sora-Version": "2.0"}

IN_PROGRESS_STATUSES = frozenset({"IN_PROGRESS", "NOT_START", "PROCESSING", "PENDING", "QUEUED", "RUNNING"})
SUCCESS_STATUSES = frozenset({"SUCCESS", "SUCCESSFUL", "SUCCEEDED"})
FAILURE_STATUSES = frozenset({"FAILURE", "FAILED"})

# Where a finished task may put its video, tried in order
VIDEO_RESULT_FIELDS: Tuple[Tuple[str, ...], ...] = (
    ("data", "output"),
    ("output",),
    ("video_url",),
    ("url",),
    ("data", "url"),
)

DEFAULT_FAILURE_MESSAGE = "Video generation failed"


class VideoOutcome(str, Enum):
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class VideoSubmitResponse(BaseModel):
    """Response from task submission."""
    success: bool
    task_id: Optional[str] = None
    error: Optional[str] = None


class VideoStatusResponse(BaseModel):
    """One decoded status query."""
    status: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class VideoStatus(BaseModel):
    """Interpreted task status."""
    outcome: VideoOutcome
    raw_status: str = ""
    video_url: Optional[str] = None
    error: Optional[str] = None


def _lookup(payload: Dict[str, Any], path: Tuple[str, ...]) -> Optional[str]:
    value: Any = payload
    for key in path:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value if isinstance(value, str) and value else None


def extract_video_url(payload: Dict[str, Any], base_url: str = API_BASE_URL) -> Optional[str]:
    """First populated result field; relative locators are resolved against ``base_url``."""
    for path in VIDEO_RESULT_FIELDS:
        url = _lookup(payload, path)
        if url:
            if url.startswith(("http://", "https://", "data:")):
                return url
            return f"{base_url.rstrip('/')}/{url.lstrip('/')}"
    return None


def extract_failure_message(payload: Dict[str, Any]) -> str:
    """``fail_reason`` or ``error``; JSON-object strings are unwrapped to their message."""
    message = payload.get("fail_reason") or payload.get("error") or DEFAULT_FAILURE_MESSAGE
    if isinstance(message, dict):
        return message.get("message") or message.get("error") or DEFAULT_FAILURE_MESSAGE
    message = str(message)
    stripped = message.strip()
    if stripped.startswith("{") and stripped.endswith("}"):
        try:
            parsed = json.loads(stripped)
        except ValueError:
            return message
        if isinstance(parsed, dict):
            return parsed.get("message") or parsed.get("error") or message
    return message


def interpret_status(payload: Dict[str, Any], base_url: str = API_BASE_URL) -> VideoStatus:
    status = str(payload.get("status") or "").strip().upper()

    if status in SUCCESS_STATUSES:
        video_url = extract_video_url(payload, base_url)
        if not video_url:
            return VideoStatus(
                outcome=VideoOutcome.FAILED,
                raw_status=status,
                error="Video generation finished but returned no video",
            )
        return VideoStatus(outcome=VideoOutcome.SUCCEEDED, raw_status=status, video_url=video_url)

    if status in FAILURE_STATUSES:
        return VideoStatus(
            outcome=VideoOutcome.FAILED,
            raw_status=status,
            error=extract_failure_message(payload),
        )

    if status not in IN_PROGRESS_STATUSES:
        logger.warning(f"[VIDEO-CLIENT] Unknown task status '{status}', still waiting")
    return VideoStatus(outcome=VideoOutcome.IN_PROGRESS, raw_status=status)


class VideoClient:
    """
    Client for the video generation task endpoints.

    Usage:
        client = VideoClient(api_key="sk-...")
        submitted = await client.submit("A drone shot over a coastline", "16:9", 10)
        status = await client.get_status(submitted.task_id)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: str = "",
        model: str = "sora-2",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or API_BASE_URL).rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        logger.info(f"[VIDEO-CLIENT] Initialized with base URL: {self.base_url}")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={"Content-Type": "application/json", **VIDEO_API_HEADERS},
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def submit(
        self,
        prompt: str,
        aspect_ratio: str,
        duration: int,
        images: Optional[List[str]] = None,
    ) -> VideoSubmitResponse:
        """Create a video task. ``images`` are seed rasters as data URLs."""
        payload: Dict[str, Any] = {
            "prompt": prompt,
            "model": self.model,
            "aspect_ratio": aspect_ratio,
            "hd": True,
            "duration": duration,
            "watermark": False,
        }
        if images:
            payload["images"] = images

        logger.info(f"[VIDEO-CLIENT] Submitting video task: {prompt[:50]}... ({aspect_ratio}, {duration}s)")
        try:
            client = await self._get_client()
            response = await client.post(
                f"{self.base_url}/v2/videos/generations", json=payload, headers=self._headers()
            )
        except httpx.TimeoutException:
            logger.error("[VIDEO-CLIENT] Timeout submitting video task")
            return VideoSubmitResponse(success=False, error="Video service timeout - please try again")
        except httpx.RequestError as e:
            logger.error(f"[VIDEO-CLIENT] Network error: {e}")
            return VideoSubmitResponse(success=False, error=f"Network error: {e}")

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if not response.is_success:
            error_msg = data.get("message") or f"Video task creation failed: HTTP {response.status_code}"
            logger.error(f"[VIDEO-CLIENT] {error_msg}")
            return VideoSubmitResponse(success=False, error=error_msg)

        task_id = data.get("id") or data.get("task_id")
        if not task_id:
            logger.error("[VIDEO-CLIENT] Submission response carried no task id")
            return VideoSubmitResponse(success=False, error="Video service returned no task id")

        logger.info(f"[VIDEO-CLIENT] Task created: {task_id}")
        return VideoSubmitResponse(success=True, task_id=str(task_id))

    async def get_status(self, task_id: str) -> VideoStatusResponse:
        """Query a task once.

        Raises ``TransientNetworkError`` for transport errors, non-2xx responses
        and undecodable bodies; the caller retries on the next interval.
        """
        try:
            client = await self._get_client()
            response = await client.get(
                f"{self.base_url}/v2/videos/generations/{task_id}", headers=self._headers()
            )
        except httpx.HTTPError as e:
            raise TransientNetworkError(f"Network error: {e}")

        if not response.is_success:
            raise TransientNetworkError(f"HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError:
            raise TransientNetworkError("Undecodable status body")
        if not isinstance(payload, dict):
            raise TransientNetworkError("Unexpected status body")

        status = payload.get("status")
        return VideoStatusResponse(
            status=str(status) if status is not None else None, payload=payload
        )
