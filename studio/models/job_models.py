"""
Job Models for Layer Studio
===========================

Models for generation jobs: which operation, how it runs, and where it stands.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class OperationKind(str, Enum):
    """Operation requested from the generation service."""
    GENERATE = "generate"
    COMPOSE = "compose"
    MASK_EDIT = "mask_edit"
    REMOVE_BACKGROUND = "remove_background"
    VIDEO = "video"


class JobKind(str, Enum):
    """Sync jobs are one request/response; async jobs are submitted then polled."""
    SYNC = "sync"
    ASYNC = "async"


class JobStatus(str, Enum):
    PENDING = "pending"
    SENDING = "sending"
    SUBMITTING = "submitting"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    UPSTREAM = "upstream"
    TIMEOUT = "timeout"


TERMINAL_STATUSES = frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED})


# Per-operation configuration
# - kind: sync request/response or async submit + poll
# - layer_prefix / layer_name: used when the result becomes a new layer
# - records_history: whether a successful result is kept as a History Record
OPERATION_CONFIG = {
    OperationKind.GENERATE: {
        "kind": JobKind.SYNC,
        "layer_prefix": "layer",
        "layer_name": "Generated background",
        "records_history": True,
    },
    OperationKind.COMPOSE: {
        "kind": JobKind.SYNC,
        "layer_prefix": "composite",
        "layer_name": "Composite result",
        "records_history": True,
    },
    OperationKind.MASK_EDIT: {
        "kind": JobKind.SYNC,
        "layer_prefix": None,  # updates the selected layer in place
        "layer_name": None,
        "records_history": True,
    },
    OperationKind.REMOVE_BACKGROUND: {
        "kind": JobKind.SYNC,
        "layer_prefix": None,  # updates the target layer in place
        "layer_name": None,
        "records_history": False,
    },
    OperationKind.VIDEO: {
        "kind": JobKind.ASYNC,
        "layer_prefix": "video",
        "layer_name": "AI video",
        "records_history": True,
    },
}


class GenerationJob(BaseModel):
    """One request to the external generation service."""
    id: str = Field(default_factory=lambda: f"job-{uuid.uuid4().hex[:12]}")
    operation: OperationKind
    kind: JobKind
    session_id: str
    prompt: str = ""
    status: JobStatus = JobStatus.PENDING
    task_id: Optional[str] = None          # external task id (async only)
    attempts: int = 0                      # status polls made so far
    target_layer_id: Optional[str] = None  # layer updated in place, or the layer created
    result_url: Optional[str] = None
    error: Optional[str] = None
    error_category: Optional[ErrorCategory] = None
    created_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def succeed(self, result_url: str) -> None:
        self.status = JobStatus.SUCCEEDED
        self.result_url = result_url
        self.finished_at = datetime.now()

    def fail(self, error: str, category: ErrorCategory) -> None:
        self.status = JobStatus.FAILED
        self.error = error
        self.error_category = category
        self.finished_at = datetime.now()

    @classmethod
    def for_operation(cls, operation: OperationKind, session_id: str, prompt: str = "") -> "GenerationJob":
        return cls(
            operation=operation,
            kind=OPERATION_CONFIG[operation]["kind"],
            session_id=session_id,
            prompt=prompt,
        )
