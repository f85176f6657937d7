"""
History Record Models for Layer Studio
======================================

Persisted records of completed generation results.
"""

import time
import uuid
from typing import Optional

from pydantic import BaseModel, Field

from .job_models import OperationKind


def _now_ms() -> int:
    return int(time.time() * 1000)


class HistoryRecord(BaseModel):
    """A completed generation result the user can browse and re-use."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    original_id: Optional[str] = None  # asset cache key of the full-resolution result
    url: str                           # possibly down-sampled locator
    thumbnail: str
    prompt: str = ""
    type: OperationKind = OperationKind.GENERATE
    aspect_ratio: str = "1:1"
    created_at: int = Field(default_factory=_now_ms)  # epoch milliseconds

    @property
    def is_video(self) -> bool:
        return self.type == OperationKind.VIDEO
