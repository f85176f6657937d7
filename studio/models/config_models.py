"""
Configuration for Layer Studio
==============================

Runtime settings, read from the environment with sensible defaults.
"""

import os
from pathlib import Path

from pydantic import BaseModel

API_BASE_URL = os.getenv("STUDIO_API_URL", "https://api.jmyps.com")


class StudioConfig(BaseModel):
    """Configuration for the edit-session engine and its service clients."""
    api_base_url: str = API_BASE_URL
    api_key: str = ""
    image_model: str = "nano-banana"
    vision_model: str = "gemini-2.5-flash-image-preview"
    video_model: str = "sora-2"
    request_timeout: float = 120.0
    # Video polling: 120 attempts at 5s is ten minutes
    poll_interval_seconds: float = 5.0
    max_poll_attempts: int = 120
    # Mask brush, sized against an 800px wide reference canvas
    brush_size: float = 30.0
    brush_reference_width: int = 800
    # History thumbnails
    thumbnail_max_size: int = 600
    thumbnail_quality: int = 60
    export_background: str = "#0f172a"
    data_dir: Path = Path("studio_data")

    @property
    def cache_dir(self) -> Path:
        return self.data_dir / "cache"

    @property
    def history_file(self) -> Path:
        return self.data_dir / "history.json"

    @classmethod
    def from_env(cls) -> "StudioConfig":
        return cls(
            api_base_url=os.getenv("STUDIO_API_URL", API_BASE_URL),
            api_key=os.getenv("STUDIO_API_KEY", ""),
            image_model=os.getenv("STUDIO_IMAGE_MODEL", "nano-banana"),
            vision_model=os.getenv("STUDIO_VISION_MODEL", "gemini-2.5-flash-image-preview"),
            video_model=os.getenv("STUDIO_VIDEO_MODEL", "sora-2"),
            request_timeout=float(os.getenv("STUDIO_REQUEST_TIMEOUT", "120")),
            poll_interval_seconds=float(os.getenv("STUDIO_POLL_INTERVAL", "5")),
            max_poll_attempts=int(os.getenv("STUDIO_MAX_POLL_ATTEMPTS", "120")),
            data_dir=Path(os.getenv("STUDIO_DATA_DIR", "studio_data")),
        )
