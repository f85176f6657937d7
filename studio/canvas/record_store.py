"""
History Record Store
====================

Persists completed generation results with JSON persistence. Full-resolution
assets live in the ``AssetCache``; the record itself keeps a down-sampled copy.
"""

import json
import logging
from pathlib import Path
from typing import List

from ..errors import MediaLoadError, RecordNotFoundError
from ..models.history_models import HistoryRecord
from ..models.job_models import OperationKind
from ..services.asset_cache import AssetCache
from ..services.media_loader import decode_data_url, decode_image, image_to_data_url

logger = logging.getLogger(__name__)


def make_thumbnail(url: str, max_size: int = 600, quality: int = 60) -> str:
    """Down-sample an inline image to a JPEG data URL.

    Remote URLs and non-image data are returned unchanged.
    """
    if not url.startswith("data:image"):
        return url
    try:
        _, data = decode_data_url(url)
        image = decode_image(data, "thumbnail")
    except MediaLoadError as e:
        logger.warning(f"[RECORD-STORE] Thumbnail failed, keeping original: {e.message}")
        return url
    image.thumbnail((max_size, max_size))
    return image_to_data_url(image.convert("RGB"), fmt="JPEG", quality=quality)


class RecordStore:
    """Newest-first list of History Records, saved to a JSON file."""

    def __init__(
        self,
        history_file: Path,
        cache: AssetCache,
        thumbnail_max_size: int = 600,
        thumbnail_quality: int = 60,
    ):
        self.history_file = Path(history_file)
        self.cache = cache
        self.thumbnail_max_size = thumbnail_max_size
        self.thumbnail_quality = thumbnail_quality
        self._records: List[HistoryRecord] = []
        self._load()

    def _load(self) -> None:
        if not self.history_file.exists():
            return
        try:
            with open(self.history_file) as f:
                self._records = [HistoryRecord(**item) for item in json.load(f)]
            logger.info(f"[RECORD-STORE] Loaded {len(self._records)} records")
        except (OSError, ValueError, TypeError) as e:
            logger.error(f"[RECORD-STORE] Failed to parse {self.history_file}: {e}")
            self._records = []

    def _save(self) -> None:
        self.history_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.history_file, "w") as f:
            json.dump([r.model_dump(mode="json") for r in self._records], f, indent=2)

    @property
    def records(self) -> List[HistoryRecord]:
        return list(self._records)

    def get(self, record_id: str) -> HistoryRecord:
        for record in self._records:
            if record.id == record_id:
                return record
        raise RecordNotFoundError(record_id)

    def add(self, url: str, prompt: str, kind: OperationKind, aspect_ratio: str) -> HistoryRecord:
        """Record a successful result. The full-resolution url goes to the cache."""
        record = HistoryRecord(url=url, thumbnail=url, prompt=prompt, type=kind, aspect_ratio=aspect_ratio)
        try:
            self.cache.put(record.id, url)
            record.original_id = record.id
        except OSError as e:
            logger.warning(f"[RECORD-STORE] Cache write failed for {record.id}: {e}")

        if not record.is_video:
            saved = make_thumbnail(url, self.thumbnail_max_size, self.thumbnail_quality)
            record.url = saved
            record.thumbnail = saved

        self._records.insert(0, record)
        self._save()
        logger.info(f"[RECORD-STORE] Added {kind.value} record {record.id}")
        return record

    def delete(self, record_id: str) -> HistoryRecord:
        """Remove a record and release its cached full-resolution asset."""
        record = self.get(record_id)
        if record.original_id:
            self.cache.delete(record.original_id)
        self._records = [r for r in self._records if r.id != record_id]
        self._save()
        logger.info(f"[RECORD-STORE] Deleted record {record_id}")
        return record

    def resolve_full(self, record: HistoryRecord) -> str:
        """Full-resolution locator, or the stored url on a cache miss."""
        if record.original_id:
            cached = self.cache.get(record.original_id)
            if cached:
                return cached
            logger.info(f"[RECORD-STORE] Cache miss for {record.id}, using stored url")
        return record.url

    def flush(self) -> None:
        self._save()
