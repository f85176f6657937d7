"""
Asset Cache
===========

Local cache of full-resolution generation results, keyed by History Record id.
A miss or unreadable entry returns None so callers can fall back to the
record's stored (possibly down-sampled) url.
"""

import json
import logging
import re
import time
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class AssetCache:
    """One JSON file per asset: ``{"id", "data", "timestamp"}``."""

    def __init__(self, cache_dir: Path):
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"[ASSET-CACHE] Initialized with cache_dir={self.cache_dir}")

    def _path(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise ValueError(f"Invalid cache key: {key!r}")
        return self.cache_dir / f"{key}.json"

    def put(self, key: str, data: str) -> None:
        path = self._path(key)
        with open(path, "w") as f:
            json.dump({"id": key, "data": data, "timestamp": int(time.time() * 1000)}, f)
        logger.debug(f"[ASSET-CACHE] Stored {key} ({len(data)} chars)")

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path) as f:
                return json.load(f).get("data")
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"[ASSET-CACHE] Read failed for {key}: {e}")
            return None

    def delete(self, key: str) -> bool:
        path = self._path(key)
        if not path.exists():
            return False
        path.unlink()
        logger.debug(f"[ASSET-CACHE] Deleted {key}")
        return True

    def __contains__(self, key: str) -> bool:
        return self._path(key).exists()
