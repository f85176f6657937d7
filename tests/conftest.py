"""
Shared fixtures for Layer Studio tests.
"""

import base64
import io
from typing import Tuple

import pytest
from PIL import Image

from studio.canvas.record_store import RecordStore
from studio.canvas.session import EditSession
from studio.models.config_models import StudioConfig
from studio.models.layer_models import Layer, LayerKind
from studio.services.asset_cache import AssetCache

API_BASE = "https://api.test"


def png_bytes(size: Tuple[int, int] = (8, 8), color=(255, 0, 0, 255)) -> bytes:
    out = io.BytesIO()
    Image.new("RGBA", size, color).save(out, format="PNG")
    return out.getvalue()


def png_data_url(size: Tuple[int, int] = (8, 8), color=(255, 0, 0, 255)) -> str:
    return "data:image/png;base64," + base64.b64encode(png_bytes(size, color)).decode("ascii")


def make_layer(layer_id: str, kind: LayerKind = LayerKind.OVERLAY, **attrs) -> Layer:
    attrs.setdefault("url", png_data_url())
    return Layer(id=layer_id, name=layer_id, kind=kind, **attrs)


@pytest.fixture
def config(tmp_path) -> StudioConfig:
    return StudioConfig(
        api_base_url=API_BASE,
        api_key="test-key",
        data_dir=tmp_path / "data",
        poll_interval_seconds=0.0,
        max_poll_attempts=5,
    )


@pytest.fixture
def record_store(config) -> RecordStore:
    return RecordStore(config.history_file, AssetCache(config.cache_dir))


@pytest.fixture
def session() -> EditSession:
    """Background at the bottom, one overlay on top (selected)."""
    return EditSession(
        session_id="test-session",
        layers=[
            make_layer("fg", url=png_data_url((4, 4), (0, 0, 255, 255))),
            make_layer("bg", kind=LayerKind.BACKGROUND, url=png_data_url((16, 16), (0, 255, 0, 255))),
        ],
    )
