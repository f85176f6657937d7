"""
History Record Store and Asset Cache tests.
"""

import base64
import io

import pytest
from PIL import Image

from studio.canvas.record_store import RecordStore, make_thumbnail
from studio.errors import RecordNotFoundError
from studio.models.job_models import OperationKind
from studio.services.asset_cache import AssetCache

from conftest import png_data_url


def decoded_size(data_url):
    data = base64.b64decode(data_url.split(",", 1)[1])
    with Image.open(io.BytesIO(data)) as img:
        return img.format, img.size


class TestAssetCache:

    def test_put_get_delete(self, tmp_path):
        cache = AssetCache(tmp_path / "cache")
        cache.put("abc-1", "data:image/png;base64,AAAA")
        assert "abc-1" in cache
        assert cache.get("abc-1") == "data:image/png;base64,AAAA"
        assert cache.delete("abc-1") is True
        assert cache.get("abc-1") is None
        assert cache.delete("abc-1") is False

    def test_rejects_path_like_keys(self, tmp_path):
        cache = AssetCache(tmp_path / "cache")
        with pytest.raises(ValueError):
            cache.put("../escape", "x")


class TestThumbnail:

    def test_large_image_is_downsampled_to_jpeg(self):
        thumb = make_thumbnail(png_data_url((1200, 800)), max_size=600, quality=60)
        assert thumb.startswith("data:image/jpeg;base64,")
        assert decoded_size(thumb) == ("JPEG", (600, 400))

    def test_remote_url_unchanged(self):
        assert make_thumbnail("https://cdn.example.com/a.png") == "https://cdn.example.com/a.png"

    def test_undecodable_data_kept(self):
        url = "data:image/png;base64,AAAA"
        assert make_thumbnail(url) == url


class TestRecordStore:

    def test_add_keeps_full_resolution_in_cache(self, record_store):
        full = png_data_url((1200, 1200))
        record = record_store.add(full, "a cat", OperationKind.GENERATE, "1:1")
        assert record.original_id == record.id
        assert record_store.cache.get(record.id) == full
        assert decoded_size(record.url)[1] == (600, 600)
        assert record_store.resolve_full(record) == full

    def test_newest_first_and_persisted(self, record_store, config):
        first = record_store.add("https://x/1.png", "one", OperationKind.GENERATE, "1:1")
        second = record_store.add("https://x/2.png", "two", OperationKind.COMPOSE, "1:1")
        assert [r.id for r in record_store.records] == [second.id, first.id]

        reloaded = RecordStore(config.history_file, AssetCache(config.cache_dir))
        assert [r.id for r in reloaded.records] == [second.id, first.id]
        assert reloaded.get(first.id).prompt == "one"

    def test_video_is_not_thumbnailed(self, record_store):
        record = record_store.add("https://x/v.mp4", "waves", OperationKind.VIDEO, "16:9")
        assert record.url == "https://x/v.mp4"
        assert record.is_video

    def test_delete_releases_cache_entry(self, record_store):
        record = record_store.add(png_data_url(), "p", OperationKind.MASK_EDIT, "1:1")
        record_store.delete(record.id)
        assert record.id not in record_store.cache
        with pytest.raises(RecordNotFoundError):
            record_store.get(record.id)

    def test_cache_miss_falls_back_to_stored_url(self, record_store):
        record = record_store.add("https://x/3.png", "p", OperationKind.GENERATE, "1:1")
        record_store.cache.delete(record.id)
        assert record_store.resolve_full(record) == "https://x/3.png"

    def test_corrupt_history_file_starts_empty(self, config):
        config.history_file.parent.mkdir(parents=True, exist_ok=True)
        config.history_file.write_text("{not json")
        store = RecordStore(config.history_file, AssetCache(config.cache_dir))
        assert store.records == []
