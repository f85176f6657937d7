"""
Media Loader
============

Resolves a layer source reference into a decoded still raster.

Supported sources:
- data URLs (``data:image/png;base64,...`` / ``data:video/mp4;base64,...``)
- http(s) URLs, fetched with aiohttp
- local file paths

Video sources contribute a single representative frame captured near the
start of playback.
"""

import asyncio
import base64
import binascii
import hashlib
import io
import logging
import os
import ssl
import tempfile
from collections import OrderedDict
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import urlparse

import aiohttp
import certifi
import cv2
from PIL import Image, UnidentifiedImageError

from ..errors import MediaLoadError
from ..models.layer_models import Layer

logger = logging.getLogger(__name__)

VIDEO_FRAME_SECONDS = 0.1
FRAME_CACHE_SIZE = 32

_VIDEO_SUFFIXES = {
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "video/quicktime": ".mov",
    "video/x-msvideo": ".avi",
}


def decode_data_url(url: str) -> Tuple[str, bytes]:
    """Split a base64 data URL into (mime type, payload bytes)."""
    header, _, payload = url.partition(",")
    if not header.startswith("data:") or ";base64" not in header:
        raise MediaLoadError(url, "not a base64 data URL")
    mime = header[5:].split(";")[0] or "application/octet-stream"
    try:
        return mime, base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MediaLoadError(url, f"invalid base64 payload ({e})")


def image_to_base64(image: Image.Image, fmt: str = "PNG", **save_kwargs) -> str:
    out = io.BytesIO()
    image.save(out, format=fmt, **save_kwargs)
    return base64.b64encode(out.getvalue()).decode("ascii")


def image_to_data_url(image: Image.Image, fmt: str = "PNG", **save_kwargs) -> str:
    mime = "image/jpeg" if fmt.upper() in ("JPEG", "JPG") else f"image/{fmt.lower()}"
    return f"data:{mime};base64,{image_to_base64(image, fmt, **save_kwargs)}"


def decode_image(data: bytes, source: str = "<bytes>") -> Image.Image:
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.convert("RGBA")
    except (UnidentifiedImageError, OSError) as e:
        raise MediaLoadError(source, f"cannot decode image ({e})")


def extract_video_frame(path: str, seconds: float = VIDEO_FRAME_SECONDS) -> Image.Image:
    """Grab one frame near the start of a video file (blocking)."""
    cap = cv2.VideoCapture(path)
    try:
        if not cap.isOpened():
            raise MediaLoadError(path, "cannot open video")
        cap.set(cv2.CAP_PROP_POS_MSEC, seconds * 1000.0)
        ok, frame = cap.read()
        if not ok or frame is None:
            # Very short clips: fall back to the first decodable frame
            cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
            ok, frame = cap.read()
        if not ok or frame is None:
            raise MediaLoadError(path, "no decodable frame")
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        return Image.fromarray(rgb).convert("RGBA")
    finally:
        cap.release()


class MediaLoader:
    """Fetches and decodes layer sources, caching decoded stills by source."""

    def __init__(self, timeout: float = 60.0, cache_size: int = FRAME_CACHE_SIZE):
        self.timeout = timeout
        self.cache_size = cache_size
        self._session: Optional[aiohttp.ClientSession] = None
        self._frames: "OrderedDict[str, Image.Image]" = OrderedDict()

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            ssl_context = ssl.create_default_context(cafile=certifi.where())
            connector = aiohttp.TCPConnector(ssl=ssl_context)
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                connector=connector
            )
        return self._session

    async def close(self):
        """Close the client session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def fetch_bytes(self, source: str) -> bytes:
        """Raw bytes of a source, whatever its scheme."""
        if source.startswith("data:"):
            return decode_data_url(source)[1]

        if source.startswith(("http://", "https://")):
            try:
                session = await self._get_session()
                async with session.get(source) as resp:
                    if resp.status != 200:
                        raise MediaLoadError(source, f"HTTP {resp.status}")
                    return await resp.read()
            except aiohttp.ClientError as e:
                raise MediaLoadError(source, f"connection error ({e})")
            except asyncio.TimeoutError:
                raise MediaLoadError(source, "request timed out")

        path = Path(source)
        if not path.is_file():
            raise MediaLoadError(source, "file not found")
        return path.read_bytes()

    def _cache_key(self, source: str) -> str:
        return hashlib.sha1(source.encode("utf-8")).hexdigest()

    def _remember(self, key: str, image: Image.Image) -> Image.Image:
        self._frames[key] = image
        self._frames.move_to_end(key)
        while len(self._frames) > self.cache_size:
            self._frames.popitem(last=False)
        return image

    async def load_image(self, source: str) -> Image.Image:
        """Decoded RGBA still for an image source. Treat the result as read-only."""
        key = self._cache_key(source)
        if key in self._frames:
            self._frames.move_to_end(key)
            return self._frames[key]
        data = await self.fetch_bytes(source)
        return self._remember(key, decode_image(data, source))

    async def load_video_frame(self, source: str) -> Image.Image:
        """Representative still of a video source. Treat the result as read-only."""
        key = self._cache_key(f"video:{source}")
        if key in self._frames:
            self._frames.move_to_end(key)
            return self._frames[key]

        if not source.startswith(("data:", "http://", "https://")):
            frame = await asyncio.to_thread(extract_video_frame, source)
            return self._remember(key, frame)

        if source.startswith("data:"):
            mime, data = decode_data_url(source)
            suffix = _VIDEO_SUFFIXES.get(mime, ".mp4")
        else:
            data = await self.fetch_bytes(source)
            suffix = os.path.splitext(urlparse(source).path)[1] or ".mp4"

        fd, tmp_path = tempfile.mkstemp(suffix=suffix)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            frame = await asyncio.to_thread(extract_video_frame, tmp_path)
        finally:
            os.unlink(tmp_path)
        logger.debug(f"[MEDIA-LOADER] Captured video frame {frame.size}")
        return self._remember(key, frame)

    async def load_frame(self, layer: Layer) -> Image.Image:
        """Still raster for any layer kind."""
        if layer.is_video:
            return await self.load_video_frame(layer.url)
        return await self.load_image(layer.url)

    async def to_base64_png(self, source: str) -> str:
        """Re-encode an image source as base64 PNG for submission."""
        image = await self.load_image(source)
        return image_to_base64(image)
