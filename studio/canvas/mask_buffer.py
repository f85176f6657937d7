"""
Mask Buffer
===========

Captures freehand strokes at export resolution and turns them into the
binary mask sent with inpainting requests (white = edit, black = keep).
"""

import base64
import io
import logging
from typing import Optional, Tuple

from PIL import Image, ImageDraw

logger = logging.getLogger(__name__)

Point = Tuple[float, float]
RGBA = Tuple[int, int, int, int]

DEFAULT_BRUSH_COLOR: RGBA = (255, 50, 50, 153)
REFERENCE_WIDTH = 800

# Any painted pixel becomes white, everything else black
_BINARIZE_LUT = [0] + [255] * 255


class MaskBuffer:
    """Stroke buffer whose pixel size always equals the export resolution."""

    def __init__(
        self,
        width: int,
        height: int,
        brush_size: float = 30.0,
        color: RGBA = DEFAULT_BRUSH_COLOR,
        reference_width: int = REFERENCE_WIDTH,
    ):
        self.reference_width = reference_width
        self.brush_size = brush_size
        self.color = color
        self._last_point: Optional[Point] = None
        self._buffer = Image.new("RGBA", (width, height), (0, 0, 0, 0))

    @property
    def size(self) -> Tuple[int, int]:
        return self._buffer.size

    @property
    def color(self) -> RGBA:
        return self._color

    @color.setter
    def color(self, value: RGBA) -> None:
        if len(value) != 4 or value[3] <= 0:
            raise ValueError("Brush color needs a non-zero alpha channel")
        self._color = tuple(int(c) for c in value)

    @property
    def stroke_width(self) -> float:
        """Brush width in buffer pixels, so the apparent size ignores resolution."""
        return self.brush_size * (self._buffer.width / self.reference_width)

    @property
    def is_drawing(self) -> bool:
        return self._last_point is not None

    @property
    def has_paint(self) -> bool:
        return self._buffer.getchannel("A").getbbox() is not None

    def begin_stroke(self, point: Point) -> None:
        self._last_point = (float(point[0]), float(point[1]))

    def extend_stroke(self, point: Point) -> None:
        if self._last_point is None:
            return
        start = self._last_point
        end = (float(point[0]), float(point[1]))
        width = self.stroke_width
        radius = width / 2
        draw = ImageDraw.Draw(self._buffer)
        draw.line([start, end], fill=self._color, width=max(1, round(width)))
        # Round caps at both ends also give round joins between segments
        for x, y in (start, end):
            draw.ellipse([x - radius, y - radius, x + radius, y + radius], fill=self._color)
        self._last_point = end

    def end_stroke(self) -> None:
        self._last_point = None

    def clear(self) -> None:
        self._last_point = None
        self._buffer = Image.new("RGBA", self._buffer.size, (0, 0, 0, 0))

    def resize(self, width: int, height: int) -> None:
        """Reallocate for a new export resolution. Existing strokes are dropped."""
        if (width, height) != self._buffer.size:
            logger.info(f"[MASK] Resizing buffer {self._buffer.size} -> {(width, height)}")
        self._last_point = None
        self._buffer = Image.new("RGBA", (width, height), (0, 0, 0, 0))

    def strokes(self) -> Image.Image:
        """Copy of the raw stroke buffer, for on-screen preview."""
        return self._buffer.copy()

    def binarize(self) -> Optional[Image.Image]:
        """Opaque black/white mask, or None when nothing has been painted."""
        painted = self._buffer.getchannel("A").point(_BINARIZE_LUT)
        if painted.getbbox() is None:
            return None
        opaque = Image.new("L", painted.size, 255)
        return Image.merge("RGBA", (painted, painted, painted, opaque))

    def encode(self) -> Optional[str]:
        """Base64 PNG of the binary mask, or None when the buffer is empty."""
        mask = self.binarize()
        if mask is None:
            return None
        out = io.BytesIO()
        mask.save(out, format="PNG")
        return base64.b64encode(out.getvalue()).decode("ascii")
