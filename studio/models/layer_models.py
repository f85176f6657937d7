"""
Layer Models for Layer Studio
=============================

Models for layers, layer snapshots, editing modes and export resolutions.
"""

import math
import uuid
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

OPACITY_RANGE = (0.0, 100.0)
SCALE_RANGE = (0.1, 5.0)


class LayerKind(str, Enum):
    """Kind of layer. Background is always stretched to fill the canvas."""
    BACKGROUND = "background"
    OVERLAY = "overlay"
    VIDEO = "video"


class BlendMode(str, Enum):
    """Pixel-combination rule used when a layer is painted."""
    NORMAL = "normal"
    MULTIPLY = "multiply"
    SCREEN = "screen"
    OVERLAY = "overlay"
    DARKEN = "darken"
    LIGHTEN = "lighten"


class EditMode(str, Enum):
    """Active editing mode of a session."""
    GENERATE = "generate"
    COMPOSE = "compose"
    MASK = "mask"
    VIDEO = "video"


# Export resolution per aspect ratio (width, height)
ASPECT_RATIOS: Dict[str, Tuple[int, int]] = {
    "1:1": (1024, 1024),
    "16:9": (1408, 792),
    "9:16": (792, 1408),
    "4:3": (1152, 896),
    "3:4": (896, 1152),
}
DEFAULT_ASPECT_RATIO = "1:1"

VIDEO_ASPECT_RATIOS = ("16:9", "9:16")
VIDEO_DURATIONS = (10, 15)
DEFAULT_VIDEO_DURATION = 10

# Attributes a caller may change on an existing layer
UPDATABLE_ATTRIBUTES = frozenset(
    {"name", "visible", "opacity", "blend_mode", "x", "y", "scale", "url"}
)
# Attributes that may change during a drag / slider gesture
GESTURE_ATTRIBUTES = frozenset({"opacity", "x", "y", "scale"})


def get_target_dimensions(aspect_ratio: str) -> Tuple[int, int]:
    """Export resolution for an aspect ratio, falling back to 1:1."""
    return ASPECT_RATIOS.get(aspect_ratio, ASPECT_RATIOS[DEFAULT_ASPECT_RATIO])


def new_layer_id(prefix: str = "layer") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _as_float(value: Any, field: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{field} must be a number")


def _clamp(value: Any, bounds: Tuple[float, float], field: str) -> float:
    number = _as_float(value, field)
    if math.isnan(number):
        raise ValueError(f"{field} must be a number")
    low, high = bounds
    return max(low, min(high, number))


class Layer(BaseModel):
    """A single visual element in the composite.

    Layers are immutable; edits produce a new instance through
    ``with_changes`` so snapshots can share unchanged layers.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_layer_id)
    name: str = "Layer"
    kind: LayerKind = LayerKind.OVERLAY
    visible: bool = True
    opacity: float = 100.0
    blend_mode: BlendMode = BlendMode.NORMAL
    x: float = 0.0
    y: float = 0.0
    scale: float = 1.0
    url: str

    @field_validator("opacity", mode="before")
    @classmethod
    def _clamp_opacity(cls, value: Any) -> float:
        return _clamp(value, OPACITY_RANGE, "opacity")

    @field_validator("scale", mode="before")
    @classmethod
    def _clamp_scale(cls, value: Any) -> float:
        return _clamp(value, SCALE_RANGE, "scale")

    @field_validator("x", "y", mode="before")
    @classmethod
    def _finite_offset(cls, value: Any) -> float:
        number = _as_float(value, "offset")
        if not math.isfinite(number):
            raise ValueError("offset must be finite")
        return number

    @property
    def is_video(self) -> bool:
        return self.kind == LayerKind.VIDEO

    def with_changes(self, **changes: Any) -> "Layer":
        """Return a validated copy with the given attributes replaced."""
        data = self.model_dump()
        data.update(changes)
        return Layer.model_validate(data)

    @classmethod
    def create(
        cls,
        url: str,
        kind: LayerKind = LayerKind.OVERLAY,
        name: Optional[str] = None,
        prefix: str = "layer",
    ) -> "Layer":
        return cls(id=new_layer_id(prefix), url=url, kind=kind, name=name or kind.value.title())


# An immutable copy of a layer collection; index 0 is the topmost layer
LayerSnapshot = Tuple[Layer, ...]


def find_background(layers: LayerSnapshot) -> Optional[Layer]:
    """The layer treated as the background for export.

    First layer whose kind is background, otherwise the last (bottom-most) layer.
    """
    for layer in layers:
        if layer.kind == LayerKind.BACKGROUND:
            return layer
    return layers[-1] if layers else None
