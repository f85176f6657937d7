"""
Compositor
==========

Deterministic rasterization of a layer stack into one surface.

Paint order is bottom-most first (reverse store order). The designated
background layer is stretched to the full frame; every other layer is
contain-fit, scaled by its own factor, centered and then offset.
"""

import asyncio
import io
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

from PIL import Image, ImageChops

from ..models.layer_models import BlendMode, Layer, find_background
from ..services.media_loader import MediaLoader, image_to_data_url

logger = logging.getLogger(__name__)

EXPORT_BACKGROUND = "#0f172a"
SNAPSHOT_BACKGROUND = "#000000"

# Per-channel combination against the backdrop; NORMAL is plain source-over
BLEND_OPERATIONS = {
    BlendMode.MULTIPLY: ImageChops.multiply,
    BlendMode.SCREEN: ImageChops.screen,
    BlendMode.OVERLAY: ImageChops.overlay,
    BlendMode.DARKEN: ImageChops.darker,
    BlendMode.LIGHTEN: ImageChops.lighter,
}


@dataclass(frozen=True)
class Placement:
    """Where a layer lands on the target frame, in whole pixels."""
    x: int
    y: int
    width: int
    height: int


def compute_placement(
    layer: Layer,
    source_size: Tuple[int, int],
    target_size: Tuple[int, int],
    is_background: bool,
) -> Placement:
    target_w, target_h = target_size
    if is_background:
        # Background never pans or zooms on its own
        return Placement(0, 0, target_w, target_h)

    source_w, source_h = source_size
    ratio = min(target_w / source_w, target_h / source_h) * layer.scale
    draw_w = source_w * ratio
    draw_h = source_h * ratio
    x = (target_w - draw_w) / 2 + layer.x
    y = (target_h - draw_h) / 2 + layer.y
    return Placement(round(x), round(y), round(draw_w), round(draw_h))


def _opacity_lut(opacity: float):
    factor = opacity / 100.0
    return [round(i * factor) for i in range(256)]


def paint_layer(canvas: Image.Image, source: Image.Image, layer: Layer, placement: Placement) -> Image.Image:
    """Paint one layer onto an opaque RGBA canvas and return the new canvas."""
    size = (placement.width, placement.height)
    resized = source if source.size == size else source.resize(size, Image.Resampling.BILINEAR)

    overlay = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
    overlay.paste(resized, (placement.x, placement.y))

    if layer.opacity < 100:
        overlay.putalpha(overlay.getchannel("A").point(_opacity_lut(layer.opacity)))

    operation = BLEND_OPERATIONS.get(layer.blend_mode)
    if operation is not None:
        # The canvas is always opaque, so the blend result simply replaces
        # the layer colour before source-over compositing
        blended = operation(canvas.convert("RGB"), overlay.convert("RGB"))
        blended.putalpha(overlay.getchannel("A"))
        overlay = blended

    return Image.alpha_composite(canvas, overlay)


def compose(
    layers: Sequence[Layer],
    frames: Dict[str, Image.Image],
    width: int,
    height: int,
    background: str = EXPORT_BACKGROUND,
    background_id: Optional[str] = None,
) -> Image.Image:
    """Composite already-decoded frames. Pure and deterministic.

    Layers missing from ``frames`` (failed to load) are skipped.
    ``background_id`` overrides which layer is stretched to fill the frame.
    """
    canvas = Image.new("RGBA", (width, height), background)
    canvas.putalpha(255)

    if background_id is None:
        designated = find_background(tuple(layers))
        background_id = designated.id if designated else None

    for layer in reversed(layers):
        if not layer.visible or layer.opacity <= 0:
            continue
        source = frames.get(layer.id)
        if source is None:
            continue
        if source.width == 0 or source.height == 0:
            continue
        placement = compute_placement(layer, source.size, (width, height), layer.id == background_id)
        if placement.width < 1 or placement.height < 1:
            continue
        canvas = paint_layer(canvas, source, layer, placement)

    return canvas.convert("RGB")


class Compositor:
    """Loads layer sources and renders the stack at a target resolution."""

    def __init__(self, loader: MediaLoader, background: str = EXPORT_BACKGROUND):
        self.loader = loader
        self.background = background

    async def load_frames(self, layers: Sequence[Layer]) -> Dict[str, Image.Image]:
        """Decode every visible layer. Failures are logged and left out."""
        visible = [layer for layer in layers if layer.visible]
        results = await asyncio.gather(
            *(self.loader.load_frame(layer) for layer in visible),
            return_exceptions=True,
        )
        frames: Dict[str, Image.Image] = {}
        for layer, result in zip(visible, results):
            if isinstance(result, Exception):
                logger.warning(f"[COMPOSITOR] Skipping layer {layer.id}: {result}")
                continue
            frames[layer.id] = result
        return frames

    async def render(
        self,
        layers: Sequence[Layer],
        width: int,
        height: int,
        background: Optional[str] = None,
        background_id: Optional[str] = None,
    ) -> Image.Image:
        frames = await self.load_frames(layers)
        image = compose(
            layers, frames, width, height,
            background=background or self.background,
            background_id=background_id,
        )
        logger.info(
            f"[COMPOSITOR] Rendered {len(frames)}/{len(layers)} layers at {width}x{height}"
        )
        return image

    async def render_png(self, layers: Sequence[Layer], width: int, height: int) -> bytes:
        image = await self.render(layers, width, height)
        out = io.BytesIO()
        image.save(out, format="PNG")
        return out.getvalue()

    async def render_data_url(self, layers: Sequence[Layer], width: int, height: int) -> str:
        return image_to_data_url(await self.render(layers, width, height))
