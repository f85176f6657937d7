"""
Layer Store
===========

Canonical ordered collection of layers plus the selection.
Index 0 is the topmost layer.
"""

import logging
from typing import Any, List, Optional

from pydantic import ValidationError

from ..errors import LayerNotFoundError, StudioValidationError
from ..models.layer_models import (
    Layer, LayerSnapshot, UPDATABLE_ATTRIBUTES, find_background
)

logger = logging.getLogger(__name__)


class LayerStore:
    """Holds the current layer collection and the selected layer id.

    The store does not record history itself; ``EditSession`` captures a
    snapshot before calling any mutator here.
    """

    def __init__(self, layers: Optional[List[Layer]] = None, selected_id: Optional[str] = None):
        self._layers: LayerSnapshot = ()
        self.selected_id: Optional[str] = None
        for layer in layers or []:
            self.add_layer(layer, position=len(self._layers))
        if selected_id is not None:
            self.select(selected_id)
        elif self._layers:
            self.selected_id = self._layers[0].id

    @property
    def layers(self) -> LayerSnapshot:
        return self._layers

    def __len__(self) -> int:
        return len(self._layers)

    def __contains__(self, layer_id: str) -> bool:
        return any(layer.id == layer_id for layer in self._layers)

    def _index_of(self, layer_id: str) -> int:
        for index, layer in enumerate(self._layers):
            if layer.id == layer_id:
                return index
        raise LayerNotFoundError(layer_id)

    def get(self, layer_id: str) -> Layer:
        return self._layers[self._index_of(layer_id)]

    @property
    def selected_layer(self) -> Optional[Layer]:
        if self.selected_id is None or self.selected_id not in self:
            return None
        return self.get(self.selected_id)

    @property
    def background_layer(self) -> Optional[Layer]:
        return find_background(self._layers)

    def add_layer(self, layer: Layer, position: int = 0) -> Layer:
        """Insert a layer; position 0 places it on top."""
        if layer.id in self:
            raise StudioValidationError(f"Layer id already in use: {layer.id}", field="id")
        position = max(0, min(position, len(self._layers)))
        self._layers = self._layers[:position] + (layer,) + self._layers[position:]
        logger.info(f"[LAYER-STORE] Added {layer.kind.value} layer {layer.id} at {position}")
        return layer

    def remove_layer(self, layer_id: str) -> Layer:
        """Delete a layer. Removing the selected layer selects the new topmost one."""
        index = self._index_of(layer_id)
        removed = self._layers[index]
        self._layers = self._layers[:index] + self._layers[index + 1:]
        if self.selected_id == layer_id:
            self.selected_id = self._layers[0].id if self._layers else None
        logger.info(f"[LAYER-STORE] Removed layer {layer_id}, selected={self.selected_id}")
        return removed

    def update_layer(self, layer_id: str, attribute: str, value: Any) -> Layer:
        return self.update_attributes(layer_id, **{attribute: value})

    def update_attributes(self, layer_id: str, **changes: Any) -> Layer:
        """Replace attributes of one layer. Opacity and scale are clamped."""
        unknown = set(changes) - UPDATABLE_ATTRIBUTES
        if unknown:
            raise StudioValidationError(
                f"Cannot update layer attribute(s): {', '.join(sorted(unknown))}",
                field=sorted(unknown)[0],
            )
        index = self._index_of(layer_id)
        try:
            updated = self._layers[index].with_changes(**changes)
        except ValidationError as e:
            raise StudioValidationError(f"Invalid layer attribute value: {e.errors()[0]['msg']}")
        self._layers = self._layers[:index] + (updated,) + self._layers[index + 1:]
        return updated

    def reorder(self, layer_id: str, new_index: int) -> None:
        index = self._index_of(layer_id)
        layer = self._layers[index]
        rest = self._layers[:index] + self._layers[index + 1:]
        new_index = max(0, min(new_index, len(rest)))
        self._layers = rest[:new_index] + (layer,) + rest[new_index:]

    def select(self, layer_id: Optional[str]) -> None:
        if layer_id is not None:
            self._index_of(layer_id)
        self.selected_id = layer_id

    def snapshot(self) -> LayerSnapshot:
        # Tuples of frozen layers are already immutable
        return self._layers

    def restore(self, snapshot: LayerSnapshot) -> None:
        """Install a snapshot wholesale. Only undo/redo should call this."""
        self._layers = tuple(snapshot)
        if self.selected_id is None or self.selected_id not in self:
            self.selected_id = self._layers[0].id if self._layers else None

    def to_dict(self) -> dict:
        return {
            "layers": [layer.model_dump(mode="json") for layer in self._layers],
            "selected_layer_id": self.selected_id,
            "background_layer_id": self.background_layer.id if self._layers else None,
        }
