"""
History Manager
===============

Undo/redo over full layer-collection snapshots.
"""

import logging
from typing import List

from ..errors import NoOpError
from ..models.layer_models import LayerSnapshot

logger = logging.getLogger(__name__)


class HistoryManager:
    """Two-stack undo/redo state machine.

    ``_undo`` is oldest first. ``_redo`` keeps the most recently undone
    state at the front.
    """

    def __init__(self):
        self._undo: List[LayerSnapshot] = []
        self._redo: List[LayerSnapshot] = []

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def undo_depth(self) -> int:
        return len(self._undo)

    @property
    def redo_depth(self) -> int:
        return len(self._redo)

    def capture(self, snapshot: LayerSnapshot) -> None:
        """Record the state before a mutation. Invalidates any redo history."""
        self._undo.append(snapshot)
        self._redo.clear()

    def undo(self, current: LayerSnapshot) -> LayerSnapshot:
        if not self._undo:
            raise NoOpError("Nothing to undo")
        previous = self._undo.pop()
        self._redo.insert(0, current)
        logger.debug(f"[HISTORY] Undo -> undo={len(self._undo)} redo={len(self._redo)}")
        return previous

    def redo(self, current: LayerSnapshot) -> LayerSnapshot:
        if not self._redo:
            raise NoOpError("Nothing to redo")
        following = self._redo.pop(0)
        self._undo.append(current)
        logger.debug(f"[HISTORY] Redo -> undo={len(self._undo)} redo={len(self._redo)}")
        return following

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()
