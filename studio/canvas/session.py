"""
Edit Session
============

Explicit context object for one editor: the layer store, its undo history,
the mask buffer, the active mode and the export settings. Every collection
mutation goes through here so it is recorded for undo.
"""

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..errors import SessionNotFoundError, StudioValidationError
from ..models.layer_models import (
    ASPECT_RATIOS, DEFAULT_ASPECT_RATIO, DEFAULT_VIDEO_DURATION, GESTURE_ATTRIBUTES,
    VIDEO_ASPECT_RATIOS, VIDEO_DURATIONS, EditMode, Layer, LayerKind, LayerSnapshot,
    get_target_dimensions,
)
from .history_manager import HistoryManager
from .layer_store import LayerStore
from .mask_buffer import MaskBuffer, Point
from .record_store import RecordStore

logger = logging.getLogger(__name__)


class EditSession:
    """State of one local editing session."""

    def __init__(
        self,
        session_id: Optional[str] = None,
        layers: Optional[List[Layer]] = None,
        aspect_ratio: str = DEFAULT_ASPECT_RATIO,
        mode: EditMode = EditMode.GENERATE,
        brush_size: float = 30.0,
        brush_reference_width: int = 800,
    ):
        if aspect_ratio not in ASPECT_RATIOS:
            raise StudioValidationError(f"Unsupported aspect ratio: {aspect_ratio}", field="aspect_ratio")
        self.id = session_id or str(uuid.uuid4())
        self.created_at = datetime.now()
        self.updated_at: Optional[datetime] = None
        self.mode = mode
        self.aspect_ratio = aspect_ratio
        self.video_duration = DEFAULT_VIDEO_DURATION
        self.store = LayerStore(layers)
        self.history = HistoryManager()
        width, height = self.target_dimensions
        self.mask = MaskBuffer(width, height, brush_size=brush_size, reference_width=brush_reference_width)
        self._gesture_start: Optional[LayerSnapshot] = None
        self._gesture_layer_id: Optional[str] = None
        self._gesture_split = False

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------
    @property
    def target_dimensions(self):
        return get_target_dimensions(self.aspect_ratio)

    @property
    def layers(self) -> LayerSnapshot:
        return self.store.layers

    @property
    def selected_layer(self) -> Optional[Layer]:
        return self.store.selected_layer

    @property
    def gesture_active(self) -> bool:
        return self._gesture_start is not None

    def _touch(self) -> None:
        self.updated_at = datetime.now()

    @contextmanager
    def _recorded(self):
        """Capture the pre-mutation snapshot once the mutation succeeds.

        A mutation landing mid-gesture (a job result, say) first commits the
        gesture so far, then the gesture continues from the new state.
        """
        before = self.store.snapshot()
        yield
        if self.gesture_active:
            if self._gesture_start != before:
                self.history.capture(self._gesture_start)
            self.history.capture(before)
            self._gesture_start = self.store.snapshot()
            self._gesture_split = True
        else:
            self.history.capture(before)
        self._touch()

    def _set_selection(self, layer_id: Optional[str]) -> None:
        previous = self.store.selected_id
        self.store.select(layer_id)
        if previous != layer_id:
            self.mask.clear()

    def _sync_selection_change(self, previous: Optional[str]) -> None:
        if self.store.selected_id != previous:
            self.mask.clear()

    # ------------------------------------------------------------------
    # Recorded layer mutations
    # ------------------------------------------------------------------
    def add_layer(self, layer: Layer, position: int = 0, select: bool = True) -> Layer:
        with self._recorded():
            self.store.add_layer(layer, position)
        if select:
            self._set_selection(layer.id)
        return layer

    def remove_layer(self, layer_id: str) -> Layer:
        previous = self.store.selected_id
        with self._recorded():
            removed = self.store.remove_layer(layer_id)
        self._sync_selection_change(previous)
        return removed

    def update_layer(self, layer_id: str, attribute: str, value: Any) -> Layer:
        return self.update_attributes(layer_id, **{attribute: value})

    def update_attributes(self, layer_id: str, **changes: Any) -> Layer:
        with self._recorded():
            updated = self.store.update_attributes(layer_id, **changes)
        return updated

    def reorder_layer(self, layer_id: str, new_index: int) -> None:
        with self._recorded():
            self.store.reorder(layer_id, new_index)

    def select_layer(self, layer_id: Optional[str]) -> None:
        self._set_selection(layer_id)

    # ------------------------------------------------------------------
    # Gestures: drag / wheel-zoom / slider sweeps
    # ------------------------------------------------------------------
    def begin_gesture(self, layer_id: str) -> None:
        """Start a preview gesture; nothing is recorded until ``end_gesture``."""
        if self.gesture_active:
            raise StudioValidationError("A gesture is already in progress")
        self.store.get(layer_id)
        self._gesture_start = self.store.snapshot()
        self._gesture_layer_id = layer_id
        self._gesture_split = False

    def preview_layer(self, layer_id: str, **changes: Any) -> Layer:
        """Apply an intermediate gesture frame without touching history."""
        if not self.gesture_active:
            raise StudioValidationError("No gesture in progress")
        if layer_id != self._gesture_layer_id:
            raise StudioValidationError("Gesture targets a different layer", field="layer_id")
        unknown = set(changes) - GESTURE_ATTRIBUTES
        if unknown:
            raise StudioValidationError(
                f"Not a gesture attribute: {', '.join(sorted(unknown))}", field=sorted(unknown)[0]
            )
        layer = self.store.get(layer_id)
        if layer.kind == LayerKind.BACKGROUND and changes.keys() & {"x", "y", "scale"}:
            raise StudioValidationError("Background layers cannot be moved or scaled")
        return self.store.update_attributes(layer_id, **changes)

    def end_gesture(self) -> None:
        """Finish the gesture with exactly one history capture.

        If another mutation already committed part of the gesture, only the
        remainder is captured, and nothing when there is no remainder.
        """
        if not self.gesture_active:
            raise StudioValidationError("No gesture in progress")
        if not self._gesture_split or self.store.snapshot() != self._gesture_start:
            self.history.capture(self._gesture_start)
        self._gesture_start = None
        self._gesture_layer_id = None
        self._gesture_split = False
        self._touch()

    # ------------------------------------------------------------------
    # Undo / redo
    # ------------------------------------------------------------------
    def undo(self) -> LayerSnapshot:
        if self.gesture_active:
            raise StudioValidationError("Finish the current gesture before undoing")
        previous = self.store.selected_id
        self.store.restore(self.history.undo(self.store.snapshot()))
        self._sync_selection_change(previous)
        self._touch()
        return self.store.layers

    def redo(self) -> LayerSnapshot:
        if self.gesture_active:
            raise StudioValidationError("Finish the current gesture before redoing")
        previous = self.store.selected_id
        self.store.restore(self.history.redo(self.store.snapshot()))
        self._sync_selection_change(previous)
        self._touch()
        return self.store.layers

    # ------------------------------------------------------------------
    # Mode and export settings
    # ------------------------------------------------------------------
    def set_mode(self, mode: EditMode) -> None:
        mode = EditMode(mode)
        if mode != self.mode:
            self.mask.clear()
        self.mode = mode
        if mode == EditMode.VIDEO and self.aspect_ratio not in VIDEO_ASPECT_RATIOS:
            self.set_aspect_ratio(VIDEO_ASPECT_RATIOS[0])

    def set_aspect_ratio(self, aspect_ratio: str) -> None:
        if aspect_ratio not in ASPECT_RATIOS:
            raise StudioValidationError(f"Unsupported aspect ratio: {aspect_ratio}", field="aspect_ratio")
        if self.mode == EditMode.VIDEO and aspect_ratio not in VIDEO_ASPECT_RATIOS:
            raise StudioValidationError(
                f"Video supports only {', '.join(VIDEO_ASPECT_RATIOS)}", field="aspect_ratio"
            )
        self.aspect_ratio = aspect_ratio
        self.mask.resize(*self.target_dimensions)

    def set_video_duration(self, seconds: int) -> None:
        if seconds not in VIDEO_DURATIONS:
            raise StudioValidationError(
                f"Unsupported video duration: {seconds}", field="video_duration"
            )
        self.video_duration = seconds

    # ------------------------------------------------------------------
    # Mask strokes (mask mode only)
    # ------------------------------------------------------------------
    def _require_mask_mode(self) -> None:
        if self.mode != EditMode.MASK:
            raise StudioValidationError("Switch to mask mode to paint a mask", field="mode")

    def begin_stroke(self, point: Point) -> None:
        self._require_mask_mode()
        self.mask.begin_stroke(point)

    def extend_stroke(self, point: Point) -> None:
        self._require_mask_mode()
        self.mask.extend_stroke(point)

    def end_stroke(self) -> None:
        self.mask.end_stroke()

    # ------------------------------------------------------------------
    # Job results: scoped writes, never whole-collection overwrites
    # ------------------------------------------------------------------
    def insert_result_layer(self, layer: Layer) -> Layer:
        """Put a generated layer on top and select it."""
        return self.add_layer(layer, position=0, select=True)

    def add_history_layer(self, url: str, is_video: bool = False) -> Layer:
        """Promote a History Record to a new selected layer on top."""
        kind = LayerKind.VIDEO if is_video else LayerKind.OVERLAY
        layer = Layer.create(url, kind=kind, name="History item", prefix="history")
        return self.insert_result_layer(layer)

    def replace_layer_source(self, layer_id: str, url: str) -> Optional[Layer]:
        """Swap one layer's source. Returns None if the layer no longer exists."""
        if layer_id not in self.store:
            logger.warning(f"[SESSION] Result target {layer_id} was deleted; result not applied")
            return None
        return self.update_attributes(layer_id, url=url)

    def close(self) -> None:
        self.mask.clear()
        self.history.clear()
        self._gesture_start = None
        self._gesture_layer_id = None
        self._gesture_split = False

    def to_dict(self) -> Dict[str, Any]:
        width, height = self.target_dimensions
        state = self.store.to_dict()
        state.update({
            "session_id": self.id,
            "mode": self.mode.value,
            "aspect_ratio": self.aspect_ratio,
            "width": width,
            "height": height,
            "video_duration": self.video_duration,
            "can_undo": self.history.can_undo,
            "can_redo": self.history.can_redo,
            "gesture_active": self.gesture_active,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        })
        return state


class SessionManager:
    """Creates, looks up and tears down edit sessions."""

    def __init__(self, record_store: Optional[RecordStore] = None, brush_size: float = 30.0,
                 brush_reference_width: int = 800):
        self.record_store = record_store
        self.brush_size = brush_size
        self.brush_reference_width = brush_reference_width
        self._sessions: Dict[str, EditSession] = {}
        logger.info("[SESSION-MANAGER] Initialized")

    def create_session(
        self,
        session_id: Optional[str] = None,
        layers: Optional[List[Layer]] = None,
        aspect_ratio: str = DEFAULT_ASPECT_RATIO,
    ) -> EditSession:
        if session_id is not None and session_id in self._sessions:
            return self._sessions[session_id]
        session = EditSession(
            session_id=session_id,
            layers=layers,
            aspect_ratio=aspect_ratio,
            brush_size=self.brush_size,
            brush_reference_width=self.brush_reference_width,
        )
        self._sessions[session.id] = session
        logger.info(f"[SESSION-MANAGER] Created session {session.id}")
        return session

    def get_session(self, session_id: str) -> EditSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def close_session(self, session_id: str) -> None:
        """Tear down a session and flush persisted history."""
        session = self.get_session(session_id)
        session.close()
        del self._sessions[session_id]
        if self.record_store is not None:
            self.record_store.flush()
        logger.info(f"[SESSION-MANAGER] Closed session {session_id}")

    def close_all(self) -> None:
        for session_id in list(self._sessions):
            self.close_session(session_id)

    def __len__(self) -> int:
        return len(self._sessions)
