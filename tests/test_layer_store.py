"""
Layer Store and Layer model tests.
"""

import pytest

from studio.canvas.layer_store import LayerStore
from studio.errors import LayerNotFoundError, StudioValidationError
from studio.models.layer_models import BlendMode, Layer, LayerKind, find_background, get_target_dimensions

from conftest import make_layer


class TestLayerModel:

    def test_opacity_is_clamped(self):
        assert make_layer("a", opacity=150).opacity == 100
        assert make_layer("a", opacity=-5).opacity == 0

    def test_scale_is_clamped(self):
        assert make_layer("a", scale=0.01).scale == pytest.approx(0.1)
        assert make_layer("a", scale=9).scale == 5

    def test_with_changes_keeps_original(self):
        layer = make_layer("a")
        moved = layer.with_changes(x=12, y=-4)
        assert (layer.x, layer.y) == (0, 0)
        assert (moved.x, moved.y) == (12, -4)
        assert moved.id == layer.id

    def test_create_assigns_prefixed_id(self):
        layer = Layer.create("https://example.com/a.png", prefix="upload")
        assert layer.id.startswith("upload-")
        assert layer.kind == LayerKind.OVERLAY

    def test_unknown_aspect_ratio_falls_back_to_square(self):
        assert get_target_dimensions("16:9") == (1408, 792)
        assert get_target_dimensions("2:1") == (1024, 1024)


class TestBackgroundRule:

    def test_first_background_kind_wins(self):
        layers = (make_layer("top"), make_layer("bg1", LayerKind.BACKGROUND), make_layer("bg2", LayerKind.BACKGROUND))
        assert find_background(layers).id == "bg1"

    def test_last_layer_without_background_kind(self):
        layers = (make_layer("top"), make_layer("bottom"))
        assert find_background(layers).id == "bottom"

    def test_empty_collection(self):
        assert find_background(()) is None


class TestLayerStore:

    def test_add_places_on_top(self):
        store = LayerStore([make_layer("a")])
        store.add_layer(make_layer("b"))
        assert [layer.id for layer in store.layers] == ["b", "a"]

    def test_duplicate_id_rejected(self):
        store = LayerStore([make_layer("a")])
        with pytest.raises(StudioValidationError):
            store.add_layer(make_layer("a"))
        assert len(store) == 1

    def test_initial_selection_is_topmost(self):
        store = LayerStore([make_layer("a"), make_layer("b")])
        assert store.selected_id == "a"

    def test_deleting_selected_moves_selection_to_new_top(self):
        store = LayerStore([make_layer("a"), make_layer("b"), make_layer("c")], selected_id="a")
        store.remove_layer("a")
        assert store.selected_id == "b"

    def test_deleting_last_layer_clears_selection(self):
        store = LayerStore([make_layer("a")])
        store.remove_layer("a")
        assert store.selected_id is None
        assert store.selected_layer is None

    def test_deleting_unselected_keeps_selection(self):
        store = LayerStore([make_layer("a"), make_layer("b")], selected_id="b")
        store.remove_layer("a")
        assert store.selected_id == "b"

    def test_unknown_id(self):
        store = LayerStore()
        with pytest.raises(LayerNotFoundError):
            store.remove_layer("missing")
        with pytest.raises(LayerNotFoundError):
            store.select("missing")

    def test_update_clamps_and_coerces(self):
        store = LayerStore([make_layer("a")])
        updated = store.update_layer("a", "opacity", 150)
        assert updated.opacity == 100
        updated = store.update_layer("a", "blend_mode", "multiply")
        assert updated.blend_mode == BlendMode.MULTIPLY

    def test_update_rejects_unknown_attribute(self):
        store = LayerStore([make_layer("a")])
        with pytest.raises(StudioValidationError):
            store.update_layer("a", "id", "b")

    def test_update_rejects_bad_value(self):
        store = LayerStore([make_layer("a")])
        before = store.snapshot()
        with pytest.raises(StudioValidationError):
            store.update_layer("a", "blend_mode", "dissolve")
        with pytest.raises(StudioValidationError):
            store.update_layer("a", "opacity", None)
        assert store.snapshot() == before

    def test_update_shares_unchanged_layers(self):
        store = LayerStore([make_layer("a"), make_layer("b")])
        before = store.snapshot()
        store.update_layer("a", "visible", False)
        assert store.snapshot()[1] is before[1]
        assert before[0].visible is True

    def test_reorder(self):
        store = LayerStore([make_layer("a"), make_layer("b"), make_layer("c")])
        store.reorder("a", 2)
        assert [layer.id for layer in store.layers] == ["b", "c", "a"]
        store.reorder("a", -3)
        assert [layer.id for layer in store.layers] == ["a", "b", "c"]

    def test_restore_fixes_stale_selection(self):
        store = LayerStore([make_layer("a"), make_layer("b")])
        snapshot = store.snapshot()
        store.add_layer(make_layer("c"))
        store.select("c")
        store.restore(snapshot)
        assert store.selected_id == "a"

    def test_background_layer(self):
        store = LayerStore([make_layer("a"), make_layer("bg", LayerKind.BACKGROUND), make_layer("z")])
        assert store.background_layer.id == "bg"
        assert store.to_dict()["background_layer_id"] == "bg"
