"""
HTTP API smoke tests through the FastAPI app.
"""

import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from studio.server import app

from conftest import png_data_url


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("STUDIO_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("STUDIO_API_KEY", "")
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def session_id(client):
    response = client.post("/api/canvas/session", json={"aspect_ratio": "4:3"})
    assert response.status_code == 200
    sid = response.json()["session_id"]
    client.post(f"/api/layer/{sid}", json={
        "url": png_data_url((16, 16), (0, 255, 0, 255)), "kind": "background", "name": "Base",
    })
    client.post(f"/api/layer/{sid}", json={"url": png_data_url((4, 4), (0, 0, 255, 255)), "name": "Logo"})
    return sid


def layer_ids(client, sid):
    return [layer["id"] for layer in client.get(f"/api/canvas/state/{sid}").json()["layers"]]


def test_health_and_info(client):
    assert client.get("/health").json()["status"] == "healthy"
    info = client.get("/api/info").json()
    assert "multiply" in info["blend_modes"]
    assert {"ratio": "16:9", "width": 1408, "height": 792} in info["aspect_ratios"]


def test_state_reports_layers_and_selection(client, session_id):
    state = client.get(f"/api/canvas/state/{session_id}").json()
    assert (state["width"], state["height"]) == (1152, 896)
    assert [layer["name"] for layer in state["layers"]] == ["Logo", "Base"]
    assert state["selected_layer_id"] == state["layers"][0]["id"]
    assert state["background_layer_id"] == state["layers"][1]["id"]
    assert state["can_undo"] is True


def test_update_clamps_and_undo_redo(client, session_id):
    top = layer_ids(client, session_id)[0]
    response = client.put(f"/api/layer/{session_id}/{top}", json={"changes": {"opacity": 150}})
    assert response.json()["layer"]["opacity"] == 100

    client.put(f"/api/layer/{session_id}/{top}", json={"changes": {"opacity": 20}})
    undone = client.post(f"/api/canvas/{session_id}/undo").json()
    assert undone["layers"][0]["opacity"] == 100
    redone = client.post(f"/api/canvas/{session_id}/redo").json()
    assert redone["layers"][0]["opacity"] == 20

    response = client.post(f"/api/canvas/{session_id}/redo")
    assert response.status_code == 409
    assert response.json()["error_code"] == "NO_OP"


def test_bad_attribute_is_rejected(client, session_id):
    top = layer_ids(client, session_id)[0]
    response = client.put(f"/api/layer/{session_id}/{top}", json={"changes": {"kind": "video"}})
    assert response.status_code == 400
    assert response.json()["error_code"] == "VALIDATION_ERROR"


def test_gesture_is_single_undo_step(client, session_id):
    top = layer_ids(client, session_id)[0]
    client.post(f"/api/layer/{session_id}/{top}/gesture/begin")
    for x in (10, 20, 30):
        client.post(f"/api/layer/{session_id}/{top}/gesture/preview", json={"changes": {"x": x}})
    state = client.post(f"/api/layer/{session_id}/gesture/end").json()
    assert state["layers"][0]["x"] == 30

    state = client.post(f"/api/canvas/{session_id}/undo").json()
    assert state["layers"][0]["x"] == 0


def test_delete_selected_moves_selection(client, session_id):
    top, bottom = layer_ids(client, session_id)
    response = client.delete(f"/api/layer/{session_id}/{top}")
    assert response.json()["state"]["selected_layer_id"] == bottom


def test_unknown_session_is_404(client):
    response = client.get("/api/canvas/state/nope")
    assert response.status_code == 404
    assert response.json()["success"] is False


def test_export_png(client, session_id):
    response = client.get(f"/api/canvas/{session_id}/export")
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/png"
    with Image.open(io.BytesIO(response.content)) as img:
        assert img.size == (1152, 896)


def test_mask_painting_flow(client, session_id):
    response = client.post(f"/api/mask/{session_id}/stroke/begin", json={"x": 10, "y": 10})
    assert response.status_code == 400

    client.put(f"/api/canvas/{session_id}/mode", json={"mode": "mask"})
    client.post(f"/api/mask/{session_id}/stroke/begin", json={"x": 100, "y": 100})
    client.post(f"/api/mask/{session_id}/stroke/extend", json={"points": [{"x": 200, "y": 150}, {"x": 300, "y": 300}]})
    state = client.post(f"/api/mask/{session_id}/stroke/end").json()
    assert state["has_mask"] is True
    assert (state["width"], state["height"]) == (1152, 896)

    preview = client.get(f"/api/mask/{session_id}/preview")
    assert preview.headers["content-type"] == "image/png"

    assert client.delete(f"/api/mask/{session_id}").json()["has_mask"] is False
    assert client.get(f"/api/mask/{session_id}/preview").status_code == 400


def test_video_mode_coerces_ratio(client, session_id):
    state = client.put(f"/api/canvas/{session_id}/mode", json={"mode": "video"}).json()
    assert state["aspect_ratio"] == "16:9"
    response = client.put(f"/api/canvas/{session_id}/video-duration", json={"duration": 12})
    assert response.status_code == 400


def test_generation_without_api_key_is_rejected(client, session_id):
    response = client.post(f"/api/generation/{session_id}/generate", json={"prompt": "a lighthouse"})
    assert response.status_code == 400
    assert "API key" in response.json()["error"]


def test_history_endpoints(client):
    assert client.get("/api/history").json() == []
    assert client.delete("/api/history/missing").status_code == 404
