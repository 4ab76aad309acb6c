import base64

import cv2
import numpy as np
import pytest
from fastapi.testclient import TestClient

import main


@pytest.fixture
def client():
    with TestClient(main.app) as c:
        yield c


def _upload(client, data, **form):
    return client.post("/api/measure", files={"image": ("photo.png", data, "image/png")}, data=form)


def test_measure(client, png_bytes):
    resp = _upload(client, png_bytes)
    assert resp.status_code == 200
    body = resp.json()
    assert body["error"] is None
    assert body["length_mm"] == pytest.approx(131.3, rel=0.1)
    assert body["segment_strategy"] == "otsu"

    debug = cv2.imdecode(np.frombuffer(base64.b64decode(body["debug_image"]), np.uint8), cv2.IMREAD_COLOR)
    assert debug is not None


def test_measure_without_debug(client, png_bytes):
    resp = _upload(client, png_bytes, debug="false")
    assert resp.status_code == 200
    assert "debug_image" not in resp.json()


def test_measure_garbage(client):
    resp = _upload(client, b"definitely not a photo")
    assert resp.status_code == 400
    body = resp.json()
    assert body["error_kind"] == "image_unusable"
    assert body["debug_image"] is None


def test_measure_blank(client, blank):
    _, buf = cv2.imencode(".png", blank)
    resp = _upload(client, buf.tobytes())
    assert resp.status_code == 400
    body = resp.json()
    assert body["error_kind"] == "sheet_not_found"
    assert body["length_mm"] == 0.0
    assert body["debug_image"]


def test_config(client):
    body = client.get("/api/config").json()
    assert body["sheet_width_mm"] == 210
    assert body["sheet_height_mm"] == 297
    assert "margin" not in body["sheet_strategies"]


def test_health(client):
    body = client.get("/api/health").json()
    assert body["status"] == "ok"
    assert body["skeleton_method"] == "zhang_suen"
