"""Tests for API endpoints."""

from __future__ import annotations

import numpy as np
import pytest
from fastapi.testclient import TestClient

from glyphsight.dependencies import get_model, get_store
from glyphsight.main import app
from glyphsight.memo.sqlite_store import SqliteMemoStore
from glyphsight.memo.store import InMemoryMemoStore
from glyphsight.nn.model import Layer, Model
from tests.conftest import BLOCK_PIXELS, DOT_PIXELS, GRAY_PIXELS

client = TestClient(app)


def _tile(values, color=None):
    return {"intensities": values, "width": 4, "height": 4, "color": color}


CODEBOOK = [
    {"symbol": ".", "tile": _tile(DOT_PIXELS)},
    {"symbol": "#", "tile": _tile(BLOCK_PIXELS)},
]


@pytest.fixture
def store():
    store = InMemoryMemoStore(max_entries=100)
    app.dependency_overrides[get_store] = lambda: store
    yield store
    app.dependency_overrides.pop(get_store, None)


@pytest.fixture
def loaded_model():
    # Output 0 follows the last pixel, output 1 its negation
    last = np.eye(16)[15]
    layer = Layer(np.vstack([last, -last]), np.zeros(2))
    model = Model(("#", "."), (layer,), alpha=0.01)
    app.dependency_overrides[get_model] = lambda: model
    yield model
    app.dependency_overrides.pop(get_model, None)


@pytest.fixture
def no_model():
    app.dependency_overrides[get_model] = lambda: None
    yield
    app.dependency_overrides.pop(get_model, None)


def test_health(no_model):
    response = client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["nn_loaded"] is False


def test_classify_ssim(store):
    response = client.post(
        "/api/classify",
        json={"tiles": [_tile(GRAY_PIXELS, color=42), _tile([0.02] * 16)], "glyphs": CODEBOOK},
    )
    assert response.status_code == 200
    data = response.json()
    assert [t["glyph"] for t in data["tiles"]] == [".", "#"]
    assert data["tiles"][0]["color"] == 42
    assert data["method"] == "ssim"
    assert store.stats()["glyphs"] == 2


def test_classify_transparent_pixels(store):
    values = GRAY_PIXELS[:12] + [None] * 4
    response = client.post("/api/classify", json={"tiles": [_tile(values)], "glyphs": CODEBOOK})
    assert response.status_code == 200
    assert response.json()["tiles"][0]["glyph"] == "."


def test_classify_size_mismatch_is_422(store):
    odd = {"intensities": [0.5] * 9, "width": 3, "height": 3}
    response = client.post("/api/classify", json={"tiles": [odd], "glyphs": CODEBOOK})
    assert response.status_code == 422


def test_classify_empty_codebook_is_422(store):
    response = client.post("/api/classify", json={"tiles": [_tile(GRAY_PIXELS)], "glyphs": []})
    assert response.status_code == 422


def test_classify_model_mode(loaded_model):
    bright_last = [0.0] * 15 + [1.0]
    dark_last = [1.0] * 15 + [0.0]
    response = client.post("/api/classify", json={"tiles": [_tile(bright_last), _tile(dark_last)], "method": "model"})
    assert response.status_code == 200
    assert [t["glyph"] for t in response.json()["tiles"]] == ["#", "."]


def test_classify_model_mode_without_model(no_model):
    response = client.post("/api/classify", json={"tiles": [_tile(GRAY_PIXELS)], "method": "model"})
    assert response.status_code == 409


def test_compare():
    response = client.post("/api/compare", json={"a": _tile(DOT_PIXELS), "b": _tile(DOT_PIXELS)})
    assert response.status_code == 200
    assert response.json()["index"] == pytest.approx(1.0)


def test_cache_stats_and_flush(store):
    client.post("/api/classify", json={"tiles": [_tile(GRAY_PIXELS)], "glyphs": CODEBOOK})
    assert client.get("/api/cache/stats").json()["stats"]["scores"] == 2

    response = client.post("/api/cache/flush")
    assert response.status_code == 200
    assert response.json()["flushed"] is True
    assert client.get("/api/cache/stats").json()["stats"]["scores"] == 0


def test_network_info(loaded_model):
    data = client.get("/api/network").json()
    assert data["glyphs"] == ["#", "."]
    assert data["feature_count"] == 16
    assert data["layer_shapes"] == [[2, 16]]


def test_network_info_without_model(no_model):
    assert client.get("/api/network").status_code == 409


def test_cache_stats_with_closed_sqlite_store(tmp_path):
    closed = SqliteMemoStore(tmp_path / "memo.db")
    closed.close()
    app.dependency_overrides[get_store] = lambda: closed
    try:
        response = client.get("/api/cache/stats")
    finally:
        app.dependency_overrides.pop(get_store, None)
    assert response.status_code == 200
    assert response.json()["stats"]["glyphs"] == 0
