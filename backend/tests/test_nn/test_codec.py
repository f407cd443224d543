"""Tests for the binary model format."""

from __future__ import annotations

import struct

import numpy as np
import pytest

from glyphsight.engine.errors import ModelFormatError
from glyphsight.nn.codec import decode_model, encode_model, load_model, save_model
from glyphsight.nn.model import Layer, Model, ModelInitParams


def _tiny_model() -> Model:
    layer = Layer(np.array([[1.5, -2.0]]), np.array([0.25]))
    return Model(("#",), (layer,), alpha=0.01)


def test_byte_layout():
    data = encode_model(_tiny_model())
    expected = (
        struct.pack("<i", 1)
        + b"#"
        + struct.pack("<d", 0.01)
        + struct.pack("<i", 1)
        + struct.pack("<ii", 1, 2)
        + struct.pack("<dd", 1.5, -2.0)
        + struct.pack("<d", 0.25)
    )
    assert data == expected


@pytest.mark.parametrize("hidden", [(0, 1), (1, 3), (3, 7)])
def test_round_trip(rng, hidden):
    layers, neurons = hidden
    params = ModelInitParams(
        feature_count=9, glyphs=list(" .:#@"), hidden_layers=layers, hidden_neurons=neurons, alpha=0.05
    )
    model = Model.initialize(params, rng)
    decoded = decode_model(encode_model(model))
    assert decoded == model
    for a, b in zip(decoded.layers, model.layers):
        assert a.weights.tobytes() == b.weights.tobytes()
        assert a.biases.tobytes() == b.biases.tobytes()


def test_save_and_load(tmp_path, rng):
    model = Model.initialize(ModelInitParams(feature_count=4, glyphs=["a", "b"]), rng)
    path = tmp_path / "model" / "model.nn"
    save_model(model, path)
    assert load_model(path) == model


def test_multi_character_labels_rejected():
    layer = Layer(np.zeros((1, 1)), np.zeros(1))
    with pytest.raises(ModelFormatError):
        encode_model(Model(("ab",), (layer,), 0.0))
    with pytest.raises(ModelFormatError):
        encode_model(Model(("é",), (layer,), 0.0))


def test_truncated_weights():
    data = encode_model(_tiny_model())
    with pytest.raises(ModelFormatError) as info:
        decode_model(data[:-4])
    assert info.value.dimension == "layer 0 rows/columns"


def test_huge_declared_dimensions_fail_before_allocating():
    data = (
        struct.pack("<i", 1) + b"#" + struct.pack("<d", 0.0) + struct.pack("<i", 1)
        + struct.pack("<ii", 1, 2_000_000_000)
    )
    with pytest.raises(ModelFormatError) as info:
        decode_model(data)
    assert "layer 0" in info.value.dimension


def test_glyph_count_exceeds_buffer():
    with pytest.raises(ModelFormatError) as info:
        decode_model(struct.pack("<i", 50) + b"ab")
    assert info.value.dimension == "glyph count"


def test_column_mismatch_between_layers():
    data = (
        struct.pack("<i", 1) + b"#" + struct.pack("<d", 0.0) + struct.pack("<i", 2)
        + struct.pack("<ii", 2, 1) + struct.pack("<ddd", 1.0, 2.0, 0.0) + struct.pack("<d", 0.0)
        + struct.pack("<ii", 1, 3) + struct.pack("<ddd", 1.0, 1.0, 1.0) + struct.pack("<d", 0.0)
    )
    with pytest.raises(ModelFormatError) as info:
        decode_model(data)
    assert info.value.dimension == "layer 1 columns"


def test_output_rows_must_match_glyphs():
    data = (
        struct.pack("<i", 2) + b"ab" + struct.pack("<d", 0.0) + struct.pack("<i", 1)
        + struct.pack("<ii", 3, 1) + struct.pack("<ddd", 1.0, 2.0, 3.0) + struct.pack("<ddd", 0.0, 0.0, 0.0)
    )
    with pytest.raises(ModelFormatError) as info:
        decode_model(data)
    assert info.value.dimension == "layer 0 rows"


def test_trailing_bytes_rejected():
    with pytest.raises(ModelFormatError) as info:
        decode_model(encode_model(_tiny_model()) + b"\0")
    assert info.value.dimension == "trailing bytes"


def test_empty_buffer():
    with pytest.raises(ModelFormatError) as info:
        decode_model(b"")
    assert info.value.dimension == "glyph count"
