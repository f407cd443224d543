"""Tests for training examples and preprocessed files."""

from __future__ import annotations

import io

import numpy as np
import pytest

from glyphsight.engine.classifier import Classifier
from glyphsight.engine.config import FeatureScaling
from glyphsight.engine.tile import Tile
from glyphsight.nn.dataset import (
    TrainingExample,
    examples_from_tiles,
    format_record,
    parse_record,
    read_examples,
    smooth_targets,
    standardize,
    write_examples,
)
from tests.conftest import GRAY_PIXELS, make_tile


def test_smooth_targets_one_hot_stays_one_hot():
    assert smooth_targets(np.array([1.0, 0.0]), 0.03, 1e-4).tolist() == [1.0, 0.0]


def test_smooth_targets_near_ties_share_mass():
    out = smooth_targets(np.array([0.90, 0.89, 0.2]), 0.03, 1e-4)
    assert out.sum() == pytest.approx(1.0)
    assert out[0] > out[1] > 0
    assert out[2] == 0.0


def test_smooth_targets_uniform_scores():
    assert np.allclose(smooth_targets(np.zeros(4), 0.03, 1e-4), 0.25)


def test_standardize_modes():
    values = np.array([0.0, 0.5, 1.0, np.nan])
    assert standardize(values, FeatureScaling.RANGE).tolist() == [-1.0, 0.0, 1.0, -1.0]
    z = standardize(values, FeatureScaling.TILE)
    assert z.mean() == pytest.approx(0.0)
    flat = np.full(4, 0.3)
    assert np.array_equal(standardize(flat, FeatureScaling.TILE), flat)


def test_jsonl_record_round_trip():
    tile = Tile(np.array([0.123456789, np.nan, 1.0, 0.0, 0.5, 0.25]), 3, 2)
    record = parse_record(format_record(tile, {"#": 0.5, ",": 0.25}, precision=4))
    assert record.intensities[0] == pytest.approx(0.1235)
    assert np.isnan(record.intensities[1])
    assert (record.width, record.height) == (3, 2)
    assert record.shape == (3, 2)
    assert record.scores == {"#": 0.5, ",": 0.25}


def test_jsonl_record_dimensions_must_fill_tile():
    with pytest.raises(ValueError):
        parse_record('{"intensities": [0.1, 0.2, 0.3], "width": 2, "height": 2, "scores": {"#": 1.0}}')
    with pytest.raises(KeyError):
        parse_record('{"intensities": [0.1, 0.2], "scores": {"#": 1.0}}')


def test_legacy_line_format():
    record = parse_record("0.1,0.2,0.3 ; # , 0.5 ; . , 0.75\n")
    assert record.intensities == [0.1, 0.2, 0.3]
    assert record.shape is None
    assert record.scores == {"#": 0.5, ".": 0.75}


def test_legacy_line_with_separator_glyph():
    record = parse_record("0.5 ; , , 0.1 ; ; , 0.2")
    assert record.scores == {",": 0.1, ";": 0.2}


def test_malformed_line():
    with pytest.raises(ValueError):
        parse_record("0.1,0.2")


def test_write_then_read_examples(tmp_path):
    path = tmp_path / "preprocessed.txt"
    with open(path, "w", encoding="utf-8") as f:
        count = write_examples(
            f,
            [(Tile(np.array([0.1, 0.2]), 2, 1), {"a": 0.9}), (Tile(np.array([0.3, 0.4]), 2, 1), {"b": 0.8, "a": 0.1})],
        )
        f.write("garbage line\n\n")
    assert count == 2

    examples = list(read_examples(path, ["a", "b"]))
    assert len(examples) == 2
    assert examples[0].scores.tolist() == [0.9, 0.0]
    assert examples[1].scores.tolist() == [0.1, 0.8]
    assert examples[1].intensities.tolist() == [0.3, 0.4]


def test_write_examples_to_stream():
    buf = io.StringIO()
    write_examples(buf, [(Tile(np.array([0.5]), 1, 1), {"x": 1.0})])
    assert buf.getvalue().count("\n") == 1


def test_example_requires_scores():
    with pytest.raises(ValueError):
        TrainingExample(np.zeros(4), np.array([]))


def test_examples_from_tiles(dot_block_codebook):
    tiles = [make_tile(GRAY_PIXELS), make_tile([0.05] * 16)]
    with Classifier(dot_block_codebook) as classifier:
        examples = list(examples_from_tiles(tiles, classifier))
    assert len(examples) == 2
    # gray prefers '.', near-black prefers '#'
    assert np.argmax(examples[0].scores) == 0
    assert np.argmax(examples[1].scores) == 1


def test_read_examples_skips_other_shapes(tmp_path):
    path = tmp_path / "preprocessed.jsonl"
    with open(path, "w", encoding="utf-8") as f:
        write_examples(
            f,
            [
                (make_tile(GRAY_PIXELS), {"a": 0.9}),
                (Tile(np.full(16, 0.5), 2, 8), {"a": 0.4}),
            ],
        )
        f.write("0.5,0.5 ; a , 0.3\n")
    examples = list(read_examples(path, ["a"], shape=(4, 4)))
    assert [e.scores.tolist() for e in examples] == [[0.9]]
    assert len(list(read_examples(path, ["a"]))) == 3
