"""Shared test fixtures."""

from __future__ import annotations

import random

import numpy as np
import pytest

from glyphsight.engine.tile import Codebook, Glyph, Tile

# 4x4 glyph renderings. '.' is a light dot, '#' a dark block; both carry the
# same small centre contrast so only their brightness differs meaningfully.
CENTRE = [5, 6, 9, 10]


def _rendered(background: float, centre: float) -> list[float]:
    values = [background] * 16
    for i in CENTRE:
        values[i] = centre
    return values


DOT_PIXELS = _rendered(0.9, 0.8)
BLOCK_PIXELS = _rendered(0.0, 0.1)
GRAY_PIXELS = [0.5] * 16


def make_tile(values: list[float], width: int = 4, height: int = 4, color: int | None = None) -> Tile:
    return Tile(np.array(values, dtype=np.float64), width, height, color=color)


@pytest.fixture
def gray_tile() -> Tile:
    return make_tile(GRAY_PIXELS)


@pytest.fixture
def dot_block_codebook() -> Codebook:
    return Codebook([
        Glyph(".", make_tile(DOT_PIXELS)),
        Glyph("#", make_tile(BLOCK_PIXELS)),
    ])


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)


@pytest.fixture
def seeded_random() -> random.Random:
    return random.Random(42)
