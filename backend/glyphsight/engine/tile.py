"""Tiles, glyphs and the glyph codebook.

A tile is a fixed-size window of normalized pixel intensities in [0, 1],
row-major, with ``NaN`` marking transparent or missing pixels. Tiles come
from the external tiler and glyph tiles from external font rasterization;
both must use the same intensity scale.
"""

from __future__ import annotations

import hashlib
import math
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from functools import cached_property

import numpy as np
from numpy.typing import NDArray

from glyphsight.engine.errors import ConfigurationError


@dataclass(frozen=True, eq=False)
class Tile:
    """Immutable intensity window."""

    intensities: NDArray[np.float64]
    width: int
    height: int
    bit_depth: int = 8
    color: int | None = None  # passed through to the renderer untouched

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ConfigurationError(f"tile dimensions must be positive, got {self.width}x{self.height}")
        if self.bit_depth <= 0:
            raise ConfigurationError(f"bit_depth must be positive, got {self.bit_depth}")

        values = np.asarray(self.intensities, dtype=np.float64).ravel()
        nominal = self.width * self.height
        if values.size > nominal:
            raise ConfigurationError(
                f"tile has {values.size} samples but a {self.width}x{self.height} window holds {nominal}"
            )
        if values.size < nominal:
            values = np.concatenate([values, np.full(nominal - values.size, np.nan)])
        else:
            values = values.copy()
        values.setflags(write=False)
        object.__setattr__(self, "intensities", values)

    @classmethod
    def from_pixels(
        cls,
        samples: Sequence[float | None],
        width: int,
        height: int,
        bit_depth: int = 8,
        color: int | None = None,
    ) -> Tile:
        """Build a tile from raw integer samples; ``None`` marks a transparent pixel."""
        scale = float(2**bit_depth - 1)
        values = np.array([np.nan if s is None else float(s) / scale for s in samples], dtype=np.float64)
        return cls(values, width, height, bit_depth, color)

    @property
    def size(self) -> int:
        return self.width * self.height

    @cached_property
    def valid_mask(self) -> NDArray[np.bool_]:
        return ~np.isnan(self.intensities)

    @property
    def valid_count(self) -> int:
        return int(self.valid_mask.sum())

    def grid(self) -> NDArray[np.float64]:
        return self.intensities.reshape(self.height, self.width)

    def subtiles(self, depth: int) -> list[Tile]:
        """Quarter the tile ``depth`` times; sub-tiles come back in row-major grid order.

        Sub-tile sides are ``ceil(side / 2**depth)``; cells past the tile
        edge are padded as missing pixels.
        """
        if depth == 0:
            return [self]
        n = 2**depth
        sub_w = math.ceil(self.width / n)
        sub_h = math.ceil(self.height / n)
        padded = np.full((sub_h * n, sub_w * n), np.nan)
        padded[: self.height, : self.width] = self.grid()

        tiles = []
        for gy in range(n):
            for gx in range(n):
                block = padded[gy * sub_h : (gy + 1) * sub_h, gx * sub_w : (gx + 1) * sub_w]
                tiles.append(Tile(block.ravel(), sub_w, sub_h, self.bit_depth))
        return tiles


@dataclass(frozen=True)
class GlyphProfile:
    """Luminance statistics of a rendered glyph image."""

    mean_luminance: float
    stddev_luminance: float
    luminances: tuple[float, ...] = field(repr=False)

    @classmethod
    def from_tile(cls, tile: Tile) -> GlyphProfile:
        values = tile.intensities[tile.valid_mask]
        if values.size == 0:
            return cls(0.0, 0.0, ())
        std = float(np.std(values, ddof=1)) if values.size > 1 else 0.0
        return cls(float(np.mean(values)), std, tuple(float(v) for v in values))


@dataclass(frozen=True)
class Glyph:
    """A candidate output symbol, optionally with its rendered tile."""

    symbol: str
    tile: Tile | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not self.symbol:
            raise ConfigurationError("glyph symbol must be non-empty")

    @cached_property
    def profile(self) -> GlyphProfile | None:
        if self.tile is None:
            return None
        return GlyphProfile.from_tile(self.tile)


class Codebook:
    """Ordered, de-duplicated glyph alphabet. Order is the tie-break order."""

    def __init__(self, glyphs: Iterable[Glyph | str]) -> None:
        items = tuple(g if isinstance(g, Glyph) else Glyph(g) for g in glyphs)
        if not items:
            raise ConfigurationError("glyph codebook is empty")
        seen: set[str] = set()
        for g in items:
            if g.symbol in seen:
                raise ConfigurationError(f"duplicate glyph {g.symbol!r} in codebook")
            seen.add(g.symbol)
        self._glyphs = items
        self._index = {g.symbol: i for i, g in enumerate(items)}

    def __len__(self) -> int:
        return len(self._glyphs)

    def __iter__(self) -> Iterator[Glyph]:
        return iter(self._glyphs)

    def __getitem__(self, i: int) -> Glyph:
        return self._glyphs[i]

    @property
    def symbols(self) -> tuple[str, ...]:
        return tuple(g.symbol for g in self._glyphs)

    def index(self, symbol: str) -> int:
        return self._index[symbol]

    def require_tiles(self) -> None:
        """SSIM mode needs a rendered tile for every glyph."""
        missing = [g.symbol for g in self._glyphs if g.tile is None]
        if missing:
            raise ConfigurationError(f"glyphs without a rendered tile: {missing}")

    def fingerprint(self, precision: int = 7) -> str:
        """Short hash of the symbols and their rendered tiles."""
        h = hashlib.sha256()
        for g in self._glyphs:
            h.update(g.symbol.encode("utf-8"))
            h.update(b"\0")
            if g.tile is not None:
                h.update(f"{g.tile.width}x{g.tile.height}".encode())
                h.update(np.round(g.tile.intensities, precision).tobytes())
            h.update(b"\1")
        return h.hexdigest()[:16]
