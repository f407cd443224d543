"""API request models."""

from __future__ import annotations

import numpy as np
from pydantic import BaseModel, Field

from glyphsight.engine.config import ClassificationMethod
from glyphsight.engine.tile import Glyph, Tile


class TileIn(BaseModel):
    intensities: list[float | None] = Field(
        ..., description="Row-major intensities in [0, 1]; null marks a transparent pixel"
    )
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    bit_depth: int = Field(8, gt=0, description="Source bit depth, informational")
    color: int | None = Field(None, description="Opaque colour passed back with the glyph")

    def to_tile(self) -> Tile:
        values = np.array([np.nan if v is None else v for v in self.intensities], dtype=np.float64)
        return Tile(values, self.width, self.height, self.bit_depth, self.color)


class GlyphIn(BaseModel):
    symbol: str = Field(..., min_length=1)
    tile: TileIn | None = Field(None, description="Rendered glyph image, required for SSIM mode")

    def to_glyph(self) -> Glyph:
        return Glyph(self.symbol, self.tile.to_tile() if self.tile else None)


class ClassifyRequest(BaseModel):
    tiles: list[TileIn] = Field(..., description="Tiles to classify, in output order")
    glyphs: list[GlyphIn] = Field(
        default_factory=list,
        description="Codebook in tie-break order (SSIM mode); model mode uses the loaded model's glyphs",
    )
    method: ClassificationMethod = ClassificationMethod.SSIM
    subdivide: int | None = Field(None, ge=0, description="SSIM subdivision depth override")
    tolerance: float | None = Field(None, ge=0.0, lt=1.0, description="Model-mode tolerance band override")
    seed: int | None = None


class CompareRequest(BaseModel):
    a: TileIn
    b: TileIn
    subdivide: int = Field(0, ge=0)
