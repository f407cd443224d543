"""API response models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    cache_enabled: bool = True
    nn_loaded: bool = False


class ClassifiedTile(BaseModel):
    glyph: str
    color: int | None = None


class ClassifyResponse(BaseModel):
    tiles: list[ClassifiedTile] = Field(default_factory=list)
    method: str = "ssim"
    processing_time_ms: float = 0.0


class CompareResponse(BaseModel):
    luminance: float
    contrast: float
    structure: float
    index: float


class CacheStatsResponse(BaseModel):
    stats: dict[str, int] = Field(default_factory=dict)


class CacheFlushResponse(BaseModel):
    flushed: bool = True


class NetworkInfoResponse(BaseModel):
    glyphs: list[str]
    alpha: float
    feature_count: int
    layer_shapes: list[tuple[int, int]] = Field(default_factory=list)
    output: str = "softmax"
