"""Application configuration from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

from glyphsight.engine.config import FeatureScaling


class Settings(BaseSettings):
    env: str = "development"
    log_level: str = "info"
    cors_origins: list[str] = ["http://localhost:3000"]

    # Worker pool size for SSIM fan-out and training passes
    threads: int = 8

    # Memo store
    cache_enabled: bool = True
    cache_max_entries: int = 65535
    cache_precision: int = 7
    cache_db_path: str | None = None  # unset = memory only
    cache_seed: int | None = None

    # Neural classifier
    nn_model_path: str | None = None
    feature_scaling: FeatureScaling = FeatureScaling.TILE
    nn_tolerance: float = 0.0

    ssim_subdivide: int = 0

    model_config = SettingsConfigDict(
        env_prefix="GLYPHSIGHT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
