"""FastAPI dependency injection."""

from __future__ import annotations

import logging
import random
from pathlib import Path

from glyphsight.config import Settings, settings
from glyphsight.engine.errors import ConfigurationError, MemoStoreError
from glyphsight.memo.sqlite_store import SqliteMemoStore
from glyphsight.memo.store import InMemoryMemoStore, MemoStore, NullMemoStore
from glyphsight.nn.codec import load_model
from glyphsight.nn.model import Model

logger = logging.getLogger(__name__)


def get_settings() -> Settings:
    return settings


def build_store(cfg: Settings) -> MemoStore:
    """Memo store described by the settings; falls back to memory if sqlite is unusable."""
    if not cfg.cache_enabled:
        return NullMemoStore(cfg.cache_precision)
    rng = random.Random(cfg.cache_seed)
    if cfg.cache_db_path:
        try:
            return SqliteMemoStore(cfg.cache_db_path, cfg.cache_max_entries, cfg.cache_precision, rng)
        except MemoStoreError as e:
            logger.warning("Durable memo tier unavailable, using memory only: %s", e)
    return InMemoryMemoStore(cfg.cache_max_entries, cfg.cache_precision, rng)


# Singletons
_store: MemoStore | None = None
_model: Model | None = None
_model_loaded = False


def get_store() -> MemoStore:
    """Get or create the process-wide memo store."""
    global _store
    if _store is None:
        _store = build_store(settings)
    return _store


def get_model() -> Model | None:
    """Load the configured model file once; None when unset or unreadable."""
    global _model, _model_loaded
    if not _model_loaded:
        _model_loaded = True
        path = settings.nn_model_path
        if path and Path(path).exists():
            try:
                _model = load_model(path)
                logger.info("Loaded model %s (%d glyphs)", path, len(_model.glyphs))
            except (OSError, ConfigurationError) as e:
                logger.warning("Failed to load model %s: %s", path, e)
    return _model
