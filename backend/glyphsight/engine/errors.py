"""Exception taxonomy for the classification engine."""

from __future__ import annotations


class GlyphSightError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(GlyphSightError, ValueError):
    """Invalid dimensions, options or shapes. Raised before any work starts."""


class SizeMismatchError(ConfigurationError):
    """Two tiles whose sizes are not integer multiples of each other."""


class ModelFormatError(ConfigurationError):
    """Serialized model bytes that do not match their declared dimensions."""

    def __init__(self, dimension: str, message: str) -> None:
        super().__init__(f"{dimension}: {message}")
        self.dimension = dimension


class MemoStoreError(GlyphSightError):
    """Backing store failure. Callers recompute instead of aborting."""


class TrainingCancelled(GlyphSightError):
    """Raised inside a training step when the cancellation signal is set."""
