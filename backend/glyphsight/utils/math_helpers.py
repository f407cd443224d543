"""Math helpers: standardization, clamping, logistic squashing. No engine imports."""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy.special import expit


def zscore(values: NDArray[np.float64]) -> NDArray[np.float64]:
    """Standardize to mean 0 / std 1. Constant inputs come back unchanged."""
    std = float(np.std(values))
    if std == 0.0:
        return np.asarray(values, dtype=np.float64).copy()
    return (values - np.mean(values)) / std


def minmax_unit(values: NDArray[np.float64]) -> NDArray[np.float64]:
    """Squash to [0, 1]. Constant inputs map to 0.5."""
    lo = float(np.min(values))
    hi = float(np.max(values))
    if hi - lo < 1e-12:
        return np.full(values.shape, 0.5)
    return (values - lo) / (hi - lo)


def inverse_logistic(values: NDArray[np.float64], center: float, steepness: float) -> NDArray[np.float64]:
    """Falling logistic curve: ~1 well below ``center``, ~0 well above it."""
    return expit(-steepness * (values - center))


def clamp(values: NDArray[np.float64], bound: float) -> NDArray[np.float64]:
    """Clip into the symmetric range [-bound, bound]."""
    return np.clip(values, -bound, bound)


def round_to(values: NDArray[np.float64], precision: int) -> NDArray[np.float64]:
    """Round to ``precision`` decimals, folding -0.0 into 0.0."""
    return np.round(np.asarray(values, dtype=np.float64), precision) + 0.0
