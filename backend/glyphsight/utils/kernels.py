"""Gaussian window kernels. No engine imports."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

import numpy as np
from numpy.typing import NDArray


class KernelNormalization(str, Enum):
    MASS = "mass"  # weights sum to 1
    PEAK = "peak"  # largest weight is 1


def gaussian_kernel(
    width: int,
    height: int,
    std_dev: float,
    normalization: KernelNormalization = KernelNormalization.MASS,
) -> NDArray[np.float64]:
    """Flattened row-major ``width x height`` Gaussian window.

    The centre sits at ((width - 1) / 2, (height - 1) / 2), so even-sized
    windows have four equally weighted middle cells. The returned array is
    shared between callers and is read-only.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"kernel dimensions must be positive, got {width}x{height}")
    if std_dev <= 0:
        raise ValueError(f"kernel std_dev must be positive, got {std_dev}")
    return _cached_kernel(int(width), int(height), float(std_dev), KernelNormalization(normalization))


@lru_cache(maxsize=256)
def _cached_kernel(
    width: int, height: int, std_dev: float, normalization: KernelNormalization
) -> NDArray[np.float64]:
    cx = (width - 1) / 2.0
    cy = (height - 1) / 2.0
    ys, xs = np.mgrid[0:height, 0:width]
    dist_sq = (xs - cx) ** 2 + (ys - cy) ** 2
    kernel = np.exp(-dist_sq / (2.0 * std_dev * std_dev)).ravel()

    if normalization is KernelNormalization.MASS:
        kernel = kernel / kernel.sum()
    else:
        kernel = kernel / kernel.max()

    kernel.setflags(write=False)
    return kernel
