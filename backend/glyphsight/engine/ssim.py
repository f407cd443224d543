"""Structural-similarity comparator for intensity tiles.

Each window pair is scored with Gaussian-weighted luminance, contrast and
structure statistics, taken over the pixels valid in both tiles
(or over each tile's own pixels when they share none):

    l = (w1*2*ma*mb + c1) / (w1*(ma^2 + mb^2) + c1)
    c = (w2*2*sa*sb + c2) / (w2*(va + vb) + c2)
    s = (w3*cov + c2/2) / (w3*sa*sb + c2/2)
    index = l^alpha * c^beta * s^gamma

With unit exponents and w2 == w3 this is the classic SSIM ratio.

With ``subdivide = k`` both tiles are quartered k times and the sub-tile
scores are averaged with a Gaussian over the sub-tile grid. Tiles of
different sizes are stretched by integer repetition, never interpolated.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import astuple, dataclass

import numpy as np
from numpy.typing import NDArray

from glyphsight.engine.config import SSIMOptions
from glyphsight.engine.errors import SizeMismatchError
from glyphsight.engine.tile import Tile
from glyphsight.utils.kernels import KernelNormalization, gaussian_kernel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimilarityComponents:
    """Diagnostic breakdown of a similarity score."""

    luminance: float
    contrast: float
    structure: float
    index: float


_EMPTY = SimilarityComponents(0.0, 0.0, 0.0, 0.0)


def stretch(tile: Tile, width: int, height: int) -> Tile:
    """Repeat ``tile``'s samples until it fills a ``width x height`` window.

    When both sides divide evenly, rows and columns are repeated so the
    image keeps its shape. Otherwise each sample is repeated in place,
    which needs the total length to divide evenly.
    """
    if (tile.width, tile.height) == (width, height):
        return tile
    if width % tile.width == 0 and height % tile.height == 0:
        grid = np.repeat(np.repeat(tile.grid(), height // tile.height, axis=0), width // tile.width, axis=1)
        return Tile(grid.ravel(), width, height, tile.bit_depth, tile.color)
    target = width * height
    if target % tile.size == 0:
        values = np.repeat(tile.intensities, target // tile.size)
        return Tile(values, width, height, tile.bit_depth, tile.color)
    raise SizeMismatchError(
        f"cannot stretch a {tile.width}x{tile.height} tile to {width}x{height}: "
        f"{target} is not a multiple of {tile.size}"
    )


def align(a: Tile, b: Tile) -> tuple[Tile, Tile]:
    """Bring two tiles to a common window. The result does not depend on argument order."""
    if (a.width, a.height) == (b.width, b.height):
        return a, b
    if a.size == b.size:
        width, height = max((a.width, a.height), (b.width, b.height))
    elif a.size > b.size:
        width, height = a.width, a.height
    else:
        width, height = b.width, b.height
    return stretch(a, width, height), stretch(b, width, height)


def _weighted_moments(
    values: NDArray[np.float64], mask: NDArray[np.bool_], kernel: NDArray[np.float64]
) -> tuple[float, float]:
    # Kernel weights are renormalized over the valid pixels only
    weights = kernel[mask]
    weights = weights / weights.sum()
    samples = values[mask]
    mean = float(weights @ samples)
    var = float(weights @ (samples - mean) ** 2) if samples.size > 1 else 0.0
    return mean, var


def _signed_pow(value: float, exponent: float) -> float:
    if exponent == 0.0:
        return 1.0
    if exponent == 1.0:
        return value
    return float(np.sign(value) * abs(value) ** exponent)


class SSIMComparator:
    """Scores how alike two tiles are; 1 is identical under the default weights."""

    def __init__(self, options: SSIMOptions | None = None) -> None:
        self.options = options or SSIMOptions()
        self.options.validate()

    def fingerprint(self) -> str:
        """Short hash of the options, for scoping memoized scores."""
        return hashlib.sha256(repr(astuple(self.options)).encode()).hexdigest()[:12]

    def compare(self, a: Tile, b: Tile) -> float:
        return self.components(a, b).index

    def components(self, a: Tile, b: Tile) -> SimilarityComponents:
        """Luminance, contrast, structure and combined index, averaged over sub-tiles."""
        a, b = align(a, b)
        if a.valid_count == 0 or b.valid_count == 0:
            return _EMPTY

        depth = self.options.subdivide
        grid = 2**depth
        grid_weights = gaussian_kernel(grid, grid, self.options.gaussian_std, KernelNormalization.MASS)

        totals = np.zeros(4)
        weight_sum = 0.0
        for weight, sub_a, sub_b in zip(grid_weights, a.subtiles(depth), b.subtiles(depth)):
            terms = self._window(sub_a, sub_b)
            if terms is None:
                continue
            totals += weight * terms
            weight_sum += weight

        if weight_sum == 0.0:
            return _EMPTY
        lum, con, struct, index = totals / weight_sum
        return SimilarityComponents(float(lum), float(con), float(struct), float(index))

    def _window(self, a: Tile, b: Tile) -> NDArray[np.float64] | None:
        mask_a = a.valid_mask
        mask_b = b.valid_mask
        if not mask_a.any() or not mask_b.any():
            return None

        opts = self.options
        w1, w2, w3 = opts.weights
        c1, c2 = opts.c1, opts.c2
        c3 = c2 / 2.0
        kernel = gaussian_kernel(a.width, a.height, opts.gaussian_std, KernelNormalization.MASS)

        joint = mask_a & mask_b
        if joint.any():
            # Every statistic shares one pixel set and one weighting, so |cov| <= std_a * std_b
            mask_a = mask_b = joint

        mean_a, var_a = _weighted_moments(a.intensities, mask_a, kernel)
        mean_b, var_b = _weighted_moments(b.intensities, mask_b, kernel)

        covar = 0.0
        if joint.sum() >= 2:
            weights = kernel[joint] / kernel[joint].sum()
            covar = float(weights @ ((a.intensities[joint] - mean_a) * (b.intensities[joint] - mean_b)))

        std_a = np.sqrt(var_a)
        std_b = np.sqrt(var_b)

        luminance = (w1 * 2 * mean_a * mean_b + c1) / (w1 * (mean_a**2 + mean_b**2) + c1)
        contrast = (w2 * 2 * std_a * std_b + c2) / (w2 * (var_a + var_b) + c2)
        structure = (w3 * covar + c3) / (w3 * std_a * std_b + c3)

        alpha, beta, gamma = opts.exponents
        index = _signed_pow(luminance, alpha) * _signed_pow(contrast, beta) * _signed_pow(structure, gamma)
        return np.array([luminance, contrast, structure, index])
