"""Engine configuration: comparator, trainer and orchestrator options."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

from glyphsight.engine.errors import ConfigurationError


class FeatureScaling(str, Enum):
    """How tile intensities are standardized before entering the network."""

    TILE = "tile"  # per-example z-score
    RANGE = "range"  # affine [0, 1] -> [-1, 1], keeps absolute brightness


class ClassificationMethod(str, Enum):
    SSIM = "ssim"
    MODEL = "model"


@dataclass
class SSIMOptions:
    """Structural-similarity parameters."""

    # Recursive quartering depth: 0 compares whole tiles, k gives 4**k sub-tiles
    subdivide: int = 0

    # Stability constants for the luminance and contrast/structure ratios
    c1: float = 0.001
    c2: float = 0.005

    # Spatial weighting inside a window and across the sub-tile grid
    gaussian_std: float = 1.5

    # Coefficients on the luminance, contrast and structure terms.
    # Self-similarity stays at 1 for any positive weights.
    weights: tuple[float, float, float] = (1.0, 1.0, 1.0)

    # Exponents of the luminance/contrast/structure index
    exponents: tuple[float, float, float] = (1.0, 1.0, 1.0)

    def validate(self) -> None:
        if self.subdivide < 0:
            raise ConfigurationError(f"subdivide must be >= 0, got {self.subdivide}")
        if self.c1 <= 0 or self.c2 <= 0:
            raise ConfigurationError("stability constants c1 and c2 must be positive")
        if self.gaussian_std <= 0:
            raise ConfigurationError(f"gaussian_std must be positive, got {self.gaussian_std}")
        if len(self.weights) != 3 or any(w <= 0 for w in self.weights):
            raise ConfigurationError("weights must be three positive coefficients")
        if len(self.exponents) != 3 or any(e < 0 for e in self.exponents):
            raise ConfigurationError("exponents must be three non-negative values")


@dataclass
class TrainingSettings:
    """Mini-batch training parameters."""

    learning_rate: float = 0.01
    learning_rate_decay: float = 0.0  # lr * exp(-decay * epoch)
    l2: float = 0.0

    # Adam
    beta1: float = 0.9
    beta2: float = 0.999
    adam_eps: float = 1e-7

    # Per-example gradients and the final step are clamped to +/- this
    gradient_clip: float = 5.0

    batch_size: int = 64
    threads: int = 8

    # Target smoothing: Gaussian falloff from each example's best score
    target_falloff: float = 0.03
    target_threshold: float = 1e-4  # smoothed targets below this become 0

    # Class weighting curve over the squashed per-glyph batch frequency
    class_weight_center: float = 0.5
    class_weight_steepness: float = 4.0

    feature_scaling: FeatureScaling = FeatureScaling.TILE

    def validate(self) -> None:
        if self.batch_size <= 0:
            raise ConfigurationError(f"batch_size must be positive, got {self.batch_size}")
        if self.threads <= 0:
            raise ConfigurationError(f"threads must be positive, got {self.threads}")
        if self.gradient_clip <= 0:
            raise ConfigurationError(f"gradient_clip must be positive, got {self.gradient_clip}")
        if not (0.0 <= self.beta1 < 1.0 and 0.0 <= self.beta2 < 1.0):
            raise ConfigurationError("Adam betas must lie in [0, 1)")
        if self.target_falloff <= 0:
            raise ConfigurationError(f"target_falloff must be positive, got {self.target_falloff}")

    def effective_learning_rate(self, epoch: int = 0) -> float:
        return self.learning_rate * math.exp(-self.learning_rate_decay * epoch)


@dataclass
class ClassifierOptions:
    """Orchestrator parameters."""

    method: ClassificationMethod = ClassificationMethod.SSIM
    threads: int = 8

    # Model mode only: any glyph within this relative band of the best
    # probability may be picked (0 = strict argmax)
    tolerance: float = 0.0
    seed: int | None = None

    feature_scaling: FeatureScaling = FeatureScaling.TILE

    def validate(self) -> None:
        if self.threads <= 0:
            raise ConfigurationError(f"threads must be positive, got {self.threads}")
        if not 0.0 <= self.tolerance < 1.0:
            raise ConfigurationError(f"tolerance must lie in [0, 1), got {self.tolerance}")
