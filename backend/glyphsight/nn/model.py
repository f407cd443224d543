"""Feed-forward glyph classifier: Leaky ReLU hidden layers, softmax or sigmoid output.

A ``Model`` is an immutable snapshot. Training never edits one in place;
each step builds a new ``Model`` from fresh arrays, so readers holding the
previous snapshot are unaffected.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

import numpy as np
from numpy.typing import NDArray
from scipy.special import expit, softmax

from glyphsight.engine.errors import ConfigurationError


class OutputActivation(str, Enum):
    SOFTMAX = "softmax"  # one glyph out of many
    SIGMOID = "sigmoid"  # independent one-vs-all scores


def leaky_relu(values: NDArray[np.float64], alpha: float) -> NDArray[np.float64]:
    return np.where(values > 0, values, alpha * values)


def leaky_relu_derivative(activations: NDArray[np.float64], alpha: float) -> NDArray[np.float64]:
    """Slope of the Leaky ReLU, read off its output: 1 where positive, alpha elsewhere."""
    return np.where(activations > 0, 1.0, alpha)


def _frozen(values: NDArray[np.float64] | Sequence, ndim: int) -> NDArray[np.float64]:
    arr = np.array(values, dtype=np.float64)
    if arr.ndim != ndim:
        raise ConfigurationError(f"expected a {ndim}-d array, got shape {arr.shape}")
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class Layer:
    """Weights are (outputs x inputs); biases have one entry per output."""

    weights: NDArray[np.float64]
    biases: NDArray[np.float64]

    def __post_init__(self) -> None:
        weights = _frozen(self.weights, 2)
        biases = _frozen(self.biases, 1)
        if biases.shape[0] != weights.shape[0]:
            raise ConfigurationError(
                f"layer has {weights.shape[0]} rows but {biases.shape[0]} biases"
            )
        object.__setattr__(self, "weights", weights)
        object.__setattr__(self, "biases", biases)

    @property
    def rows(self) -> int:
        return self.weights.shape[0]

    @property
    def cols(self) -> int:
        return self.weights.shape[1]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Layer):
            return NotImplemented
        return np.array_equal(self.weights, other.weights) and np.array_equal(self.biases, other.biases)


@dataclass
class ModelInitParams:
    """Shape and initialization of a fresh model."""

    feature_count: int
    glyphs: Sequence[str]
    hidden_layers: int = 1
    hidden_neurons: int = 32
    alpha: float = 0.01  # Leaky ReLU slope
    output: OutputActivation = OutputActivation.SOFTMAX
    bias_std: float = 0.1

    def validate(self) -> None:
        if self.feature_count <= 0:
            raise ConfigurationError(f"feature_count must be positive, got {self.feature_count}")
        if not self.glyphs:
            raise ConfigurationError("cannot build a model without glyphs")
        if self.hidden_layers < 0:
            raise ConfigurationError(f"hidden_layers must be >= 0, got {self.hidden_layers}")
        if self.hidden_layers and self.hidden_neurons <= 0:
            raise ConfigurationError(f"hidden_neurons must be positive, got {self.hidden_neurons}")
        if self.bias_std < 0:
            raise ConfigurationError(f"bias_std must be >= 0, got {self.bias_std}")


@dataclass(frozen=True, eq=False)
class Model:
    glyphs: tuple[str, ...]
    layers: tuple[Layer, ...]
    alpha: float
    output: OutputActivation = field(default=OutputActivation.SOFTMAX)

    def __post_init__(self) -> None:
        object.__setattr__(self, "glyphs", tuple(self.glyphs))
        object.__setattr__(self, "layers", tuple(self.layers))
        object.__setattr__(self, "alpha", float(self.alpha))
        object.__setattr__(self, "output", OutputActivation(self.output))
        self._check_shapes()

    def _check_shapes(self) -> None:
        if not self.glyphs:
            raise ConfigurationError("model has no glyphs")
        if len(set(self.glyphs)) != len(self.glyphs):
            raise ConfigurationError("model glyph labels must be unique")
        if not self.layers:
            raise ConfigurationError("model has no layers")
        for i in range(1, len(self.layers)):
            prev, cur = self.layers[i - 1], self.layers[i]
            if cur.cols != prev.rows:
                raise ConfigurationError(
                    f"layer {i} takes {cur.cols} inputs but layer {i - 1} produces {prev.rows}"
                )
        if self.layers[-1].rows != len(self.glyphs):
            raise ConfigurationError(
                f"output layer has {self.layers[-1].rows} rows for {len(self.glyphs)} glyphs"
            )

    @classmethod
    def initialize(cls, params: ModelInitParams, rng: np.random.Generator) -> Model:
        """Fresh model with He-normal weights (std = sqrt(2 / fan_in))."""
        params.validate()
        sizes = [params.feature_count] + [params.hidden_neurons] * params.hidden_layers + [len(params.glyphs)]
        layers = []
        for fan_in, fan_out in zip(sizes[:-1], sizes[1:]):
            weights = rng.normal(0.0, math.sqrt(2.0 / fan_in), size=(fan_out, fan_in))
            biases = rng.normal(0.0, params.bias_std, size=fan_out)
            layers.append(Layer(weights, biases))
        return cls(tuple(params.glyphs), tuple(layers), params.alpha, params.output)

    @property
    def feature_count(self) -> int:
        return self.layers[0].cols

    def forward(self, features: NDArray[np.float64]) -> tuple[NDArray[np.float64], list[NDArray[np.float64]]]:
        """Propagate one feature vector; returns the output and every layer's activation.

        ``trace[0]`` is the input and ``trace[-1]`` the output distribution.
        """
        x = np.asarray(features, dtype=np.float64)
        if x.shape != (self.feature_count,):
            raise ConfigurationError(f"model expects {self.feature_count} features, got shape {x.shape}")

        trace = [x]
        last = len(self.layers) - 1
        for i, layer in enumerate(self.layers):
            z = layer.weights @ x + layer.biases
            if i < last:
                x = leaky_relu(z, self.alpha)
            elif self.output is OutputActivation.SOFTMAX:
                x = softmax(z)
            else:
                x = expit(z)
            trace.append(x)
        return x, trace

    def predict(self, features: NDArray[np.float64]) -> NDArray[np.float64]:
        return self.forward(features)[0]

    def with_layers(self, layers: Sequence[Layer]) -> Model:
        return Model(self.glyphs, tuple(layers), self.alpha, self.output)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Model):
            return NotImplemented
        return (
            self.glyphs == other.glyphs
            and self.alpha == other.alpha
            and self.output == other.output
            and self.layers == other.layers
        )
