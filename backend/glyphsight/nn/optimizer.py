"""Adam optimizer state and update step."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from glyphsight.engine.config import TrainingSettings
from glyphsight.nn.model import Layer, Model
from glyphsight.utils.math_helpers import clamp


@dataclass(frozen=True, eq=False)
class LayerMoments:
    """First (m) and second (v) moment estimates for one layer."""

    m_weights: NDArray[np.float64]
    v_weights: NDArray[np.float64]
    m_biases: NDArray[np.float64]
    v_biases: NDArray[np.float64]

    @classmethod
    def zeros_like(cls, layer: Layer) -> LayerMoments:
        return cls(
            np.zeros_like(layer.weights),
            np.zeros_like(layer.weights),
            np.zeros_like(layer.biases),
            np.zeros_like(layer.biases),
        )


@dataclass(frozen=True, eq=False)
class AdamState:
    """Moments paired 1:1 with a model's layers, plus the number of applied steps."""

    moments: tuple[LayerMoments, ...]
    step: int = 0

    @classmethod
    def for_model(cls, model: Model) -> AdamState:
        return cls(tuple(LayerMoments.zeros_like(layer) for layer in model.layers))

    def matches(self, model: Model) -> bool:
        if len(self.moments) != len(model.layers):
            return False
        return all(
            m.m_weights.shape == layer.weights.shape and m.m_biases.shape == layer.biases.shape
            for m, layer in zip(self.moments, model.layers)
        )


def _adam(
    param: NDArray[np.float64],
    grad: NDArray[np.float64],
    m: NDArray[np.float64],
    v: NDArray[np.float64],
    step: int,
    lr: float,
    settings: TrainingSettings,
) -> tuple[NDArray[np.float64], NDArray[np.float64], NDArray[np.float64]]:
    b1, b2 = settings.beta1, settings.beta2
    m = b1 * m + (1.0 - b1) * grad
    v = b2 * v + (1.0 - b2) * grad**2
    m_hat = m / (1.0 - b1 ** (step + 1))
    v_hat = v / (1.0 - b2 ** (step + 1))
    update = m_hat / (np.sqrt(v_hat) + settings.adam_eps) + settings.l2 * param
    # No parameter moves more than lr * gradient_clip in one step
    update = clamp(update, settings.gradient_clip)
    return param - lr * update, m, v


def apply_gradients(
    model: Model,
    state: AdamState,
    weight_grads: Sequence[NDArray[np.float64]],
    bias_grads: Sequence[NDArray[np.float64]],
    lr: float,
    settings: TrainingSettings,
) -> tuple[Model, AdamState]:
    """Return the updated model and optimizer state; inputs are left untouched."""
    layers = []
    moments = []
    for layer, mom, gw, gb in zip(model.layers, state.moments, weight_grads, bias_grads):
        weights, m_w, v_w = _adam(layer.weights, gw, mom.m_weights, mom.v_weights, state.step, lr, settings)
        biases, m_b, v_b = _adam(layer.biases, gb, mom.m_biases, mom.v_biases, state.step, lr, settings)
        layers.append(Layer(weights, biases))
        moments.append(LayerMoments(m_w, v_w, m_b, v_b))
    return model.with_layers(layers), AdamState(tuple(moments), state.step + 1)
