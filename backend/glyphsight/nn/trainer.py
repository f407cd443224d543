"""Mini-batch trainer: forward, class-weighted backward, Adam, cancellation.

Within a batch every forward pass finishes before any backward pass starts,
and every backward pass finishes before gradients are averaged. Batches are
applied strictly one after another. Cancellation is checked at each batch
boundary and between the forward, backward and update phases; a cancelled
batch leaves the previous model as the result.
"""

from __future__ import annotations

import itertools
import logging
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from enum import Enum

import numpy as np
from numpy.typing import NDArray

from glyphsight.engine.config import TrainingSettings
from glyphsight.engine.errors import ConfigurationError, TrainingCancelled
from glyphsight.engine.workers import CancellationToken, WorkerPool
from glyphsight.nn.dataset import TrainingExample
from glyphsight.nn.model import Model, ModelInitParams, OutputActivation, leaky_relu_derivative
from glyphsight.nn.optimizer import AdamState, apply_gradients
from glyphsight.utils.math_helpers import clamp, inverse_logistic, minmax_unit, zscore

logger = logging.getLogger(__name__)

# Floor inside log() for the loss
LOG_EPS = 1e-5

Checkpoint = Callable[[Model, int], None]


class TrainingOutcome(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class TrainingError:
    code: str  # empty_batch | empty_codebook | invalid_learning_rate | shape_mismatch
    message: str


@dataclass
class TrainingResult:
    outcome: TrainingOutcome
    model: Model | None
    state: AdamState | None = None
    batches_completed: int = 0
    loss: float | None = None
    error: TrainingError | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is TrainingOutcome.COMPLETED


class _Rejected(Exception):
    def __init__(self, error: TrainingError) -> None:
        super().__init__(error.message)
        self.error = error


@dataclass
class _Gradients:
    weights: list[NDArray[np.float64]]
    biases: list[NDArray[np.float64]]


class Trainer:
    """Trains a Model on a stream of TrainingExamples."""

    def __init__(
        self,
        settings: TrainingSettings | None = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        self.settings = settings or TrainingSettings()
        self.settings.validate()
        self.rng = rng or np.random.default_rng()
        self._pool = WorkerPool(self.settings.threads)

    def __enter__(self) -> Trainer:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        self._pool.shutdown()

    # --- public API ---

    def train(
        self,
        model: Model | ModelInitParams,
        examples: Iterable[TrainingExample],
        state: AdamState | None = None,
        checkpoint: Checkpoint | None = None,
        cancel: CancellationToken | None = None,
        max_batches: int | None = None,
        epoch: int = 0,
    ) -> TrainingResult:
        """Run one batch per ``batch_size`` examples until the stream ends.

        ``checkpoint(model, batches_completed)`` runs after every applied
        batch and is never interrupted by cancellation.
        """
        cancel = cancel or CancellationToken()
        try:
            model = self._prepare(model)
        except _Rejected as e:
            return self._failed(None, None, 0, None, e.error)
        if state is None or not state.matches(model):
            state = AdamState.for_model(model)

        lr = self.settings.effective_learning_rate(epoch)
        batches = 0
        loss: float | None = None
        stream = iter(examples)

        while max_batches is None or batches < max_batches:
            if cancel.cancelled:
                return self._cancelled(model, state, batches, loss)
            batch = list(itertools.islice(stream, self.settings.batch_size))
            if not batch:
                break
            try:
                model, state, loss = self._step(model, state, batch, lr, cancel)
            except TrainingCancelled:
                return self._cancelled(model, state, batches, loss)
            except _Rejected as e:
                return self._failed(model, state, batches, loss, e.error)
            batches += 1
            logger.info("Batch %d: loss %.5f (lr %.3g, %d examples)", batches, loss, lr, len(batch))
            if checkpoint is not None:
                checkpoint(model, batches)

        if batches == 0:
            return self._failed(model, state, 0, None, TrainingError("empty_batch", "no training examples"))
        return TrainingResult(TrainingOutcome.COMPLETED, model, state, batches, loss)

    def train_batch(
        self,
        model: Model,
        batch: Sequence[TrainingExample],
        state: AdamState | None = None,
        cancel: CancellationToken | None = None,
        epoch: int = 0,
    ) -> TrainingResult:
        """Apply exactly one batch."""
        if not batch:
            return self._failed(model, state, 0, None, TrainingError("empty_batch", "cannot train on 0 examples"))
        return self.train(model, batch, state, cancel=cancel, max_batches=1, epoch=epoch)

    def fit(
        self,
        model: Model | ModelInitParams,
        examples: Sequence[TrainingExample],
        epochs: int,
        checkpoint: Checkpoint | None = None,
        cancel: CancellationToken | None = None,
    ) -> TrainingResult:
        """Several passes over an in-memory dataset, decaying the learning rate per epoch."""
        result = TrainingResult(TrainingOutcome.COMPLETED, None)
        state = None
        total = 0
        for epoch in range(epochs):
            result = self.train(model, examples, state, checkpoint, cancel, epoch=epoch)
            total += result.batches_completed
            result.batches_completed = total
            if not result.ok:
                return result
            model, state = result.model, result.state
            logger.info("Epoch %d done: loss %.5f", epoch + 1, result.loss)
        return result

    # --- steps ---

    def _prepare(self, model: Model | ModelInitParams) -> Model:
        if self.settings.learning_rate <= 0:
            raise _Rejected(
                TrainingError("invalid_learning_rate", f"learning rate must be positive, got {self.settings.learning_rate}")
            )
        if isinstance(model, ModelInitParams):
            if not model.glyphs:
                raise _Rejected(TrainingError("empty_codebook", "no glyphs were provided"))
            try:
                return Model.initialize(model, self.rng)
            except ConfigurationError as e:
                raise _Rejected(TrainingError("shape_mismatch", str(e))) from e
        return model

    def _step(
        self,
        model: Model,
        state: AdamState,
        batch: Sequence[TrainingExample],
        lr: float,
        cancel: CancellationToken,
    ) -> tuple[Model, AdamState, float]:
        settings = self.settings
        cancel.raise_if_cancelled()
        self._check_batch(model, batch)

        features = [ex.features(settings.feature_scaling) for ex in batch]
        targets = np.stack([ex.targets(settings.target_falloff, settings.target_threshold) for ex in batch])

        t0 = time.perf_counter()
        traces = self._pool.map(lambda x: model.forward(x)[1], features, cancel)
        cancel.raise_if_cancelled()
        outputs = np.stack([trace[-1] for trace in traces])
        loss = self._loss(model, outputs, targets)
        class_weights = self.class_weights(targets)
        t1 = time.perf_counter()

        grads = self._pool.map(
            lambda i: self._backward(model, traces[i], targets[i], class_weights),
            range(len(batch)),
            cancel,
        )
        cancel.raise_if_cancelled()
        t2 = time.perf_counter()

        n = len(grads)
        avg_w = [sum(g.weights[l] for g in grads) / n for l in range(len(model.layers))]
        avg_b = [sum(g.biases[l] for g in grads) / n for l in range(len(model.layers))]
        new_model, new_state = apply_gradients(model, state, avg_w, avg_b, lr, settings)
        logger.debug(
            "Step: forward %.1fms, backward %.1fms, update %.1fms",
            (t1 - t0) * 1000,
            (t2 - t1) * 1000,
            (time.perf_counter() - t2) * 1000,
        )
        return new_model, new_state, loss

    def _check_batch(self, model: Model, batch: Sequence[TrainingExample]) -> None:
        for i, ex in enumerate(batch):
            if ex.intensities.size != model.feature_count:
                raise _Rejected(
                    TrainingError(
                        "shape_mismatch",
                        f"example {i} has {ex.intensities.size} intensities, model expects {model.feature_count}",
                    )
                )
            if ex.scores.size != len(model.glyphs):
                raise _Rejected(
                    TrainingError(
                        "shape_mismatch",
                        f"example {i} has {ex.scores.size} scores, model has {len(model.glyphs)} glyphs",
                    )
                )

    def _backward(
        self,
        model: Model,
        trace: list[NDArray[np.float64]],
        target: NDArray[np.float64],
        class_weights: NDArray[np.float64],
    ) -> _Gradients:
        clip = self.settings.gradient_clip
        n_layers = len(model.layers)
        weights: list[NDArray[np.float64]] = [np.empty(0)] * n_layers
        biases: list[NDArray[np.float64]] = [np.empty(0)] * n_layers

        # Softmax + cross-entropy and sigmoid + BCE share this output error
        delta = (trace[-1] - target) * class_weights
        for l in range(n_layers - 1, -1, -1):
            weights[l] = clamp(np.outer(delta, trace[l]), clip)
            biases[l] = clamp(delta, clip)
            if l > 0:
                delta = (model.layers[l].weights.T @ delta) * leaky_relu_derivative(trace[l], model.alpha)
        return _Gradients(weights, biases)

    def class_weights(self, targets: NDArray[np.float64]) -> NDArray[np.float64]:
        """Per-glyph weights that fall as a glyph's share of the batch grows."""
        mass = targets.sum(axis=0)
        squashed = minmax_unit(zscore(mass))
        return inverse_logistic(squashed, self.settings.class_weight_center, self.settings.class_weight_steepness)

    @staticmethod
    def _loss(model: Model, outputs: NDArray[np.float64], targets: NDArray[np.float64]) -> float:
        log_p = np.log(np.maximum(outputs, LOG_EPS))
        if model.output is OutputActivation.SOFTMAX:
            per_example = -(targets * log_p).sum(axis=1)
        else:
            log_q = np.log(np.maximum(1.0 - outputs, LOG_EPS))
            per_example = -(targets * log_p + (1.0 - targets) * log_q).sum(axis=1)
        return float(per_example.mean())

    # --- results ---

    @staticmethod
    def _cancelled(model: Model, state: AdamState, batches: int, loss: float | None) -> TrainingResult:
        logger.info("Training cancelled after %d batches", batches)
        return TrainingResult(TrainingOutcome.CANCELLED, model, state, batches, loss)

    @staticmethod
    def _failed(
        model: Model | None,
        state: AdamState | None,
        batches: int,
        loss: float | None,
        error: TrainingError,
    ) -> TrainingResult:
        logger.warning("Training failed (%s): %s", error.code, error.message)
        return TrainingResult(TrainingOutcome.FAILED, model, state, batches, loss, error)
