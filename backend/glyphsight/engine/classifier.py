"""Classification orchestrator: picks one glyph per tile.

SSIM mode scores the tile against every glyph in parallel, waits for all of
them, then takes the highest score; ties go to the glyph listed first in
the codebook. Decisions and pairwise scores go through the memo store.
Model mode runs one forward pass and takes the argmax, or a random glyph
within ``tolerance`` of the best probability.
"""

from __future__ import annotations

import logging
import random
import threading
from collections.abc import Iterable
from dataclasses import dataclass

import numpy as np

from glyphsight.engine.config import ClassificationMethod, ClassifierOptions
from glyphsight.engine.errors import ConfigurationError
from glyphsight.engine.ssim import SSIMComparator
from glyphsight.engine.tile import Codebook, Glyph, Tile
from glyphsight.engine.workers import WorkerPool
from glyphsight.memo.store import MemoStore, NullMemoStore
from glyphsight.nn.dataset import standardize
from glyphsight.nn.model import Model

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Classification:
    glyph: str
    color: int | None = None


class Classifier:
    def __init__(
        self,
        codebook: Codebook | None = None,
        comparator: SSIMComparator | None = None,
        model: Model | None = None,
        store: MemoStore | None = None,
        options: ClassifierOptions | None = None,
    ) -> None:
        self.options = options or ClassifierOptions()
        self.options.validate()
        self.method = ClassificationMethod(self.options.method)

        if self.method is ClassificationMethod.MODEL:
            if model is None:
                raise ConfigurationError("model mode needs a trained model")
            if codebook is None:
                codebook = Codebook(model.glyphs)
            elif codebook.symbols != model.glyphs:
                raise ConfigurationError(
                    f"model glyphs {model.glyphs!r} do not match codebook {codebook.symbols!r}"
                )
        elif codebook is None:
            raise ConfigurationError("SSIM mode needs a glyph codebook")
        else:
            codebook.require_tiles()

        self.codebook = codebook
        self.comparator = comparator or SSIMComparator()
        self.model = model
        self.store = store or NullMemoStore()
        self._pool = WorkerPool(self.options.threads)
        self._rng = random.Random(self.options.seed)
        self._rng_lock = threading.Lock()

        # A shared store may hold results for other comparator settings and codebooks
        self._score_scope = self.comparator.fingerprint()
        self._glyph_scope = f"{self._score_scope}:{self.codebook.fingerprint(self.store.precision)}"

    def __enter__(self) -> Classifier:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        self._pool.shutdown()

    def classify(self, tile: Tile) -> Classification:
        if self.method is ClassificationMethod.MODEL:
            glyph = self._predict(tile)
        else:
            glyph = self.store.glyph(
                tile.intensities,
                lambda: self._best_match(tile),
                self._glyph_scope,
                shape=(tile.width, tile.height),
            )
        return Classification(glyph, tile.color)

    def classify_many(self, tiles: Iterable[Tile]) -> list[Classification]:
        return [self.classify(tile) for tile in tiles]

    def score_all(self, tile: Tile) -> dict[str, float]:
        """SSIM score of ``tile`` against every glyph, in codebook order."""
        scores = self._pool.map(lambda g: self._score(tile, g), self.codebook)
        return dict(zip(self.codebook.symbols, scores))

    def _score(self, tile: Tile, glyph: Glyph) -> float:
        assert glyph.tile is not None
        glyph_tile = glyph.tile
        return self.store.score(
            tile.intensities,
            glyph_tile.intensities,
            lambda: self.comparator.compare(tile, glyph_tile),
            self._score_scope,
            shape_a=(tile.width, tile.height),
            shape_b=(glyph_tile.width, glyph_tile.height),
        )

    def _best_match(self, tile: Tile) -> str:
        scores = list(self.score_all(tile).values())
        # max() keeps the first of equal scores, i.e. codebook order
        best = max(range(len(scores)), key=scores.__getitem__)
        return self.codebook[best].symbol

    def _predict(self, tile: Tile) -> str:
        assert self.model is not None
        probs = self.model.predict(standardize(tile.intensities, self.options.feature_scaling))
        best = int(np.argmax(probs))
        if self.options.tolerance > 0:
            floor = probs[best] * (1.0 - self.options.tolerance)
            candidates = [i for i, p in enumerate(probs) if p >= floor]
            with self._rng_lock:
                best = self._rng.choice(candidates)
        return self.model.glyphs[best]
