"""Training examples, feature scaling and the preprocessed-data file format.

Preprocessed data is JSON Lines, one tile per line:

    {"intensities": [0.1234567, ...], "width": 8, "height": 8, "scores": {"#": 0.41, ".": 0.87}}

Files written by older tooling used a plain-text line per tile,
``i1,i2,... ; glyph , score ; glyph , score``; ``read_examples`` accepts both.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

import numpy as np
from numpy.typing import NDArray

from glyphsight.engine.config import FeatureScaling
from glyphsight.engine.errors import ConfigurationError
from glyphsight.engine.tile import Tile
from glyphsight.memo.store import DEFAULT_PRECISION
from glyphsight.utils.math_helpers import round_to, zscore

if TYPE_CHECKING:
    from glyphsight.engine.classifier import Classifier

logger = logging.getLogger(__name__)

_LEGACY_RECORD_SEP = " ; "
_LEGACY_PAIR_SEP = " , "


def standardize(intensities: NDArray[np.float64], scaling: FeatureScaling) -> NDArray[np.float64]:
    """Network input for a tile. Missing pixels count as intensity 0."""
    values = np.nan_to_num(np.asarray(intensities, dtype=np.float64), nan=0.0)
    if FeatureScaling(scaling) is FeatureScaling.RANGE:
        return 2.0 * values - 1.0
    return zscore(values)


def smooth_targets(scores: NDArray[np.float64], falloff: float, threshold: float) -> NDArray[np.float64]:
    """Turn raw per-glyph scores into a target distribution.

    Each score is weighted by a Gaussian of its distance from the best
    score, weights under ``threshold`` are zeroed, and the rest are
    renormalized to sum to 1.
    """
    scores = np.asarray(scores, dtype=np.float64)
    best = float(np.max(scores))
    weights = np.exp(-((best - scores) ** 2) / (2.0 * falloff * falloff))
    weights[weights < threshold] = 0.0
    return weights / weights.sum()


@dataclass(frozen=True, eq=False)
class TrainingExample:
    """Tile intensities plus raw per-glyph scores in model glyph order."""

    intensities: NDArray[np.float64]
    scores: NDArray[np.float64]

    def __post_init__(self) -> None:
        object.__setattr__(self, "intensities", np.asarray(self.intensities, dtype=np.float64).ravel())
        object.__setattr__(self, "scores", np.asarray(self.scores, dtype=np.float64).ravel())
        if self.scores.size == 0:
            raise ConfigurationError("training example has no glyph scores")

    def features(self, scaling: FeatureScaling) -> NDArray[np.float64]:
        return standardize(self.intensities, scaling)

    def targets(self, falloff: float, threshold: float) -> NDArray[np.float64]:
        return smooth_targets(self.scores, falloff, threshold)

    @classmethod
    def from_mapping(
        cls, intensities: Sequence[float], scores: Mapping[str, float], glyphs: Sequence[str]
    ) -> TrainingExample:
        """Align a glyph->score mapping to ``glyphs``; absent glyphs score 0."""
        return cls(np.asarray(intensities, dtype=np.float64), np.array([scores.get(g, 0.0) for g in glyphs]))


def examples_from_tiles(tiles: Iterable[Tile], classifier: Classifier) -> Iterator[TrainingExample]:
    """Label tiles live with the classifier's SSIM scores."""
    glyphs = classifier.codebook.symbols
    for tile in tiles:
        scores = classifier.score_all(tile)
        yield TrainingExample(tile.intensities, np.array([scores[g] for g in glyphs]))


# --- preprocessed files ---


@dataclass(frozen=True)
class PreprocessedRecord:
    """One parsed line. Legacy lines carry no tile dimensions."""

    intensities: list[float]
    scores: dict[str, float]
    width: int | None = None
    height: int | None = None

    @property
    def shape(self) -> tuple[int, int] | None:
        if self.width is None or self.height is None:
            return None
        return self.width, self.height


def format_record(tile: Tile, scores: Mapping[str, float], precision: int = DEFAULT_PRECISION) -> str:
    rounded = round_to(tile.intensities, precision)
    record = {
        "intensities": [None if np.isnan(v) else float(v) for v in rounded],
        "width": tile.width,
        "height": tile.height,
        "scores": {g: float(s) for g, s in scores.items()},
    }
    return json.dumps(record, ensure_ascii=False)


def parse_record(line: str) -> PreprocessedRecord:
    """Parse one JSON or legacy line."""
    line = line.strip()
    if line.startswith("{"):
        record = json.loads(line)
        intensities = [np.nan if v is None else float(v) for v in record["intensities"]]
        width, height = int(record["width"]), int(record["height"])
        if width * height != len(intensities):
            raise ValueError(f"{len(intensities)} intensities do not fill a {width}x{height} tile")
        scores = {str(g): float(s) for g, s in record["scores"].items()}
        return PreprocessedRecord(intensities, scores, width, height)

    head, sep, tail = line.partition(_LEGACY_RECORD_SEP)
    if not sep:
        raise ValueError(f"malformed preprocessed line: {line[:60]!r}")
    intensities = [float(v) for v in head.split(",")]
    scores = {}
    for pair in tail.split(_LEGACY_RECORD_SEP):
        glyph, sep, score = pair.rpartition(_LEGACY_PAIR_SEP)
        if not sep:
            raise ValueError(f"malformed glyph/score pair: {pair!r}")
        scores[glyph] = float(score)
    return PreprocessedRecord(intensities, scores)


def write_examples(
    out: TextIO,
    records: Iterable[tuple[Tile, Mapping[str, float]]],
    precision: int = DEFAULT_PRECISION,
) -> int:
    count = 0
    for tile, scores in records:
        out.write(format_record(tile, scores, precision))
        out.write("\n")
        count += 1
    return count


def read_examples(
    path: str | Path, glyphs: Sequence[str], shape: tuple[int, int] | None = None
) -> Iterator[TrainingExample]:
    """Stream examples from a preprocessed file, skipping malformed lines.

    With ``shape = (width, height)`` records of any other size are skipped
    too; legacy lines are checked by sample count only.
    """
    with open(path, encoding="utf-8") as f:
        for lineno, line in enumerate(f, 1):
            if not line.strip():
                continue
            try:
                record = parse_record(line)
            except (ValueError, KeyError, TypeError) as e:
                logger.warning("Skipping %s:%d: %s", path, lineno, e)
                continue
            if shape is not None and not _fits(record, shape):
                logger.warning(
                    "Skipping %s:%d: record shape %s does not match %dx%d",
                    path, lineno, record.shape or len(record.intensities), *shape,
                )
                continue
            yield TrainingExample.from_mapping(record.intensities, record.scores, glyphs)


def _fits(record: PreprocessedRecord, shape: tuple[int, int]) -> bool:
    if record.shape is None:
        return len(record.intensities) == shape[0] * shape[1]
    return record.shape == tuple(shape)
