"""Memoization stores for similarity scores and glyph decisions.

Two key spaces share one store: similarity scores keyed by a pair of
intensity vectors, and chosen glyphs keyed by a single intensity vector.
The glyph space is only valid for the codebook the store was created
with. Keys are rounded to a store-wide decimal precision so floating-point
noise maps onto the same entry.
"""

from __future__ import annotations

import logging
import random
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from enum import Enum
from typing import Any, TypeVar

import numpy as np
from numpy.typing import ArrayLike

from glyphsight.engine.errors import ConfigurationError, MemoStoreError
from glyphsight.utils.math_helpers import round_to

logger = logging.getLogger(__name__)

V = TypeVar("V")

DEFAULT_PRECISION = 7
DEFAULT_MAX_ENTRIES = 65535

# Probability that each key is dropped when a key space hits capacity
CULL_RATIO = 0.5

_MISS = object()


class KeySpace(str, Enum):
    SCORES = "scores"
    GLYPHS = "glyphs"


def encode_key(values: ArrayLike, precision: int, shape: tuple[int, int] | None = None) -> str:
    """Canonical comma-joined form of a rounded intensity vector.

    ``shape`` prefixes the key with ``WxH``; equal samples laid out in
    different shapes stretch differently and must not share an entry.
    """
    rounded = round_to(np.asarray(values, dtype=np.float64).ravel(), precision)
    body = ",".join(f"{v:.{precision}f}" for v in rounded)
    return f"{shape[0]}x{shape[1]}:{body}" if shape is not None else body


def encode_pair_key(
    a: ArrayLike,
    b: ArrayLike,
    precision: int,
    shape_a: tuple[int, int] | None = None,
    shape_b: tuple[int, int] | None = None,
) -> str:
    return f"{encode_key(a, precision, shape_a)};{encode_key(b, precision, shape_b)}"


class ReadWriteLock:
    """Many readers or one writer. Waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class MemoStore:
    """Base store: key encoding, hit/miss accounting and fail-safe lookup.

    Subclasses provide ``_lookup`` / ``_insert``. Any ``MemoStoreError``
    they raise is logged and the value is computed directly instead.
    """

    def __init__(self, precision: int = DEFAULT_PRECISION) -> None:
        if precision < 0:
            raise ConfigurationError(f"precision must be >= 0, got {precision}")
        self.precision = precision
        self._stats_lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    # --- public API ---

    def score(
        self,
        a: ArrayLike,
        b: ArrayLike,
        compute: Callable[[], float],
        scope: str = "",
        shape_a: tuple[int, int] | None = None,
        shape_b: tuple[int, int] | None = None,
    ) -> float:
        """Similarity score for the pair (a, b), computed at most once per key.

        ``scope`` separates scores produced under different comparator settings.
        """
        key = encode_pair_key(a, b, self.precision, shape_a, shape_b)
        return self.get_or_compute(KeySpace.SCORES, f"{scope}|{key}" if scope else key, compute)

    def glyph(
        self,
        values: ArrayLike,
        compute: Callable[[], str],
        scope: str = "",
        shape: tuple[int, int] | None = None,
    ) -> str:
        """Chosen glyph for one tile's intensities.

        A decision depends on the whole codebook; callers sharing a store
        across codebooks must pass a ``scope`` that identifies theirs.
        """
        key = encode_key(values, self.precision, shape)
        return self.get_or_compute(KeySpace.GLYPHS, f"{scope}|{key}" if scope else key, compute)

    def get_or_compute(self, space: KeySpace, key: str, compute: Callable[[], V]) -> V:
        try:
            hit = self._lookup(space, key)
        except MemoStoreError as e:
            logger.warning("Memo lookup failed, computing directly: %s", e)
            hit = _MISS

        if hit is not _MISS:
            self._count(hit=True)
            return hit  # type: ignore[return-value]

        self._count(hit=False)
        value = compute()
        try:
            self._insert(space, key, value)
        except MemoStoreError as e:
            logger.warning("Memo insert failed, value not cached: %s", e)
        return value

    def try_get(self, space: KeySpace, key: str) -> Any | None:
        try:
            hit = self._lookup(space, key)
        except MemoStoreError as e:
            logger.warning("Memo lookup failed: %s", e)
            return None
        return None if hit is _MISS else hit

    def flush(self) -> None:
        """Drop every cached entry in every tier."""

    def stats(self) -> dict[str, int]:
        with self._stats_lock:
            return {"hits": self._hits, "misses": self._misses}

    def close(self) -> None:
        pass

    # --- backend hooks ---

    def _lookup(self, space: KeySpace, key: str) -> Any:
        return _MISS

    def _insert(self, space: KeySpace, key: str, value: Any) -> None:
        pass

    def _count(self, hit: bool) -> None:
        with self._stats_lock:
            if hit:
                self._hits += 1
            else:
                self._misses += 1


class NullMemoStore(MemoStore):
    """Always misses. For one-shot workloads where caching never pays off."""


class _Partition:
    def __init__(self) -> None:
        self.lock = ReadWriteLock()
        self.data: dict[str, Any] = {}


class InMemoryMemoStore(MemoStore):
    """Dictionary-backed store with randomized eviction.

    Each key space holds at most ``max_entries`` keys. When an insert would
    exceed that, every existing key is dropped with probability
    ``CULL_RATIO``; recently used keys get no protection.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        precision: int = DEFAULT_PRECISION,
        rng: random.Random | None = None,
    ) -> None:
        super().__init__(precision)
        if max_entries <= 0:
            raise ConfigurationError(f"max_entries must be positive, got {max_entries}")
        self.max_entries = max_entries
        self._rng = rng or random.Random()
        self._rng_lock = threading.Lock()
        self._partitions = {space: _Partition() for space in KeySpace}

    def _lookup(self, space: KeySpace, key: str) -> Any:
        part = self._partitions[space]
        with part.lock.read():
            return part.data.get(key, _MISS)

    def _insert(self, space: KeySpace, key: str, value: Any) -> None:
        part = self._partitions[space]
        with part.lock.write():
            if key not in part.data:
                while len(part.data) >= self.max_entries:
                    self._cull(part.data)
            part.data[key] = value

    def _cull(self, data: dict[str, Any]) -> None:
        before = len(data)
        with self._rng_lock:
            doomed = [k for k in data if self._rng.random() < CULL_RATIO]
        for k in doomed:
            del data[k]
        logger.debug("Memo cull: %d -> %d entries", before, len(data))

    def entry_count(self, space: KeySpace) -> int:
        part = self._partitions[space]
        with part.lock.read():
            return len(part.data)

    def flush(self) -> None:
        for part in self._partitions.values():
            with part.lock.write():
                part.data.clear()
        logger.info("Memo store flushed (memory tier)")

    def stats(self) -> dict[str, int]:
        stats = super().stats()
        for space in KeySpace:
            stats[space.value] = self.entry_count(space)
        return stats
