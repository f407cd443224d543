"""Two-tier memo store: in-memory dictionaries in front of a sqlite file.

Misses in memory fall through to sqlite; hits there are promoted back into
memory. Durable writes are upserts queued on a single background thread so
lookups never wait on disk.
"""

from __future__ import annotations

import logging
import random
import sqlite3
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any

from glyphsight.engine.errors import MemoStoreError
from glyphsight.memo.store import (
    _MISS,
    DEFAULT_MAX_ENTRIES,
    DEFAULT_PRECISION,
    InMemoryMemoStore,
    KeySpace,
)

logger = logging.getLogger(__name__)

_TABLES = {
    KeySpace.SCORES: "similarity_memo",
    KeySpace.GLYPHS: "glyph_memo",
}

_SCHEMA = """
CREATE TABLE IF NOT EXISTS similarity_memo (key TEXT PRIMARY KEY, value REAL NOT NULL);
CREATE TABLE IF NOT EXISTS glyph_memo (key TEXT PRIMARY KEY, value TEXT NOT NULL);
"""


class SqliteMemoStore(InMemoryMemoStore):
    """In-memory store backed by a durable sqlite tier."""

    def __init__(
        self,
        path: str | Path,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        precision: int = DEFAULT_PRECISION,
        rng: random.Random | None = None,
    ) -> None:
        super().__init__(max_entries=max_entries, precision=precision, rng=rng)
        self.path = str(path)
        self._db_lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(self.path, check_same_thread=False)
            with self._db_lock, self._conn:
                self._conn.executescript(_SCHEMA)
        except sqlite3.Error as e:
            raise MemoStoreError(f"cannot open memo database {self.path}: {e}") from e
        self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="memo-writer")
        self._closed = False

    def _lookup(self, space: KeySpace, key: str) -> Any:
        hit = super()._lookup(space, key)
        if hit is not _MISS:
            return hit

        try:
            with self._db_lock:
                row = self._conn.execute(
                    f"SELECT value FROM {_TABLES[space]} WHERE key = ?", (key,)
                ).fetchone()
        except sqlite3.Error as e:
            raise MemoStoreError(f"durable lookup failed: {e}") from e
        if row is None:
            return _MISS

        # Promote into the memory tier
        super()._insert(space, key, row[0])
        return row[0]

    def _insert(self, space: KeySpace, key: str, value: Any) -> None:
        super()._insert(space, key, value)
        if self._closed:
            return
        try:
            self._writer.submit(self._write_durable, space, key, value)
        except RuntimeError as e:
            raise MemoStoreError(f"durable writer unavailable: {e}") from e

    def _write_durable(self, space: KeySpace, key: str, value: Any) -> None:
        table = _TABLES[space]
        try:
            with self._db_lock, self._conn:
                self._conn.execute(
                    f"INSERT INTO {table} (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                    (key, value),
                )
        except sqlite3.Error as e:
            logger.warning("Durable memo write failed for %s: %s", table, e)

    def _clear_durable(self) -> None:
        with self._db_lock, self._conn:
            for table in _TABLES.values():
                self._conn.execute(f"DELETE FROM {table}")

    def sync(self) -> None:
        """Block until every queued durable write has landed."""
        if not self._closed:
            self._writer.submit(lambda: None).result()

    def durable_count(self, space: KeySpace) -> int:
        try:
            with self._db_lock:
                (count,) = self._conn.execute(f"SELECT COUNT(*) FROM {_TABLES[space]}").fetchone()
        except sqlite3.Error as e:
            raise MemoStoreError(f"durable count failed: {e}") from e
        return int(count)

    def flush(self) -> None:
        super().flush()
        if self._closed:
            return
        # Queued behind pending writes so nothing reappears afterwards
        future: Future[None] = self._writer.submit(self._clear_durable)
        try:
            future.result()
        except sqlite3.Error as e:
            raise MemoStoreError(f"durable flush failed: {e}") from e
        logger.info("Memo store flushed (durable tier %s)", self.path)

    def stats(self) -> dict[str, int]:
        stats = super().stats()
        try:
            for space in KeySpace:
                stats[f"durable_{space.value}"] = self.durable_count(space)
        except MemoStoreError as e:
            # Memory-tier counts are still accurate
            logger.warning("Durable memo stats unavailable: %s", e)
        return stats

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.shutdown(wait=True)
        with self._db_lock:
            self._conn.close()
