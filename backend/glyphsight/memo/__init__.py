"""Memoization stores for similarity scores and glyph decisions."""

from glyphsight.memo.sqlite_store import SqliteMemoStore
from glyphsight.memo.store import InMemoryMemoStore, KeySpace, MemoStore, NullMemoStore

__all__ = [
    "MemoStore",
    "InMemoryMemoStore",
    "NullMemoStore",
    "SqliteMemoStore",
    "KeySpace",
]
