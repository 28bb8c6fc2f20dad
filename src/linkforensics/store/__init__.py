"""Forensic record persistence."""

from linkforensics.store.base import (
    ForensicStore,
    StoreResult,
    compute_stats,
    merge_records,
)
from linkforensics.store.memory import InMemoryForensicStore, NullForensicStore
from linkforensics.store.sqlite import SQLiteForensicStore

__all__ = [
    "ForensicStore",
    "StoreResult",
    "compute_stats",
    "merge_records",
    "InMemoryForensicStore",
    "NullForensicStore",
    "SQLiteForensicStore",
]
