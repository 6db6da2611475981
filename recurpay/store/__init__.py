"""Record store interface and implementations."""

from .memory_store import InMemoryRecordStore
from .protocols import RecordStore
from .sqlite_store import SQLiteRecordStore

__all__ = ["InMemoryRecordStore", "RecordStore", "SQLiteRecordStore"]
