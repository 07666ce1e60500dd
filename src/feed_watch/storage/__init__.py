"""Storage layer modules for feed-watch."""

from feed_watch.storage.database import DatabaseManager
from feed_watch.storage.entry_store import EntryStore
from feed_watch.storage.kv_store import KeyValueStore, MemoryKeyValueStore, SqlKeyValueStore

__all__ = [
    "DatabaseManager",
    "EntryStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "SqlKeyValueStore",
]
