"""
Key-value stores used to persist feed state and entries.

Values are opaque bytes to the store; EntryStore writes UTF-8 JSON.
"""

import threading
from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from feed_watch.errors import PersistenceError
from feed_watch.models import KeyValueModel
from feed_watch.storage.database import DatabaseManager


class KeyValueStore(ABC):
    """Minimal persistent key-value store."""

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Return the value stored under key, or None."""

    @abstractmethod
    def set(self, key: str, value: bytes) -> None:
        """Store value under key, replacing any previous value."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key; missing keys are ignored."""

    @abstractmethod
    def keys(self, prefix: str = "") -> list[str]:
        """List stored keys starting with prefix."""


class MemoryKeyValueStore(KeyValueStore):
    """Process-local store, used when persistence is not wanted."""

    def __init__(self):
        self._data: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))


class SqlKeyValueStore(KeyValueStore):
    """Store backed by the `kv_store` table."""

    def __init__(self, db_manager: DatabaseManager, create_tables: bool = True):
        """Initialize SQL key-value store.

        Args:
            db_manager: DatabaseManager providing sessions
            create_tables: Create the table if it does not exist yet
        """
        self.db_manager = db_manager
        if create_tables:
            db_manager.init_db()

    def get(self, key: str) -> Optional[bytes]:
        try:
            with self.db_manager.session() as session:
                row = session.get(KeyValueModel, key)
                return row.value.encode("utf-8") if row is not None else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read {key}: {e}") from e

    def set(self, key: str, value: bytes) -> None:
        try:
            with self.db_manager.session() as session:
                session.merge(KeyValueModel(key=key, value=value.decode("utf-8")))
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to write {key}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            with self.db_manager.session() as session:
                row = session.get(KeyValueModel, key)
                if row is not None:
                    session.delete(row)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to delete {key}: {e}") from e

    def keys(self, prefix: str = "") -> list[str]:
        try:
            with self.db_manager.session() as session:
                stmt = select(KeyValueModel.key).order_by(KeyValueModel.key)
                if prefix:
                    stmt = stmt.where(KeyValueModel.key.startswith(prefix, autoescape=True))
                return list(session.scalars(stmt))
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list keys: {e}") from e
