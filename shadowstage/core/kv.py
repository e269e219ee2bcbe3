"""
Key-value backends behind the overlay store.
SQLite is the durable backend; the in-memory one exists for local runs and tests and is not shared across processes.
"""

import sqlite3
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from . import config
from .db import get_db, init_db
from .errors import BackingStoreUnavailable


class IKeyValueStore(ABC):
    """Abstract interface for the get/put/delete contract the overlay relies on."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored string, or None when absent."""
        pass

    @abstractmethod
    def put(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one (last write wins)."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key; deleting an absent key is not an error."""
        pass

    @abstractmethod
    def keys(self, prefix: str = "") -> List[str]:
        """List stored keys starting with prefix, sorted."""
        pass


class InMemoryKeyValueStore(IKeyValueStore):
    """Process-local dict backend."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def put(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class SqliteKeyValueStore(IKeyValueStore):
    """Durable backend on the `kv` table."""

    def __init__(self, db_path: str = None):
        self.db_path = db_path or config.DB_PATH
        init_db(self.db_path)

    def get(self, key: str) -> Optional[str]:
        try:
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT value FROM kv WHERE key = ?", (key,))
                row = cursor.fetchone()
                return row[0] if row else None
        except sqlite3.Error as e:
            raise BackingStoreUnavailable(f"Key-value read failed for '{key}': {e}")

    def put(self, key: str, value: str) -> None:
        try:
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute(
                    "INSERT INTO kv (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP",
                    (key, value)
                )
                conn.commit()
        except sqlite3.Error as e:
            raise BackingStoreUnavailable(f"Key-value write failed for '{key}': {e}")

    def delete(self, key: str) -> None:
        try:
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("DELETE FROM kv WHERE key = ?", (key,))
                conn.commit()
        except sqlite3.Error as e:
            raise BackingStoreUnavailable(f"Key-value delete failed for '{key}': {e}")

    def keys(self, prefix: str = "") -> List[str]:
        try:
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                # substr comparison avoids LIKE wildcards in paths such as "a_b.html"
                cursor.execute(
                    "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                    (len(prefix), prefix)
                )
                return [row[0] for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise BackingStoreUnavailable(f"Key-value listing failed for prefix '{prefix}': {e}")


def get_kv_store(db_path: str = None) -> IKeyValueStore:
    """Get configured key-value backend."""
    backend = config.get_shadow_backend()
    if backend == "memory":
        return InMemoryKeyValueStore()
    return SqliteKeyValueStore(db_path)
