"""Durable client-side key-value storage"""

import logging
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from ..core.errors import StorageError

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """String keys to string values, surviving process restarts where the backend allows"""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def keys(self, prefix: str = "") -> list[str]:
        pass

    def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with prefix, returning how many went"""
        doomed = self.keys(prefix)
        for key in doomed:
            self.delete(key)
        return len(doomed)


class MemoryStore(KeyValueStore):
    """In-process store; contents vanish with the process"""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self.data if k.startswith(prefix)]


class SqliteStore(KeyValueStore):
    """Key-value store in a single SQLite table"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        try:
            conn = self._connect()
            try:
                conn.execute(
                    "CREATE TABLE IF NOT EXISTS kv("
                    "key TEXT PRIMARY KEY, value TEXT NOT NULL, updated_at TEXT NOT NULL)"
                )
                conn.commit()
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Failed to open storage at {self.path}: {e}") from e

    def get(self, key: str) -> Optional[str]:
        try:
            conn = self._connect()
            try:
                row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
                return row["value"] if row else None
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read {key}: {e}") from e

    def set(self, key: str, value: str) -> None:
        now = datetime.now(timezone.utc).isoformat()
        try:
            conn = self._connect()
            try:
                conn.execute(
                    "INSERT INTO kv(key, value, updated_at) VALUES(?,?,?) "
                    "ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at",
                    (key, value, now),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write {key}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            conn = self._connect()
            try:
                conn.execute("DELETE FROM kv WHERE key = ?", (key,))
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e

    def keys(self, prefix: str = "") -> list[str]:
        try:
            conn = self._connect()
            try:
                rows = conn.execute(
                    "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                    (len(prefix), prefix),
                ).fetchall()
                return [r["key"] for r in rows]
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list keys: {e}") from e

    def delete_prefix(self, prefix: str) -> int:
        try:
            conn = self._connect()
            try:
                cur = conn.execute(
                    "DELETE FROM kv WHERE substr(key, 1, ?) = ?",
                    (len(prefix), prefix),
                )
                conn.commit()
                return cur.rowcount
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete keys under {prefix}: {e}") from e
