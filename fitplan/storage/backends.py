"""Raw key/value backends used by the cache.

Backends store opaque strings. Expiry, namespacing and serialization are
the cache's job; a backend only has to get, set, delete and list keys.
"""

import contextlib
import logging
import sqlite3
import threading
from abc import abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Protocol, runtime_checkable

from fitplan.errors import StorageBackendError

logger = logging.getLogger(__name__)

KV_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at REAL NOT NULL DEFAULT (strftime('%s', 'now'))
)
"""


@runtime_checkable
class KeyValueBackend(Protocol):
    """Protocol for raw string stores."""

    name: str

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored string, or None if the key is absent."""
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Create or overwrite a key."""
        ...

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete a key. Returns True if it existed."""
        ...

    @abstractmethod
    def keys(self, prefix: str = "") -> List[str]:
        """List stored keys starting with ``prefix``, sorted."""
        ...


class MemoryBackend:
    """Dict-backed store. Never fails, loses everything on exit."""

    name = "memory"

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))

    def __len__(self) -> int:
        return len(self._data)


class SQLiteBackend:
    """SQLite-backed persistent store.

    One connection per operation, opened through ``_connect()`` which
    commits on success, rolls back on error and always closes. Every
    sqlite3/OS failure is re-raised as StorageBackendError so callers only
    have one thing to catch.
    """

    name = "sqlite"

    def __init__(self, db_path: Path, busy_timeout_ms: int = 5000):
        self.db_path = Path(db_path)
        self._busy_timeout_ms = busy_timeout_ms
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with self._connect() as conn:
                conn.execute(KV_SCHEMA)
        except StorageBackendError:
            raise
        except OSError as e:
            raise StorageBackendError(f"Cannot create cache directory for {self.db_path}: {e}") from e

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(f"PRAGMA busy_timeout={int(self._busy_timeout_ms)}")
        return conn

    @contextlib.contextmanager
    def _connect(self):
        """Transaction scope that also closes the connection."""
        try:
            conn = self._get_conn()
        except sqlite3.Error as e:
            raise StorageBackendError(f"Cannot open {self.db_path}: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise StorageBackendError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO kv_store (key, value, updated_at)
                VALUES (?, ?, strftime('%s', 'now'))
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value),
            )

    def delete(self, key: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        return cursor.rowcount > 0

    def keys(self, prefix: str = "") -> List[str]:
        # LIKE is case-insensitive in SQLite; compare the prefix exactly.
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT key FROM kv_store WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            ).fetchall()
        return [row["key"] for row in rows]
