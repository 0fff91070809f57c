"""
SQLite-backed key-value store for tooltip cache and batch metrics.

Each key holds one JSON document (the whole cache map, the whole metrics
map). ``InMemoryStore`` offers the same get/set/delete interface for tests
and hosts without durable storage.
"""
import json
import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from functools import wraps
from pathlib import Path
from typing import Any, Dict, Optional

from .config import DB_PATH

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""


def retry_on_locked(max_retries: int = 3, base_delay: float = 0.05):
    """
    Decorator to retry SQLite operations while the database is locked.

    Concurrent batches write the cache from several threads; SQLite
    serializes writers and reports "database is locked" to the losers.
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except sqlite3.OperationalError as e:
                    if "locked" in str(e).lower() and attempt < max_retries - 1:
                        delay = base_delay * (2 ** attempt)
                        logger.debug(f"Database locked, retrying in {delay}s...")
                        time.sleep(delay)
                        continue
                    raise

            return func(*args, **kwargs)

        return wrapper
    return decorator


class Database:
    """Key-value document store on top of SQLite."""

    def __init__(self, db_path: Path = DB_PATH):
        self.db_path = Path(db_path)
        self.ensure_tables()

    @contextmanager
    def get_connection(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(str(self.db_path), timeout=5.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def ensure_tables(self):
        """Create the kv_store table if it doesn't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self.get_connection() as conn:
            conn.executescript(SCHEMA)

    @retry_on_locked()
    def get(self, key: str) -> Optional[Any]:
        """Return the decoded JSON document stored under key, or None."""
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT value FROM kv_store WHERE key = ?",
                (key,)
            ).fetchone()

        if row is None:
            return None
        return json.loads(row["value"])

    @retry_on_locked()
    def set(self, key: str, value: Any) -> None:
        """Persist value (JSON-serializable) under key, replacing any previous value."""
        payload = json.dumps(value, ensure_ascii=False)
        with self.get_connection() as conn:
            conn.execute(
                """
                INSERT INTO kv_store (key, value, updated_at)
                VALUES (?, ?, datetime('now'))
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, payload)
            )

    @retry_on_locked()
    def delete(self, key: str) -> None:
        """Remove key from the store (no-op if absent)."""
        with self.get_connection() as conn:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))


class InMemoryStore:
    """Process-local store with the same interface as Database."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()
        for key, value in (initial or {}).items():
            self.set(key, value)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            raw = self._data.get(key)
        # Round-trip through JSON so callers never share mutable state
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False)
        with self._lock:
            self._data[key] = payload

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


# Global database instance
db = Database()
