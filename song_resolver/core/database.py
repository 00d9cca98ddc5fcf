"""
Thread-safe SQLite state store for song-resolver.

The library keeps almost no durable state: resolved URLs expire quickly
and are never cached. The one thing that survives a restart is the
per-source reliability counters used to order cross-catalog fallbacks.
They are stored as JSON values in a tiny key/value table.

Schema:
    schema_version:  Single row with DATABASE_VERSION
    kv_store:        key TEXT PRIMARY KEY, value TEXT, updated_at TEXT

Usage:
    db = StateDatabase(Path("~/.song_resolver/state.db").expanduser())
    db.set_value("api_source_stats", json.dumps(stats))
    raw = db.get_value("api_source_stats")
"""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator

from song_resolver.core.exceptions import DatabaseError


DATABASE_VERSION = 1


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT
);
"""


class StateDatabase:
    """
    Thread-safe SQLite key/value store.

    Uses a single persistent connection with thread locking for safety.
    All public methods acquire self._lock before executing.

    Pass ":memory:" as the path for a throwaway store.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None

        if str(db_path) != ":memory:":
            path = Path(db_path)
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise DatabaseError(
                    f"Cannot create directory for state database: {path.parent}",
                    details={"path": str(path.parent), "original_error": str(e)}
                ) from e

        try:
            self._init_database()
        except sqlite3.Error as e:
            raise DatabaseError(
                f"Failed to initialize state database: {e}",
                details={"path": str(db_path)}
            ) from e

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get the persistent database connection as a context manager.

        The connection is created once and reused for all operations.
        """
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=30.0,
                check_same_thread=False  # We handle thread safety with _lock
            )
            self._conn.row_factory = sqlite3.Row
        yield self._conn

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _init_database(self) -> None:
        with self._get_connection() as conn:
            conn.executescript(_SCHEMA_SQL)

            cursor = conn.execute("SELECT version FROM schema_version LIMIT 1")
            row = cursor.fetchone()

            if row is None:
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (DATABASE_VERSION,))
            elif row[0] != DATABASE_VERSION:
                raise DatabaseError(
                    f"Database version mismatch: expected {DATABASE_VERSION}, got {row[0]}",
                    details={"expected": DATABASE_VERSION, "actual": row[0]}
                )
            conn.commit()

    def _now_iso(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def get_value(self, key: str) -> str | None:
        """Return the stored value for key, or None if absent."""
        with self._lock:
            try:
                with self._get_connection() as conn:
                    cursor = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
                    row = cursor.fetchone()
                    return row["value"] if row else None
            except sqlite3.Error as e:
                raise DatabaseError(
                    f"Failed to read '{key}' from state database: {e}",
                    details={"key": key, "path": str(self.db_path)}
                ) from e

    def set_value(self, key: str, value: str) -> None:
        """Insert or replace the value stored under key."""
        with self._lock:
            try:
                with self._get_connection() as conn:
                    conn.execute("""
                        INSERT INTO kv_store (key, value, updated_at)
                        VALUES (?, ?, ?)
                        ON CONFLICT(key) DO UPDATE SET
                            value = excluded.value,
                            updated_at = excluded.updated_at
                    """, (key, value, self._now_iso()))
                    conn.commit()
            except sqlite3.Error as e:
                raise DatabaseError(
                    f"Failed to write '{key}' to state database: {e}",
                    details={"key": key, "path": str(self.db_path)}
                ) from e

    def delete_value(self, key: str) -> bool:
        """Remove key. Returns True if something was deleted."""
        with self._lock:
            try:
                with self._get_connection() as conn:
                    cursor = conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
                    conn.commit()
                    return cursor.rowcount > 0
            except sqlite3.Error as e:
                raise DatabaseError(
                    f"Failed to delete '{key}' from state database: {e}",
                    details={"key": key, "path": str(self.db_path)}
                ) from e
