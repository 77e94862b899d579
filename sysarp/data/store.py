"""SQLite-backed local persistent store.

Holds one record set per entity kind under a namespaced key, plus the
session markers and the drone catalog document. Everything is stored as a
JSON document so the local copy has the same shape as remote rows.
Absence of a key reads as an empty set.

One connection is shared by every thread of the process (the dashboard
poller reads from a worker thread); a lock serializes statements on it.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any


class LocalStore:
    """Durable key -> JSON document store."""

    def __init__(self, db_path: str = "/var/sysarp/sysarp.db"):
        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._init_tables()

    @property
    def db_path(self) -> str:
        return self._db_path

    def _init_tables(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS documents (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
            );
        """)
        self._conn.commit()

    # ── Record sets ───────────────────────────────────────────

    def read(self, key: str) -> list[dict]:
        """Return the record set stored under key (empty if absent)."""
        value = self.get_value(key)
        return list(value) if isinstance(value, list) else []

    def write(self, key: str, records: list[dict]) -> None:
        """Replace the whole record set stored under key."""
        self.set_value(key, list(records))

    # ── Raw documents ─────────────────────────────────────────

    def get_value(self, key: str, default: Any = None) -> Any:
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM documents WHERE key = ?", (key,)
            ).fetchone()
        if not row:
            return default
        return json.loads(row["value"])

    def set_value(self, key: str, value: Any) -> None:
        payload = json.dumps(value)
        with self._lock:
            self._conn.execute(
                """INSERT INTO documents (key, value) VALUES (?, ?)
                   ON CONFLICT(key) DO UPDATE SET
                       value = excluded.value,
                       updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now')""",
                (key, payload),
            )
            self._conn.commit()

    def remove(self, key: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM documents WHERE key = ?", (key,))
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()
