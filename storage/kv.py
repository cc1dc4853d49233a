"""
storage/kv.py -- SQLite-backed key-value namespace.

One KeyValueStorage stands in for one browser storage area. The persistent
namespace is a file under the data directory and survives restarts; the
tab-scoped namespace is an in-memory database that disappears with the
process.

Usage:
    persistent = KeyValueStorage(Path("~/.codegen/storage.db").expanduser())
    tab = KeyValueStorage()                  # ":memory:"
    tab.set("codegen_user", '{"id": "..."}')
    tab.get("codegen_user")                  # returns str or None
"""

import sqlite3
import time
from pathlib import Path
from typing import Optional, Union

_MEMORY = ":memory:"

_DDL = """
CREATE TABLE IF NOT EXISTS kv_store (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    updated_at  REAL NOT NULL
);
"""


class KeyValueStorage:
    def __init__(self, db_path: Union[Path, str] = _MEMORY) -> None:
        if str(db_path) != _MEMORY:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.location = str(db_path)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._conn.commit()

    @property
    def is_persistent(self) -> bool:
        return self.location != _MEMORY

    def get(self, key: str) -> Optional[str]:
        row = self._conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        return row[0] if row is not None else None

    def set(self, key: str, value: str) -> None:
        """Store value under key, replacing any existing entry."""
        self._conn.execute(
            "INSERT OR REPLACE INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)",
            (key, value, time.time()),
        )
        self._conn.commit()

    def delete(self, key: str) -> bool:
        cursor = self._conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        self._conn.commit()
        return cursor.rowcount > 0

    def keys(self, prefix: str = "") -> list[str]:
        rows = self._conn.execute(
            "SELECT key FROM kv_store WHERE substr(key, 1, ?) = ? ORDER BY key",
            (len(prefix), prefix),
        ).fetchall()
        return [r[0] for r in rows]

    def close(self) -> None:
        self._conn.close()
