"""Key-value stores backing conversation memory and vector records.

Values are opaque strings (callers store JSON). Entries may carry an absolute
expiry; an expired entry behaves exactly like a missing one.
"""

from __future__ import annotations

import asyncio
import sqlite3
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..errors import StoreError

Clock = Callable[[], float]

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_entries (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL,
  expires_at REAL
);
CREATE INDEX IF NOT EXISTS idx_kv_entries_expires ON kv_entries(expires_at);
"""


class KeyValueStore:
    """Interface for the externally owned key-value collaborator."""

    async def get(self, key: str) -> Optional[str]:  # pragma: no cover - interface
        raise NotImplementedError

    async def put(self, key: str, value: str, *, ttl: Optional[float] = None) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def delete(self, key: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def get_many(self, keys: Iterable[str]) -> List[Optional[str]]:
        return list(await asyncio.gather(*(self.get(key) for key in keys)))


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store, mainly for tests and single-process deployments."""

    def __init__(self, *, clock: Clock = time.time) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[str, Optional[float]]] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._entries[key]
            return None
        return value

    async def put(self, key: str, value: str, *, ttl: Optional[float] = None) -> None:
        expires_at = self._clock() + ttl if ttl is not None else None
        self._entries[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)


class SqliteKeyValueStore(KeyValueStore):
    """Persist entries in a SQLite table, one row per key.

    Writes touch only the row being changed. Expired rows are swept on every
    write, so records past their TTL do not outlive the next write on disk.
    Calls run on worker threads and share one connection behind a lock.
    """

    def __init__(self, path: str | Path = "data/kv.sqlite3", *, clock: Clock = time.time) -> None:
        self.path = str(path)
        if self.path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn.execute("PRAGMA secure_delete = ON")
        with self._lock:
            self._conn.executescript(_SCHEMA)
            self._sweep()
            self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as exc:
            raise StoreError(f"Key-value query failed: {exc}") from exc

    def _sweep(self) -> None:
        self._execute(
            "DELETE FROM kv_entries WHERE expires_at IS NOT NULL AND expires_at <= ?",
            (self._clock(),),
        )

    def _get_sync(self, key: str) -> Optional[str]:
        with self._lock:
            row = self._execute(
                "SELECT value, expires_at FROM kv_entries WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return None
        value, expires_at = row
        if expires_at is not None and expires_at <= self._clock():
            return None
        return value

    def _put_sync(self, key: str, value: str, ttl: Optional[float]) -> None:
        expires_at = self._clock() + ttl if ttl is not None else None
        with self._lock:
            self._sweep()
            self._execute(
                "INSERT OR REPLACE INTO kv_entries (key, value, expires_at) VALUES (?, ?, ?)",
                (key, value, expires_at),
            )
            self._conn.commit()

    def _delete_sync(self, key: str) -> None:
        with self._lock:
            self._sweep()
            self._execute("DELETE FROM kv_entries WHERE key = ?", (key,))
            self._conn.commit()

    # ------------------------------------------------------------------
    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._get_sync, key)

    async def put(self, key: str, value: str, *, ttl: Optional[float] = None) -> None:
        await asyncio.to_thread(self._put_sync, key, value, ttl)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete_sync, key)
