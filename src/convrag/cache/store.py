"""Key/value backing stores for the generation cache."""

from __future__ import annotations

import asyncio
import sqlite3
from contextlib import closing
from pathlib import Path
from typing import Dict, Protocol

from convrag.errors import UpstreamCallError


class KeyValueStore(Protocol):
    """Durable key to string mapping with no batching or transactions."""

    async def get(self, key: str) -> str | None:
        """Return the stored value or ``None`` when absent."""

    async def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""


class InMemoryKeyValueStore:
    """Process-local store, mostly useful for tests and single-process runs."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def clear(self) -> None:
        self._data.clear()


class SQLiteKeyValueStore:
    """File-backed store using one SQLite table in WAL mode.

    Each operation opens its own connection inside a worker thread, so the
    store can be shared by concurrent tasks and processes.
    """

    _TABLE = "generation_cache"

    def __init__(self, path: str | Path, *, timeout: float = 30.0) -> None:
        self._path = Path(path)
        self._timeout = timeout
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._execute(
            f"CREATE TABLE IF NOT EXISTS {self._TABLE} (key TEXT PRIMARY KEY, value TEXT NOT NULL)",
        )

    @property
    def path(self) -> Path:
        return self._path

    async def get(self, key: str) -> str | None:
        row = await asyncio.to_thread(
            self._execute,
            f"SELECT value FROM {self._TABLE} WHERE key = ?",
            (key,),
        )
        return row[0] if row else None

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(
            self._execute,
            f"INSERT INTO {self._TABLE} (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._execute, f"DELETE FROM {self._TABLE} WHERE key = ?", (key,))

    async def clear(self) -> None:
        await asyncio.to_thread(self._execute, f"DELETE FROM {self._TABLE}")

    def _execute(self, sql: str, params: tuple = ()) -> tuple | None:
        try:
            with closing(sqlite3.connect(str(self._path), timeout=self._timeout)) as conn:
                conn.execute("PRAGMA journal_mode=WAL")
                with conn:
                    cursor = conn.execute(sql, params)
                    return cursor.fetchone()
        except sqlite3.Error as exc:
            raise UpstreamCallError(f"SQLite cache operation failed on {self._path}: {exc}") from exc
