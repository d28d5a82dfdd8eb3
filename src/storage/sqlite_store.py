from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

import aiosqlite

from .base import StorageEngine


CREATE_TABLE = """
    CREATE TABLE IF NOT EXISTS kv_store (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
"""


class AsyncSqliteStorageEngine(StorageEngine):
    """
    Async key-value storage in a single SQLite file (mobile-class hosts).

    A connection is opened per operation, so the engine holds no open handles
    between calls and needs no explicit shutdown.
    """

    name = "async"

    def __init__(self, path: os.PathLike[str] | str) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._initialized = False

    @property
    def path(self) -> Path:
        return self._path

    async def _connect(self) -> aiosqlite.Connection:
        db = await aiosqlite.connect(str(self._path))
        if not self._initialized:
            try:
                await db.execute(CREATE_TABLE)
                await db.commit()
            except Exception:
                await db.close()
                raise
            self._initialized = True
        return db

    async def _get(self, key: str) -> Optional[str]:
        db = await self._connect()
        try:
            async with db.execute("SELECT value FROM kv_store WHERE key = ?", (key,)) as cursor:
                row = await cursor.fetchone()
        finally:
            await db.close()
        return None if row is None else row[0]

    async def _set(self, key: str, value: str) -> None:
        db = await self._connect()
        try:
            await db.execute(
                """INSERT OR REPLACE INTO kv_store (key, value, updated_at)
                   VALUES (?, ?, CURRENT_TIMESTAMP)""",
                (key, value),
            )
            await db.commit()
        finally:
            await db.close()

    async def _remove(self, key: str) -> None:
        db = await self._connect()
        try:
            await db.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            await db.commit()
        finally:
            await db.close()

    async def _keys(self) -> List[str]:
        db = await self._connect()
        try:
            async with db.execute("SELECT key FROM kv_store ORDER BY key") as cursor:
                rows = await cursor.fetchall()
        finally:
            await db.close()
        return [row[0] for row in rows]
