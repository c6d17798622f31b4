"""
Local SQLite log store (aiosqlite).
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

import aiosqlite

from chat_relay.errors import StorageError
from chat_relay.models.record import MessageRecord
from chat_relay.store.base import (
    ADD_METADATA_COLUMN,
    CREATE_MESSAGES_TABLE,
    dump_metadata,
    record_from_row,
)

logger = logging.getLogger("chat_relay.store.sqlite")

MEMORY = ":memory:"


def _database_path(url: str) -> str:
    path = url[len("file:"):] if url.startswith("file:") else url
    return path or MEMORY


class SqliteLogStore:
    def __init__(self, url: str = MEMORY, timeout: float = 5.0):
        self._path = _database_path(url)
        self._timeout = timeout
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._has_metadata = True

    @property
    def path(self) -> str:
        return self._path

    @property
    def has_metadata(self) -> bool:
        return self._has_metadata

    async def open(self) -> None:
        if self._conn is not None:
            return
        try:
            if self._path != MEMORY:
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            conn = await aiosqlite.connect(self._path, timeout=self._timeout)
        except (aiosqlite.Error, OSError) as e:
            raise StorageError(f"Cannot open log store {self._path!r}: {e}")
        try:
            await conn.execute(CREATE_MESSAGES_TABLE)
            await conn.commit()
            self._has_metadata = await self._ensure_metadata_column(conn)
        except aiosqlite.Error as e:
            await conn.close()
            raise StorageError(f"Cannot prepare schema in {self._path!r}: {e}")
        self._conn = conn
        logger.info(f"Log store ready at {self._path}")

    async def _ensure_metadata_column(self, conn: aiosqlite.Connection) -> bool:
        async with conn.execute("PRAGMA table_info(messages)") as cursor:
            columns = {row[1] for row in await cursor.fetchall()}
        if "metadata" in columns:
            return True
        try:
            await conn.execute(ADD_METADATA_COLUMN)
            await conn.commit()
        except aiosqlite.Error as e:
            logger.warning(f"messages table has no metadata column and it cannot be added ({e}); metadata will not be stored")
            return False
        return True

    def _conn_or_raise(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StorageError("Log store is not open")
        return self._conn

    async def append(self, content: str, author: str, metadata: Optional[dict[str, Any]] = None) -> MessageRecord:
        conn = self._conn_or_raise()
        async with self._lock:
            try:
                if self._has_metadata:
                    cursor = await conn.execute(
                        "INSERT INTO messages (content, user, metadata) VALUES (?, ?, ?)",
                        (content, author, dump_metadata(metadata)),
                    )
                else:
                    cursor = await conn.execute(
                        "INSERT INTO messages (content, user) VALUES (?, ?)",
                        (content, author),
                    )
                row_id = cursor.lastrowid
                await cursor.close()
                await conn.commit()
            except aiosqlite.Error as e:
                await self._rollback(conn)
                raise StorageError(f"Append rejected: {e}")
        return MessageRecord(
            id=row_id,
            content=content,
            author=author,
            metadata=dict(metadata or {}) if self._has_metadata else {},
        )

    async def _rollback(self, conn: aiosqlite.Connection) -> None:
        try:
            await conn.rollback()
        except aiosqlite.Error as e:
            logger.debug(f"Rollback failed: {e}")

    async def read_since(self, watermark: int) -> list[MessageRecord]:
        conn = self._conn_or_raise()
        columns = "id, content, user, metadata" if self._has_metadata else "id, content, user"
        # Same connection as append: reading mid-append would see its uncommitted row.
        async with self._lock:
            try:
                async with conn.execute(
                    f"SELECT {columns} FROM messages WHERE id > ? ORDER BY id ASC",
                    (watermark,),
                ) as cursor:
                    rows = await cursor.fetchall()
            except aiosqlite.Error as e:
                raise StorageError(f"Read rejected: {e}")
        return [record_from_row(*row) for row in rows]

    async def close(self) -> None:
        if self._conn is not None:
            conn, self._conn = self._conn, None
            await conn.close()
