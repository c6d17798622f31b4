"""
Durable message log — append-only, ordered by id.

Two backends share the same contract: a local SQLite file (aiosqlite) and a
remote libSQL database over HTTP (httpx). `open_store()` picks one from the URL.
"""

import json
from typing import Any, Optional, Protocol, runtime_checkable

from chat_relay.models.record import MessageRecord

CREATE_MESSAGES_TABLE = """
    CREATE TABLE IF NOT EXISTS messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        content TEXT,
        user TEXT,
        metadata TEXT DEFAULT '{}'
    )
"""

ADD_METADATA_COLUMN = "ALTER TABLE messages ADD COLUMN metadata TEXT DEFAULT '{}'"

REMOTE_SCHEMES = ("libsql://", "https://", "http://", "wss://", "ws://")


@runtime_checkable
class LogStore(Protocol):
    async def open(self) -> None: ...

    async def append(self, content: str, author: str, metadata: Optional[dict[str, Any]] = None) -> MessageRecord: ...

    async def read_since(self, watermark: int) -> list[MessageRecord]: ...

    async def close(self) -> None: ...


def dump_metadata(metadata: Optional[dict[str, Any]]) -> str:
    return json.dumps(metadata or {}, default=str)


def load_metadata(raw: Any) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return value if isinstance(value, dict) else {}


def record_from_row(row_id: Any, content: Any, user: Any, metadata: Any = None) -> MessageRecord:
    return MessageRecord(
        id=int(row_id),
        content="" if content is None else str(content),
        author="anonymous" if user is None else str(user),
        metadata=load_metadata(metadata),
    )


def open_store(url: str, token: Optional[str] = None) -> LogStore:
    """Build (but do not open) the store for `url`."""
    if url.startswith(REMOTE_SCHEMES):
        from chat_relay.store.remote import LibsqlLogStore
        return LibsqlLogStore(url, token)
    from chat_relay.store.sqlite import SqliteLogStore
    return SqliteLogStore(url)
