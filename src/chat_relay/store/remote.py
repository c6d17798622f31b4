"""
Remote libSQL log store — Hrana pipeline over HTTP.

Each statement is sent as `POST {base}/v2/pipeline` with a bearer token:

    {"requests": [{"type": "execute", "stmt": {"sql": ..., "args": [...]}}, {"type": "close"}]}

Values are typed on the wire ({"type": "integer", "value": "42"}); integers travel
as strings so row ids never lose precision.
"""

import asyncio
import logging
from typing import Any, Optional

import httpx

from chat_relay.errors import StorageError
from chat_relay.models.record import MessageRecord
from chat_relay.store.base import (
    ADD_METADATA_COLUMN,
    CREATE_MESSAGES_TABLE,
    dump_metadata,
    record_from_row,
)

logger = logging.getLogger("chat_relay.store.remote")

PIPELINE_PATH = "/v2/pipeline"


def _http_base_url(url: str) -> str:
    for scheme, replacement in (("libsql://", "https://"), ("wss://", "https://"), ("ws://", "http://")):
        if url.startswith(scheme):
            url = replacement + url[len(scheme):]
            break
    return url.rstrip("/")


def encode_value(value: Any) -> dict[str, Any]:
    if value is None:
        return {"type": "null"}
    if isinstance(value, bool):
        return {"type": "integer", "value": str(int(value))}
    if isinstance(value, int):
        return {"type": "integer", "value": str(value)}
    if isinstance(value, float):
        return {"type": "float", "value": value}
    return {"type": "text", "value": str(value)}


def decode_value(cell: dict[str, Any]) -> Any:
    kind = cell.get("type")
    if kind == "null":
        return None
    if kind == "integer":
        return int(cell["value"])
    if kind == "float":
        return float(cell["value"])
    return cell.get("value")


class LibsqlLogStore:
    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = _http_base_url(url)
        self._token = token
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._write_lock = asyncio.Lock()
        self._has_metadata = True

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def has_metadata(self) -> bool:
        return self._has_metadata

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "User-Agent": "chat-relay/0.1.0"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def open(self) -> None:
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers(),
            timeout=self._timeout,
            transport=self._transport,
        )
        try:
            await self._execute(CREATE_MESSAGES_TABLE)
            self._has_metadata = await self._ensure_metadata_column()
        except StorageError:
            await self.close()
            raise
        logger.info(f"Log store ready at {self._base_url}")

    async def _ensure_metadata_column(self) -> bool:
        result = await self._execute("PRAGMA table_info(messages)")
        columns = {decode_value(row[1]) for row in result.get("rows", [])}
        if "metadata" in columns:
            return True
        try:
            await self._execute(ADD_METADATA_COLUMN)
        except StorageError as e:
            logger.warning(f"messages table has no metadata column and it cannot be added ({e}); metadata will not be stored")
            return False
        return True

    async def _execute(self, sql: str, args: tuple[Any, ...] = ()) -> dict[str, Any]:
        if self._client is None:
            raise StorageError("Log store is not open")
        body = {
            "requests": [
                {"type": "execute", "stmt": {"sql": sql, "args": [encode_value(a) for a in args]}},
                {"type": "close"},
            ]
        }
        try:
            resp = await self._client.post(PIPELINE_PATH, json=body)
        except httpx.HTTPError as e:
            raise StorageError(f"Log store unreachable: {e}")
        if resp.status_code >= 400:
            raise StorageError(f"HTTP {resp.status_code}: {resp.text[:200]}", details={"status": resp.status_code})
        try:
            first = resp.json()["results"][0]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise StorageError(f"Malformed pipeline response: {e}")
        if first.get("type") == "error":
            error = first.get("error") or {}
            raise StorageError(error.get("message", "statement failed"), details={"code": error.get("code")})
        return first.get("response", {}).get("result", {})

    async def append(self, content: str, author: str, metadata: Optional[dict[str, Any]] = None) -> MessageRecord:
        async with self._write_lock:
            if self._has_metadata:
                result = await self._execute(
                    "INSERT INTO messages (content, user, metadata) VALUES (?, ?, ?)",
                    (content, author, dump_metadata(metadata)),
                )
            else:
                result = await self._execute(
                    "INSERT INTO messages (content, user) VALUES (?, ?)",
                    (content, author),
                )
        row_id = result.get("last_insert_rowid")
        if row_id is None:
            raise StorageError("Append returned no row id")
        return MessageRecord(
            id=int(row_id),
            content=content,
            author=author,
            metadata=dict(metadata or {}) if self._has_metadata else {},
        )

    async def read_since(self, watermark: int) -> list[MessageRecord]:
        columns = "id, content, user, metadata" if self._has_metadata else "id, content, user"
        result = await self._execute(
            f"SELECT {columns} FROM messages WHERE id > ? ORDER BY id ASC",
            (watermark,),
        )
        return [record_from_row(*(decode_value(cell) for cell in row)) for row in result.get("rows", [])]

    async def close(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            await client.aclose()
