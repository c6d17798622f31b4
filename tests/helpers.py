import asyncio
from collections import defaultdict
from typing import Any, Optional

from chat_relay.errors import StorageError
from chat_relay.models.record import MessageRecord
from chat_relay.models.session import ConnectionInfo
from chat_relay.store.sqlite import SqliteLogStore


class Outbox:
    """Stands in for the transport: records what each session was sent, in order."""

    def __init__(self) -> None:
        self.sent: dict[str, list[MessageRecord]] = defaultdict(list)

    async def send(self, session_id: str, record: MessageRecord) -> None:
        self.sent[session_id].append(record)

    def ids(self, session_id: str) -> list[int]:
        return [r.id for r in self.sent[session_id]]


class FlakyStore:
    """Wraps a real store; appends/reads fail while the matching flag is set."""

    def __init__(self, inner: SqliteLogStore) -> None:
        self.inner = inner
        self.fail_append = False
        self.fail_read = False
        self.read_gate: Optional[asyncio.Event] = None
        self.reads = 0

    async def open(self) -> None:
        await self.inner.open()

    async def append(self, content: str, author: str, metadata: Optional[dict[str, Any]] = None) -> MessageRecord:
        if self.fail_append:
            raise StorageError("simulated write failure")
        return await self.inner.append(content, author, metadata)

    async def read_since(self, watermark: int) -> list[MessageRecord]:
        self.reads += 1
        if self.read_gate is not None:
            await self.read_gate.wait()
        if self.fail_read:
            raise StorageError("simulated read failure")
        return await self.inner.read_since(watermark)

    async def close(self) -> None:
        await self.inner.close()


def connection(session_id: str, author: str = "anonymous", watermark: int = 0, recovered: bool = False, **kwargs: Any) -> ConnectionInfo:
    return ConnectionInfo(session_id=session_id, author=author, watermark=watermark, recovered=recovered, **kwargs)


async def seed(store, count: int, author: str = "seed") -> list[MessageRecord]:
    return [await store.append(f"message {i}", author, {}) for i in range(1, count + 1)]
