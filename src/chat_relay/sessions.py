"""
Session registry — the live set of connected clients.

Each Session owns one ordered outbox drained by a single pump task, so every
record reaches a client in the order it was queued. A fresh session starts
"held": live broadcasts are buffered until its replay finishes, then flushed
behind the replayed records.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterator, Optional

from chat_relay.models.record import MessageRecord
from chat_relay.models.session import ConnectionInfo

logger = logging.getLogger("chat_relay.sessions")

Sender = Callable[[str, MessageRecord], Awaitable[None]]


class Session:
    __slots__ = ("connection", "_send", "_outbox", "_held", "_last_id", "_closed", "_pump")

    def __init__(self, connection: ConnectionInfo, send: Sender):
        self.connection = connection
        self._send = send
        self._outbox: asyncio.Queue[MessageRecord] = asyncio.Queue()
        self._held: Optional[list[MessageRecord]] = None if connection.recovered else []
        self._last_id = 0
        self._closed = False
        self._pump: Optional[asyncio.Task] = None

    @property
    def session_id(self) -> str:
        return self.connection.session_id

    @property
    def author(self) -> str:
        return self.connection.author

    @property
    def watermark(self) -> int:
        return self.connection.watermark

    @property
    def recovered(self) -> bool:
        return self.connection.recovered

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def replaying(self) -> bool:
        return self._held is not None

    @property
    def last_delivered_id(self) -> int:
        """Highest id queued for this session so far."""
        return self._last_id

    def start(self) -> None:
        if self._pump is None and not self._closed:
            self._pump = asyncio.get_running_loop().create_task(self._drain())

    def deliver(self, record: MessageRecord) -> bool:
        """Queue a live broadcast. Buffered while replay is in flight."""
        if self._closed:
            return False
        if self._held is not None:
            self._held.append(record)
            return True
        return self._enqueue(record)

    def deliver_replayed(self, record: MessageRecord) -> bool:
        if self._closed:
            return False
        return self._enqueue(record)

    def release(self) -> int:
        """End the replay hold and flush buffered broadcasts. Returns how many were queued."""
        held, self._held = self._held, None
        if not held or self._closed:
            return 0
        return sum(1 for record in held if self._enqueue(record))

    def _enqueue(self, record: MessageRecord) -> bool:
        # Anything at or below the last queued id was already sent by replay.
        if record.id <= self._last_id:
            return False
        self._last_id = record.id
        self._outbox.put_nowait(record)
        return True

    async def _drain(self) -> None:
        while True:
            record = await self._outbox.get()
            try:
                await self._send(self.session_id, record)
            except Exception as e:
                logger.error(f"Delivery of message {record.id} to {self.session_id} failed: {e}")
            finally:
                self._outbox.task_done()

    async def wait_delivered(self) -> None:
        """Wait until everything queued so far has been handed to the transport."""
        if self._pump is None or self._closed:
            return
        await self._outbox.join()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._held = None
        while not self._outbox.empty():
            self._outbox.get_nowait()
            self._outbox.task_done()
        if self._pump is not None:
            self._pump.cancel()
            self._pump = None

    def __repr__(self) -> str:
        return f"Session(session_id={self.session_id!r}, author={self.author!r}, recovered={self.recovered})"


class SessionRegistry:
    """Owns every live Session. Mutated only from the event loop, never across an await."""

    def __init__(self, send: Sender):
        self._send = send
        self._sessions: dict[str, Session] = {}

    def admit(self, connection: ConnectionInfo) -> Session:
        stale = self._sessions.pop(connection.session_id, None)
        if stale is not None:
            stale.close()
        session = Session(connection, self._send)
        self._sessions[session.session_id] = session
        session.start()
        logger.info(
            f"A user has connected: {session.author} (session={session.session_id}, "
            f"recovered={session.recovered}, watermark={session.watermark})"
        )
        return session

    def remove(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.close()
        logger.info(f"A user has disconnected: {session.author} (session={session_id})")
        return True

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def broadcast_targets(self) -> frozenset[Session]:
        return frozenset(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))
