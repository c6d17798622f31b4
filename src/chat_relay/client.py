"""
AsyncChatClient — Socket.IO client for a chat-relay server.

Tracks the highest message id it has seen and presents it as `serverOffset` on
every (re)connect, together with the `pid` the server handed out, so a dropped
connection resumes without gaps.
"""

import asyncio
import logging
from typing import Any, AsyncGenerator, Callable, Optional

import socketio
from socketio import exceptions as sio_errors

from chat_relay.errors import ConnectionError
from chat_relay.models.events import C2SEvent, S2CEvent
from chat_relay.models.record import ANONYMOUS, MessageRecord

logger = logging.getLogger("chat_relay.client")

DEFAULT_URL = "http://localhost:3000"


class AsyncChatClient:
    def __init__(
        self,
        url: str = DEFAULT_URL,
        username: str = ANONYMOUS,
        server_offset: int = 0,
        transports: Optional[list[str]] = None,
        ack_timeout: float = 10.0,
    ):
        self._url = url
        self._username = username
        self._server_offset = server_offset
        self._pid: Optional[str] = None
        self._transports = transports
        self._ack_timeout = ack_timeout
        self._sio: Optional[socketio.AsyncClient] = None
        self._handlers: list[Callable[[MessageRecord], None]] = []

    @property
    def connected(self) -> bool:
        return self._sio is not None and self._sio.connected

    @property
    def server_offset(self) -> int:
        return self._server_offset

    @property
    def pid(self) -> Optional[str]:
        return self._pid

    def add_message_handler(self, handler: Callable[[MessageRecord], None]) -> Callable[[], None]:
        """Add a handler for incoming messages. Returns a cleanup function."""
        self._handlers.append(handler)

        def remove() -> None:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass
        return remove

    def _auth(self) -> dict[str, Any]:
        auth: dict[str, Any] = {"username": self._username, "serverOffset": self._server_offset}
        if self._pid:
            auth["pid"] = self._pid
        return auth

    async def _on_session(self, data: Any) -> None:
        if isinstance(data, dict) and data.get("pid"):
            self._pid = data["pid"]

    async def _on_chat_message(self, *args: Any) -> None:
        try:
            record = MessageRecord.from_wire(*args)
        except (ValueError, IndexError, TypeError) as e:
            logger.warning(f"Ignoring malformed chat message {args!r}: {e}")
            return
        self._server_offset = max(self._server_offset, record.id)
        for handler in list(self._handlers):
            handler(record)

    async def connect(self) -> None:
        if self._sio and self._sio.connected:
            return

        self._sio = socketio.AsyncClient(reconnection=True)
        self._sio.on(S2CEvent.SESSION, self._on_session)
        self._sio.on(S2CEvent.CHAT_MESSAGE, self._on_chat_message)

        try:
            await self._sio.connect(
                self._url,
                # Callable so reconnects pick up the latest offset and pid.
                auth=self._auth,
                transports=self._transports,
            )
        except sio_errors.ConnectionError as e:
            self._sio = None
            raise ConnectionError(f"Cannot connect to {self._url}: {e}")

    async def send(self, content: str, ack: bool = False) -> Optional[dict[str, Any]]:
        """Post a message. With ack=True, wait for the server's {"ok", "id"|"error"} reply."""
        if not self._sio or not self._sio.connected:
            raise ConnectionError("Not connected. Call connect() first.")
        if not ack:
            await self._sio.emit(C2SEvent.CHAT_MESSAGE, content)
            return None
        try:
            return await self._sio.call(C2SEvent.CHAT_MESSAGE, content, timeout=self._ack_timeout)
        except sio_errors.TimeoutError:
            raise TimeoutError(f"No acknowledgement after {self._ack_timeout}s")

    async def messages(self) -> AsyncGenerator[MessageRecord, None]:
        """Yield incoming messages until disconnected."""
        queue: asyncio.Queue[MessageRecord] = asyncio.Queue()
        remove = self.add_message_handler(queue.put_nowait)
        try:
            while self.connected:
                try:
                    yield await asyncio.wait_for(queue.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue
        finally:
            remove()

    async def disconnect(self) -> None:
        """Close for good: the pid is dropped, so the next connect is a fresh session."""
        self._pid = None
        if self._sio:
            await self._sio.disconnect()
            self._sio = None
