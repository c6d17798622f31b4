"""
Socket.IO server binding.

Handshake auth: {username, serverOffset, pid}. `serverOffset` is the highest
message id the client already has; `pid` is the private id from a previous
`session` event, presented again to resume a dropped connection.

Events:
  C2S  "chat message"  text                        (optional ack: {"ok", "id"|"error"})
  S2C  "chat message"  content, id (string), author[, metadata]
  S2C  "session"       {"pid": ...}
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

import socketio

from chat_relay.broadcast import BroadcastRouter
from chat_relay.enrichment import EnrichmentPipeline
from chat_relay.models.events import C2SEvent, S2CEvent
from chat_relay.models.record import MessageRecord
from chat_relay.models.session import ConnectionInfo
from chat_relay.replay import RecoveryReplayer
from chat_relay.sessions import SessionRegistry
from chat_relay.store.base import LogStore
from chat_relay.transport.continuity import ContinuityTracker

logger = logging.getLogger("chat_relay.transport.socketio")

STATIC_DIR = Path(__file__).resolve().parent.parent / "static"


def connection_info(sid: str, environ: dict[str, Any], auth: Any) -> ConnectionInfo:
    """Translate a socket.io handshake into ConnectionInfo (recovered is decided by the caller)."""
    auth = auth if isinstance(auth, dict) else {}
    headers = {
        key[5:].replace("_", "-").lower(): str(value)
        for key, value in environ.items()
        if key.startswith("HTTP_")
    }
    address = None
    scope = environ.get("asgi.scope")
    if isinstance(scope, dict) and scope.get("client"):
        address = scope["client"][0]
    address = address or environ.get("REMOTE_ADDR")
    return ConnectionInfo(
        session_id=sid,
        author=auth.get("username"),
        watermark=auth.get("serverOffset", 0),
        address=address,
        user_agent=headers.get("user-agent"),
        headers=headers,
    )


class ChatRelayServer:
    def __init__(
        self,
        store: LogStore,
        enrichment: Optional[EnrichmentPipeline] = None,
        continuity: Optional[ContinuityTracker] = None,
        sio: Optional[socketio.AsyncServer] = None,
    ):
        self._sio = sio or socketio.AsyncServer(async_mode="asgi", cors_allowed_origins="*", always_connect=True)
        self.store = store
        self.registry = SessionRegistry(self._send_record)
        self.router = BroadcastRouter(store, self.registry, enrichment)
        self.replayer = RecoveryReplayer(store)
        self.continuity = continuity or ContinuityTracker()
        self.router.add_listener(self.continuity.record)

        self._pids: dict[str, str] = {}
        self._submit_locks: dict[str, asyncio.Lock] = {}
        self._tasks: set[asyncio.Task] = set()

        self._sio.on("connect", self.on_connect)
        self._sio.on("disconnect", self.on_disconnect)
        self._sio.on(C2SEvent.CHAT_MESSAGE, self.on_chat_message)

    @property
    def sio(self) -> socketio.AsyncServer:
        return self._sio

    def asgi_app(self, static_dir: Path = STATIC_DIR, **kwargs: Any) -> socketio.ASGIApp:
        return socketio.ASGIApp(self._sio, static_files={"/": str(static_dir / "index.html")}, **kwargs)

    async def _send_record(self, sid: str, record: MessageRecord) -> None:
        await self._sio.emit(S2CEvent.CHAT_MESSAGE, record.to_wire(), to=sid)

    async def on_connect(self, sid: str, environ: dict[str, Any], auth: Any = None) -> None:
        info = connection_info(sid, environ, auth)
        claimed_pid = auth.get("pid") if isinstance(auth, dict) else None
        missed = self.continuity.restore(claimed_pid, info.watermark)
        if missed is not None:
            info = info.model_copy(update={"recovered": True})
            pid = claimed_pid
        else:
            pid = self.continuity.new_pid()
        self._pids[sid] = pid
        self._submit_locks[sid] = asyncio.Lock()

        # No await between admission and queuing the missed records: nothing can slip in between.
        session = self.registry.admit(info)
        for record in missed or ():
            session.deliver(record)

        await self._sio.emit(S2CEvent.SESSION, {"pid": pid}, to=sid)
        if not session.recovered:
            self._spawn(self.replayer.replay(session))

    async def on_disconnect(self, sid: str, reason: Any = None) -> None:
        self.registry.remove(sid)
        self._submit_locks.pop(sid, None)
        pid = self._pids.pop(sid, None)
        if pid:
            self.continuity.detach(pid)
        if reason is not None:
            logger.debug(f"{sid} disconnected: {reason}")

    async def on_chat_message(self, sid: str, content: Any = "") -> dict[str, Any]:
        content = "" if content is None else str(content)
        lock = self._submit_locks.get(sid)
        if lock is None:
            logger.warning(f"Dropping message from disconnected session {sid}")
            return {"ok": False, "error": "not_connected"}
        async with lock:
            record = await self.router.submit(sid, content)
        # Returned value only reaches clients that asked for an ack.
        if record is None:
            return {"ok": False, "error": "storage_error"}
        return {"ok": True, "id": str(record.id)}

    def _spawn(self, coro: Any) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for in-flight replays to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
