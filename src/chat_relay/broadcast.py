"""
Broadcast router — enrich, commit to the log, fan out to every live session.

Submission is fire-and-forget for the sender: a storage failure is logged and the
message simply never appears. Callers that want to know can look at the return value.
"""

import asyncio
import logging
from typing import Callable, Optional

from chat_relay.enrichment import EnrichmentPipeline
from chat_relay.errors import StorageError
from chat_relay.models.record import MessageRecord
from chat_relay.sessions import SessionRegistry
from chat_relay.store.base import LogStore

logger = logging.getLogger("chat_relay.broadcast")


class BroadcastRouter:
    def __init__(
        self,
        store: LogStore,
        registry: SessionRegistry,
        enrichment: Optional[EnrichmentPipeline] = None,
    ):
        self._store = store
        self._registry = registry
        self._enrichment = enrichment
        self._listeners: list[Callable[[MessageRecord], None]] = []
        # Commit and fan-out happen together so sessions see ids in commit order.
        self._commit_lock = asyncio.Lock()

    def add_listener(self, listener: Callable[[MessageRecord], None]) -> Callable[[], None]:
        """Call `listener` with every committed record, after live fan-out. Returns a cleanup function."""
        self._listeners.append(listener)

        def remove() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass
        return remove

    async def submit(self, session_id: str, content: str) -> Optional[MessageRecord]:
        session = self._registry.get(session_id)
        if session is None:
            logger.warning(f"Dropping message from unknown session {session_id}")
            return None

        author = session.author
        logger.info(f"chat message from {author} ({session_id}): {content!r}")

        metadata = {}
        if self._enrichment is not None:
            metadata = await self._enrichment.enrich(session.connection)

        async with self._commit_lock:
            try:
                record = await self._store.append(content, author, metadata)
            except StorageError as e:
                logger.error(f"Message from {author} ({session_id}) not stored, not broadcast: {e}")
                return None
            delivered = self.fan_out(record)

        logger.debug(f"Message {record.id} delivered to {delivered} session(s)")
        return record

    def fan_out(self, record: MessageRecord) -> int:
        delivered = sum(1 for target in self._registry.broadcast_targets() if target.deliver(record))
        for listener in list(self._listeners):
            listener(record)
        return delivered
