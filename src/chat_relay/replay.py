"""
Recovery replayer — sends a fresh session every logged message it has not seen.
"""

import logging

from chat_relay.errors import StorageError
from chat_relay.sessions import Session
from chat_relay.store.base import LogStore

logger = logging.getLogger("chat_relay.replay")


class RecoveryReplayer:
    def __init__(self, store: LogStore):
        self._store = store

    async def replay(self, session: Session) -> int:
        """Replay records above the session's watermark to that session only.

        Recovered sessions are skipped: the transport already gave them what they missed.
        Returns the number of records queued for delivery.
        """
        if session.recovered:
            session.release()
            return 0

        replayed = 0
        try:
            records = await self._store.read_since(session.watermark)
        except StorageError as e:
            logger.error(f"Replay for {session.session_id} abandoned: {e}")
            records = []

        for record in records:
            if session.closed:
                logger.debug(f"Session {session.session_id} left during replay")
                break
            if session.deliver_replayed(record):
                replayed += 1

        flushed = session.release()
        if replayed or flushed:
            logger.info(
                f"Replayed {replayed} message(s) to {session.session_id} "
                f"from watermark {session.watermark}, then {flushed} held"
            )
        return replayed
