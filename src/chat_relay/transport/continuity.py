"""
Connection state recovery.

Every connection gets a private id (pid). When it drops, the pid stays claimable
for `window` seconds. Meanwhile every committed record is kept in a short ring.
A client that reconnects with a claimable pid and an offset the ring still covers
is "recovered": it gets the ring's records above its offset and no replay from the
log. Anything else is a fresh connection and replays from the log instead.
"""

import logging
import time
import uuid
from collections import deque
from typing import Callable, Optional

from chat_relay.models.record import MessageRecord

logger = logging.getLogger("chat_relay.transport.continuity")

DEFAULT_WINDOW_S = 120.0
DEFAULT_MAX_RETAINED = 1000


class ContinuityTracker:
    def __init__(
        self,
        window: float = DEFAULT_WINDOW_S,
        max_retained: int = DEFAULT_MAX_RETAINED,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._window = window
        self._max_retained = max_retained
        self._clock = clock
        self._detached: dict[str, float] = {}  # pid -> expires_at
        self._recent: deque[tuple[float, MessageRecord]] = deque()
        # Every id above the horizon is still in the ring. None until the first record.
        self._horizon: Optional[int] = None

    @staticmethod
    def new_pid() -> str:
        return uuid.uuid4().hex

    @property
    def enabled(self) -> bool:
        return self._window > 0

    @property
    def horizon(self) -> Optional[int]:
        return self._horizon

    def detached_count(self) -> int:
        self._expire()
        return len(self._detached)

    def detach(self, pid: str) -> None:
        if not self.enabled:
            return
        self._detached[pid] = self._clock() + self._window

    def record(self, record: MessageRecord) -> None:
        if not self.enabled:
            return
        if self._horizon is None:
            self._horizon = record.id - 1
        self._recent.append((self._clock(), record))
        self._expire()

    def restore(self, pid: Optional[str], offset: int = 0) -> Optional[list[MessageRecord]]:
        """Claim a dropped connection. Returns what it missed, or None if it must replay from the log."""
        self._expire()
        if not pid or self._detached.pop(pid, None) is None:
            return None
        if self._horizon is None or offset < self._horizon:
            logger.debug(f"pid {pid} offset {offset} is behind the recovery horizon {self._horizon}")
            return None
        return [record for _, record in self._recent if record.id > offset]

    def _expire(self) -> None:
        now = self._clock()
        for pid in [pid for pid, expires_at in self._detached.items() if expires_at <= now]:
            del self._detached[pid]
        while self._recent and (
            len(self._recent) > self._max_retained or self._recent[0][0] + self._window <= now
        ):
            _, dropped = self._recent.popleft()
            self._horizon = dropped.id
