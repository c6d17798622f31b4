"""
chat-relay — live chat relay with a durable message log.

Socket.IO server + client. Messages are logged with increasing ids and
replayed to clients that reconnect after a drop.
"""

from chat_relay.broadcast import BroadcastRouter
from chat_relay.client import AsyncChatClient
from chat_relay.enrichment import EnrichmentPipeline
from chat_relay.errors import ChatRelayError, StorageError, EnrichmentError, ConnectionError
from chat_relay.models.events import C2SEvent, S2CEvent
from chat_relay.models.record import MessageRecord
from chat_relay.models.session import ConnectionInfo
from chat_relay.replay import RecoveryReplayer
from chat_relay.sessions import Session, SessionRegistry
from chat_relay.store.base import LogStore, open_store

__version__ = "0.1.0"
__all__ = [
    "AsyncChatClient",
    "BroadcastRouter",
    "EnrichmentPipeline",
    "RecoveryReplayer",
    "Session",
    "SessionRegistry",
    "LogStore",
    "open_store",
    "MessageRecord",
    "ConnectionInfo",
    "ChatRelayError",
    "StorageError",
    "EnrichmentError",
    "ConnectionError",
    "C2SEvent",
    "S2CEvent",
]
