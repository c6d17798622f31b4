"""
Application wiring: settings -> store, enrichment, Socket.IO server, ASGI app.
"""

import logging
from typing import Optional

import socketio
import uvicorn

from chat_relay.config import Settings, load_settings
from chat_relay.enrichment import EnrichmentPipeline, default_resolvers
from chat_relay.store.base import LogStore, open_store
from chat_relay.transport.continuity import ContinuityTracker
from chat_relay.transport.socketio import ChatRelayServer

logger = logging.getLogger("chat_relay.app")


def build_server(settings: Settings, store: Optional[LogStore] = None) -> ChatRelayServer:
    return ChatRelayServer(
        store or open_store(settings.db_url, settings.db_token),
        enrichment=EnrichmentPipeline(
            default_resolvers(hardware_id=settings.enrich_hardware_id),
            timeout=settings.enrich_timeout,
        ),
        continuity=ContinuityTracker(window=settings.recovery_window),
    )


def build_app(settings: Optional[Settings] = None, store: Optional[LogStore] = None) -> socketio.ASGIApp:
    settings = settings or load_settings()
    server = build_server(settings, store)

    async def startup() -> None:
        # The schema must exist before the first connection is accepted.
        await server.store.open()
        logger.info(f"Server running on port {settings.port}")

    async def shutdown() -> None:
        await server.store.close()

    return server.asgi_app(on_startup=startup, on_shutdown=shutdown)


def serve(settings: Settings) -> None:
    uvicorn.run(build_app(settings), host=settings.host, port=settings.port, log_config=None, access_log=True)
