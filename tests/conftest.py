import pytest
import pytest_asyncio

from chat_relay.sessions import SessionRegistry
from chat_relay.store.sqlite import SqliteLogStore

from helpers import FlakyStore, Outbox


@pytest_asyncio.fixture
async def store():
    s = SqliteLogStore(":memory:")
    await s.open()
    yield s
    await s.close()


@pytest_asyncio.fixture
async def flaky_store(store):
    return FlakyStore(store)


@pytest.fixture
def outbox() -> Outbox:
    return Outbox()


@pytest.fixture
def registry(outbox) -> SessionRegistry:
    return SessionRegistry(outbox.send)
