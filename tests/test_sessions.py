import asyncio

import pytest

from chat_relay.models.record import MessageRecord
from chat_relay.sessions import Session, SessionRegistry

from helpers import connection


def _rec(i: int) -> MessageRecord:
    return MessageRecord(id=i, content=f"m{i}", author="A")


class TestSession:
    @pytest.mark.asyncio
    async def test_fresh_session_holds_live_records_until_released(self, registry, outbox):
        session = registry.admit(connection("s1"))
        assert session.replaying
        session.deliver(_rec(3))
        session.deliver_replayed(_rec(1))
        session.deliver_replayed(_rec(2))
        await session.wait_delivered()
        assert outbox.ids("s1") == [1, 2]

        assert session.release() == 1
        await session.wait_delivered()
        assert outbox.ids("s1") == [1, 2, 3]
        assert not session.replaying

    @pytest.mark.asyncio
    async def test_release_drops_records_already_replayed(self, registry, outbox):
        session = registry.admit(connection("s1"))
        session.deliver(_rec(2))
        session.deliver(_rec(3))
        for i in (1, 2, 3):
            session.deliver_replayed(_rec(i))
        assert session.release() == 0
        await session.wait_delivered()
        assert outbox.ids("s1") == [1, 2, 3]
        assert session.last_delivered_id == 3

    @pytest.mark.asyncio
    async def test_recovered_session_is_live_immediately(self, registry, outbox):
        session = registry.admit(connection("s1", recovered=True))
        assert not session.replaying
        session.deliver(_rec(5))
        await session.wait_delivered()
        assert outbox.ids("s1") == [5]

    @pytest.mark.asyncio
    async def test_closed_session_accepts_nothing(self, registry, outbox):
        session = registry.admit(connection("s1", recovered=True))
        session.close()
        assert session.closed
        assert not session.deliver(_rec(1))
        assert not session.deliver_replayed(_rec(1))
        await session.wait_delivered()
        assert outbox.ids("s1") == []

    @pytest.mark.asyncio
    async def test_failed_send_does_not_stop_the_pump(self):
        sent = []

        async def send(session_id, record):
            if record.id == 1:
                raise RuntimeError("socket gone")
            sent.append(record.id)

        session = Session(connection("s1", recovered=True), send)
        session.start()
        session.deliver(_rec(1))
        session.deliver(_rec(2))
        await session.wait_delivered()
        assert sent == [2]
        session.close()

    @pytest.mark.asyncio
    async def test_slow_transport_keeps_queue_order(self):
        sent = []

        async def send(session_id, record):
            await asyncio.sleep(0.01 if record.id % 2 else 0)
            sent.append(record.id)

        session = Session(connection("s1", recovered=True), send)
        session.start()
        for i in range(1, 7):
            session.deliver(_rec(i))
        await session.wait_delivered()
        assert sent == [1, 2, 3, 4, 5, 6]
        session.close()


class TestSessionRegistry:
    @pytest.mark.asyncio
    async def test_admit_and_remove(self, registry):
        registry.admit(connection("s1", author="A"))
        registry.admit(connection("s2", author="B"))
        assert len(registry) == 2
        assert "s1" in registry
        assert registry.get("s1").author == "A"

        assert registry.remove("s1")
        assert "s1" not in registry
        assert registry.get("s1") is None
        assert not registry.remove("s1")

    @pytest.mark.asyncio
    async def test_readmitting_an_id_closes_the_stale_session(self, registry):
        stale = registry.admit(connection("s1"))
        fresh = registry.admit(connection("s1"))
        assert stale.closed
        assert not fresh.closed
        assert len(registry) == 1
        assert registry.get("s1") is fresh

    @pytest.mark.asyncio
    async def test_broadcast_targets_is_a_snapshot(self, registry):
        registry.admit(connection("s1"))
        targets = registry.broadcast_targets()
        registry.admit(connection("s2"))
        registry.remove("s1")
        assert {s.session_id for s in targets} == {"s1"}
        assert {s.session_id for s in registry.broadcast_targets()} == {"s2"}

    @pytest.mark.asyncio
    async def test_iteration_tolerates_removal(self, registry):
        for sid in ("s1", "s2", "s3"):
            registry.admit(connection(sid))
        for session in registry:
            registry.remove(session.session_id)
        assert len(registry) == 0

    def test_empty_registry(self):
        registry = SessionRegistry(lambda sid, rec: None)
        assert len(registry) == 0
        assert registry.broadcast_targets() == frozenset()
