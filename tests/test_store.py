import asyncio
import sqlite3

import pytest

from chat_relay.errors import StorageError
from chat_relay.store.base import LogStore, open_store
from chat_relay.store.remote import LibsqlLogStore
from chat_relay.store.sqlite import SqliteLogStore

from helpers import seed


class TestAppend:
    @pytest.mark.asyncio
    async def test_ids_start_at_one_and_increase(self, store):
        first = await store.append("hello", "A", {})
        second = await store.append("world", "B", {})
        assert (first.id, second.id) == (1, 2)
        assert first.content == "hello"
        assert first.author == "A"

    @pytest.mark.asyncio
    async def test_empty_content_is_stored(self, store):
        record = await store.append("", "A")
        assert (await store.read_since(0)) == [record]

    @pytest.mark.asyncio
    async def test_metadata_is_opaque_pass_through(self, store):
        meta = {"address": "10.0.0.2", "os": "Linux", "nested": {"k": [1, 2]}}
        record = await store.append("hi", "A", meta)
        assert record.metadata == meta
        [stored] = await store.read_since(0)
        assert stored.metadata == meta

    @pytest.mark.asyncio
    async def test_missing_metadata_is_empty(self, store):
        await store.append("hi", "A", None)
        [stored] = await store.read_since(0)
        assert stored.metadata == {}

    @pytest.mark.asyncio
    async def test_concurrent_appends_get_unique_increasing_ids(self, store):
        records = await asyncio.gather(*(store.append(f"m{i}", "A", {}) for i in range(50)))
        ids = [r.id for r in records]
        assert len(set(ids)) == 50
        assert sorted(ids) == list(range(1, 51))
        logged = [r.id for r in await store.read_since(0)]
        assert logged == sorted(logged) == list(range(1, 51))

    @pytest.mark.asyncio
    async def test_ids_are_never_reused(self, tmp_path):
        path = tmp_path / "chat.db"
        store = SqliteLogStore(f"file:{path}")
        await store.open()
        await seed(store, 3)
        await store.close()

        conn = sqlite3.connect(path)
        conn.execute("DELETE FROM messages WHERE id = 3")
        conn.commit()
        conn.close()

        store = SqliteLogStore(f"file:{path}")
        await store.open()
        record = await store.append("after delete", "A")
        await store.close()
        assert record.id == 4


class TestReadSince:
    @pytest.mark.asyncio
    async def test_empty_store(self, store):
        assert await store.read_since(0) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("watermark, expected", [
        (0, [1, 2, 3, 4, 5]),
        (2, [3, 4, 5]),
        (4, [5]),
        (5, []),
        (99, []),
    ])
    async def test_returns_records_above_watermark_ascending(self, store, watermark, expected):
        await seed(store, 5)
        assert [r.id for r in await store.read_since(watermark)] == expected

    @pytest.mark.asyncio
    async def test_read_never_sees_an_append_that_fails_to_commit(self, store, monkeypatch):
        committing = asyncio.Event()
        gate = asyncio.Event()

        async def failing_commit():
            committing.set()
            await gate.wait()
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(store._conn, "commit", failing_commit)
        append = asyncio.create_task(store.append("never committed", "A"))
        await committing.wait()

        read = asyncio.create_task(store.read_since(0))
        await asyncio.sleep(0.05)
        assert not read.done()

        gate.set()
        with pytest.raises(StorageError):
            await append
        monkeypatch.undo()
        assert await read == []

        real = await store.append("real", "A")
        assert [(r.id, r.content) for r in await store.read_since(0)] == [(real.id, "real")]

    @pytest.mark.asyncio
    async def test_each_call_is_a_fresh_read(self, store):
        await seed(store, 2)
        first = await store.read_since(0)
        await store.append("third", "A")
        second = await store.read_since(0)
        assert len(first) == 2
        assert len(second) == 3


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_schema_creation_is_idempotent(self, tmp_path):
        url = f"file:{tmp_path / 'chat.db'}"
        store = SqliteLogStore(url)
        await store.open()
        await seed(store, 2)
        await store.close()

        reopened = SqliteLogStore(url)
        await reopened.open()
        await reopened.open()
        assert [r.id for r in await reopened.read_since(0)] == [1, 2]
        assert (await reopened.append("next", "A")).id == 3
        await reopened.close()

    @pytest.mark.asyncio
    async def test_legacy_table_gains_metadata_column(self, tmp_path):
        path = tmp_path / "legacy.db"
        conn = sqlite3.connect(path)
        conn.execute("CREATE TABLE messages (id INTEGER PRIMARY KEY AUTOINCREMENT, content TEXT, user TEXT)")
        conn.execute("INSERT INTO messages (content, user) VALUES ('old', 'A')")
        conn.commit()
        conn.close()

        store = SqliteLogStore(str(path))
        await store.open()
        assert store.has_metadata
        await store.append("new", "B", {"os": "Linux"})
        old, new = await store.read_since(0)
        await store.close()
        assert (old.content, old.metadata) == ("old", {})
        assert (new.content, new.metadata) == ("new", {"os": "Linux"})

    @pytest.mark.asyncio
    async def test_unopened_store_raises_storage_error(self):
        store = SqliteLogStore(":memory:")
        with pytest.raises(StorageError):
            await store.append("hi", "A")
        with pytest.raises(StorageError):
            await store.read_since(0)

    @pytest.mark.asyncio
    async def test_closed_store_raises_storage_error(self, store):
        await store.close()
        with pytest.raises(StorageError):
            await store.append("hi", "A")

    @pytest.mark.asyncio
    async def test_unreachable_path_raises_storage_error(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        store = SqliteLogStore(str(blocker / "chat.db"))
        with pytest.raises(StorageError):
            await store.open()


class TestOpenStore:
    @pytest.mark.parametrize("url", ["file:chat.db", "chat.db", ":memory:", "file::memory:"])
    def test_local_urls(self, url):
        store = open_store(url)
        assert isinstance(store, SqliteLogStore)
        assert isinstance(store, LogStore)

    def test_file_prefix_is_stripped(self):
        assert open_store("file:data/chat.db").path == "data/chat.db"
        assert open_store("file::memory:").path == ":memory:"

    @pytest.mark.parametrize("url", ["libsql://chat-org.turso.io", "https://db.example.com"])
    def test_remote_urls(self, url):
        store = open_store(url, "token")
        assert isinstance(store, LibsqlLogStore)
        assert store.base_url.startswith("https://")
