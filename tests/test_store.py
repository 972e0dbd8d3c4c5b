"""Tests for the document stores."""

import asyncio

import pytest

from gateway.errors import ServiceUnavailableError
from gateway.store import BoundedStore, DuplicateKeyError, MemoryStore
from gateway.store.sql import SqlStore
from gateway.services.base import mutate

pytestmark = pytest.mark.anyio


@pytest.fixture(params=["memory", "sql"])
async def store(request, tmp_path):
    if request.param == "memory":
        backend = MemoryStore()
    else:
        backend = SqlStore(f"sqlite+aiosqlite:///{tmp_path}/store.db")
        await backend.create_all()
    yield backend
    await backend.close()


class SlowStore(MemoryStore):
    async def get(self, collection, doc_id):
        await asyncio.sleep(1)
        return await super().get(collection, doc_id)


class TestDocumentStore:
    """Behaviour shared by every backend."""

    async def test_insert_and_get(self, store):
        record = await store.insert("things", "a", {"name": "first"})
        assert record.version == 1

        fetched = await store.get("things", "a")
        assert fetched.data == {"name": "first"}
        assert await store.get("things", "missing") is None

    async def test_returned_records_do_not_alias_caller_data(self, store):
        data = {"name": "first", "tags": ["a"]}
        inserted = await store.insert("things", "a", data)
        data["name"] = "changed"
        data["tags"].append("b")
        assert inserted.data == {"name": "first", "tags": ["a"]}
        assert (await store.get("things", "a")).data == {"name": "first", "tags": ["a"]}

        new_data = {"name": "second", "tags": []}
        updated = await store.update("things", "a", new_data, expected_version=1)
        new_data["tags"].append("c")
        assert updated.data == {"name": "second", "tags": []}
        assert (await store.get("things", "a")).data == {"name": "second", "tags": []}

    async def test_insert_is_unique(self, store):
        await store.insert("things", "a", {"name": "first"})
        with pytest.raises(DuplicateKeyError):
            await store.insert("things", "a", {"name": "second"})
        assert (await store.get("things", "a")).data["name"] == "first"

    async def test_update_compares_version(self, store):
        await store.insert("things", "a", {"n": 1})

        updated = await store.update("things", "a", {"n": 2}, expected_version=1)
        assert updated.version == 2

        stale = await store.update("things", "a", {"n": 3}, expected_version=1)
        assert stale is None
        assert (await store.get("things", "a")).data == {"n": 2}

    async def test_update_missing_document(self, store):
        assert await store.update("things", "nope", {"n": 1}, expected_version=1) is None

    async def test_put_upserts(self, store):
        first = await store.put("things", "a", {"n": 1})
        second = await store.put("things", "a", {"n": 2})
        assert first.version == 1
        assert second.version == 2

    async def test_versioned_delete(self, store):
        await store.insert("things", "a", {"n": 1})
        await store.update("things", "a", {"n": 2}, expected_version=1)

        assert not await store.delete("things", "a", expected_version=1)
        assert await store.delete("things", "a", expected_version=2)
        assert not await store.delete("things", "a")

    async def test_find_and_count(self, store):
        await store.insert("things", "a", {"owner": "u1", "kind": "x"})
        await store.insert("things", "b", {"owner": "u1", "kind": "y"})
        await store.insert("things", "c", {"owner": "u2", "kind": "x"})
        await store.insert("others", "d", {"owner": "u1"})

        assert {r.id for r in await store.find("things", owner="u1")} == {"a", "b"}
        assert await store.count("things", kind="x") == 2
        assert await store.count("things") == 3

    async def test_mutate_retries_lost_race(self):
        store = MemoryStore()
        await store.insert("counters", "c", {"n": 0})

        async def bump():
            return await mutate(store, "counters", "c", lambda data: {**data, "n": data["n"] + 1}, "Counter")

        await asyncio.gather(*(bump() for _ in range(5)))
        assert (await store.get("counters", "c")).data["n"] == 5


class TestBoundedStore:
    """Test cases for time-bounded store calls."""

    async def test_timeout_becomes_service_unavailable(self):
        bounded = BoundedStore(SlowStore(), timeout=0.05)
        with pytest.raises(ServiceUnavailableError):
            await bounded.get("things", "a")

    async def test_duplicate_key_passes_through(self):
        bounded = BoundedStore(MemoryStore(), timeout=1)
        await bounded.insert("things", "a", {})
        with pytest.raises(DuplicateKeyError):
            await bounded.insert("things", "a", {})
