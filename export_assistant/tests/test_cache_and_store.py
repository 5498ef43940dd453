import asyncio

import pytest

from export_assistant.core.cache import BoundedTTLCache
from export_assistant.core.exceptions import MessageValidationError
from export_assistant.core.locks import KeyedLocks
from export_assistant.repositories.base import InMemoryStore
from export_assistant.utils.text import extract_keywords
from export_assistant.utils.validation import process_message_content, sanitize


class ManualClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestBoundedTTLCache:

    def test_evicts_least_recently_used(self):
        evicted = []
        cache = BoundedTTLCache(2, on_evict=lambda k, v: evicted.append(k))
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)

        assert evicted == ["b"]
        assert "a" in cache and "c" in cache
        assert len(cache) == 2

    def test_entries_expire(self):
        clock = ManualClock()
        cache = BoundedTTLCache(10, ttl_seconds=5, clock=clock)
        cache.set("a", 1)
        clock.now = 4.9
        assert cache.get("a") == 1
        clock.now = 5.0
        assert cache.get("a") is None
        assert "a" not in cache

    def test_items_skip_expired(self):
        clock = ManualClock()
        cache = BoundedTTLCache(10, ttl_seconds=1, clock=clock)
        cache.set("old", 1)
        clock.now = 0.5
        cache.set("new", 2)
        clock.now = 1.2
        assert cache.items() == [("new", 2)]
        assert cache.pop("new") == 2
        assert cache.pop("new") is None

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            BoundedTTLCache(0)


class TestInMemoryStore:

    async def test_values_expire(self):
        clock = ManualClock()
        store = InMemoryStore(clock=clock)
        await store.set("k", {"v": 1}, ttl_ms=1000)
        assert await store.get("k") == {"v": 1}
        clock.now = 1.0
        assert await store.get("k") is None

    async def test_values_are_copies(self, store):
        value = {"items": [1]}
        await store.set("k", value)
        value["items"].append(2)
        assert await store.get("k") == {"items": [1]}

    async def test_collections(self, store):
        await store.save("things", {"user_id": "u1", "n": 1})
        await store.save("things", {"user_id": "u1", "n": 2})
        await store.save("things", {"user_id": "u2", "n": 3})
        assert await store.load_by_user_id("things", "u1") == [{"user_id": "u1", "n": 2}]

        assert await store.delete_by_user_id("things", "u1") == 1
        assert store.count("things") == 1

    async def test_delete_before(self, store):
        for i, ts in enumerate((10, 20, 30)):
            await store.save("events", {"id": f"e{i}", "user_id": "u1", "ts": ts}, key_field="id")
        assert await store.delete_before("events", "ts", 25) == 2
        assert [r["ts"] for r in await store.load_by_user_id("events", "u1")] == [30]

    async def test_missing_key_field(self, store):
        with pytest.raises(KeyError):
            await store.save("events", {"user_id": "u1"}, key_field="id")

    async def test_load_all(self, store):
        await store.save("things", {"user_id": "u1"})
        await store.save("things", {"user_id": "u2"})
        assert sorted(r["user_id"] for r in await store.load_all("things")) == ["u1", "u2"]
        assert await store.load_all("missing") == []


class TestKeyedLocks:

    async def test_same_key_same_lock(self):
        locks = KeyedLocks()
        assert locks("u1") is locks("u1")
        assert locks("u1") is not locks("u2")

    async def test_serializes_per_key(self):
        locks = KeyedLocks()
        order = []

        async def worker(name):
            async with locks("u1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert order == ["a-in", "a-out", "b-in", "b-out"]

    async def test_idle_locks_pruned(self):
        locks = KeyedLocks(max_idle=2)
        locks("a")
        locks("b")
        locks("c")
        assert len(locks) == 1

    async def test_lock_with_pending_waiter_not_pruned(self):
        locks = KeyedLocks(max_idle=1)
        held = locks("u1")
        await held.acquire()

        async def waiter():
            async with locks("u1"):
                return True

        task = asyncio.create_task(waiter())
        await asyncio.sleep(0)
        held.release()

        locks("u2")
        assert locks("u1") is held
        assert await task is True


class TestValidation:

    def test_sanitize_strips_markup(self):
        assert sanitize('<a href="javascript:x()" onclick="y()">hi</a>') == "hi"
        assert sanitize("<script>alert(1)</script>buyers") == "buyers"

    def test_process_collects_errors(self):
        with pytest.raises(MessageValidationError) as info:
            process_message_content("<b></b>")
        assert info.value.errors == ["Content cannot be empty after sanitization"]
        assert info.value.to_dict()["code"] == "INVALID_MESSAGE"

    def test_length_limit(self):
        assert process_message_content("abc", max_length=3) == "abc"
        with pytest.raises(MessageValidationError):
            process_message_content("abcd", max_length=3)

    def test_non_string(self):
        with pytest.raises(MessageValidationError):
            process_message_content(None)


def test_keywords_skip_stop_words():
    keywords = extract_keywords("How do I find the best buyers for textiles?")
    assert "buyers" in keywords
    assert "textiles" in keywords
    assert "the" not in keywords
