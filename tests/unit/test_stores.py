from __future__ import annotations

import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from chat_sync.application.exceptions import QuotaExceeded, StorageError
from chat_sync.infrastructure.store.legacy import LEGACY_HISTORY_PREFIX, LegacyMigratingStore
from chat_sync.infrastructure.store.memory import InMemoryStore
from chat_sync.infrastructure.store.redis_store import RedisStore
from chat_sync.services.snapshot_cache import SnapshotCache
from tests.conftest import CONVERSATION, FakeRedis, oom_error


@pytest.mark.asyncio
async def test_memory_store_enforces_quota():
    store = InMemoryStore(quota_bytes=20)
    await store.set("k", "x" * 10)

    with pytest.raises(QuotaExceeded):
        await store.set("other", "y" * 15)
    await store.set("k", "z" * 19)

    assert await store.get("k") == "z" * 19
    assert await store.keys() == ["k"]


@pytest.mark.asyncio
async def test_memory_store_keys_by_prefix():
    store = InMemoryStore()
    await store.set("messages_a", "[]")
    await store.set("a_count", "0")

    assert await store.keys("messages_") == ["messages_a"]


@pytest.mark.asyncio
async def test_legacy_history_is_migrated_on_first_read(clock):
    inner = InMemoryStore()
    legacy = {
        "messages": [
            {"_id": "m1", "content": "old one", "sender": {"_id": "u2", "name": "Dr. Who"},
             "timestamp": "2025-12-31T10:00:00Z"},
            {"_id": "m2", "content": "old two", "sender": "u1", "createdAt": "2025-12-31T10:01:00Z"},
        ],
        "timestamp": "2025-12-31T10:02:00+00:00",
    }
    await inner.set(f"{LEGACY_HISTORY_PREFIX}{CONVERSATION}", json.dumps(legacy))
    cache = SnapshotCache(LegacyMigratingStore(inner), clock=clock)

    loaded = await cache.load(CONVERSATION)

    assert [m.content for m in loaded] == ["old one", "old two"]
    assert loaded[0].sender.name == "Dr. Who"
    assert await inner.get(f"{LEGACY_HISTORY_PREFIX}{CONVERSATION}") is None
    assert await inner.get(f"{CONVERSATION}_count") == "2"
    assert await inner.get(f"{CONVERSATION}_timestamp") == "2025-12-31T10:02:00+00:00"


@pytest.mark.asyncio
async def test_legacy_blob_is_readable_when_migration_cannot_write():
    inner = InMemoryStore(quota_bytes=250)
    blob = json.dumps({"messages": [{"_id": "m1", "content": "x" * 100}], "timestamp": None})
    await inner.set(f"{LEGACY_HISTORY_PREFIX}{CONVERSATION}", blob)

    raw = await LegacyMigratingStore(inner).get(f"messages_{CONVERSATION}")

    assert json.loads(raw)[0]["_id"] == "m1"
    assert await inner.get(f"{LEGACY_HISTORY_PREFIX}{CONVERSATION}") is not None


@pytest.mark.asyncio
async def test_clearing_a_conversation_removes_legacy_blob():
    inner = InMemoryStore()
    await inner.set(f"{LEGACY_HISTORY_PREFIX}{CONVERSATION}", "{}")

    await LegacyMigratingStore(inner).delete(f"messages_{CONVERSATION}")

    assert await inner.keys() == []


@pytest.mark.asyncio
async def test_redis_store_namespaces_keys():
    redis = FakeRedis()
    store = RedisStore(redis, namespace="chat_sync:")

    await store.set("messages_c1", "[]")
    await store.set("outbox", "[]")

    assert redis.data == {"chat_sync:messages_c1": "[]", "chat_sync:outbox": "[]"}
    assert await store.get("messages_c1") == "[]"
    assert await store.keys("messages_") == ["messages_c1"]
    await store.delete("outbox")
    assert await store.get("outbox") is None


@pytest.mark.asyncio
async def test_redis_oom_reply_is_quota_exceeded():
    redis = FakeRedis(fail_with=oom_error())

    with pytest.raises(QuotaExceeded):
        await RedisStore(redis).set("k", "v")


@pytest.mark.asyncio
async def test_redis_outage_is_storage_error():
    redis = FakeRedis(fail_with=RedisConnectionError("connection refused"))
    store = RedisStore(redis)

    with pytest.raises(StorageError):
        await store.get("k")
    with pytest.raises(StorageError):
        await store.keys()


@pytest.mark.asyncio
async def test_redis_store_close():
    redis = FakeRedis()
    await RedisStore(redis).aclose()
    assert redis.closed is True


@pytest.mark.asyncio
async def test_legacy_migration_keeps_only_the_newest_window(clock):
    inner = InMemoryStore()
    legacy = {
        "messages": [
            {"_id": f"m{i}", "content": f"old {i}", "sender": "u1", "timestamp": f"2025-12-31T10:{i:02d}:00Z"}
            for i in range(40)
        ],
        "timestamp": "2025-12-31T11:00:00+00:00",
    }
    await inner.set(f"{LEGACY_HISTORY_PREFIX}{CONVERSATION}", json.dumps(legacy))
    cache = SnapshotCache(LegacyMigratingStore(inner, window=30), clock=clock)

    loaded = await cache.load(CONVERSATION)

    assert len(loaded) == 30
    assert (loaded[0].id, loaded[-1].id) == ("m10", "m39")
    assert await inner.get(f"{CONVERSATION}_count") == "30"
