import pytest

from core.database import Database
from core.kv_store import KeyValueStore


@pytest.mark.asyncio
async def test_memory_put_get_delete(memory_store):
    await memory_store.startup()
    assert memory_store.backend == "memory"

    await memory_store.put("schema:users", '{"a": 1}', expiration_ttl=60)
    assert await memory_store.get("schema:users") == '{"a": 1}'
    assert await memory_store.get_json("schema:users") == {"a": 1}

    assert await memory_store.delete("schema:users") is True
    assert await memory_store.get("schema:users") is None
    assert await memory_store.delete("schema:users") is False


@pytest.mark.asyncio
async def test_memory_entries_expire(memory_store, clock):
    await memory_store.put("k", "v", expiration_ttl=60)

    clock.advance(59)
    assert await memory_store.get("k") == "v"

    clock.advance(1)
    assert await memory_store.get("k") is None


@pytest.mark.asyncio
async def test_namespaces_do_not_collide(settings, clock):
    cache = KeyValueStore(settings, namespace="cache", clock=clock)
    limits = KeyValueStore(settings, namespace="rate_limit", clock=clock)
    # Shared dict: only the key prefix keeps the entries apart
    limits.memory = cache.memory

    await cache.put("same", "from-cache")
    await limits.put("same", "from-limits")

    assert await cache.get("same") == "from-cache"
    assert await limits.get("same") == "from-limits"
    assert set(cache.memory) == {"cache:same", "rate_limit:same"}


@pytest.mark.asyncio
async def test_ping_round_trips(memory_store):
    assert await memory_store.ping() is True
    assert memory_store.memory == {}


@pytest.mark.asyncio
async def test_sqlite_backend(settings, clock):
    settings = settings.model_copy(update={"kv_backend": "sqlite"})
    database = Database(settings)
    await database.startup()
    try:
        store = KeyValueStore(settings, database=database, namespace="rate_limit", clock=clock)
        await store.startup()
        assert store.backend == "sqlite"

        await store.put("rate:1.2.3.4", '{"count": 1}', expiration_ttl=60)
        assert await store.get_json("rate:1.2.3.4") == {"count": 1}

        await store.put("rate:1.2.3.4", '{"count": 2}', expiration_ttl=60)
        assert await store.get_json("rate:1.2.3.4") == {"count": 2}

        clock.advance(61)
        assert await store.get("rate:1.2.3.4") is None
        assert await store.delete("rate:1.2.3.4") is False
    finally:
        await database.shutdown()


@pytest.mark.asyncio
async def test_sqlite_cleanup_removes_expired_rows(settings, clock):
    database = Database(settings)
    await database.startup()
    try:
        await database.set_kv_entry("cache:a", "1", ttl=10, now=clock())
        await database.set_kv_entry("cache:b", "2", ttl=1000, now=clock())
        await database.set_kv_entry("cache:c", "3", ttl=None, now=clock())

        assert await database.cleanup_expired_kv(now=clock() + 100) == 1
        assert await database.get_kv_entry("cache:b", now=clock() + 100) == "2"
        assert await database.get_kv_entry("cache:c", now=clock() + 100) == "3"
    finally:
        await database.shutdown()


@pytest.mark.asyncio
async def test_memory_cleanup_drops_only_expired(memory_store, clock):
    await memory_store.put("short", "1", expiration_ttl=10)
    await memory_store.put("long", "2", expiration_ttl=1000)
    await memory_store.put("forever", "3")

    clock.advance(10)

    assert await memory_store.cleanup_expired() == 1
    assert set(memory_store.memory) == {"cache:long", "cache:forever"}


@pytest.mark.asyncio
async def test_sqlite_cleanup_is_scoped_to_namespace(settings, clock):
    settings = settings.model_copy(update={"kv_backend": "sqlite"})
    database = Database(settings)
    await database.startup()
    try:
        cache = KeyValueStore(settings, database=database, namespace="cache", clock=clock)
        limits = KeyValueStore(settings, database=database, namespace="rate_limit", clock=clock)
        await cache.put("schema:users", "[]", expiration_ttl=10)
        await limits.put("rate:1.2.3.4", "{}", expiration_ttl=10)

        clock.advance(60)

        assert await limits.cleanup_expired() == 1
        assert await database.cleanup_expired_kv(now=clock(), prefix="rate_limit:") == 0
        assert await cache.cleanup_expired() == 1
    finally:
        await database.shutdown()


def test_kv_backend_redis_selects_redis(settings):
    settings = settings.model_copy(update={"kv_backend": "redis", "redis_url": "redis://localhost:6379/0"})

    assert KeyValueStore(settings).use_redis is True


def test_redis_needs_url(settings):
    settings = settings.model_copy(update={"kv_backend": "redis", "redis_enabled": True})

    assert KeyValueStore(settings).use_redis is False
