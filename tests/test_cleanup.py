import pytest
from sqlalchemy import func, select

from core.cleanup import CleanupService
from core.database import Database
from core.kv_store import KeyValueStore
from models.cache import CacheEntry
from services.rate_limiter import RATE_LIMIT_PRESETS, RateLimiter

DAY = 24 * 3600


@pytest.mark.asyncio
async def test_sweep_removes_windows_of_departed_callers(settings, memory_store, clock):
    limits = KeyValueStore(settings, namespace="rate_limit", clock=clock)
    limiter = RateLimiter(limits)
    cleanup = CleanupService([memory_store, limits], settings)

    for i in range(500):
        await limiter.check(f"10.0.{i // 256}.{i % 256}", RATE_LIMIT_PRESETS["standard"])
    await memory_store.put("data:users:1:50:id:asc:none", "{}", expiration_ttl=300)

    clock.advance(DAY)
    await limiter.check("192.168.1.1", RATE_LIMIT_PRESETS["standard"])

    assert await cleanup.run_once() == {"cache": 1, "rate_limit": 500}
    assert list(limits.memory) == ["rate_limit:rate:192.168.1.1"]
    assert memory_store.memory == {}


@pytest.mark.asyncio
async def test_sweep_removes_expired_sqlite_rows(settings, clock):
    settings = settings.model_copy(update={"kv_backend": "sqlite"})
    database = Database(settings)
    await database.startup()
    try:
        limits = KeyValueStore(settings, database=database, namespace="rate_limit", clock=clock)
        limiter = RateLimiter(limits)
        for i in range(50):
            await limiter.check(f"10.0.0.{i}", RATE_LIMIT_PRESETS["standard"])

        clock.advance(DAY)
        await limiter.check("192.168.1.1", RATE_LIMIT_PRESETS["standard"])
        await CleanupService([limits], settings).run_once()

        async with database.get_session() as session:
            remaining = (await session.execute(select(func.count()).select_from(CacheEntry))).scalar_one()
        assert remaining == 1
    finally:
        await database.shutdown()


@pytest.mark.asyncio
async def test_failing_store_does_not_stop_sweep(settings, memory_store, clock):
    class BrokenStore:
        namespace = "rate_limit"

        async def cleanup_expired(self):
            raise ConnectionError("kv down")

    await memory_store.put("k", "v", expiration_ttl=1)
    clock.advance(5)

    results = await CleanupService([BrokenStore(), memory_store], settings).run_once()

    assert results == {"rate_limit": 0, "cache": 1}


@pytest.mark.asyncio
async def test_start_and_stop(settings, memory_store):
    cleanup = CleanupService([memory_store], settings)

    await cleanup.start()
    assert cleanup._task is not None
    await cleanup.stop()
    assert cleanup._task is None


@pytest.mark.asyncio
async def test_disabled_service_never_starts(settings, memory_store):
    settings = settings.model_copy(update={"cleanup_enabled": False})
    cleanup = CleanupService([memory_store], settings)

    await cleanup.start()

    assert cleanup._task is None
