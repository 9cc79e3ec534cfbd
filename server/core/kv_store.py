"""Namespaced key-value store with Redis, SQLite or in-memory backend.

The response cache and the rate limiter each own one ``KeyValueStore``
(``cache`` and ``rate_limit`` namespaces). Backend errors propagate to the
caller: the cache treats them as misses, the rate limiter fails open.
"""

import json
import time
from typing import Any, Callable, Dict, Optional, Tuple, TYPE_CHECKING

import redis.asyncio as redis

from core.config import Settings
from core.logging import get_logger

if TYPE_CHECKING:
    from core.database import Database

logger = get_logger(__name__)

Clock = Callable[[], float]


class KeyValueStore:
    """String-keyed store supporting get, put-with-TTL and delete.

    Backend selection:
    - Redis: When REDIS_ENABLED=true or KV_BACKEND=redis, REDIS_URL is set and the ping succeeds
    - SQLite: When KV_BACKEND=sqlite, or as the Redis fallback if a database is wired
    - Memory: Process-local dict with expiry (development and tests)
    """

    def __init__(self, settings: Settings, database: Optional["Database"] = None,
                 namespace: str = "cache", clock: Clock = time.time):
        self.settings = settings
        self.database = database
        self.namespace = namespace
        self.clock = clock
        self.redis: Optional[redis.Redis] = None
        self.memory: Dict[str, Tuple[str, Optional[float]]] = {}
        self.use_redis = (settings.redis_enabled or settings.kv_backend == "redis") and bool(settings.redis_url)
        self.use_sqlite = not self.use_redis and settings.kv_backend == "sqlite" and database is not None

    async def startup(self):
        """Initialize the backend connection."""
        if self.use_redis:
            try:
                self.redis = redis.from_url(
                    self.settings.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_timeout=5,
                    socket_connect_timeout=5,
                    retry_on_timeout=True
                )
                await self.redis.ping()
                logger.info("Redis key-value store initialized", namespace=self.namespace)

            except Exception as e:
                logger.warning("Redis connection failed, falling back",
                               namespace=self.namespace, error=str(e))
                self.use_redis = False
                self.redis = None
                if self.database:
                    self.use_sqlite = True
                    logger.info("Using SQLite key-value store (Redis fallback)", namespace=self.namespace)
        elif self.use_sqlite:
            logger.info("Using SQLite key-value store", namespace=self.namespace)
        else:
            if self.settings.kv_backend == "redis":
                logger.warning("KV_BACKEND=redis without REDIS_URL", namespace=self.namespace)
            logger.info("Using in-memory key-value store", namespace=self.namespace)

    async def shutdown(self):
        """Close backend connections."""
        if self.redis:
            await self.redis.aclose()
            logger.info("Redis key-value store closed", namespace=self.namespace)
        self.memory.clear()

    @property
    def backend(self) -> str:
        if self.use_redis and self.redis:
            return "redis"
        if self.use_sqlite and self.database:
            return "sqlite"
        return "memory"

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[str]:
        """Raw string value, or None when absent or expired."""
        full_key = self._key(key)
        if self.use_redis and self.redis:
            return await self.redis.get(full_key)
        if self.use_sqlite and self.database:
            return await self.database.get_kv_entry(full_key, now=self.clock())

        entry = self.memory.get(full_key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self.clock():
            del self.memory[full_key]
            return None
        return value

    async def get_json(self, key: str) -> Optional[Any]:
        value = await self.get(key)
        return json.loads(value) if value is not None else None

    async def put(self, key: str, value: str, expiration_ttl: Optional[int] = None) -> None:
        """Store a serialized value; ``expiration_ttl`` is in seconds."""
        full_key = self._key(key)
        if self.use_redis and self.redis:
            await self.redis.set(full_key, value, ex=expiration_ttl or None)
        elif self.use_sqlite and self.database:
            await self.database.set_kv_entry(full_key, value, expiration_ttl, now=self.clock())
        else:
            expires_at = self.clock() + expiration_ttl if expiration_ttl else None
            self.memory[full_key] = (value, expires_at)

    async def delete(self, key: str) -> bool:
        full_key = self._key(key)
        if self.use_redis and self.redis:
            return bool(await self.redis.delete(full_key))
        if self.use_sqlite and self.database:
            return await self.database.delete_kv_entry(full_key)
        return self.memory.pop(full_key, None) is not None

    async def cleanup_expired(self) -> int:
        """Drop expired entries in this namespace; returns the count removed.

        Redis expires keys itself, so only the SQLite and memory backends
        need sweeping.
        """
        if self.use_redis and self.redis:
            return 0
        if self.use_sqlite and self.database:
            return await self.database.cleanup_expired_kv(now=self.clock(), prefix=self._key(""))

        now = self.clock()
        expired = [key for key, (_, expires_at) in self.memory.items()
                   if expires_at is not None and expires_at <= now]
        for key in expired:
            del self.memory[key]
        return len(expired)

    async def ping(self) -> bool:
        """Round-trip a check key; raises on backend failure."""
        check_key = "_health_check"
        await self.put(check_key, "ok", expiration_ttl=10)
        value = await self.get(check_key)
        await self.delete(check_key)
        return value == "ok"
