"""Response cache over the key-value store.

Entries are stored as ``{"data", "timestamp", "ttl"}`` (timestamp in epoch
milliseconds) with the store's native expiry set to the same TTL, so both
the stored timestamp and the backend enforce expiry. Every store failure is
logged and treated as a miss; caching never fails a request.
"""

import json
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from core.config import Settings
from core.kv_store import KeyValueStore
from core.logging import get_logger, log_cache_operation

logger = get_logger(__name__)


class CacheTTL:
    """Per-operation TTLs in seconds."""
    TABLE_LIST = 3600
    TABLE_SCHEMA = 3600
    TABLE_DATA = 300
    TABLE_COUNT = 600
    COLUMN_VALUES = 1800
    # Outlives every entry it tracks
    TABLE_INDEX = max(TABLE_LIST, TABLE_SCHEMA, TABLE_DATA, TABLE_COUNT, COLUMN_VALUES)


@dataclass
class CacheLookup:
    """Result of a cache read.

    ``data is None and is_stale`` means an entry existed but is past its TTL,
    so the caller should treat it as a miss.
    """
    data: Optional[Any] = None
    is_stale: bool = False

    @property
    def hit(self) -> bool:
        return self.data is not None


class CacheKeys:
    """Colon-joined key builders; distinct query shapes never share a key."""

    @staticmethod
    def build(kind: str, *params: Any) -> str:
        return ":".join([kind, *(str(p) for p in params)])

    def table_list(self) -> str:
        return self.build("tables", "list")

    def table_schema(self, table: str) -> str:
        return self.build("schema", table)

    def table_data(self, table: str, page: int, limit: int, sort_by: str,
                   sort_order: str, search: Optional[str] = None) -> str:
        return self.build("data", table, page, limit, sort_by, sort_order, search or "none")

    def table_count(self, table: str, search: Optional[str] = None) -> str:
        return self.build("count", table, search or "none")

    def column_values(self, table: str, column: str) -> str:
        return self.build("values", table, column)

    def table_index(self, table: str) -> str:
        return self.build("index", table)


class CacheService:
    """Typed get/set/invalidate with stale-data semantics."""

    keys = CacheKeys()

    def __init__(self, store: KeyValueStore, settings: Settings,
                 clock: Optional[Callable[[], float]] = None):
        self.store = store
        self.settings = settings
        self.clock = clock or store.clock

    @property
    def enabled(self) -> bool:
        return self.settings.cache_enabled

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    async def get(self, key: str, accept_stale: bool = False) -> CacheLookup:
        """Read an entry; stale entries are misses unless ``accept_stale``."""
        if not self.enabled:
            return CacheLookup()

        try:
            cached = await self.store.get_json(key)
            if not cached:
                log_cache_operation(logger, "get", key, hit=False)
                return CacheLookup()

            age_ms = self._now_ms() - cached["timestamp"]
            is_stale = age_ms > cached["ttl"] * 1000

            if is_stale and not accept_stale:
                log_cache_operation(logger, "get", key, hit=False, stale=True)
                return CacheLookup(data=None, is_stale=True)

            log_cache_operation(logger, "get", key, hit=True, stale=is_stale)
            return CacheLookup(data=cached["data"], is_stale=is_stale)

        except Exception as e:
            logger.error("Cache get failed", key=key, error=str(e))
            return CacheLookup()

    async def set(self, key: str, data: Any, ttl: int, table: Optional[str] = None) -> None:
        """Write an entry. ``table`` registers the key for invalidation when indexing is on."""
        if not self.enabled:
            return

        try:
            payload = {"data": data, "timestamp": self._now_ms(), "ttl": ttl}
            await self.store.put(key, json.dumps(payload, default=str), expiration_ttl=ttl)
            log_cache_operation(logger, "set", key, ttl=ttl)
        except Exception as e:
            logger.error("Cache set failed", key=key, error=str(e))
            return

        if table and self.settings.cache_key_index_enabled:
            await self._track_key(table, key)

    async def delete(self, key: str) -> None:
        try:
            deleted = await self.store.delete(key)
            log_cache_operation(logger, "delete", key, deleted=deleted)
        except Exception as e:
            logger.error("Cache delete failed", key=key, error=str(e))

    async def invalidate_table(self, table: str) -> List[str]:
        """Drop cached entries for a table and return the keys deleted.

        Without the key index only the schema entry is removed; listing,
        count and value entries expire on their own short TTLs.
        """
        keys = [self.keys.table_schema(table)]

        if self.settings.cache_key_index_enabled:
            index_key = self.keys.table_index(table)
            try:
                keys.extend(k for k in (await self.store.get_json(index_key) or []) if k not in keys)
            except Exception as e:
                logger.error("Cache index read failed", table=table, error=str(e))
            keys.append(index_key)

        for key in keys:
            await self.delete(key)

        logger.info("Cache invalidated for table", table=table, keys=len(keys))
        return keys

    async def _track_key(self, table: str, key: str) -> None:
        # Read-modify-write; concurrent writers may drop a key, which then expires via TTL
        index_key = self.keys.table_index(table)
        try:
            tracked = await self.store.get_json(index_key) or []
            if key not in tracked:
                tracked.append(key)
            # Rewritten on every set so the index expiry moves with its newest entry
            await self.store.put(index_key, json.dumps(tracked), expiration_ttl=CacheTTL.TABLE_INDEX)
        except Exception as e:
            logger.error("Cache index update failed", table=table, key=key, error=str(e))
