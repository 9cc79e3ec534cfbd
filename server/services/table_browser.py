"""Cache-augmented table browsing over the relational store.

Read path per request: validate identifiers, consult the cache (non-search
requests only), fall through to the database on a miss or stale entry, then
write the response back with an operation-specific TTL. Writes execute,
invalidate the table's cache entries and re-read the affected row.
"""

import json
import math
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from core.cache import CacheService, CacheTTL
from core.database import Database, IDENTIFIER_PATTERN, is_text_column
from core.logging import get_logger, log_database_query
from services.exceptions import InvalidIdentifierError, InvalidRequestError, RowNotFoundError

logger = get_logger(__name__)

CACHE_HIT = "HIT"
CACHE_MISS = "MISS"
CACHE_BYPASS = "BYPASS"

SORT_ORDERS = ("asc", "desc")
PRIMARY_KEY_COLUMN = "id"


@dataclass
class BrowseResult:
    payload: Dict[str, Any]
    cache_status: str


def validate_identifier(value: Optional[str], kind: str) -> str:
    if not value or not IDENTIFIER_PATTERN.fullmatch(value):
        raise InvalidIdentifierError(kind, value or "")
    return value


def coerce_row_id(row_id: Any) -> Any:
    if isinstance(row_id, str) and row_id.lstrip("-").isdigit():
        return int(row_id)
    return row_id


def _jsonable(value: Any) -> Any:
    # Same representation on MISS as the cache will hand back on HIT
    return json.loads(json.dumps(value, default=str))


class TableBrowserService:
    """Table list, schema, paginated data, distinct values and row CRUD."""

    def __init__(self, database: Database, cache: CacheService):
        self.database = database
        self.cache = cache

    # =========================================================================
    # READS
    # =========================================================================

    async def list_tables(self) -> BrowseResult:
        start = time.perf_counter()
        key = self.cache.keys.table_list()

        cached = await self.cache.get(key)
        if cached.hit:
            self._log("*", "list", start, True, len(cached.data))
            return BrowseResult({"success": True, "tables": cached.data, "cached": True}, CACHE_HIT)

        tables = _jsonable(await self.database.list_tables())
        await self.cache.set(key, tables, CacheTTL.TABLE_LIST)

        self._log("*", "list", start, False, len(tables))
        return BrowseResult({"success": True, "tables": tables, "cached": False}, CACHE_MISS)

    async def get_schema(self, table: str) -> BrowseResult:
        validate_identifier(table, "table name")
        start = time.perf_counter()

        columns, status = await self._load_schema(table)

        self._log(table, "schema", start, status == CACHE_HIT, len(columns))
        return BrowseResult(
            {"success": True, "tableName": table, "columns": columns, "cached": status == CACHE_HIT},
            status,
        )

    async def get_data(self, table: str, page: int = 1, limit: int = 50, sort_by: str = "id",
                       sort_order: str = "asc", search: Optional[str] = None) -> BrowseResult:
        validate_identifier(table, "table name")
        validate_identifier(sort_by, "sort column")
        sort_order = (sort_order or "").lower()
        if sort_order not in SORT_ORDERS:
            raise InvalidRequestError("Invalid sort order")

        start = time.perf_counter()
        search = (search or "").strip()
        offset = (page - 1) * limit

        if search:
            columns, _ = await self._load_schema(table)
            text_columns = [c["name"] for c in columns if is_text_column(c.get("type"))]
            if text_columns:
                total = await self.database.count_rows(table, search, text_columns)
                rows = _jsonable(await self.database.fetch_rows(
                    table, sort_by, sort_order, limit, offset, search, text_columns
                ))
            else:
                total, rows = 0, []

            self._log(table, "search", start, False, len(rows))
            return BrowseResult(
                {"success": True, "data": rows, "pagination": self._pagination(page, limit, total),
                 "cached": False},
                CACHE_BYPASS,
            )

        key = self.cache.keys.table_data(table, page, limit, sort_by, sort_order, search)
        cached = await self.cache.get(key)
        if cached.hit:
            self._log(table, "data", start, True, len(cached.data["data"]))
            return BrowseResult({"success": True, **cached.data, "cached": True}, CACHE_HIT)

        total = await self._count(table)
        rows = _jsonable(await self.database.fetch_rows(table, sort_by, sort_order, limit, offset))
        page_payload = {"data": rows, "pagination": self._pagination(page, limit, total)}
        await self.cache.set(key, page_payload, CacheTTL.TABLE_DATA, table=table)

        self._log(table, "data", start, False, len(rows))
        return BrowseResult({"success": True, **page_payload, "cached": False}, CACHE_MISS)

    async def get_column_values(self, table: str, column: str) -> BrowseResult:
        validate_identifier(table, "table name")
        validate_identifier(column, "column name")
        start = time.perf_counter()
        key = self.cache.keys.column_values(table, column)

        cached = await self.cache.get(key)
        if cached.hit:
            self._log(table, "values", start, True, len(cached.data), column=column)
            return BrowseResult({"success": True, "values": cached.data, "cached": True}, CACHE_HIT)

        values = _jsonable(await self.database.distinct_values(table, column))
        await self.cache.set(key, values, CacheTTL.COLUMN_VALUES, table=table)

        self._log(table, "values", start, False, len(values), column=column)
        return BrowseResult({"success": True, "values": values, "cached": False}, CACHE_MISS)

    # =========================================================================
    # WRITES
    # =========================================================================

    async def create_row(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        validate_identifier(table, "table name")
        values = await self._validated_values(table, values, allow_key=True)
        if not values:
            raise InvalidRequestError("No fields provided")

        rowid = await self.database.insert_row(table, values)
        await self.cache.invalidate_table(table)

        row = await self.database.get_row_by_rowid(table, rowid) if rowid is not None else None
        logger.info("Row created", table=table, rowid=rowid)
        return {"success": True, "data": _jsonable(row)}

    async def update_row(self, table: str, row_id: Any, values: Dict[str, Any]) -> Dict[str, Any]:
        validate_identifier(table, "table name")
        row_id = coerce_row_id(row_id)
        values = await self._validated_values(table, values, allow_key=False)
        if not values:
            raise InvalidRequestError("No fields to update")

        affected = await self.database.update_row(table, row_id, values, PRIMARY_KEY_COLUMN)
        if affected == 0:
            raise RowNotFoundError(table, row_id)
        await self.cache.invalidate_table(table)

        row = await self.database.get_row(table, row_id, PRIMARY_KEY_COLUMN)
        logger.info("Row updated", table=table, row_id=row_id, columns=list(values))
        return {"success": True, "data": _jsonable(row)}

    async def delete_row(self, table: str, row_id: Any) -> Dict[str, Any]:
        validate_identifier(table, "table name")
        row_id = coerce_row_id(row_id)

        row = await self.database.get_row(table, row_id, PRIMARY_KEY_COLUMN)
        affected = await self.database.delete_row(table, row_id, PRIMARY_KEY_COLUMN)
        if affected == 0:
            raise RowNotFoundError(table, row_id)
        await self.cache.invalidate_table(table)

        logger.info("Row deleted", table=table, row_id=row_id)
        return {"success": True, "data": _jsonable(row), "message": "Row deleted successfully"}

    # =========================================================================
    # CACHE ADMINISTRATION
    # =========================================================================

    async def invalidate_table(self, table: str) -> Dict[str, Any]:
        validate_identifier(table, "table name")
        keys = await self.cache.invalidate_table(table)
        return {"success": True, "message": f"Cache invalidated for table {table}", "keys": keys}

    async def warm_schema_cache(self, tables: Sequence[str]) -> Dict[str, bool]:
        """Refresh schema entries for frequently browsed tables."""
        warmed: Dict[str, bool] = {}
        for table in tables:
            try:
                validate_identifier(table, "table name")
                columns = _jsonable(await self.database.table_info(table))
                if columns:
                    await self.cache.set(self.cache.keys.table_schema(table), columns, CacheTTL.TABLE_SCHEMA)
                warmed[table] = bool(columns)
            except Exception as e:
                logger.warning("Schema cache warming failed", table=table, error=str(e))
                warmed[table] = False
        logger.info("Schema cache warmed", tables=warmed)
        return warmed

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _load_schema(self, table: str) -> Tuple[List[Dict[str, Any]], str]:
        key = self.cache.keys.table_schema(table)
        cached = await self.cache.get(key)
        if cached.hit:
            return cached.data, CACHE_HIT

        columns = _jsonable(await self.database.table_info(table))
        # Unknown tables are not cached so a later CREATE TABLE is visible at once
        if columns:
            await self.cache.set(key, columns, CacheTTL.TABLE_SCHEMA)
        return columns, CACHE_MISS

    async def _count(self, table: str) -> int:
        key = self.cache.keys.table_count(table)
        cached = await self.cache.get(key)
        if cached.hit:
            return int(cached.data)

        total = await self.database.count_rows(table)
        await self.cache.set(key, total, CacheTTL.TABLE_COUNT, table=table)
        return total

    async def _validated_values(self, table: str, values: Any, allow_key: bool) -> Dict[str, Any]:
        if not isinstance(values, dict):
            raise InvalidRequestError("Request body must be a JSON object")

        if not allow_key:
            values = {k: v for k, v in values.items() if k != PRIMARY_KEY_COLUMN}

        for column in values:
            validate_identifier(column, "column name")

        columns, _ = await self._load_schema(table)
        known = {c["name"] for c in columns}
        unknown = [c for c in values if c not in known]
        if unknown:
            raise InvalidRequestError(f"Unknown column: {', '.join(unknown)}")
        return values

    @staticmethod
    def _pagination(page: int, limit: int, total: int) -> Dict[str, int]:
        return {
            "page": page,
            "limit": limit,
            "totalCount": total,
            "totalPages": math.ceil(total / limit) if limit else 0,
        }

    @staticmethod
    def _log(table: str, operation: str, start: float, cache_hit: bool,
             result_count: Optional[int] = None, **kwargs) -> None:
        log_database_query(logger, table, operation, (time.perf_counter() - start) * 1000,
                           cache_hit, result_count, **kwargs)
