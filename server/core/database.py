"""Async relational store with SQLModel and SQLAlchemy 2.0.

Two surfaces share one engine:

- generic table browsing over raw, parameterised SQL (identifiers are
  validated by the caller and quoted here, values are always bound), and
- typed meeting/project/insight queries used by the insight job.

Errors propagate; routes and services decide how to surface them.
"""

import json
import re
import time
from datetime import datetime
from typing import Dict, Any, List, Optional, Sequence, Tuple
from sqlmodel import SQLModel, select
from sqlalchemy import func, text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from contextlib import asynccontextmanager

from core.config import Settings
from core.logging import get_logger
from models.database import Client, Project, Meeting, MeetingChunk, AIInsight
from models.cache import CacheEntry

logger = get_logger(__name__)

IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
TEXT_COLUMN_TYPES = ("TEXT", "VARCHAR")


def quote_identifier(name: str) -> str:
    """Quote a table or column name that already passed the allow-list."""
    if not IDENTIFIER_PATTERN.fullmatch(name or ""):
        raise ValueError(f"Unsafe SQL identifier: {name!r}")
    return f'"{name}"'


def is_text_column(column_type: Optional[str]) -> bool:
    column_type = (column_type or "").upper()
    return column_type in TEXT_COLUMN_TYPES or "CHAR" in column_type


def _bind_value(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


class Database:
    """Async database service with SQLModel."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.engine = None
        self.async_session = None

    async def startup(self):
        """Initialize database connection and create tables."""
        try:
            engine_kwargs: Dict[str, Any] = {"echo": self.settings.database_echo, "future": True}
            if not self.settings.is_sqlite:
                engine_kwargs["pool_size"] = self.settings.database_pool_size
                engine_kwargs["max_overflow"] = self.settings.database_max_overflow

            self.engine = create_async_engine(self.settings.database_url, **engine_kwargs)

            self.async_session = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)

            logger.info("Database initialized successfully")

        except Exception as e:
            logger.error("Database startup failed", error=str(e))
            raise

    async def shutdown(self):
        """Close database connections."""
        if self.engine:
            await self.engine.dispose()
            logger.info("Database connections closed")

    @asynccontextmanager
    async def get_session(self):
        """Get async database session."""
        if not self.async_session:
            raise RuntimeError("Database not initialized")

        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def ping(self) -> bool:
        async with self.get_session() as session:
            await session.execute(text("SELECT 1"))
        return True

    # ============================================================================
    # Table Browsing (raw SQL)
    # ============================================================================

    async def _fetch_all(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        async with self.get_session() as session:
            result = await session.execute(text(sql), params or {})
            return [dict(row._mapping) for row in result]

    async def list_tables(self) -> List[Dict[str, Any]]:
        """List user tables, hiding SQLite and platform internals."""
        return await self._fetch_all(
            "SELECT name, sql FROM sqlite_master "
            "WHERE type='table' AND name NOT LIKE 'sqlite_%' AND name NOT LIKE '\\_cf\\_%' ESCAPE '\\' "
            "ORDER BY name"
        )

    async def table_info(self, table: str) -> List[Dict[str, Any]]:
        """Column descriptions: cid, name, type, notnull, dflt_value, pk."""
        return await self._fetch_all(f"PRAGMA table_info({quote_identifier(table)})")

    @staticmethod
    def _search_clause(text_columns: Sequence[str]) -> str:
        conditions = " OR ".join(f"{quote_identifier(c)} LIKE :search" for c in text_columns)
        return f" WHERE {conditions}" if conditions else ""

    async def count_rows(self, table: str, search: Optional[str] = None,
                         text_columns: Sequence[str] = ()) -> int:
        sql = f"SELECT COUNT(*) AS count FROM {quote_identifier(table)}"
        params: Dict[str, Any] = {}
        if search:
            sql += self._search_clause(text_columns)
            params["search"] = f"%{search}%"
        rows = await self._fetch_all(sql, params)
        return int(rows[0]["count"]) if rows else 0

    async def fetch_rows(self, table: str, sort_by: str, sort_order: str, limit: int, offset: int,
                         search: Optional[str] = None, text_columns: Sequence[str] = ()) -> List[Dict[str, Any]]:
        direction = "DESC" if sort_order.lower() == "desc" else "ASC"
        sql = f"SELECT * FROM {quote_identifier(table)}"
        params: Dict[str, Any] = {"limit": limit, "offset": offset}
        if search:
            sql += self._search_clause(text_columns)
            params["search"] = f"%{search}%"
        sql += f" ORDER BY {quote_identifier(sort_by)} {direction} LIMIT :limit OFFSET :offset"
        return await self._fetch_all(sql, params)

    async def distinct_values(self, table: str, column: str, limit: int = 100) -> List[Dict[str, Any]]:
        col = quote_identifier(column)
        return await self._fetch_all(
            f"SELECT {col} AS value, COUNT(*) AS count FROM {quote_identifier(table)} "
            f"WHERE {col} IS NOT NULL GROUP BY {col} ORDER BY count DESC LIMIT :limit",
            {"limit": limit}
        )

    async def get_row(self, table: str, row_id: Any, key_column: str = "id") -> Optional[Dict[str, Any]]:
        rows = await self._fetch_all(
            f"SELECT * FROM {quote_identifier(table)} WHERE {quote_identifier(key_column)} = :row_id",
            {"row_id": row_id}
        )
        return rows[0] if rows else None

    async def get_row_by_rowid(self, table: str, rowid: int) -> Optional[Dict[str, Any]]:
        rows = await self._fetch_all(
            f"SELECT * FROM {quote_identifier(table)} WHERE rowid = :rowid",
            {"rowid": rowid}
        )
        return rows[0] if rows else None

    async def insert_row(self, table: str, values: Dict[str, Any]) -> Optional[int]:
        """Insert one row and return its rowid."""
        columns = list(values)
        placeholders = ", ".join(f":p{i}" for i in range(len(columns)))
        column_sql = ", ".join(quote_identifier(c) for c in columns)
        params = {f"p{i}": _bind_value(values[c]) for i, c in enumerate(columns)}

        async with self.get_session() as session:
            result = await session.execute(
                text(f"INSERT INTO {quote_identifier(table)} ({column_sql}) VALUES ({placeholders})"),
                params
            )
            await session.commit()
            return result.lastrowid

    async def update_row(self, table: str, row_id: Any, values: Dict[str, Any],
                         key_column: str = "id") -> int:
        """Update one row by key; returns the affected row count."""
        assignments = ", ".join(f"{quote_identifier(c)} = :p{i}" for i, c in enumerate(values))
        params = {f"p{i}": _bind_value(v) for i, v in enumerate(values.values())}
        params["row_id"] = row_id

        async with self.get_session() as session:
            result = await session.execute(
                text(f"UPDATE {quote_identifier(table)} SET {assignments} "
                     f"WHERE {quote_identifier(key_column)} = :row_id"),
                params
            )
            await session.commit()
            return result.rowcount

    async def delete_row(self, table: str, row_id: Any, key_column: str = "id") -> int:
        async with self.get_session() as session:
            result = await session.execute(
                text(f"DELETE FROM {quote_identifier(table)} WHERE {quote_identifier(key_column)} = :row_id"),
                {"row_id": row_id}
            )
            await session.commit()
            return result.rowcount

    # ============================================================================
    # Meetings, Projects and Insights
    # ============================================================================

    async def get_recent_meetings(self, limit: int) -> List[Meeting]:
        async with self.get_session() as session:
            stmt = select(Meeting).order_by(Meeting.date.desc()).limit(limit)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_meeting_chunks(self, meeting_id: str) -> List[MeetingChunk]:
        async with self.get_session() as session:
            stmt = (
                select(MeetingChunk)
                .where(MeetingChunk.meeting_id == meeting_id)
                .order_by(MeetingChunk.chunk_index.asc())
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def has_insights_for_meeting(self, meeting_id: str) -> bool:
        async with self.get_session() as session:
            stmt = select(AIInsight.id).where(AIInsight.meeting_id == meeting_id).limit(1)
            result = await session.execute(stmt)
            return result.first() is not None

    async def get_project_candidates(self, limit: int = 100) -> List[Tuple[Project, Optional[str]]]:
        """Projects with their client name (if any)."""
        async with self.get_session() as session:
            stmt = (
                select(Project, Client.name)
                .join(Client, Project.client_id == Client.id, isouter=True)
                .order_by(Project.id)
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [(project, client_name) for project, client_name in result.all()]

    async def add_insights(self, insights: Sequence[AIInsight]) -> int:
        if not insights:
            return 0
        async with self.get_session() as session:
            session.add_all(list(insights))
            await session.commit()
            return len(insights)

    async def get_insights_since(self, since: datetime) -> List[AIInsight]:
        async with self.get_session() as session:
            stmt = (
                select(AIInsight)
                .where(AIInsight.created_at >= since)
                .order_by(AIInsight.created_at.desc())
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def has_pattern_insight(self, project_id: int, since: datetime) -> bool:
        async with self.get_session() as session:
            stmt = (
                select(AIInsight.id)
                .where(
                    AIInsight.project_id == project_id,
                    AIInsight.title.like("[PATTERN]%"),
                    AIInsight.created_at >= since,
                )
                .limit(1)
            )
            result = await session.execute(stmt)
            return result.first() is not None

    async def get_meeting_dates(self, meeting_ids: Sequence[str]) -> Dict[str, Optional[datetime]]:
        if not meeting_ids:
            return {}
        async with self.get_session() as session:
            stmt = select(Meeting.id, Meeting.date).where(Meeting.id.in_(list(meeting_ids)))
            result = await session.execute(stmt)
            return {meeting_id: date for meeting_id, date in result.all()}

    async def list_insights(self, project_id: Optional[int] = None, insight_type: Optional[str] = None,
                            limit: int = 50, offset: int = 0) -> Tuple[List[AIInsight], int]:
        """Newest-first page of insights plus the filtered total."""
        filters = []
        if project_id is not None:
            filters.append(AIInsight.project_id == project_id)
        if insight_type and insight_type != "all":
            filters.append(AIInsight.insight_type == insight_type)

        async with self.get_session() as session:
            stmt = (
                select(AIInsight)
                .where(*filters)
                .order_by(AIInsight.created_at.desc(), AIInsight.id.desc())
                .offset(offset)
                .limit(limit)
            )
            result = await session.execute(stmt)
            insights = list(result.scalars().all())

            count_stmt = select(func.count()).select_from(AIInsight).where(*filters)
            total = (await session.execute(count_stmt)).scalar_one()
            return insights, int(total)

    # ============================================================================
    # Key-Value Entries (SQLite store backend)
    # ============================================================================

    async def get_kv_entry(self, key: str, now: Optional[float] = None) -> Optional[str]:
        """Get value by key. Returns None if expired or not found."""
        now = time.time() if now is None else now
        async with self.get_session() as session:
            stmt = select(CacheEntry).where(CacheEntry.key == key)
            result = await session.execute(stmt)
            entry = result.scalar_one_or_none()

            if not entry:
                return None

            if entry.expires_at and entry.expires_at <= now:
                await session.delete(entry)
                await session.commit()
                return None

            return entry.value

    async def set_kv_entry(self, key: str, value: str, ttl: Optional[int] = None,
                           now: Optional[float] = None) -> None:
        """Upsert value with optional TTL in seconds."""
        now = time.time() if now is None else now
        expires_at = now + ttl if ttl else None

        async with self.get_session() as session:
            stmt = select(CacheEntry).where(CacheEntry.key == key)
            result = await session.execute(stmt)
            existing = result.scalar_one_or_none()

            if existing:
                existing.value = value
                existing.expires_at = expires_at
                existing.created_at = now
            else:
                session.add(CacheEntry(key=key, value=value, expires_at=expires_at, created_at=now))

            await session.commit()

    async def delete_kv_entry(self, key: str) -> bool:
        async with self.get_session() as session:
            stmt = select(CacheEntry).where(CacheEntry.key == key)
            result = await session.execute(stmt)
            entry = result.scalar_one_or_none()

            if entry:
                await session.delete(entry)
                await session.commit()
                return True
            return False

    async def cleanup_expired_kv(self, now: Optional[float] = None, prefix: Optional[str] = None) -> int:
        """Remove expired key-value rows, optionally only keys under ``prefix``. Returns count deleted."""
        now = time.time() if now is None else now
        async with self.get_session() as session:
            stmt = select(CacheEntry).where(
                CacheEntry.expires_at.isnot(None),
                CacheEntry.expires_at <= now
            )
            if prefix:
                stmt = stmt.where(CacheEntry.key.startswith(prefix, autoescape=True))
            result = await session.execute(stmt)
            entries = result.scalars().all()
            for entry in entries:
                await session.delete(entry)
            await session.commit()
            if entries:
                logger.debug("Deleted expired key-value entries", count=len(entries))
            return len(entries)
