"""SQLite-backed key-value rows for the ``sqlite`` store backend."""

import time
from typing import Optional
from sqlmodel import SQLModel, Field


class CacheEntry(SQLModel, table=True):
    """Namespaced key-value row with an absolute expiry.

    Holds both response-cache payloads and rate-limit windows; the key
    carries the namespace prefix.
    """

    __tablename__ = "kv_entries"

    key: str = Field(primary_key=True, max_length=512)
    value: str = Field(max_length=1000000)  # JSON serialized, up to 1MB
    expires_at: Optional[float] = Field(default=None, index=True)  # Unix timestamp
    created_at: float = Field(default_factory=time.time)
