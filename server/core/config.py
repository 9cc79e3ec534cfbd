"""Environment-driven configuration with Pydantic v2."""

from typing import List, Literal, Optional
from pathlib import Path
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings driven entirely by environment variables."""

    # Server Configuration
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3010, ge=1024, le=65535)
    debug: bool = Field(default=False)
    workers: int = Field(default=1, ge=1, le=8)
    environment: Literal["development", "staging", "production"] = Field(default="development")

    # Security
    cors_origins: List[str] = Field(default=["http://localhost:3000"])

    # Database Configuration
    database_url: str = Field(default="sqlite+aiosqlite:///./data/meetings.db")
    database_echo: bool = Field(default=False)
    database_pool_size: int = Field(default=20, ge=5, le=100)
    database_max_overflow: int = Field(default=30, ge=10, le=100)

    # Key-Value Store Configuration
    kv_backend: Literal["memory", "sqlite", "redis"] = Field(default="memory")
    redis_url: Optional[str] = Field(default=None)
    redis_enabled: bool = Field(default=False)

    # Response Cache
    cache_enabled: bool = Field(default=True)
    cache_key_index_enabled: bool = Field(default=False)

    # Rate Limiting
    rate_limit_enabled: bool = Field(default=True)

    # Expired key-value sweep (SQLite and memory backends)
    cleanup_enabled: bool = Field(default=True)
    cleanup_interval: int = Field(default=300, ge=10, le=86400)

    # LLM
    openai_api_key: Optional[str] = Field(default=None)
    insights_model: str = Field(default="gpt-4-turbo-preview")
    ai_timeout: int = Field(default=60, ge=5, le=300)

    # Insight Extraction
    insights_default_limit: int = Field(default=2, ge=1, le=100)
    insights_batch_size: int = Field(default=5, ge=1, le=50)
    insights_batch_pause_seconds: float = Field(default=2.0, ge=0.0, le=60.0)

    # Scheduler
    scheduler_enabled: bool = Field(default=False)
    insights_cron: str = Field(default="0 * * * *")
    cache_warm_cron: str = Field(default="*/30 * * * *")
    cache_warm_tables: List[str] = Field(default=["projects", "meetings", "users"])

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")
    log_file: Optional[str] = Field(default=None)

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        """Ensure database directory exists for SQLite."""
        if v and v.startswith("sqlite"):
            if ":///" in v:
                db_path = v.split("///")[1]
                if db_path and db_path != ":memory:":
                    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return v

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v):
        if v and not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("REDIS_URL must use redis://, rediss:// or unix://")
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    model_config = {
        "env_file": "../.env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "forbid",
        "env_parse_none_str": "none",
        "env_nested_delimiter": "__",
    }
