"""Dependency injection container for the application."""

from dependency_injector import containers, providers

from core.config import Settings
from core.database import Database
from core.kv_store import KeyValueStore
from core.cache import CacheService
from core.cleanup import CleanupService
from services.insights import InsightService
from services.llm import InsightLLM
from services.rate_limiter import RateLimiter
from services.table_browser import TableBrowserService


class Container(containers.DeclarativeContainer):
    """Application dependency injection container."""

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    # Database (also the SQLite key-value backend)
    database = providers.Singleton(
        Database,
        settings=settings
    )

    # Key-value namespaces: response cache and rate-limit windows
    cache_store = providers.Singleton(
        KeyValueStore,
        settings=settings,
        database=database,
        namespace="cache"
    )

    rate_limit_store = providers.Singleton(
        KeyValueStore,
        settings=settings,
        database=database,
        namespace="rate_limit"
    )

    cache = providers.Singleton(
        CacheService,
        store=cache_store,
        settings=settings
    )

    rate_limiter = providers.Singleton(
        RateLimiter,
        store=rate_limit_store
    )

    cleanup_service = providers.Singleton(
        CleanupService,
        stores=providers.List(cache_store, rate_limit_store),
        settings=settings
    )

    llm = providers.Singleton(
        InsightLLM,
        settings=settings
    )

    # Services
    table_browser = providers.Factory(
        TableBrowserService,
        database=database,
        cache=cache
    )

    insight_service = providers.Factory(
        InsightService,
        database=database,
        llm=llm,
        settings=settings
    )


# Global container instance
container = Container()
