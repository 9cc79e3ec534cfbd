"""Health check utilities.

Provides uptime tracking and the status payload for the /health endpoint.
"""
import time
from datetime import datetime, timezone
from typing import Dict, Any, TYPE_CHECKING

from core.logging import get_logger

if TYPE_CHECKING:
    from core.config import Settings
    from core.database import Database
    from core.kv_store import KeyValueStore

logger = get_logger(__name__)

# Module-level startup time tracking
_startup_time: float = 0.0


def set_startup_time() -> None:
    """Record the application startup time. Call once during lifespan startup."""
    global _startup_time
    _startup_time = time.time()


def get_uptime() -> float:
    """Get uptime in seconds since startup."""
    return time.time() - _startup_time if _startup_time else 0.0


async def check_database(database: "Database") -> bool:
    """Check database connectivity."""
    try:
        return await database.ping()
    except Exception as e:
        logger.warning("Database health check failed", error=str(e))
        return False


async def check_kv(store: "KeyValueStore") -> bool:
    """Round-trip a check key through the key-value store."""
    try:
        return await store.ping()
    except Exception as e:
        logger.warning("Key-value health check failed", namespace=store.namespace, error=str(e))
        return False


async def get_health_status(
    database: "Database",
    store: "KeyValueStore",
    settings: "Settings"
) -> Dict[str, Any]:
    """Get health status for /health.

    Returns:
        Dict containing status, per-dependency checks, response time,
        uptime and feature flags.
    """
    start = time.perf_counter()

    db_healthy = await check_database(database)
    kv_healthy = await check_kv(store)

    overall_status = "healthy" if (db_healthy and kv_healthy) else "degraded"

    return {
        "status": overall_status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime_seconds": round(get_uptime(), 1),
        "responseTime": f"{(time.perf_counter() - start) * 1000:.1f}ms",
        "checks": {
            "database": db_healthy,
            "kv": kv_healthy,
        },
        "kv_backend": store.backend,
        "features": {
            "caching": settings.cache_enabled,
            "rate_limiting": settings.rate_limit_enabled,
            "scheduler": settings.scheduler_enabled,
            "key_index": settings.cache_key_index_enabled,
        },
        "environment": settings.environment,
    }
