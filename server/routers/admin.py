"""Administrative routes: cache invalidation and rate-limit overrides."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from core.container import container
from core.logging import get_logger
from routers.database import error_response
from services.rate_limiter import RateLimiter
from services.table_browser import TableBrowserService

logger = get_logger(__name__)
router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


@router.post("/cache/invalidate/{table_name}")
async def invalidate_table_cache(
    table_name: str,
    browser: TableBrowserService = Depends(lambda: container.table_browser())
):
    """Drop cached entries for a table."""
    try:
        return await browser.invalidate_table(table_name)
    except Exception as e:
        return error_response(e, "invalidate cache")


@router.delete("/rate-limit/{identifier}")
async def reset_rate_limit(
    identifier: str,
    key_prefix: Optional[str] = Query(None, alias="keyPrefix"),
    rate_limiter: RateLimiter = Depends(lambda: container.rate_limiter())
):
    """Clear the current window for a caller."""
    try:
        deleted = await rate_limiter.reset(identifier, key_prefix)
        return {
            "success": True,
            "identifier": identifier,
            "keyPrefix": key_prefix or "rate",
            "deleted": deleted,
        }
    except Exception as e:
        return error_response(e, "reset rate limit")
