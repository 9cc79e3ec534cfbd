"""Database browsing routes with response caching."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import ORJSONResponse
from sqlalchemy.exc import SQLAlchemyError

from core.container import container
from core.logging import get_logger
from services.exceptions import TableBrowserError
from services.table_browser import BrowseResult, TableBrowserService

logger = get_logger(__name__)
router = APIRouter(prefix="/api/v1/database", tags=["database"])


def error_response(error: Exception, operation: str) -> ORJSONResponse:
    """Map service errors to ``{success: false, error, details?}`` responses."""
    if isinstance(error, TableBrowserError):
        return ORJSONResponse(
            status_code=error.status_code,
            content={"success": False, "error": str(error)},
        )

    logger.error(f"Failed to {operation}", error=str(error), error_type=type(error).__name__)
    message = "Database query failed" if isinstance(error, SQLAlchemyError) else f"Failed to {operation}"
    return ORJSONResponse(
        status_code=500,
        content={"success": False, "error": message, "details": str(error)},
    )


def cached_response(result: BrowseResult) -> ORJSONResponse:
    return ORJSONResponse(content=result.payload, headers={"X-Cache": result.cache_status})


@router.get("/tables")
async def list_tables(
    browser: TableBrowserService = Depends(lambda: container.table_browser())
):
    """List user tables."""
    try:
        return cached_response(await browser.list_tables())
    except Exception as e:
        return error_response(e, "list tables")


@router.get("/tables/{table_name}/schema")
async def get_table_schema(
    table_name: str,
    browser: TableBrowserService = Depends(lambda: container.table_browser())
):
    """Column metadata for a table."""
    try:
        return cached_response(await browser.get_schema(table_name))
    except Exception as e:
        return error_response(e, "get table schema")


@router.get("/tables/{table_name}/data")
async def get_table_data(
    table_name: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=1000),
    sort_by: str = Query("id", alias="sortBy"),
    sort_order: str = Query("asc", alias="sortOrder"),
    search: Optional[str] = Query(None),
    browser: TableBrowserService = Depends(lambda: container.table_browser())
):
    """Paginated rows; search requests bypass the cache."""
    try:
        result = await browser.get_data(
            table_name, page=page, limit=limit, sort_by=sort_by, sort_order=sort_order, search=search
        )
        return cached_response(result)
    except Exception as e:
        return error_response(e, "get table data")


@router.get("/tables/{table_name}/column/{column_name}/values")
async def get_column_values(
    table_name: str,
    column_name: str,
    browser: TableBrowserService = Depends(lambda: container.table_browser())
):
    """Most frequent distinct values of a column."""
    try:
        return cached_response(await browser.get_column_values(table_name, column_name))
    except Exception as e:
        return error_response(e, "get column values")


# ============================================================================
# Row Writes
# ============================================================================

@router.post("/tables/{table_name}/data")
async def create_row(
    table_name: str,
    values: Dict[str, Any] = Body(...),
    browser: TableBrowserService = Depends(lambda: container.table_browser())
):
    try:
        return await browser.create_row(table_name, values)
    except Exception as e:
        return error_response(e, "create row")


@router.put("/tables/{table_name}/data/{row_id}")
async def update_row(
    table_name: str,
    row_id: str,
    values: Dict[str, Any] = Body(...),
    browser: TableBrowserService = Depends(lambda: container.table_browser())
):
    try:
        return await browser.update_row(table_name, row_id, values)
    except Exception as e:
        return error_response(e, "update row")


@router.delete("/tables/{table_name}/data/{row_id}")
async def delete_row(
    table_name: str,
    row_id: str,
    browser: TableBrowserService = Depends(lambda: container.table_browser())
):
    try:
        return await browser.delete_row(table_name, row_id)
    except Exception as e:
        return error_response(e, "delete row")
