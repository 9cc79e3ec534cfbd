"""Insight extraction routes."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import ORJSONResponse

from core.container import container
from core.database import Database
from core.logging import get_logger
from services.insights import InsightService

logger = get_logger(__name__)
router = APIRouter(prefix="/api/v1/insights", tags=["insights"])


@router.post("/process")
async def process_insights(
    limit: Optional[int] = Query(None, ge=1, le=100),
    service: InsightService = Depends(lambda: container.insight_service())
):
    """Run extraction over the most recent meetings."""
    try:
        summary = await service.process_recent_meetings(limit)
        return summary.to_response()
    except Exception as e:
        logger.error("Insight processing failed", error=str(e))
        return ORJSONResponse(
            status_code=500,
            content={"success": False, "error": "Failed to process insights", "details": str(e)},
        )


@router.get("")
async def list_insights(
    project_id: Optional[int] = Query(None, alias="projectId"),
    insight_type: Optional[str] = Query(None, alias="type"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    database: Database = Depends(lambda: container.database())
):
    """Newest-first insights, optionally filtered by project and type."""
    try:
        insights, total = await database.list_insights(project_id, insight_type, limit, offset)
        return {
            "success": True,
            "insights": [insight.to_dict() for insight in insights],
            "total": total,
            "limit": limit,
            "offset": offset,
        }
    except Exception as e:
        logger.error("Failed to list insights", error=str(e))
        return ORJSONResponse(
            status_code=500,
            content={"success": False, "error": "Failed to list insights", "details": str(e)},
        )
