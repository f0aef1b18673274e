"""
Queue analytics API routes.
"""

from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Query

from ..models.history import QueueAnalytics
from ..services.analytics_service import AnalyticsService

router = APIRouter(prefix="/analytics", tags=["Analytics"])


@router.get("", response_model=QueueAnalytics)
async def get_analytics(
    start: datetime = Query(..., description="Range start (inclusive)"),
    end: datetime = Query(..., description="Range end (inclusive)"),
    station_id: Optional[str] = Query(None)
):
    """Statistics over finished entries in a date range."""
    return await AnalyticsService.get_analytics(start, end, station_id)
