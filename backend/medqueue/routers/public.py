"""
Unauthenticated endpoints for waiting room kiosks and patient phones.
"""

from fastapi import APIRouter

from ..models.queue import DisplayBoard, EntryView
from ..services.queue_service import QueueService

router = APIRouter(prefix="/public", tags=["Public Display"])


@router.get("/display/{station_code}", response_model=DisplayBoard)
async def get_public_display(station_code: str):
    """Display board for a station, first names only."""
    return await QueueService.get_display_board(station_code=station_code)


@router.get("/status/{queue_number}", response_model=EntryView, response_model_by_alias=False)
async def get_public_status(queue_number: str):
    """Position and estimated wait for a queue number."""
    return await QueueService.get_entry_by_number(queue_number)
