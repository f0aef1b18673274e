"""
Station registry API routes.
"""

from typing import Optional, List
from fastapi import APIRouter, HTTPException, status, Depends, Query

from ..models.queue import DisplayBoard, EntryView, StationDetails
from ..models.station import (
    Station,
    StationCreate,
    StationFilters,
    StationKind,
    StationPauseRequest,
    StationUpdate,
)
from ..services.lifecycle_service import LifecycleService
from ..services.queue_service import QueueService
from ..services.station_service import StationService
from .dependencies import get_actor_id

router = APIRouter(prefix="/stations", tags=["Stations"])


@router.post("", response_model=Station, response_model_by_alias=False, status_code=status.HTTP_201_CREATED)
async def create_station(
    station_data: StationCreate,
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Register a new service station."""
    return await StationService.create_station(station_data, actor_id)


@router.get("", response_model=List[Station], response_model_by_alias=False)
async def list_stations(
    kind: Optional[StationKind] = Query(None, description="Filter by station kind"),
    department: Optional[str] = Query(None, description="Filter by department code"),
    is_active: Optional[bool] = Query(None),
    assigned_staff_id: Optional[str] = Query(None)
):
    """List stations with their waiting counts."""
    return await StationService.list_stations(StationFilters(
        kind=kind,
        department=department,
        is_active=is_active,
        assigned_staff_id=assigned_staff_id
    ))


@router.post("/reset-daily")
async def reset_daily_tokens(actor_id: Optional[str] = Depends(get_actor_id)):
    """Reset token counters of stations not yet reset today."""
    count = await StationService.reset_daily_tokens(actor_id)
    return {"message": f"Daily reset applied to {count} station(s)", "reset_count": count}


@router.get("/{station_id}", response_model=StationDetails, response_model_by_alias=False)
async def get_station_details(station_id: str):
    """Station with currently serving entry, waiting list and today's stats."""
    return await QueueService.get_station_details(station_id)


@router.put("/{station_id}", response_model=Station, response_model_by_alias=False)
async def update_station(
    station_id: str,
    updates: StationUpdate,
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Update station configuration."""
    return await StationService.update_station(station_id, updates, actor_id)


@router.post("/{station_id}/pause", response_model=Station, response_model_by_alias=False)
async def pause_station(
    station_id: str,
    request: Optional[StationPauseRequest] = None,
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Stop accepting new entries at a station."""
    reason = request.reason if request else None
    return await StationService.set_paused(station_id, True, reason, actor_id)


@router.post("/{station_id}/resume", response_model=Station, response_model_by_alias=False)
async def resume_station(
    station_id: str,
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Resume a paused station."""
    return await StationService.set_paused(station_id, False, actor_id=actor_id)


@router.post("/{station_id}/call-next", response_model=EntryView, response_model_by_alias=False)
async def call_next_patient(
    station_id: str,
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Call the next waiting patient."""
    view = await LifecycleService.call_next(station_id, actor_id)

    if not view:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No patients waiting in queue"
        )

    return view


@router.get("/{station_id}/display", response_model=DisplayBoard)
async def get_station_display(
    station_id: str,
    limit: Optional[int] = Query(None, ge=1, le=50)
):
    """Display board payload for a station."""
    return await QueueService.get_display_board(station_id=station_id, limit=limit)
