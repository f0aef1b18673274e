"""
Queue read side: entry status, patient queues, station details and
public display boards.
"""

from typing import Optional, List, Dict, Any

from ..config import get_settings
from ..database import Database, to_object_id, serialize
from ..errors import NotFoundError
from ..models.queue import (
    ACTIVE_STATUSES,
    SLOT_STATUSES,
    DisplayBoard,
    DisplayBoardItem,
    EntryView,
    PatientQueues,
    QueueEntry,
    QueueStatus,
    StationDetails,
)
from ..models.station import Station
from ..utils import day_start, estimate_wait_minutes, first_name, format_wait_time, utcnow
from .station_service import StationService
from .waiting_list import WaitingListEngine

settings = get_settings()


class QueueService:
    """Queue queries and display payloads."""

    @classmethod
    async def get_entry_doc(cls, entry_id: str, session=None) -> dict:
        """Raw entry document by ID."""
        entries = Database.get_collection("queue_entries")
        entry = await entries.find_one(
            {"_id": to_object_id(entry_id, "Queue entry")}, session=session
        )
        if not entry:
            raise NotFoundError("Queue entry not found")
        return entry

    @classmethod
    async def get_entry(cls, entry_id: str, session=None) -> QueueEntry:
        """Get entry by ID."""
        return QueueEntry(**serialize(await cls.get_entry_doc(entry_id, session=session)))

    @classmethod
    async def build_view(
        cls,
        entry: QueueEntry,
        station: Optional[Station] = None,
        session=None
    ) -> EntryView:
        """Attach live position and wait estimate to an entry."""
        if station is None:
            station = await StationService.get_station(entry.station_id, session=session)

        position = await WaitingListEngine.live_position(entry, session=session)
        wait_minutes = estimate_wait_minutes(position, station.average_service_time)

        return EntryView(
            entry=entry,
            status=entry.status,
            position=position,
            estimated_wait_minutes=wait_minutes,
            estimated_wait=format_wait_time(wait_minutes),
        )

    @classmethod
    async def get_entry_status(cls, entry_id: str) -> EntryView:
        """Entry with live position and formatted wait estimate."""
        return await cls.build_view(await cls.get_entry(entry_id))

    @classmethod
    async def get_entry_by_number(cls, queue_number: str) -> EntryView:
        """Get entry by its public queue number (e.g., QUE261016007)."""
        entries = Database.get_collection("queue_entries")

        entry = await entries.find_one({"queue_number": queue_number})
        if not entry:
            raise NotFoundError("Queue entry not found")

        return await cls.build_view(QueueEntry(**serialize(entry)))

    @classmethod
    async def get_patient_entries(cls, patient_id: str) -> PatientQueues:
        """All active entries for a patient, across stations."""
        entries = Database.get_collection("queue_entries")

        cursor = entries.find({
            "patient_id": patient_id,
            "status": {"$in": [s.value for s in ACTIVE_STATUSES]}
        }).sort("joined_at", 1)

        views = []
        async for entry in cursor:
            views.append(await cls.build_view(QueueEntry(**serialize(entry))))

        return PatientQueues(patient_id=patient_id, active_entries=views)

    @classmethod
    async def get_currently_serving(cls, station: Station) -> Optional[QueueEntry]:
        """Entry holding the station's service slot, if any."""
        entries = Database.get_collection("queue_entries")

        query = {"station_id": station.id, "status": {"$in": [s.value for s in SLOT_STATUSES]}}
        if station.current_serving_id:
            query["_id"] = to_object_id(station.current_serving_id, "Queue entry")

        entry = await entries.find_one(query, sort=[("called_at", -1)])
        return QueueEntry(**serialize(entry)) if entry else None

    @classmethod
    async def get_today_stats(cls, station_id: str) -> Dict[str, Any]:
        """Today's entries by status and average wait of completed ones."""
        entries = Database.get_collection("queue_entries")
        history = Database.get_collection("queue_history")
        today = day_start(utcnow())

        by_status: Dict[str, int] = {}
        async for entry in entries.find({"station_id": station_id, "joined_at": {"$gte": today}}):
            by_status[entry["status"]] = by_status.get(entry["status"], 0) + 1

        wait_times = []
        async for record in history.find({
            "station_id": station_id,
            "final_status": QueueStatus.COMPLETED.value,
            "queue_date": {"$gte": today},
        }):
            if record.get("wait_time_minutes") is not None:
                wait_times.append(record["wait_time_minutes"])

        return {
            "by_status": by_status,
            "average_wait_minutes": sum(wait_times) / len(wait_times) if wait_times else None,
        }

    @classmethod
    async def get_station_details(cls, station_id: str) -> StationDetails:
        """Station with currently serving entry, waiting list and today's stats."""
        station = await StationService.get_station(station_id)
        station.waiting_count = await StationService.count_waiting(station.id)

        waiting = await WaitingListEngine.get_waiting_list(
            station.id, limit=settings.DETAILS_WAITING_LIMIT
        )
        waiting_list = []
        for position, entry in enumerate(waiting, start=1):
            wait_minutes = estimate_wait_minutes(position, station.average_service_time)
            waiting_list.append(EntryView(
                entry=entry,
                status=entry.status,
                position=position,
                estimated_wait_minutes=wait_minutes,
                estimated_wait=format_wait_time(wait_minutes),
            ))

        serving = await cls.get_currently_serving(station)

        return StationDetails(
            station=station,
            currently_serving=await cls.build_view(serving, station) if serving else None,
            waiting_list=waiting_list,
            today_stats=await cls.get_today_stats(station.id),
        )

    @classmethod
    async def get_display_board(
        cls,
        station_id: Optional[str] = None,
        station_code: Optional[str] = None,
        limit: Optional[int] = None
    ) -> DisplayBoard:
        """Currently serving plus the next N, first names only."""
        station = await StationService.resolve_station(station_id, station_code)
        limit = limit or settings.DISPLAY_NEXT_COUNT

        waiting = await WaitingListEngine.get_waiting_list(station.id)
        serving = await cls.get_currently_serving(station)

        def board_item(entry: QueueEntry, position: Optional[int]) -> DisplayBoardItem:
            return DisplayBoardItem(
                position=position,
                display_token=entry.display_token,
                patient_name=first_name(entry.patient_name),
                priority=entry.priority,
                is_emergency=entry.is_emergency,
                status=entry.status,
            )

        next_in_line: List[DisplayBoardItem] = [
            board_item(entry, position)
            for position, entry in enumerate(waiting, start=1)
            if entry.status == QueueStatus.WAITING
        ][:limit]

        return DisplayBoard(
            station_name=station.name,
            short_name=station.short_name,
            counter_number=station.counter_number,
            location=station.location,
            display_message=station.display_message,
            currently_serving=board_item(serving, None) if serving else None,
            next_in_line=next_in_line,
            total_waiting=len(waiting),
            current_token=station.current_token,
            served_today=station.served_today,
        )
