"""
Station registry: catalog, operating state and live counters.
"""

import logging
from typing import Optional, List

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from ..config import get_settings
from ..database import Database, to_object_id, serialize
from ..errors import CapacityError, ConflictError, NotFoundError, ValidationError
from ..models.queue import POSITIONED_STATUSES
from ..models.station import (
    KIND_DEFAULTS,
    Station,
    StationCreate,
    StationFilters,
    StationKind,
    StationUpdate,
)
from ..utils import date_key, day_start, utcnow

settings = get_settings()
logger = logging.getLogger(__name__)


def generate_station_code(kind: StationKind, department: Optional[str], identifier: str) -> str:
    """Station code like CONSULTATION_CARDIOLOGY_001."""
    parts = [kind.value.upper()]
    if department:
        parts.append(department.upper())
    parts.append("_".join(identifier.split()).upper())
    return "_".join(parts)


class StationService:
    """Station registry service."""

    @classmethod
    async def create_station(
        cls,
        data: StationCreate,
        actor_id: Optional[str] = None,
        session=None
    ) -> Station:
        """Create a new service station."""
        stations = Database.get_collection("stations")

        try:
            kind = StationKind(data.kind)
        except ValueError:
            raise ValidationError(f"Invalid station kind: {data.kind}")

        existing = await stations.find_one({"code": data.code}, session=session)
        if existing:
            raise ConflictError(f"Station with code {data.code} already exists")

        defaults = KIND_DEFAULTS[kind]
        now = utcnow()
        station_doc = {
            "code": data.code,
            "name": data.name,
            "kind": kind.value,
            "short_name": data.short_name,
            "department": data.department or defaults.department,
            "assigned_staff_id": data.assigned_staff_id,
            "counter_number": data.counter_number,
            "location": data.location,
            "display_message": data.display_message,
            "max_capacity": data.max_capacity or settings.MAX_QUEUE_CAPACITY,
            "average_service_time": (
                data.average_service_time
                or defaults.average_service_time
                or settings.DEFAULT_AVG_SERVICE_TIME
            ),
            "is_active": True,
            "accepting_new_entries": True,
            "is_paused": False,
            "pause_reason": None,
            "last_token": 0,
            "next_token": 1,
            "token_date": None,
            "current_token": None,
            "current_serving_id": None,
            "current_count": 0,
            "served_today": 0,
            "last_reset_at": day_start(now),
            "created_by": actor_id,
            "created_at": now,
            "updated_at": None,
        }

        try:
            result = await stations.insert_one(station_doc, session=session)
        except DuplicateKeyError:
            raise ConflictError(f"Station with code {data.code} already exists")

        station_doc["_id"] = str(result.inserted_id)
        logger.info("Station %s created (%s) by %s", data.code, kind.value, actor_id)
        return Station(**station_doc)

    @classmethod
    async def get_station(cls, station_id: str, session=None) -> Station:
        """Get station by ID."""
        stations = Database.get_collection("stations")
        station = await stations.find_one(
            {"_id": to_object_id(station_id, "Station")}, session=session
        )
        if not station:
            raise NotFoundError("Station not found")
        return Station(**serialize(station))

    @classmethod
    async def get_station_by_code(cls, code: str, session=None) -> Station:
        """Get station by its unique code."""
        stations = Database.get_collection("stations")
        station = await stations.find_one({"code": code}, session=session)
        if not station:
            raise NotFoundError(f"Station {code} not found")
        return Station(**serialize(station))

    @classmethod
    async def resolve_station(
        cls,
        station_id: Optional[str] = None,
        station_code: Optional[str] = None,
        session=None
    ) -> Station:
        """Look up a station by id or code."""
        if station_id:
            return await cls.get_station(station_id, session=session)
        if station_code:
            return await cls.get_station_by_code(station_code, session=session)
        raise ValidationError("station_id or station_code is required")

    @classmethod
    async def count_waiting(cls, station_id: str, session=None) -> int:
        entries = Database.get_collection("queue_entries")
        return await entries.count_documents(
            {
                "station_id": station_id,
                "status": {"$in": [s.value for s in POSITIONED_STATUSES]},
            },
            session=session,
        )

    @classmethod
    async def list_stations(cls, filters: Optional[StationFilters] = None) -> List[Station]:
        """List stations with their waiting counts."""
        stations = Database.get_collection("stations")
        filters = filters or StationFilters()

        filter_query = {}
        if filters.kind:
            filter_query["kind"] = filters.kind.value
        if filters.department:
            filter_query["department"] = filters.department
        if filters.is_active is not None:
            filter_query["is_active"] = filters.is_active
        if filters.assigned_staff_id:
            filter_query["assigned_staff_id"] = filters.assigned_staff_id

        cursor = stations.find(filter_query).sort([("kind", 1), ("name", 1)])

        results = []
        async for station in cursor:
            station = serialize(station)
            station["waiting_count"] = await cls.count_waiting(station["_id"])
            results.append(Station(**station))

        return results

    @classmethod
    async def update_station(
        cls,
        station_id: str,
        updates: StationUpdate,
        actor_id: Optional[str] = None
    ) -> Station:
        """Update station configuration."""
        stations = Database.get_collection("stations")

        update_data = {k: v for k, v in updates.model_dump().items() if v is not None}
        if not update_data:
            return await cls.get_station(station_id)

        update_data["updated_at"] = utcnow()
        update_data["updated_by"] = actor_id

        result = await stations.find_one_and_update(
            {"_id": to_object_id(station_id, "Station")},
            {"$set": update_data},
            return_document=ReturnDocument.AFTER,
        )
        if not result:
            raise NotFoundError("Station not found")

        return Station(**serialize(result))

    @classmethod
    async def set_paused(
        cls,
        station_id: str,
        paused: bool,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None
    ) -> Station:
        """Pause or resume a station."""
        stations = Database.get_collection("stations")

        result = await stations.find_one_and_update(
            {"_id": to_object_id(station_id, "Station")},
            {
                "$set": {
                    "is_paused": paused,
                    "pause_reason": reason if paused else None,
                    "accepting_new_entries": not paused,
                    "updated_at": utcnow(),
                    "updated_by": actor_id,
                }
            },
            return_document=ReturnDocument.AFTER,
        )
        if not result:
            raise NotFoundError("Station not found")

        logger.info(
            "Station %s %s by %s%s",
            result["code"],
            "paused" if paused else "resumed",
            actor_id,
            f": {reason}" if paused and reason else "",
        )
        return Station(**serialize(result))

    @classmethod
    async def reset_daily_tokens(cls, actor_id: Optional[str] = None) -> int:
        """
        Reset counters of every station not yet reset today.

        Token display fields are only zeroed when no token has been issued
        today, so the mirror never runs behind today's counter.
        """
        stations = Database.get_collection("stations")
        now = utcnow()
        today = day_start(now)
        needs_reset = {"$or": [{"last_reset_at": None}, {"last_reset_at": {"$lt": today}}]}

        fresh = await stations.update_many(
            {"$and": [needs_reset, {"token_date": {"$ne": date_key(now)}}]},
            {
                "$set": {
                    "last_token": 0,
                    "next_token": 1,
                    "current_token": None,
                    "served_today": 0,
                    "last_reset_at": now,
                }
            },
        )
        issued = await stations.update_many(
            needs_reset,
            {"$set": {"served_today": 0, "last_reset_at": now}},
        )

        count = fresh.modified_count + issued.modified_count
        logger.info("Daily reset applied to %d station(s) by %s", count, actor_id)
        return count

    @classmethod
    async def find_or_create_for_kind(
        cls,
        kind: StationKind,
        department: Optional[str] = None,
        actor_id: Optional[str] = None
    ) -> Station:
        """Department station of a kind, else any active one, else a new default."""
        stations = Database.get_collection("stations")

        cursor = stations.find({"kind": kind.value, "is_active": True}).sort("name", 1)
        candidates = [Station(**serialize(s)) async for s in cursor]

        if department:
            for station in candidates:
                if station.department == department:
                    return station

        if candidates:
            return candidates[0]

        code = generate_station_code(kind, department, "001")
        try:
            station = await cls.create_station(
                StationCreate(
                    code=code,
                    name=f"{KIND_DEFAULTS[kind].label} Queue",
                    kind=kind,
                    department=department,
                ),
                actor_id=actor_id,
            )
            logger.info("Auto-created station %s for %s intake", code, kind.value)
            return station
        except ConflictError:
            # Created concurrently by another intake
            return await cls.get_station_by_code(code)

    # ==================== Live counters ====================

    @classmethod
    async def reserve_capacity(cls, station: Station, session=None) -> None:
        """Count a new entry into the waiting set, or raise CapacityError when full."""
        stations = Database.get_collection("stations")

        result = await stations.find_one_and_update(
            {
                "_id": to_object_id(station.id, "Station"),
                "is_active": True,
                "accepting_new_entries": True,
                "is_paused": False,
                "current_count": {"$lt": station.max_capacity},
            },
            {"$inc": {"current_count": 1}},
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        if result:
            return

        current = await cls.get_station(station.id, session=session)
        if current.is_paused:
            reason = f": {current.pause_reason}" if current.pause_reason else ""
            raise CapacityError(f"Station {current.name} is paused{reason}")
        if not current.is_active or not current.accepting_new_entries:
            raise CapacityError(f"Station {current.name} is not accepting patients")
        raise CapacityError(f"Station {current.name} is at maximum capacity")

    @classmethod
    async def release_capacity(cls, station_id: str, session=None) -> None:
        """Give back one occupancy slot."""
        stations = Database.get_collection("stations")
        await stations.update_one(
            {"_id": to_object_id(station_id, "Station"), "current_count": {"$gt": 0}},
            {"$inc": {"current_count": -1}},
            session=session,
        )

    @classmethod
    async def adjust_occupancy(cls, station_id: str, delta: int, session=None) -> None:
        """
        Follow an entry moving in or out of the waiting set.

        Re-entry (recall, release from hold) is counted without the capacity
        gate; only new intake is refused when the station is full.
        """
        if delta < 0:
            await cls.release_capacity(station_id, session=session)
        elif delta > 0:
            stations = Database.get_collection("stations")
            await stations.update_one(
                {"_id": to_object_id(station_id, "Station")},
                {"$inc": {"current_count": delta}},
                session=session,
            )

    @classmethod
    async def record_served(cls, station_id: str, session=None) -> None:
        stations = Database.get_collection("stations")
        await stations.update_one(
            {"_id": to_object_id(station_id, "Station")},
            {"$inc": {"served_today": 1}},
            session=session,
        )

    @classmethod
    async def claim_slot(
        cls,
        station_id: str,
        entry_id: str,
        token_number: Optional[int] = None,
        session=None
    ) -> bool:
        """Claim the station's service slot for an entry; only an empty slot can be taken."""
        stations = Database.get_collection("stations")
        update = {"current_serving_id": entry_id}
        if token_number is not None:
            update["current_token"] = token_number

        result = await stations.update_one(
            {
                "_id": to_object_id(station_id, "Station"),
                "current_serving_id": None,
            },
            {"$set": update},
            session=session,
        )
        return result.matched_count == 1

    @classmethod
    async def release_slot(cls, station_id: str, entry_id: str, session=None) -> None:
        """Free the service slot if this entry holds it."""
        stations = Database.get_collection("stations")
        await stations.update_one(
            {"_id": to_object_id(station_id, "Station"), "current_serving_id": entry_id},
            {"$set": {"current_serving_id": None}},
            session=session,
        )

    @classmethod
    async def holds_slot(cls, station_id: str, entry_id: str, session=None) -> bool:
        """Whether the entry already holds the station's service slot."""
        stations = Database.get_collection("stations")
        count = await stations.count_documents(
            {"_id": to_object_id(station_id, "Station"), "current_serving_id": entry_id},
            session=session,
        )
        return count == 1
