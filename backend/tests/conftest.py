"""
Shared pytest fixtures.

Every test runs against a fresh in-memory Motor stand-in, so services use
``Database.get_collection`` exactly as they do against MongoDB.
"""

from datetime import timedelta

import pytest
from bson import ObjectId
from mongomock_motor import AsyncMongoMockClient

from medqueue.database import Database
from medqueue.models.queue import AddToQueueRequest, TriageContext
from medqueue.models.station import StationCreate, StationKind
from medqueue.services.intake_service import IntakeService
from medqueue.services.station_service import StationService
from medqueue.utils import utcnow


@pytest.fixture(autouse=True)
def db():
    """In-memory database wired into the Database manager."""
    client = AsyncMongoMockClient()
    Database.client = client
    Database.db = client["medqueue_test"]
    yield Database.db
    Database.client = None
    Database.db = None


@pytest.fixture
def make_station():
    """Factory creating a station with sensible defaults."""
    counter = {"n": 0}

    async def _make(**overrides):
        counter["n"] += 1
        data = {
            "code": f"CONSULTATION_OPD_{counter['n']:03d}",
            "name": f"Consultation Room {counter['n']}",
            "kind": StationKind.CONSULTATION,
            "short_name": "C",
            "average_service_time": 10,
        }
        data.update(overrides)
        return await StationService.create_station(StationCreate(**data), actor_id="admin")

    return _make


@pytest.fixture
def enqueue():
    """Factory adding a patient to a station; triage flags go in as kwargs."""

    async def _enqueue(station, patient_id, patient_name=None, **triage):
        request = AddToQueueRequest(
            patient_id=patient_id,
            patient_name=patient_name or f"Patient {patient_id}",
            station_id=station.id,
            triage=TriageContext(**triage),
        )
        return await IntakeService.add_to_queue(request, actor_id="desk-1")

    return _enqueue


@pytest.fixture
def backdate(db):
    """Shift timestamps of an entry into the past, in minutes."""

    async def _backdate(entry_id, **minutes_ago):
        now = utcnow()
        fields = {name: now - timedelta(minutes=value) for name, value in minutes_ago.items()}
        await db["queue_entries"].update_one({"_id": ObjectId(entry_id)}, {"$set": fields})

    return _backdate
