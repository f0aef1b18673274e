"""
MongoDB async database connection using Motor.
Provides database instance, collection access and atomic units of work.
"""

import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from .config import get_settings
from .errors import NotFoundError

settings = get_settings()
logger = logging.getLogger(__name__)

T = TypeVar("T")


class Database:
    """MongoDB database connection manager."""

    client: Optional[AsyncIOMotorClient] = None
    db: Optional[AsyncIOMotorDatabase] = None

    @classmethod
    async def connect(cls):
        """Connect to MongoDB."""
        cls.client = AsyncIOMotorClient(settings.MONGODB_URL)
        cls.db = cls.client[settings.DATABASE_NAME]

        # Verify connection
        await cls.client.admin.command('ping')
        logger.info("Connected to MongoDB: %s", settings.DATABASE_NAME)

        await cls._create_indexes()

    @classmethod
    async def disconnect(cls):
        """Disconnect from MongoDB."""
        if cls.client:
            cls.client.close()
            logger.info("Disconnected from MongoDB")

    @classmethod
    async def _create_indexes(cls):
        """Create database indexes for ordering and uniqueness."""
        if cls.db is None:
            return

        # Stations
        await cls.db.stations.create_index("code", unique=True)
        await cls.db.stations.create_index([("kind", 1), ("department", 1)])

        # Queue entries
        await cls.db.queue_entries.create_index("queue_number", unique=True)
        # One active entry per (patient, station); the key is unset when inactive
        await cls.db.queue_entries.create_index("active_key", unique=True, sparse=True)
        await cls.db.queue_entries.create_index([
            ("station_id", 1),
            ("status", 1),
            ("is_emergency", -1),
            ("priority_rank", 1),
            ("joined_at", 1),
        ])
        await cls.db.queue_entries.create_index([("patient_id", 1), ("status", 1)])

        # History
        await cls.db.queue_history.create_index("entry_id", unique=True)
        await cls.db.queue_history.create_index("queue_date")

        logger.info("Database indexes created")

    @classmethod
    def get_collection(cls, name: str):
        """Get a collection by name."""
        if cls.db is None:
            raise RuntimeError("Database not connected")
        return cls.db[name]

    @classmethod
    async def run_atomic(cls, work: Callable[[Any], Awaitable[T]]) -> T:
        """
        Run ``work(session)`` as one unit.

        With MONGODB_TRANSACTIONS enabled the callback runs inside a
        multi-document transaction (retried on transient errors by the
        driver). Otherwise ``session`` is None and the callback relies on
        conditional single-document updates.
        """
        if not settings.MONGODB_TRANSACTIONS or cls.client is None:
            return await work(None)

        async with await cls.client.start_session() as session:
            return await session.with_transaction(work)


def to_object_id(value: str, label: str = "Record") -> ObjectId:
    """Parse a string id, treating malformed ids as unknown ones."""
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFoundError(f"{label} not found")


def serialize(doc: Optional[dict]) -> Optional[dict]:
    """Convert the Mongo ``_id`` to a string for the pydantic models."""
    if doc is None:
        return None
    doc["_id"] = str(doc["_id"])
    return doc

