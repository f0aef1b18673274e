"""
Token and queue-number allocation.

Every number comes from one atomic upsert-increment on the ``counters``
collection, keyed by scope and calendar day, so concurrent callers never
share a value and numbering restarts daily.
"""

from datetime import datetime
from typing import Optional

from pymongo import ReturnDocument

from ..config import get_settings
from ..database import Database, to_object_id
from ..utils import date_key, format_queue_number, utcnow

settings = get_settings()


class SequenceService:
    """Per-day counters for station tokens and global queue numbers."""

    @classmethod
    async def _increment(cls, scope: str, now: datetime, session=None) -> int:
        counters = Database.get_collection("counters")
        day = date_key(now)

        counter = await counters.find_one_and_update(
            {"_id": f"{scope}:{day}"},
            {
                "$inc": {"seq": 1},
                "$setOnInsert": {"scope": scope, "date": day, "created_at": now},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        return counter["seq"]

    @classmethod
    async def next_token(cls, station_id: str, session=None) -> int:
        """Issue the next token for a station today."""
        now = utcnow()
        token = await cls._increment(f"token:{station_id}", now, session=session)

        # Mirror onto the station; only ever moves forward within a day
        stations = Database.get_collection("stations")
        day = date_key(now)
        await stations.update_one(
            {
                "_id": to_object_id(station_id, "Station"),
                "$or": [{"token_date": {"$ne": day}}, {"last_token": {"$lt": token}}],
            },
            {"$set": {"last_token": token, "next_token": token + 1, "token_date": day}},
            session=session,
        )
        return token

    @classmethod
    async def next_queue_number(cls, scope_key: Optional[str] = None, session=None) -> str:
        """Issue the next globally unique queue number, e.g. QUE261016007."""
        prefix = scope_key or settings.QUEUE_NUMBER_PREFIX
        now = utcnow()
        seq = await cls._increment(f"queue:{prefix}", now, session=session)
        return format_queue_number(prefix, now, seq)
