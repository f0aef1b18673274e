"""
Waiting list ordering engine.

The ordering law applied everywhere the waiting set is read:
emergency flag first, then priority rank (EMERGENCY < URGENT < PRIORITY <
NORMAL), then join time, with the document id as a final tie-breaker.
``position`` is a cached projection of this order and is rewritten by
``recalculate_positions`` after every mutation that can change it.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from ..database import Database, serialize
from ..models.queue import (
    POSITIONED_STATUSES,
    PRIORITY_RANK,
    QueueEntry,
    QueuePriority,
    QueueStatus,
)

logger = logging.getLogger(__name__)

ORDERING_SORT = [
    ("is_emergency", -1),
    ("priority_rank", 1),
    ("joined_at", 1),
    ("_id", 1),
]


def ordering_key(doc: dict) -> Tuple[bool, int, datetime, str]:
    """Sort key implementing the ordering law for a raw entry document."""
    return (
        not doc.get("is_emergency", False),
        doc.get("priority_rank", PRIORITY_RANK[QueuePriority.NORMAL]),
        doc["joined_at"],
        str(doc["_id"]),
    )


class WaitingListEngine:
    """Ordering core for each station's independent waiting list."""

    @classmethod
    async def _ordered_docs(
        cls,
        station_id: str,
        statuses=POSITIONED_STATUSES,
        limit: Optional[int] = None,
        session=None
    ) -> List[dict]:
        entries = Database.get_collection("queue_entries")
        cursor = entries.find(
            {"station_id": station_id, "status": {"$in": [s.value for s in statuses]}},
            session=session,
        ).sort(ORDERING_SORT)
        if limit:
            cursor = cursor.limit(limit)
        docs = [doc async for doc in cursor]
        # Same law as ORDERING_SORT, applied to the fetched page
        docs.sort(key=ordering_key)
        return docs

    @classmethod
    async def get_waiting_list(
        cls,
        station_id: str,
        limit: Optional[int] = None,
        session=None
    ) -> List[QueueEntry]:
        """Active (WAITING/CALLED/RECALLED) entries in call order."""
        docs = await cls._ordered_docs(station_id, limit=limit, session=session)
        return [QueueEntry(**serialize(doc)) for doc in docs]

    @classmethod
    async def compute_insert_position(
        cls,
        station_id: str,
        priority: QueuePriority,
        is_emergency: bool,
        session=None
    ) -> int:
        """
        1-based slot a new entry takes in the current waiting set.

        A new entry joins last within its (emergency, priority) bucket.
        """
        rank = PRIORITY_RANK[priority]
        docs = await cls._ordered_docs(station_id, session=session)

        position = 1
        for doc in docs:
            doc_emergency = doc.get("is_emergency", False)
            if is_emergency and not doc_emergency:
                break
            if doc_emergency == is_emergency and rank < doc["priority_rank"]:
                break
            position += 1

        return position

    @classmethod
    async def get_next_to_call(cls, station_id: str, session=None) -> Optional[QueueEntry]:
        """First WAITING entry under the ordering law, or None."""
        docs = await cls._ordered_docs(
            station_id, statuses=(QueueStatus.WAITING,), session=session
        )
        if not docs:
            return None
        return QueueEntry(**serialize(docs[0]))

    @classmethod
    async def recalculate_positions(cls, station_id: str, session=None) -> List[Tuple[str, int]]:
        """
        Rewrite ``position`` for every active entry of a station.

        Idempotent: only positions that differ from the derived order are
        written, so a second run with no intervening change writes nothing.
        Returns the ``(entry_id, position)`` assignments.
        """
        entries = Database.get_collection("queue_entries")

        async def apply(txn_session):
            docs = await cls._ordered_docs(station_id, session=txn_session)
            assignments = []
            for index, doc in enumerate(docs, start=1):
                assignments.append((str(doc["_id"]), index))
                if doc.get("position") != index:
                    await entries.update_one(
                        {"_id": doc["_id"]},
                        {"$set": {"position": index}},
                        session=txn_session,
                    )
            return assignments

        if session is not None:
            assignments = await apply(session)
        else:
            assignments = await Database.run_atomic(apply)

        logger.debug("Recalculated %d position(s) for station %s", len(assignments), station_id)
        return assignments

    @classmethod
    async def live_position(cls, entry: QueueEntry, session=None) -> Optional[int]:
        """
        Position re-derived from the ordering law, ignoring the cached field.

        None when the entry is not in the positioned set.
        """
        if QueueStatus(entry.status) not in POSITIONED_STATUSES:
            return None

        docs = await cls._ordered_docs(entry.station_id, session=session)
        for index, doc in enumerate(docs, start=1):
            if str(doc["_id"]) == str(entry.id):
                return index
        return None

