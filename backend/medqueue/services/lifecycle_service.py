"""
Lifecycle controller for queue entries.

State machine:

    WAITING -> CALLED -> SERVING -> COMPLETED
    CALLED -> SKIPPED -> RECALLED -> SERVING
    WAITING/CALLED/SERVING <-> ON_HOLD
    any non-terminal -> CANCELLED | TRANSFERRED

Every transition is a conditional update on the expected current status,
so a concurrent mutation makes it fail with ConflictError instead of
overwriting. A station has a single service slot (``current_serving_id``)
that CALLED and SERVING entries must hold.
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, Iterable

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from ..config import get_settings
from ..database import Database, to_object_id, serialize
from ..errors import ConflictError, QueueError, ValidationError
from ..models.queue import (
    ACTIVE_STATUSES,
    NON_TERMINAL_STATUSES,
    POSITIONED_STATUSES,
    PRIORITY_RANK,
    SLOT_STATUSES,
    EntryView,
    QueueAction,
    QueueEntry,
    QueuePriority,
    QueueStatus,
    SkipOutcome,
    TransferOutcome,
    TransferRequest,
    TriageContext,
)
from ..models.history import QueueHistoryRecord
from ..models.station import Station
from ..utils import minutes_between, utcnow
from .intake_service import IntakeService, active_key
from .priority import classify
from .queue_service import QueueService
from .station_service import StationService
from .waiting_list import WaitingListEngine

settings = get_settings()
logger = logging.getLogger(__name__)

CALL_NEXT_ATTEMPTS = 3


class LifecycleService:
    """Drives entries through call, serve, skip, recall, transfer, cancel and hold."""

    # ==================== Internals ====================

    @classmethod
    async def _transition(
        cls,
        doc: dict,
        action: QueueAction,
        allowed: Iterable[QueueStatus],
        to_status: QueueStatus,
        actor_id: Optional[str],
        now: datetime,
        fields: Optional[Dict[str, Any]] = None,
        note: Optional[str] = None,
        session=None
    ) -> dict:
        """
        Move ``doc`` to ``to_status`` if it is still in the status it was read in.

        Raises ConflictError, writing nothing, when the current status is not
        in ``allowed`` or changed since it was read.
        """
        entries = Database.get_collection("queue_entries")
        from_status = QueueStatus(doc["status"])

        if from_status not in tuple(allowed):
            raise ConflictError(
                f"Cannot {action.value.replace('_', ' ')} entry {doc['display_token']}: "
                f"current status is {from_status.value}"
            )

        set_fields = {
            "status": to_status.value,
            "updated_by": actor_id,
            "updated_at": now,
        }
        set_fields.update(fields or {})
        update = {
            "$set": set_fields,
            "$push": {"events": {
                "action": action.value,
                "from_status": from_status.value,
                "to_status": to_status.value,
                "actor_id": actor_id,
                "at": now,
                "note": note,
            }},
        }
        if to_status in ACTIVE_STATUSES:
            set_fields["active_key"] = active_key(doc["patient_id"], doc["station_id"])
        else:
            update["$unset"] = {"active_key": ""}

        try:
            result = await entries.find_one_and_update(
                {"_id": doc["_id"], "status": from_status.value, "skip_count": doc.get("skip_count", 0)},
                update,
                return_document=ReturnDocument.AFTER,
                session=session,
            )
        except DuplicateKeyError:
            raise ConflictError("Patient already has an active entry at this station")

        if result is None:
            raise ConflictError(
                f"Entry {doc['display_token']} changed concurrently; reload and retry"
            )

        # Occupancy counts entries in the waiting set only
        delta = int(to_status in POSITIONED_STATUSES) - int(from_status in POSITIONED_STATUSES)
        if delta:
            await StationService.adjust_occupancy(doc["station_id"], delta, session=session)

        logger.info(
            "Entry %s: %s -> %s (%s) by %s",
            doc["display_token"], from_status.value, to_status.value, action.value, actor_id
        )
        return result

    @classmethod
    async def _write_history(cls, doc: dict, session=None) -> None:
        """Persist the immutable snapshot of an entry that reached a terminal status."""
        history = Database.get_collection("queue_history")

        wait = doc.get("wait_time_minutes")
        service = doc.get("service_time_minutes")
        record = QueueHistoryRecord(
            entry_id=str(doc["_id"]),
            station_id=doc["station_id"],
            patient_id=doc["patient_id"],
            queue_date=doc["completed_at"],
            token_number=doc["token_number"],
            priority=doc["priority"],
            position=doc.get("original_position") or doc.get("position"),
            joined_at=doc["joined_at"],
            called_at=doc.get("called_at"),
            served_at=doc.get("served_at"),
            completed_at=doc["completed_at"],
            wait_time_minutes=wait,
            service_time_minutes=service,
            total_time_minutes=wait + service if wait is not None and service is not None else None,
            final_status=doc["status"],
            skip_count=doc.get("skip_count", 0),
            was_emergency=doc.get("is_emergency", False),
        )

        try:
            await history.insert_one(record.model_dump(exclude={"id"}), session=session)
        except DuplicateKeyError:
            logger.warning("History for entry %s already recorded", record.entry_id)

    @classmethod
    async def _leave_queue(cls, before: dict, after: dict, served: bool = False, session=None) -> None:
        """Bookkeeping shared by every terminal transition."""
        station_id = before["station_id"]
        await cls._write_history(after, session=session)
        if served:
            await StationService.record_served(station_id, session=session)
        if QueueStatus(before["status"]) in SLOT_STATUSES:
            await StationService.release_slot(station_id, str(before["_id"]), session=session)
        await WaitingListEngine.recalculate_positions(station_id, session=session)

    @classmethod
    async def _slot_busy(cls, station_id: str, except_entry_id: Optional[str] = None, session=None) -> bool:
        entries = Database.get_collection("queue_entries")
        query = {"station_id": station_id, "status": {"$in": [s.value for s in SLOT_STATUSES]}}
        if except_entry_id:
            query["_id"] = {"$ne": to_object_id(except_entry_id, "Queue entry")}
        return await entries.count_documents(query, session=session) > 0

    @classmethod
    async def _acquire_slot(cls, station_id: str, doc: dict, session=None) -> bool:
        """
        Make sure ``doc`` holds the station slot.

        Returns True when this call took an empty slot and False when the
        entry already held it, so callers only release what they took.
        """
        entry_id = str(doc["_id"])
        if await cls._slot_busy(station_id, except_entry_id=entry_id, session=session):
            raise ConflictError("Another patient is already being called or served at this station")
        if await StationService.claim_slot(station_id, entry_id, doc["token_number"], session=session):
            return True
        if await StationService.holds_slot(station_id, entry_id, session=session):
            return False
        raise ConflictError("Another patient is already being called or served at this station")

    @classmethod
    async def _view(cls, doc: dict, station: Optional[Station] = None, session=None) -> EntryView:
        return await QueueService.build_view(QueueEntry(**serialize(doc)), station, session=session)

    # ==================== Operations ====================

    @classmethod
    async def call_next(cls, station_id: str, actor_id: Optional[str] = None) -> Optional[EntryView]:
        """
        Call the next WAITING entry of a station.

        Fails with ConflictError while another entry is CALLED or SERVING.
        Returns None when nobody is waiting.
        """
        station = await StationService.get_station(station_id)

        async def work(session):
            if await cls._slot_busy(station.id, session=session):
                raise ConflictError("Complete current patient before calling next")

            for _ in range(CALL_NEXT_ATTEMPTS):
                candidate = await WaitingListEngine.get_next_to_call(station.id, session=session)
                if candidate is None:
                    return None

                if not await StationService.claim_slot(
                    station.id, candidate.id, candidate.token_number, session=session
                ):
                    raise ConflictError("Complete current patient before calling next")

                doc = await QueueService.get_entry_doc(candidate.id, session=session)
                now = utcnow()
                try:
                    called = await cls._transition(
                        doc, QueueAction.CALL_NEXT, (QueueStatus.WAITING,), QueueStatus.CALLED,
                        actor_id, now, {"called_at": now}, session=session
                    )
                except ConflictError:
                    # Candidate was cancelled or moved meanwhile; give back the slot taken above
                    await StationService.release_slot(station.id, candidate.id, session=session)
                    continue

                await WaitingListEngine.recalculate_positions(station.id, session=session)
                return await cls._view(called, station, session=session)

            raise ConflictError("Waiting list changed while calling; retry")

        return await Database.run_atomic(work)

    @classmethod
    async def start_serving(cls, entry_id: str, actor_id: Optional[str] = None) -> EntryView:
        """CALLED or RECALLED -> SERVING."""

        async def work(session):
            doc = await QueueService.get_entry_doc(entry_id, session=session)
            allowed = (QueueStatus.CALLED, QueueStatus.RECALLED)
            taken = False
            if QueueStatus(doc["status"]) in allowed:
                taken = await cls._acquire_slot(doc["station_id"], doc, session=session)

            now = utcnow()
            try:
                serving = await cls._transition(
                    doc, QueueAction.START_SERVICE, allowed, QueueStatus.SERVING,
                    actor_id, now, {"served_at": now}, session=session
                )
            except ConflictError:
                if taken:
                    await StationService.release_slot(doc["station_id"], entry_id, session=session)
                raise

            await WaitingListEngine.recalculate_positions(doc["station_id"], session=session)
            return await cls._view(serving, session=session)

        return await Database.run_atomic(work)

    @classmethod
    async def complete(cls, entry_id: str, actor_id: Optional[str] = None) -> EntryView:
        """SERVING -> COMPLETED, recording wait and service minutes."""

        async def work(session):
            doc = await QueueService.get_entry_doc(entry_id, session=session)
            now = utcnow()
            wait = minutes_between(doc.get("joined_at"), doc.get("served_at"))
            service = minutes_between(doc.get("served_at"), now)

            completed = await cls._transition(
                doc, QueueAction.COMPLETE, (QueueStatus.SERVING,), QueueStatus.COMPLETED,
                actor_id, now,
                {
                    "completed_at": now,
                    "wait_time_minutes": wait,
                    "service_time_minutes": service,
                },
                session=session,
            )
            await cls._leave_queue(doc, completed, served=True, session=session)
            return await cls._view(completed, session=session)

        return await Database.run_atomic(work)

    @classmethod
    async def skip(cls, entry_id: str, actor_id: Optional[str] = None) -> SkipOutcome:
        """
        CALLED -> SKIPPED, or CANCELLED once MAX_SKIP_COUNT is reached.

        The auto-cancel is reported with ``auto_cancelled=True``.
        """

        async def work(session):
            doc = await QueueService.get_entry_doc(entry_id, session=session)
            now = utcnow()
            skip_count = doc.get("skip_count", 0) + 1
            max_skips = settings.MAX_SKIP_COUNT

            if skip_count >= max_skips:
                note = f"Auto-cancelled after {skip_count} skips"
                cancelled = await cls._transition(
                    doc, QueueAction.SKIP, (QueueStatus.CALLED,), QueueStatus.CANCELLED,
                    actor_id, now,
                    {
                        "skip_count": skip_count,
                        "last_skipped_at": now,
                        "completed_at": now,
                        "notes": note,
                    },
                    note=note,
                    session=session,
                )
                await cls._leave_queue(doc, cancelled, session=session)
                view = await cls._view(cancelled, session=session)
                return SkipOutcome(**view.model_dump(), auto_cancelled=True, message=note)

            skipped = await cls._transition(
                doc, QueueAction.SKIP, (QueueStatus.CALLED,), QueueStatus.SKIPPED,
                actor_id, now,
                {"skip_count": skip_count, "last_skipped_at": now},
                session=session,
            )
            await StationService.release_slot(doc["station_id"], entry_id, session=session)
            await WaitingListEngine.recalculate_positions(doc["station_id"], session=session)

            view = await cls._view(skipped, session=session)
            return SkipOutcome(
                **view.model_dump(),
                auto_cancelled=False,
                message=f"Patient skipped ({skip_count}/{max_skips})",
            )

        return await Database.run_atomic(work)

    @classmethod
    async def recall(cls, entry_id: str, actor_id: Optional[str] = None) -> EntryView:
        """SKIPPED -> RECALLED."""

        async def work(session):
            doc = await QueueService.get_entry_doc(entry_id, session=session)
            now = utcnow()
            recalled = await cls._transition(
                doc, QueueAction.RECALL, (QueueStatus.SKIPPED,), QueueStatus.RECALLED,
                actor_id, now, {"recalled_at": now}, session=session
            )
            await WaitingListEngine.recalculate_positions(doc["station_id"], session=session)
            return await cls._view(recalled, session=session)

        return await Database.run_atomic(work)

    @classmethod
    async def cancel(cls, entry_id: str, reason: Optional[str] = None, actor_id: Optional[str] = None) -> EntryView:
        """Any non-terminal status -> CANCELLED."""

        async def work(session):
            doc = await QueueService.get_entry_doc(entry_id, session=session)
            now = utcnow()
            note = reason or "Cancelled by user"
            cancelled = await cls._transition(
                doc, QueueAction.CANCEL, NON_TERMINAL_STATUSES, QueueStatus.CANCELLED,
                actor_id, now, {"completed_at": now, "notes": note}, note=note, session=session
            )
            await cls._leave_queue(doc, cancelled, session=session)
            return await cls._view(cancelled, session=session)

        return await Database.run_atomic(work)

    @classmethod
    async def hold(cls, entry_id: str, reason: Optional[str] = None, actor_id: Optional[str] = None) -> EntryView:
        """WAITING, CALLED or SERVING -> ON_HOLD; frees the service slot."""

        async def work(session):
            doc = await QueueService.get_entry_doc(entry_id, session=session)
            held = await cls._transition(
                doc, QueueAction.HOLD,
                (QueueStatus.WAITING, QueueStatus.CALLED, QueueStatus.SERVING),
                QueueStatus.ON_HOLD,
                actor_id, utcnow(), {"held_from": doc["status"]}, note=reason, session=session
            )
            if QueueStatus(doc["status"]) in SLOT_STATUSES:
                await StationService.release_slot(doc["station_id"], entry_id, session=session)
            await WaitingListEngine.recalculate_positions(doc["station_id"], session=session)
            return await cls._view(held, session=session)

        return await Database.run_atomic(work)

    @classmethod
    async def release_hold(cls, entry_id: str, actor_id: Optional[str] = None) -> EntryView:
        """ON_HOLD -> the status it was held from; CALLED/SERVING reclaim the slot."""

        async def work(session):
            doc = await QueueService.get_entry_doc(entry_id, session=session)
            target = QueueStatus(doc.get("held_from") or QueueStatus.WAITING.value)
            needs_slot = (
                QueueStatus(doc["status"]) == QueueStatus.ON_HOLD and target in SLOT_STATUSES
            )
            taken = False
            if needs_slot:
                taken = await cls._acquire_slot(doc["station_id"], doc, session=session)

            try:
                resumed = await cls._transition(
                    doc, QueueAction.UNHOLD, (QueueStatus.ON_HOLD,), target,
                    actor_id, utcnow(), {"held_from": None}, session=session
                )
            except ConflictError:
                if taken:
                    await StationService.release_slot(doc["station_id"], entry_id, session=session)
                raise

            await WaitingListEngine.recalculate_positions(doc["station_id"], session=session)
            return await cls._view(resumed, session=session)

        return await Database.run_atomic(work)

    @classmethod
    async def change_priority(
        cls,
        entry_id: str,
        priority: str,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None
    ) -> EntryView:
        """Re-bucket a non-terminal entry; the emergency flag follows the priority."""
        try:
            new_priority = QueuePriority(str(priority).lower())
        except ValueError:
            raise ValidationError(f"Invalid priority: {priority}")

        async def work(session):
            doc = await QueueService.get_entry_doc(entry_id, session=session)
            current = QueueStatus(doc["status"])
            updated = await cls._transition(
                doc, QueueAction.CHANGE_PRIORITY, NON_TERMINAL_STATUSES, current,
                actor_id, utcnow(),
                {
                    "priority": new_priority.value,
                    "priority_rank": PRIORITY_RANK[new_priority],
                    "priority_reason": reason,
                    "is_emergency": new_priority == QueuePriority.EMERGENCY,
                },
                note=f"{doc['priority']} -> {new_priority.value}",
                session=session,
            )
            await WaitingListEngine.recalculate_positions(doc["station_id"], session=session)
            return await cls._view(updated, session=session)

        return await Database.run_atomic(work)

    @classmethod
    async def transfer(
        cls,
        entry_id: str,
        request: TransferRequest,
        actor_id: Optional[str] = None
    ) -> TransferOutcome:
        """
        Any non-terminal status -> TRANSFERRED, plus a new WAITING entry at
        the target station.

        The new entry keeps the source priority unless re-triage is enabled
        (per request, else TRANSFER_RETRIAGE), in which case the classifier
        runs over the supplied triage context.
        """
        target = await StationService.get_station(request.target_station_id)
        retriage = request.retriage if request.retriage is not None else settings.TRANSFER_RETRIAGE

        async def work(session):
            doc = await QueueService.get_entry_doc(entry_id, session=session)
            if QueueStatus(doc["status"]) not in NON_TERMINAL_STATUSES:
                raise ConflictError(
                    f"Cannot transfer entry {doc['display_token']}: current status is {doc['status']}"
                )
            if doc["station_id"] == target.id:
                raise ValidationError("Cannot transfer to the same station")

            if retriage:
                context = request.triage or TriageContext(is_emergency=doc.get("is_emergency", False))
                priority, priority_reason = classify(context)
                is_emergency = context.is_emergency
            else:
                priority = QueuePriority(doc["priority"])
                priority_reason = doc.get("priority_reason")
                is_emergency = doc.get("is_emergency", False)

            new_entry = await IntakeService.enqueue(
                target,
                doc["patient_id"],
                priority,
                priority_reason,
                is_emergency,
                actor_id=actor_id,
                patient_name=doc.get("patient_name"),
                bill_id=doc.get("bill_id"),
                order_id=doc.get("order_id"),
                notes=f"Transferred from {doc.get('station_name')}. Reason: {request.reason}",
                transferred_from=str(doc["_id"]),
                session=session,
            )

            now = utcnow()
            try:
                transferred = await cls._transition(
                    doc, QueueAction.TRANSFER, NON_TERMINAL_STATUSES, QueueStatus.TRANSFERRED,
                    actor_id, now,
                    {
                        "transferred_to": new_entry.id,
                        "transfer_reason": request.reason,
                        "completed_at": now,
                    },
                    note=request.reason,
                    session=session,
                )
            except QueueError:
                await cls._abort_transfer_entry(new_entry, actor_id, session=session)
                raise

            await cls._leave_queue(doc, transferred, session=session)

            return TransferOutcome(
                old_entry=await cls._view(transferred, session=session),
                new_entry=await QueueService.build_view(new_entry, target, session=session),
            )

        return await Database.run_atomic(work)

    @classmethod
    async def _abort_transfer_entry(cls, entry: QueueEntry, actor_id: Optional[str], session=None) -> None:
        """Undo the destination entry of a transfer whose source changed meanwhile."""
        doc = await QueueService.get_entry_doc(entry.id, session=session)
        now = utcnow()
        note = "Transfer aborted"
        aborted = await cls._transition(
            doc, QueueAction.CANCEL, (QueueStatus.WAITING,), QueueStatus.CANCELLED,
            actor_id, now, {"completed_at": now, "notes": note}, note=note, session=session
        )
        await cls._leave_queue(doc, aborted, session=session)
