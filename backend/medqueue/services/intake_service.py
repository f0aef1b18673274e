"""
Intake bridge: turns check-ins, paid invoices and diagnostic orders into
waiting list entries.
"""

import logging
from typing import Optional

from pymongo.errors import DuplicateKeyError, PyMongoError

from ..database import Database
from ..errors import ConflictError, QueueError
from ..models.intake import (
    BatchIntakeResult,
    BillingIntakeRequest,
    DiagnosticOrderIntake,
    IntakeLineOutcome,
)
from ..models.queue import (
    PRIORITY_RANK,
    AddToQueueRequest,
    EntryView,
    QueueAction,
    QueueEntry,
    QueuePriority,
    QueueStatus,
    TriageContext,
)
from ..models.station import Station, StationKind
from ..utils import format_token_number, utcnow
from .priority import classify
from .queue_service import QueueService
from .sequence_service import SequenceService
from .station_service import StationService
from .waiting_list import WaitingListEngine

logger = logging.getLogger(__name__)

# Checked in order; the first kind with a matching keyword wins
CATEGORY_KEYWORDS = [
    (StationKind.CONSULTATION, ("consultation", "opd")),
    (StationKind.DIAGNOSTIC, ("diagnostic", "lab", "test", "pathology")),
    (StationKind.PHARMACY, ("pharmacy", "medicine")),
    (StationKind.PROCEDURE, ("procedure",)),
    (StationKind.DIAGNOSTIC, ("imaging", "xray", "x-ray", "radiology", "ultrasound")),
]


def active_key(patient_id: str, station_id: str) -> str:
    """Uniqueness key for an active (patient, station) pair."""
    return f"{patient_id}:{station_id}"


def resolve_station_kind(category: Optional[str], service_name: Optional[str]) -> Optional[StationKind]:
    """Map a billed service to the station kind that should queue it."""
    category_lower = (category or "").lower()
    name_lower = (service_name or "").lower()

    for kind, keywords in CATEGORY_KEYWORDS:
        if any(keyword in category_lower for keyword in keywords):
            return kind
        if kind == StationKind.PROCEDURE and "injection" in name_lower:
            return kind

    return None


class IntakeService:
    """Entry creation from external triggers."""

    @classmethod
    async def enqueue(
        cls,
        station: Station,
        patient_id: str,
        priority: QueuePriority,
        priority_reason: Optional[str],
        is_emergency: bool,
        actor_id: Optional[str] = None,
        patient_name: Optional[str] = None,
        bill_id: Optional[str] = None,
        order_id: Optional[str] = None,
        notes: Optional[str] = None,
        transferred_from: Optional[str] = None,
        session=None
    ) -> QueueEntry:
        """
        Insert a WAITING entry at a resolved station.

        Capacity is reserved first (CapacityError when paused or full), then
        the one-active-entry-per-patient rule is checked, then token, queue
        number and insert position are allocated.
        """
        entries = Database.get_collection("queue_entries")
        key = active_key(patient_id, station.id)

        await StationService.reserve_capacity(station, session=session)

        existing = await entries.find_one({"active_key": key}, session=session)
        if existing:
            await StationService.release_capacity(station.id, session=session)
            raise ConflictError("Patient is already in this queue")

        try:
            token_number = await SequenceService.next_token(station.id, session=session)
            queue_number = await SequenceService.next_queue_number(session=session)
            position = await WaitingListEngine.compute_insert_position(
                station.id, priority, is_emergency, session=session
            )
        except (QueueError, PyMongoError):
            await StationService.release_capacity(station.id, session=session)
            raise

        now = utcnow()
        entry_doc = {
            "queue_number": queue_number,
            "token_number": token_number,
            "display_token": format_token_number(token_number, station.token_prefix),
            "station_id": station.id,
            "station_name": station.name,
            "station_kind": station.kind.value,
            "patient_id": patient_id,
            "patient_name": patient_name,
            "bill_id": bill_id,
            "order_id": order_id,
            "priority": priority.value,
            "priority_rank": PRIORITY_RANK[priority],
            "priority_reason": priority_reason,
            "is_emergency": is_emergency,
            "position": position,
            "original_position": position,
            "status": QueueStatus.WAITING.value,
            "held_from": None,
            "joined_at": now,
            "called_at": None,
            "served_at": None,
            "completed_at": None,
            "last_skipped_at": None,
            "recalled_at": None,
            "skip_count": 0,
            "transferred_from": transferred_from,
            "transferred_to": None,
            "transfer_reason": None,
            "notes": notes,
            "wait_time_minutes": None,
            "service_time_minutes": None,
            "created_by": actor_id,
            "updated_by": actor_id,
            "active_key": key,
            "events": [{
                "action": QueueAction.CHECK_IN.value,
                "from_status": None,
                "to_status": QueueStatus.WAITING.value,
                "actor_id": actor_id,
                "at": now,
                "note": notes,
            }],
        }

        try:
            result = await entries.insert_one(entry_doc, session=session)
        except DuplicateKeyError:
            # Lost a race with a concurrent intake for the same patient
            await StationService.release_capacity(station.id, session=session)
            raise ConflictError("Patient is already in this queue")

        entry_doc["_id"] = str(result.inserted_id)
        await WaitingListEngine.recalculate_positions(station.id, session=session)

        logger.info(
            "Queued patient %s at %s as %s (%s, position %d)",
            patient_id, station.code, entry_doc["display_token"], priority.value, position
        )
        return QueueEntry(**entry_doc)

    @classmethod
    async def _enqueue_view(
        cls,
        station: Station,
        patient_id: str,
        context: TriageContext,
        actor_id: Optional[str],
        **kwargs
    ) -> EntryView:
        priority, reason = classify(context)

        async def work(session):
            entry = await cls.enqueue(
                station,
                patient_id,
                priority,
                reason,
                context.is_emergency,
                actor_id=actor_id,
                session=session,
                **kwargs
            )
            return await QueueService.build_view(entry, station, session=session)

        return await Database.run_atomic(work)

    @classmethod
    async def add_to_queue(cls, request: AddToQueueRequest, actor_id: Optional[str] = None) -> EntryView:
        """Add a patient to a named station."""
        station = await StationService.resolve_station(request.station_id, request.station_code)

        return await cls._enqueue_view(
            station,
            request.patient_id,
            request.triage,
            actor_id,
            patient_name=request.patient_name,
            bill_id=request.bill_id,
            order_id=request.order_id,
            notes=request.notes,
        )

    @classmethod
    async def check_in(cls, request: AddToQueueRequest, actor_id: Optional[str] = None) -> EntryView:
        """Manual front-desk check-in."""
        logger.info("Front desk check-in for patient %s by %s", request.patient_id, actor_id)
        return await cls.add_to_queue(request, actor_id)

    @classmethod
    async def queue_from_billing(
        cls,
        bill: BillingIntakeRequest,
        actor_id: Optional[str] = None
    ) -> BatchIntakeResult:
        """
        Queue every queueable service line of a paid invoice.

        A failing line (already queued, station full or paused) is logged
        and reported, and the remaining lines are still processed.
        """
        context = bill.triage or TriageContext()
        if bill.is_emergency:
            context = context.model_copy(update={"is_emergency": True})

        outcomes = []
        for line in bill.services:
            kind = resolve_station_kind(line.category, line.service_name)
            if kind is None:
                outcomes.append(IntakeLineOutcome(
                    service=line.service_name,
                    queued=False,
                    error_kind="not_queueable",
                    error="No queue handles this service",
                ))
                continue

            station = await StationService.find_or_create_for_kind(
                kind, bill.department_code, actor_id=actor_id
            )

            try:
                view = await cls._enqueue_view(
                    station,
                    bill.patient_id,
                    context,
                    actor_id,
                    patient_name=bill.patient_name,
                    bill_id=bill.bill_id,
                )
            except QueueError as e:
                logger.warning(
                    "Bill %s: could not queue %s at %s: %s",
                    bill.bill_id, line.service_name, station.code, e.message
                )
                outcomes.append(IntakeLineOutcome(
                    service=line.service_name,
                    queued=False,
                    station_id=station.id,
                    station_name=station.name,
                    error_kind=e.kind,
                    error=e.message,
                ))
                continue

            outcomes.append(IntakeLineOutcome(
                service=line.service_name,
                queued=True,
                station_id=station.id,
                station_name=station.name,
                entry_id=view.entry.id,
                display_token=view.entry.display_token,
                position=view.position,
                estimated_wait=view.estimated_wait,
            ))

        queued = sum(1 for outcome in outcomes if outcome.queued)
        return BatchIntakeResult(
            message=f"Patient added to {queued} queue(s)" if queued else "No queueable services found",
            queued_count=queued,
            outcomes=outcomes,
        )

    @classmethod
    async def queue_from_diagnostic_order(
        cls,
        order: DiagnosticOrderIntake,
        actor_id: Optional[str] = None
    ) -> EntryView:
        """Queue a diagnostic order; its urgency feeds the classifier."""
        context = (order.triage or TriageContext()).model_copy(update={"urgency": order.urgency})
        station = await StationService.find_or_create_for_kind(
            order.station_kind, order.department_code, actor_id=actor_id
        )

        return await cls._enqueue_view(
            station,
            order.patient_id,
            context,
            actor_id,
            patient_name=order.patient_name,
            bill_id=order.bill_id,
            order_id=order.order_id,
        )
