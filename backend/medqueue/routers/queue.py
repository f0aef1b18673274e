"""
Queue entry API routes: intake, lifecycle actions and lookups.
"""

from typing import Optional
from fastapi import APIRouter, status, Depends

from ..models.intake import BatchIntakeResult, BillingIntakeRequest, DiagnosticOrderIntake
from ..models.queue import (
    AddToQueueRequest,
    CancelRequest,
    EntryView,
    HoldRequest,
    PatientQueues,
    PriorityChangeRequest,
    SkipOutcome,
    TransferOutcome,
    TransferRequest,
)
from ..services.intake_service import IntakeService
from ..services.lifecycle_service import LifecycleService
from ..services.queue_service import QueueService
from .dependencies import get_actor_id

router = APIRouter(prefix="/queue", tags=["Queue"])


# ==================== Intake ====================

@router.post("/entries", response_model=EntryView, response_model_by_alias=False, status_code=status.HTTP_201_CREATED)
async def add_to_queue(
    request: AddToQueueRequest,
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Add a patient to a station's waiting list."""
    return await IntakeService.add_to_queue(request, actor_id)


@router.post("/check-in", response_model=EntryView, response_model_by_alias=False, status_code=status.HTTP_201_CREATED)
async def check_in(
    request: AddToQueueRequest,
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Front desk check-in."""
    return await IntakeService.check_in(request, actor_id)


@router.post("/billing", response_model=BatchIntakeResult, response_model_by_alias=False)
async def queue_from_billing(
    bill: BillingIntakeRequest,
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Queue every queueable service of a paid invoice."""
    return await IntakeService.queue_from_billing(bill, actor_id)


@router.post("/diagnostic-orders", response_model=EntryView, response_model_by_alias=False, status_code=status.HTTP_201_CREATED)
async def queue_from_diagnostic_order(
    order: DiagnosticOrderIntake,
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Queue a diagnostic order."""
    return await IntakeService.queue_from_diagnostic_order(order, actor_id)


# ==================== Lookups ====================

@router.get("/entries/number/{queue_number}", response_model=EntryView, response_model_by_alias=False)
async def get_entry_by_number(queue_number: str):
    """Get entry by queue number (e.g., QUE261016007)."""
    return await QueueService.get_entry_by_number(queue_number)


@router.get("/entries/{entry_id}", response_model=EntryView, response_model_by_alias=False)
async def get_entry_status(entry_id: str):
    """Entry with live position and estimated wait."""
    return await QueueService.get_entry_status(entry_id)


@router.get("/patients/{patient_id}", response_model=PatientQueues, response_model_by_alias=False)
async def get_patient_entries(patient_id: str):
    """All active entries of a patient."""
    return await QueueService.get_patient_entries(patient_id)


# ==================== Lifecycle ====================

@router.post("/entries/{entry_id}/start-serving", response_model=EntryView, response_model_by_alias=False)
async def start_serving(entry_id: str, actor_id: Optional[str] = Depends(get_actor_id)):
    return await LifecycleService.start_serving(entry_id, actor_id)


@router.post("/entries/{entry_id}/complete", response_model=EntryView, response_model_by_alias=False)
async def complete(entry_id: str, actor_id: Optional[str] = Depends(get_actor_id)):
    return await LifecycleService.complete(entry_id, actor_id)


@router.post("/entries/{entry_id}/skip", response_model=SkipOutcome, response_model_by_alias=False)
async def skip(entry_id: str, actor_id: Optional[str] = Depends(get_actor_id)):
    """Skip a called patient who did not respond."""
    return await LifecycleService.skip(entry_id, actor_id)


@router.post("/entries/{entry_id}/recall", response_model=EntryView, response_model_by_alias=False)
async def recall(entry_id: str, actor_id: Optional[str] = Depends(get_actor_id)):
    return await LifecycleService.recall(entry_id, actor_id)


@router.post("/entries/{entry_id}/transfer", response_model=TransferOutcome, response_model_by_alias=False)
async def transfer(
    entry_id: str,
    request: TransferRequest,
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Move a patient to another station's waiting list."""
    return await LifecycleService.transfer(entry_id, request, actor_id)


@router.post("/entries/{entry_id}/cancel", response_model=EntryView, response_model_by_alias=False)
async def cancel(
    entry_id: str,
    request: Optional[CancelRequest] = None,
    actor_id: Optional[str] = Depends(get_actor_id)
):
    reason = request.reason if request else None
    return await LifecycleService.cancel(entry_id, reason, actor_id)


@router.post("/entries/{entry_id}/hold", response_model=EntryView, response_model_by_alias=False)
async def hold(
    entry_id: str,
    request: Optional[HoldRequest] = None,
    actor_id: Optional[str] = Depends(get_actor_id)
):
    reason = request.reason if request else None
    return await LifecycleService.hold(entry_id, reason, actor_id)


@router.post("/entries/{entry_id}/release-hold", response_model=EntryView, response_model_by_alias=False)
async def release_hold(entry_id: str, actor_id: Optional[str] = Depends(get_actor_id)):
    return await LifecycleService.release_hold(entry_id, actor_id)


@router.post("/entries/{entry_id}/change-priority", response_model=EntryView, response_model_by_alias=False)
async def change_priority(
    entry_id: str,
    request: PriorityChangeRequest,
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Move an entry to another priority bucket."""
    return await LifecycleService.change_priority(entry_id, request.priority, request.reason, actor_id)
