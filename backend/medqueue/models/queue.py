"""
Queue entry models for the patient waiting lists.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum

from .station import Station


class QueueStatus(str, Enum):
    """Queue entry lifecycle states."""
    WAITING = "waiting"
    CALLED = "called"
    SERVING = "serving"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    RECALLED = "recalled"
    TRANSFERRED = "transferred"
    CANCELLED = "cancelled"
    ON_HOLD = "on_hold"


class QueuePriority(str, Enum):
    """Priority buckets, the primary sort key after the emergency flag."""
    EMERGENCY = "emergency"
    URGENT = "urgent"
    PRIORITY = "priority"
    NORMAL = "normal"


# Lower rank is served first
PRIORITY_RANK: Dict[QueuePriority, int] = {
    QueuePriority.EMERGENCY: 1,
    QueuePriority.URGENT: 2,
    QueuePriority.PRIORITY: 3,
    QueuePriority.NORMAL: 4,
}

TERMINAL_STATUSES = (
    QueueStatus.COMPLETED,
    QueueStatus.CANCELLED,
    QueueStatus.TRANSFERRED,
)

NON_TERMINAL_STATUSES = tuple(s for s in QueueStatus if s not in TERMINAL_STATUSES)

# At most one entry per (patient, station) may be in one of these
ACTIVE_STATUSES = (
    QueueStatus.WAITING,
    QueueStatus.CALLED,
    QueueStatus.RECALLED,
    QueueStatus.ON_HOLD,
)

# Entries that hold a position in the waiting list
POSITIONED_STATUSES = (
    QueueStatus.WAITING,
    QueueStatus.CALLED,
    QueueStatus.RECALLED,
)

# Entries occupying the station's single service slot
SLOT_STATUSES = (
    QueueStatus.CALLED,
    QueueStatus.SERVING,
)


class QueueAction(str, Enum):
    """Audit trail actions."""
    CHECK_IN = "check_in"
    CALL_NEXT = "call_next"
    START_SERVICE = "start_service"
    COMPLETE = "complete"
    SKIP = "skip"
    RECALL = "recall"
    TRANSFER = "transfer"
    CANCEL = "cancel"
    HOLD = "hold"
    UNHOLD = "unhold"
    CHANGE_PRIORITY = "change_priority"


class Urgency(str, Enum):
    """Ordering urgency from referrals and diagnostic orders."""
    ROUTINE = "routine"
    URGENT = "urgent"
    STAT = "stat"


class TriageContext(BaseModel):
    """Patient/context attributes used to classify priority."""
    is_emergency: bool = False
    urgency: Urgency = Urgency.ROUTINE
    age: Optional[int] = Field(None, ge=0, le=150)
    is_pregnant: bool = False
    is_disabled: bool = False
    is_vip: bool = False
    is_staff: bool = False


class AddToQueueRequest(BaseModel):
    """Add a patient to a station's waiting list."""
    patient_id: str
    patient_name: Optional[str] = None
    station_id: Optional[str] = None
    station_code: Optional[str] = None
    bill_id: Optional[str] = None
    order_id: Optional[str] = None
    triage: TriageContext = Field(default_factory=TriageContext)
    notes: Optional[str] = None


class QueueEvent(BaseModel):
    """One lifecycle transition in an entry's audit trail."""
    action: QueueAction
    from_status: Optional[QueueStatus] = None
    to_status: QueueStatus
    actor_id: Optional[str] = None
    at: datetime
    note: Optional[str] = None


class QueueEntry(BaseModel):
    """Queue entry response model."""
    id: str = Field(..., alias="_id")
    queue_number: str = Field(..., description="Public number like QUE261016007")
    token_number: int
    display_token: str = Field(..., description="Station token like C-007")
    station_id: str
    station_name: Optional[str] = None
    station_kind: Optional[str] = None
    patient_id: str
    patient_name: Optional[str] = None
    bill_id: Optional[str] = None
    order_id: Optional[str] = None
    priority: QueuePriority = QueuePriority.NORMAL
    priority_rank: int = PRIORITY_RANK[QueuePriority.NORMAL]
    priority_reason: Optional[str] = None
    is_emergency: bool = False
    position: Optional[int] = None
    original_position: Optional[int] = None
    status: QueueStatus = QueueStatus.WAITING
    held_from: Optional[QueueStatus] = None
    joined_at: datetime
    called_at: Optional[datetime] = None
    served_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_skipped_at: Optional[datetime] = None
    recalled_at: Optional[datetime] = None
    skip_count: int = 0
    transferred_from: Optional[str] = None
    transferred_to: Optional[str] = None
    transfer_reason: Optional[str] = None
    notes: Optional[str] = None
    wait_time_minutes: Optional[int] = None
    service_time_minutes: Optional[int] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    events: List[QueueEvent] = []

    class Config:
        populate_by_name = True


class EntryView(BaseModel):
    """Entry with its live position and wait estimate."""
    entry: QueueEntry
    status: QueueStatus
    position: Optional[int] = None
    estimated_wait_minutes: int = 0
    estimated_wait: str


class SkipOutcome(EntryView):
    """Result of a skip; auto_cancelled marks the max-skip cancellation."""
    auto_cancelled: bool = False
    message: str


class TransferRequest(BaseModel):
    """Move an entry to another station."""
    target_station_id: str
    reason: str = Field(..., min_length=1)
    retriage: Optional[bool] = Field(None, description="Re-run priority classification")
    triage: Optional[TriageContext] = None


class TransferOutcome(BaseModel):
    """Source entry (now TRANSFERRED) and the new destination entry."""
    old_entry: EntryView
    new_entry: EntryView


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class HoldRequest(BaseModel):
    reason: Optional[str] = None


class PriorityChangeRequest(BaseModel):
    priority: str
    reason: Optional[str] = None


class StationDetails(BaseModel):
    """Station with its live waiting list and today's statistics."""
    station: Station
    currently_serving: Optional[EntryView] = None
    waiting_list: List[EntryView] = []
    today_stats: Dict[str, Any] = {}


class DisplayBoardItem(BaseModel):
    """Privacy-trimmed entry for public kiosks."""
    position: Optional[int] = None
    display_token: str
    patient_name: Optional[str] = None
    priority: QueuePriority
    is_emergency: bool = False
    status: QueueStatus


class DisplayBoard(BaseModel):
    """Queue display for public kiosks."""
    station_name: str
    short_name: Optional[str] = None
    counter_number: Optional[str] = None
    location: Optional[str] = None
    display_message: Optional[str] = None
    currently_serving: Optional[DisplayBoardItem] = None
    next_in_line: List[DisplayBoardItem] = []
    total_waiting: int = 0
    current_token: Optional[int] = None
    served_today: int = 0


class PatientQueues(BaseModel):
    """All active entries for one patient."""
    patient_id: str
    active_entries: List[EntryView] = []
