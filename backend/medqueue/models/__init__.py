"""Pydantic models for MedQueue."""

from .station import (
    Station,
    StationCreate,
    StationUpdate,
    StationFilters,
    StationPauseRequest,
    StationKind,
    KIND_DEFAULTS
)
from .queue import (
    QueueEntry,
    QueueEvent,
    QueueStatus,
    QueuePriority,
    QueueAction,
    TriageContext,
    Urgency,
    AddToQueueRequest,
    TransferRequest,
    EntryView,
    SkipOutcome,
    TransferOutcome,
    StationDetails,
    DisplayBoard,
    PatientQueues
)
from .intake import (
    BillingIntakeRequest,
    DiagnosticOrderIntake,
    ServiceLine,
    BatchIntakeResult,
    IntakeLineOutcome
)
from .history import QueueHistoryRecord, QueueAnalytics

__all__ = [
    # Station
    "Station", "StationCreate", "StationUpdate", "StationFilters",
    "StationPauseRequest", "StationKind", "KIND_DEFAULTS",
    # Queue
    "QueueEntry", "QueueEvent", "QueueStatus", "QueuePriority", "QueueAction",
    "TriageContext", "Urgency", "AddToQueueRequest", "TransferRequest",
    "EntryView", "SkipOutcome", "TransferOutcome", "StationDetails",
    "DisplayBoard", "PatientQueues",
    # Intake
    "BillingIntakeRequest", "DiagnosticOrderIntake", "ServiceLine",
    "BatchIntakeResult", "IntakeLineOutcome",
    # History
    "QueueHistoryRecord", "QueueAnalytics"
]
