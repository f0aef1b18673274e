"""
Intake models: billing and diagnostic order triggers.
"""

from pydantic import BaseModel, Field
from typing import Optional, List

from .queue import TriageContext, Urgency
from .station import StationKind


class ServiceLine(BaseModel):
    """One billed service."""
    service_name: str
    category: Optional[str] = None


class BillingIntakeRequest(BaseModel):
    """A paid invoice whose service lines should be queued."""
    bill_id: str
    patient_id: str
    patient_name: Optional[str] = None
    is_emergency: bool = False
    department_code: Optional[str] = None
    triage: Optional[TriageContext] = None
    services: List[ServiceLine] = Field(..., min_length=1)


class DiagnosticOrderIntake(BaseModel):
    """A diagnostic order to be queued at a diagnostic station."""
    order_id: str
    patient_id: str
    patient_name: Optional[str] = None
    bill_id: Optional[str] = None
    urgency: Urgency = Urgency.ROUTINE
    station_kind: StationKind = StationKind.DIAGNOSTIC
    department_code: Optional[str] = None
    triage: Optional[TriageContext] = None


class IntakeLineOutcome(BaseModel):
    """Per service line result of a batch intake."""
    service: str
    queued: bool
    station_id: Optional[str] = None
    station_name: Optional[str] = None
    entry_id: Optional[str] = None
    display_token: Optional[str] = None
    position: Optional[int] = None
    estimated_wait: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None


class BatchIntakeResult(BaseModel):
    """Result of a billing-triggered intake."""
    message: str
    queued_count: int = 0
    outcomes: List[IntakeLineOutcome] = []
