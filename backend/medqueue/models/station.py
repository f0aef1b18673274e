"""
Service station (queue) models.
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict
from datetime import datetime
from enum import Enum


class StationKind(str, Enum):
    """Kinds of service stations that run a waiting list."""
    CONSULTATION = "consultation"
    DIAGNOSTIC = "diagnostic"
    BILLING = "billing"
    PHARMACY = "pharmacy"
    PROCEDURE = "procedure"
    SAMPLE_COLLECTION = "sample_collection"
    REPORT_COLLECTION = "report_collection"


class KindDefaults(BaseModel):
    """Defaults applied when a station of a kind is created."""
    label: str
    average_service_time: int
    token_prefix: str
    department: str


KIND_DEFAULTS: Dict[StationKind, KindDefaults] = {
    StationKind.CONSULTATION: KindDefaults(
        label="Doctor Consultation", average_service_time=15, token_prefix="C", department="OPD"
    ),
    StationKind.DIAGNOSTIC: KindDefaults(
        label="Diagnostic Test", average_service_time=10, token_prefix="D", department="DIAGNOSTICS"
    ),
    StationKind.BILLING: KindDefaults(
        label="Billing Counter", average_service_time=5, token_prefix="B", department="BILLING"
    ),
    StationKind.PHARMACY: KindDefaults(
        label="Pharmacy", average_service_time=7, token_prefix="P", department="PHARMACY"
    ),
    StationKind.PROCEDURE: KindDefaults(
        label="Minor Procedure", average_service_time=20, token_prefix="PR", department="OPD"
    ),
    StationKind.SAMPLE_COLLECTION: KindDefaults(
        label="Sample Collection", average_service_time=5, token_prefix="S", department="DIAGNOSTICS"
    ),
    StationKind.REPORT_COLLECTION: KindDefaults(
        label="Report Collection", average_service_time=3, token_prefix="R", department="DIAGNOSTICS"
    ),
}


class StationCreate(BaseModel):
    """Create a new service station."""
    code: str = Field(..., min_length=1, max_length=64, description="Unique station code")
    name: str = Field(..., min_length=1, max_length=100)
    kind: StationKind
    short_name: Optional[str] = Field(None, max_length=8, description="Token prefix, e.g. C")
    department: Optional[str] = None
    assigned_staff_id: Optional[str] = None
    counter_number: Optional[str] = None
    location: Optional[str] = None
    display_message: Optional[str] = None
    max_capacity: Optional[int] = Field(None, gt=0)
    average_service_time: Optional[int] = Field(None, gt=0, description="Minutes")


class StationUpdate(BaseModel):
    """Station update model (all fields optional)."""
    name: Optional[str] = None
    short_name: Optional[str] = None
    department: Optional[str] = None
    assigned_staff_id: Optional[str] = None
    counter_number: Optional[str] = None
    location: Optional[str] = None
    display_message: Optional[str] = None
    max_capacity: Optional[int] = Field(None, gt=0)
    average_service_time: Optional[int] = Field(None, gt=0)
    is_active: Optional[bool] = None
    accepting_new_entries: Optional[bool] = None


class StationPauseRequest(BaseModel):
    """Pause a station with a reason."""
    reason: Optional[str] = None


class StationFilters(BaseModel):
    """Filters for listing stations."""
    kind: Optional[StationKind] = None
    department: Optional[str] = None
    is_active: Optional[bool] = None
    assigned_staff_id: Optional[str] = None


class Station(BaseModel):
    """Station response model."""
    id: str = Field(..., alias="_id")
    code: str
    name: str
    kind: StationKind
    short_name: Optional[str] = None
    department: Optional[str] = None
    assigned_staff_id: Optional[str] = None
    counter_number: Optional[str] = None
    location: Optional[str] = None
    display_message: Optional[str] = None
    max_capacity: int
    average_service_time: int
    is_active: bool = True
    accepting_new_entries: bool = True
    is_paused: bool = False
    pause_reason: Optional[str] = None
    last_token: int = 0
    next_token: int = 1
    token_date: Optional[str] = None
    current_token: Optional[int] = None
    current_serving_id: Optional[str] = None
    current_count: int = 0
    served_today: int = 0
    last_reset_at: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    waiting_count: Optional[int] = None

    class Config:
        populate_by_name = True

    @property
    def token_prefix(self) -> str:
        return self.short_name or KIND_DEFAULTS[self.kind].token_prefix

