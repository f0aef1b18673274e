"""
Queue history and analytics models.
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict
from datetime import datetime

from .queue import QueuePriority, QueueStatus


class QueueHistoryRecord(BaseModel):
    """Immutable snapshot of an entry that reached a terminal status."""
    id: Optional[str] = Field(None, alias="_id")
    entry_id: str
    station_id: str
    patient_id: str
    queue_date: datetime
    token_number: int
    priority: QueuePriority
    position: Optional[int] = None
    joined_at: datetime
    called_at: Optional[datetime] = None
    served_at: Optional[datetime] = None
    completed_at: datetime
    wait_time_minutes: Optional[int] = None
    service_time_minutes: Optional[int] = None
    total_time_minutes: Optional[int] = None
    final_status: QueueStatus
    skip_count: int = 0
    was_emergency: bool = False

    class Config:
        populate_by_name = True
        use_enum_values = True


class PriorityStats(BaseModel):
    count: int = 0
    average_wait_minutes: Optional[float] = None


class AnalyticsAverages(BaseModel):
    wait_time: Optional[float] = None
    service_time: Optional[float] = None
    total_time: Optional[float] = None


class QueueAnalytics(BaseModel):
    """Aggregate statistics over history records in a date range."""
    start: datetime
    end: datetime
    station_id: Optional[str] = None
    total: int = 0
    averages: AnalyticsAverages = Field(default_factory=AnalyticsAverages)
    total_skips: int = 0
    by_status: Dict[str, int] = {}
    by_priority: Dict[str, PriorityStats] = {}
