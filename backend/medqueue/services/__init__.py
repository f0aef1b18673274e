"""Services package for MedQueue."""

from .station_service import StationService
from .sequence_service import SequenceService
from .waiting_list import WaitingListEngine
from .queue_service import QueueService
from .intake_service import IntakeService
from .lifecycle_service import LifecycleService
from .analytics_service import AnalyticsService

__all__ = [
    "StationService",
    "SequenceService",
    "WaitingListEngine",
    "QueueService",
    "IntakeService",
    "LifecycleService",
    "AnalyticsService"
]
