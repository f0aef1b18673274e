"""
Queue analytics over terminal history records.
"""

from datetime import datetime
from typing import Optional, Dict, List

from ..database import Database, serialize
from ..errors import ValidationError
from ..models.history import AnalyticsAverages, PriorityStats, QueueAnalytics, QueueHistoryRecord
from ..models.queue import QueueStatus


def _average(values: List[int]) -> Optional[float]:
    if not values:
        return None
    return round(sum(values) / len(values), 2)


class AnalyticsService:
    """Aggregates completed, cancelled and transferred entries."""

    @classmethod
    async def get_analytics(
        cls,
        start: datetime,
        end: datetime,
        station_id: Optional[str] = None
    ) -> QueueAnalytics:
        """
        Statistics for history records whose queue_date falls in [start, end].

        Only history is read, so in-flight entries never contribute. Wait
        averages consider completed records only.
        """
        if start > end:
            raise ValidationError("start must not be after end")

        history = Database.get_collection("queue_history")

        query = {"queue_date": {"$gte": start, "$lte": end}}
        if station_id:
            query["station_id"] = station_id

        total = 0
        total_skips = 0
        by_status: Dict[str, int] = {}
        priority_counts: Dict[str, int] = {}
        priority_waits: Dict[str, List[int]] = {}
        wait_times: List[int] = []
        service_times: List[int] = []
        total_times: List[int] = []

        async for doc in history.find(query):
            record = QueueHistoryRecord(**serialize(doc))
            total += 1
            total_skips += record.skip_count

            final_status = record.final_status
            priority = record.priority
            by_status[final_status] = by_status.get(final_status, 0) + 1
            priority_counts[priority] = priority_counts.get(priority, 0) + 1

            if final_status != QueueStatus.COMPLETED.value:
                continue

            if record.wait_time_minutes is not None:
                wait_times.append(record.wait_time_minutes)
                priority_waits.setdefault(priority, []).append(record.wait_time_minutes)
            if record.service_time_minutes is not None:
                service_times.append(record.service_time_minutes)
            if record.total_time_minutes is not None:
                total_times.append(record.total_time_minutes)

        by_priority = {
            priority: PriorityStats(
                count=count,
                average_wait_minutes=_average(priority_waits.get(priority, [])),
            )
            for priority, count in priority_counts.items()
        }

        return QueueAnalytics(
            start=start,
            end=end,
            station_id=station_id,
            total=total,
            averages=AnalyticsAverages(
                wait_time=_average(wait_times),
                service_time=_average(service_times),
                total_time=_average(total_times),
            ),
            total_skips=total_skips,
            by_status=by_status,
            by_priority=by_priority,
        )
