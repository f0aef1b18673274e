"""
Formatting and date helpers shared by the queue services.
"""

from datetime import datetime
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored by MongoDB."""
    return datetime.utcnow()


def day_start(moment: Optional[datetime] = None) -> datetime:
    moment = moment or utcnow()
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def date_key(moment: Optional[datetime] = None) -> str:
    """Calendar-day key used to scope counters, e.g. 20261016."""
    return (moment or utcnow()).strftime("%Y%m%d")


def minutes_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[int]:
    """Whole minutes from start to end, floored at zero; None if either is missing."""
    if start is None or end is None:
        return None
    return max(0, int(round((end - start).total_seconds() / 60)))


def format_token_number(token_number: int, prefix: Optional[str] = None) -> str:
    """Display token: C-007, or 007 without a prefix."""
    padded = f"{token_number:03d}"
    return f"{prefix}-{padded}" if prefix else padded


def format_queue_number(prefix: str, moment: datetime, seq: int) -> str:
    """Public queue number: QUE + YYMMDD + sequence, e.g. QUE261016007."""
    return f"{prefix}{moment.strftime('%y%m%d')}{seq:03d}"


def estimate_wait_minutes(position: Optional[int], average_service_time: int) -> int:
    if not position:
        return 0
    return position * average_service_time


def format_wait_time(minutes: int) -> str:
    """Human wait time: '12 minutes', '1 hour 5 min', '2 hours'."""
    if minutes < 1:
        return "Less than a minute"
    if minutes == 1:
        return "1 minute"
    if minutes < 60:
        return f"{minutes} minutes"

    hours, remaining = divmod(minutes, 60)
    unit = "hour" if hours == 1 else "hours"
    if remaining:
        return f"{hours} {unit} {remaining} min"
    return f"{hours} {unit}"


def first_name(full_name: Optional[str]) -> Optional[str]:
    """First name only, for public displays."""
    parts = (full_name or "").split()
    return parts[0] if parts else None
