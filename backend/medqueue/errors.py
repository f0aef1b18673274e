"""
Scheduler error kinds.

Every failure surfaced by the services carries a stable machine-readable
``kind`` plus a human message. None of them are retried by the scheduler.
"""


class QueueError(Exception):
    """Base class for scheduler failures."""

    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "kind": self.kind}


class ValidationError(QueueError):
    """Missing or malformed input."""
    kind = "validation"


class NotFoundError(QueueError):
    """Unknown station, entry or patient."""
    kind = "not_found"


class ConflictError(QueueError):
    """State conflict: duplicates, busy slot, invalid transition."""
    kind = "conflict"


class CapacityError(ValidationError):
    """Station is full or not accepting patients."""
    kind = "capacity"
