"""
Error taxonomy for the scheduling engine.

Every failure kind has its own class and a stable ``code`` so callers can
branch on it without parsing messages. Only ``StorageFailure`` is safe to
retry as-is; a ``SlotUnavailable`` must be followed by a fresh slot query.
"""

from typing import Optional


class SchedulingError(Exception):
    """Base class for all engine errors."""

    code = "scheduling_error"
    retryable = False

    def __init__(self, message: str, *, details: Optional[dict] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(SchedulingError, ValueError):
    """Malformed input, rejected before touching storage."""

    code = "validation_error"


class SlotUnavailable(SchedulingError):
    """The requested slot is not (or no longer) bookable."""

    code = "slot_unavailable"


class NotAcceptingBookings(SchedulingError):
    """The builder has paused bookings."""

    code = "not_accepting_bookings"


class StorageFailure(SchedulingError):
    """Transient infrastructure problem (unavailable store, lock timeout)."""

    code = "storage_failure"
    retryable = True


class Forbidden(SchedulingError):
    """The actor is not allowed to perform the operation."""

    code = "forbidden"


class NotFound(SchedulingError):
    """A referenced booking, session type or actor does not exist."""

    code = "not_found"


class InvalidTransitionError(SchedulingError):
    """Raised when a status change is not valid from the current status."""

    code = "invalid_transition"
