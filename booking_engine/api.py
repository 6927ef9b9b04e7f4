"""
Result-dict facade over the booking coordinator.

An API layer calls these methods with raw strings and gets plain dicts
back. Every call runs under a fresh request id so its log lines can be
correlated, and every engine error becomes ``success: False`` with a stable
``error`` code. ``retryable`` is only true for storage failures; a taken
slot needs a new slot query, not a retry.
"""

from datetime import date, datetime
from typing import Optional, TypedDict

from booking_engine.errors import SchedulingError, ValidationError
from booking_engine.logging_context import get_request_logger, request_scope
from booking_engine.scheduling.coordinator import BookingCoordinator
from booking_engine.schemas.booking_schema import Booking

logger = get_request_logger(__name__)


class SlotRecord(TypedDict):
    """One bookable slot as ISO-8601 UTC strings."""

    start: str
    end: str


class BookingRecord(TypedDict):
    """Serialized booking."""

    booking_id: str
    builder_id: str
    client_id: str
    session_type_id: str
    start: str
    end: str
    status: str
    created_at: str
    cancelled_by: Optional[str]
    cancel_reason: Optional[str]


class SlotsResult(TypedDict, total=False):
    """Result from get_available_slots."""

    success: bool
    request_id: str
    slots: list[SlotRecord]
    error: str
    message: str
    retryable: bool


class BookingResult(TypedDict, total=False):
    """Result from create_booking or cancel_booking."""

    success: bool
    request_id: str
    booking: BookingRecord
    error: str
    message: str
    retryable: bool


def _parse_date(name: str, raw: str) -> date:
    try:
        return date.fromisoformat(raw)
    except (TypeError, ValueError):
        raise ValidationError(
            f"{name} must be an ISO date (YYYY-MM-DD), got {raw!r}", details={"field": name}
        ) from None


def _parse_instant(name: str, raw: str) -> datetime:
    try:
        value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except (AttributeError, TypeError, ValueError):
        raise ValidationError(
            f"{name} must be an ISO-8601 timestamp, got {raw!r}", details={"field": name}
        ) from None
    if value.tzinfo is None:
        raise ValidationError(f"{name} must include a UTC offset", details={"field": name})
    return value


def booking_record(booking: Booking) -> BookingRecord:
    return {
        "booking_id": booking.id,
        "builder_id": booking.builder_id,
        "client_id": booking.client_id,
        "session_type_id": booking.session_type_id,
        "start": booking.start_time.isoformat(),
        "end": booking.end_time.isoformat(),
        "status": booking.status.value,
        "created_at": booking.created_at.isoformat(),
        "cancelled_by": booking.cancelled_by,
        "cancel_reason": booking.cancel_reason,
    }


def _failure(request_id: str, exc: SchedulingError) -> dict:
    return {
        "success": False,
        "request_id": request_id,
        "error": exc.code,
        "message": exc.message,
        "retryable": exc.retryable,
    }


class BookingApi:
    """Wraps slot queries, booking creation and cancellation."""

    def __init__(self, coordinator: BookingCoordinator) -> None:
        self._coordinator = coordinator

    def get_available_slots(
        self,
        builder_id: str,
        session_type_id: str,
        range_start: str,
        range_end: str,
        request_id: Optional[str] = None,
    ) -> SlotsResult:
        """List bookable slots for the inclusive local date range."""
        with request_scope(request_id) as request_id:
            try:
                slots = self._coordinator.get_available_slots(
                    builder_id,
                    session_type_id,
                    _parse_date("range_start", range_start),
                    _parse_date("range_end", range_end),
                )
            except SchedulingError as exc:
                logger.info("Slot query failed: %s (%s)", exc.code, exc.message)
                return _failure(request_id, exc)
            return {
                "success": True,
                "request_id": request_id,
                "slots": [{"start": s.start.isoformat(), "end": s.end.isoformat()} for s in slots],
            }

    def create_booking(
        self,
        builder_id: str,
        client_id: str,
        session_type_id: str,
        slot_start: str,
        request_id: Optional[str] = None,
    ) -> BookingResult:
        """Book the slot starting at ``slot_start``."""
        with request_scope(request_id) as request_id:
            try:
                booking = self._coordinator.create_booking(
                    builder_id,
                    client_id,
                    session_type_id,
                    _parse_instant("slot_start", slot_start),
                )
            except SchedulingError as exc:
                logger.info("Booking attempt failed: %s (%s)", exc.code, exc.message)
                return _failure(request_id, exc)
            return {"success": True, "request_id": request_id, "booking": booking_record(booking)}

    def cancel_booking(
        self,
        booking_id: str,
        actor_id: str,
        reason: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> BookingResult:
        """Cancel a booking; cancelling twice succeeds both times."""
        with request_scope(request_id) as request_id:
            try:
                booking = self._coordinator.cancel_booking(booking_id, actor_id, reason)
            except SchedulingError as exc:
                logger.info("Cancellation failed: %s (%s)", exc.code, exc.message)
                return _failure(request_id, exc)
            return {"success": True, "request_id": request_id, "booking": booking_record(booking)}
