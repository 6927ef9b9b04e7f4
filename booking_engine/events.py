"""
In-process outbox of booking domain events.

The coordinator appends an event after each committed change. Payment and
notification collaborators drain the outbox on their own schedule; the engine
never calls them directly.
"""

import logging
import threading
from typing import Optional

from booking_engine.logging_context import get_request_id
from booking_engine.schemas.booking_schema import Booking, BookingEvent, BookingEventType

logger = logging.getLogger(__name__)


class EventOutbox:
    """Thread-safe FIFO of ``BookingEvent`` records."""

    def __init__(self) -> None:
        self._events: list[BookingEvent] = []
        self._lock = threading.Lock()

    def record(self, event_type: BookingEventType, booking: Booking) -> BookingEvent:
        event = BookingEvent(
            event_type=event_type,
            booking=booking.model_copy(),
            request_id=get_request_id(),
        )
        with self._lock:
            self._events.append(event)
        logger.debug("Event recorded: %s for %s", event_type.value, booking.id)
        return event

    def drain(self, event_type: Optional[BookingEventType] = None) -> list[BookingEvent]:
        """Remove and return queued events, optionally only those of one type."""
        with self._lock:
            if event_type is None:
                drained, self._events = self._events, []
            else:
                drained = [e for e in self._events if e.event_type == event_type]
                self._events = [e for e in self._events if e.event_type != event_type]
        return drained

    def pending(self) -> int:
        with self._lock:
            return len(self._events)
