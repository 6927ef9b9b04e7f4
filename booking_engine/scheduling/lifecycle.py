"""
Booking lifecycle as an explicit transition table.

Persisted statuses and the triggers that move between them:

    PENDING   --confirm-->  CONFIRMED
    PENDING   --cancel--->  CANCELLED
    PENDING   --expire--->  CANCELLED
    CONFIRMED --cancel--->  CANCELLED
    CONFIRMED --complete->  COMPLETED

A create request that loses the slot is rejected with ``SlotUnavailable``
and never reaches storage, so it has no status here.

Usage:
    lifecycle = BookingLifecycle()
    lifecycle.next_status(BookingStatus.PENDING, BookingTrigger.CONFIRM)
    # BookingStatus.CONFIRMED
"""

import logging
from dataclasses import dataclass
from enum import Enum

from booking_engine.errors import InvalidTransitionError
from booking_engine.schemas.booking_schema import BookingStatus

logger = logging.getLogger(__name__)


class BookingTrigger(str, Enum):
    """Events that change a booking's status."""
    CONFIRM = "confirm"
    CANCEL = "cancel"
    EXPIRE = "expire"
    COMPLETE = "complete"


@dataclass(frozen=True)
class Transition:
    """A single valid status transition."""
    from_status: BookingStatus
    to_status: BookingStatus
    trigger: BookingTrigger


class BookingLifecycle:
    """
    Validates status changes against the transition table.

    The table is only consulted; applying a change is a compare-and-set in
    the booking repository using ``sources(trigger)`` as the expected set,
    so a concurrent change between read and write is detected.
    """

    TRANSITIONS: list[Transition] = [
        # --- Payment / approval ---
        Transition(BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingTrigger.CONFIRM),

        # --- Cancellation ---
        Transition(BookingStatus.PENDING, BookingStatus.CANCELLED, BookingTrigger.CANCEL),
        Transition(BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingTrigger.CANCEL),
        Transition(BookingStatus.PENDING, BookingStatus.CANCELLED, BookingTrigger.EXPIRE),

        # --- Delivery ---
        Transition(BookingStatus.CONFIRMED, BookingStatus.COMPLETED, BookingTrigger.COMPLETE),
    ]

    TERMINAL = frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED})

    def next_status(self, current: BookingStatus, trigger: BookingTrigger) -> BookingStatus:
        """
        Resolve the status a trigger leads to.

        Raises:
            InvalidTransitionError: If the trigger is not valid from ``current``.
        """
        for t in self.TRANSITIONS:
            if t.from_status == current and t.trigger == trigger:
                logger.debug(
                    "Status transition: %s -> %s (trigger: %s)",
                    current.value, t.to_status.value, trigger.value,
                )
                return t.to_status

        valid = [t.value for t in self.valid_triggers(current)]
        raise InvalidTransitionError(
            f"No valid transition from '{current.value}' "
            f"with trigger '{trigger.value}'. Valid triggers: {valid}",
            details={"status": current.value, "trigger": trigger.value},
        )

    def sources(self, trigger: BookingTrigger) -> frozenset[BookingStatus]:
        """Statuses from which ``trigger`` is allowed."""
        return frozenset(t.from_status for t in self.TRANSITIONS if t.trigger == trigger)

    def valid_triggers(self, current: BookingStatus) -> list[BookingTrigger]:
        return [t.trigger for t in self.TRANSITIONS if t.from_status == current]

    def is_terminal(self, status: BookingStatus) -> bool:
        return status in self.TERMINAL
