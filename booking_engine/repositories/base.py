"""
Repository interfaces.

Each store (in-memory, SQL) implements these. The coordinator and slot
queries only ever see these interfaces, so the persistence technology can
change without touching scheduling logic.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional

from booking_engine.schemas.booking_schema import Booking, BookingStatus
from booking_engine.schemas.scheduling_schema import (
    AvailabilityException,
    AvailabilityRule,
    SchedulingSettings,
    SessionType,
)
from booking_engine.time_model import Interval


@dataclass(frozen=True)
class AvailabilitySnapshot:
    """Rules indexed by weekday (0 = Sunday) and exceptions indexed by date."""

    rules_by_weekday: dict[int, list[AvailabilityRule]] = field(default_factory=dict)
    exceptions_by_date: dict[date, AvailabilityException] = field(default_factory=dict)


@dataclass(frozen=True)
class InsertResult:
    """Outcome of the atomic insert. ``booking`` is None on conflict."""

    booking: Optional[Booking] = None
    conflicting_ids: list[str] = field(default_factory=list)

    @property
    def conflict(self) -> bool:
        return self.booking is None


@dataclass(frozen=True)
class StatusUpdate:
    """Outcome of a conditional status change.

    ``applied`` is False when the booking's status was not one of the
    expected ones; ``booking`` then holds its current, unchanged state.
    """

    booking: Booking
    applied: bool


class AvailabilityRepository(ABC):
    """Weekly rules and date exceptions for builders."""

    @abstractmethod
    def get_availability(
        self, builder_id: str, start_date: date, end_date: date
    ) -> AvailabilitySnapshot:
        """Rules plus the exceptions dated within ``[start_date, end_date]``."""

    @abstractmethod
    def list_rules(self, builder_id: str) -> list[AvailabilityRule]:
        pass

    @abstractmethod
    def add_rule(self, rule: AvailabilityRule) -> AvailabilityRule:
        pass

    @abstractmethod
    def update_rule(self, rule_id: str, **changes: Any) -> Optional[AvailabilityRule]:
        """Apply field changes; returns None when the rule does not exist."""

    @abstractmethod
    def delete_rule(self, rule_id: str) -> bool:
        pass

    @abstractmethod
    def add_exception(self, exception: AvailabilityException) -> AvailabilityException:
        """Store an exception, replacing any existing one for the same builder and date."""

    @abstractmethod
    def list_exceptions(
        self,
        builder_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[AvailabilityException]:
        pass

    @abstractmethod
    def delete_exception(self, exception_id: str) -> bool:
        pass


class BookingRepository(ABC):
    """Reservations, with an atomic verify-then-insert primitive.

    Every method accepts ``timeout`` in seconds; exceeding it raises
    ``StorageFailure`` and leaves no partial state.
    """

    @abstractmethod
    def list_active(
        self,
        builder_id: str,
        start: datetime,
        end: datetime,
        timeout: Optional[float] = None,
    ) -> list[Booking]:
        """Pending/confirmed bookings of the builder whose own buffer-padded
        interval overlaps ``[start, end)``."""

    @abstractmethod
    def insert_if_no_overlap(
        self,
        booking: Booking,
        padded: Interval,
        timeout: Optional[float] = None,
    ) -> InsertResult:
        """Insert ``booking`` unless an active booking of the same builder
        overlaps ``padded``, or its own buffer reaches into ``booking``.

        Check and insert are one indivisible step, also across processes
        sharing the store."""

    @abstractmethod
    def get(self, booking_id: str, timeout: Optional[float] = None) -> Optional[Booking]:
        pass

    @abstractmethod
    def transition_status(
        self,
        booking_id: str,
        expected: frozenset[BookingStatus],
        new_status: BookingStatus,
        *,
        cancelled_by: Optional[str] = None,
        cancel_reason: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Optional[StatusUpdate]:
        """Compare-and-set on status. Returns None when the booking does not exist."""

    @abstractmethod
    def list_for_builder(
        self,
        builder_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        status: Optional[BookingStatus] = None,
    ) -> list[Booking]:
        pass

    @abstractmethod
    def list_for_client(
        self, client_id: str, status: Optional[BookingStatus] = None
    ) -> list[Booking]:
        pass

    @abstractmethod
    def list_pending_created_before(self, cutoff: datetime) -> list[Booking]:
        pass


class SessionTypeRepository(ABC):
    """Session type provider with builder-side CRUD."""

    @abstractmethod
    def get(self, session_type_id: str) -> Optional[SessionType]:
        pass

    @abstractmethod
    def list_for_builder(self, builder_id: str) -> list[SessionType]:
        pass

    @abstractmethod
    def save(self, session_type: SessionType) -> SessionType:
        """Create or replace by id."""

    @abstractmethod
    def delete(self, session_type_id: str) -> bool:
        pass


class SettingsRepository(ABC):
    """Per-builder scheduling settings provider."""

    @abstractmethod
    def get_settings(self, builder_id: str) -> Optional[SchedulingSettings]:
        pass

    @abstractmethod
    def save_settings(self, builder_settings: SchedulingSettings) -> SchedulingSettings:
        pass
