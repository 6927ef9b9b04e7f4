"""
In-memory repositories.

Used by tests, the CLI demo, and single-process deployments. Concurrency
control is one lock per builder: the overlap check and the insert happen
while holding it, so two requests for the same builder serialize and
requests for different builders never contend.
"""

import logging
import threading
from collections import defaultdict
from datetime import date, datetime
from typing import Any, Optional

from booking_engine.repositories.base import (
    AvailabilityRepository,
    AvailabilitySnapshot,
    BookingRepository,
    InsertResult,
    SessionTypeRepository,
    SettingsRepository,
    StatusUpdate,
)
from booking_engine.repositories.locks import BuilderLocks
from booking_engine.schemas.booking_schema import ACTIVE_STATUSES, Booking, BookingStatus
from booking_engine.schemas.scheduling_schema import (
    AvailabilityException,
    AvailabilityRule,
    SchedulingSettings,
    SessionType,
)
from booking_engine.time_model import Interval, overlaps
from booking_engine.utils import utc_now

logger = logging.getLogger(__name__)


class InMemoryAvailabilityRepository(AvailabilityRepository):
    """Rules and exceptions kept in dicts keyed by id."""

    def __init__(self) -> None:
        self._rules: dict[str, AvailabilityRule] = {}
        self._exceptions: dict[str, AvailabilityException] = {}
        self._lock = threading.Lock()

    def get_availability(
        self, builder_id: str, start_date: date, end_date: date
    ) -> AvailabilitySnapshot:
        rules_by_weekday: dict[int, list[AvailabilityRule]] = defaultdict(list)
        for rule in self.list_rules(builder_id):
            rules_by_weekday[rule.day_of_week].append(rule)
        exceptions_by_date = {
            exc.date: exc for exc in self.list_exceptions(builder_id, start_date, end_date)
        }
        return AvailabilitySnapshot(dict(rules_by_weekday), exceptions_by_date)

    def list_rules(self, builder_id: str) -> list[AvailabilityRule]:
        with self._lock:
            rules = [r for r in self._rules.values() if r.builder_id == builder_id]
        return sorted(rules, key=lambda r: (r.day_of_week, r.start_time))

    def add_rule(self, rule: AvailabilityRule) -> AvailabilityRule:
        with self._lock:
            self._rules[rule.id] = rule
        logger.info("Availability rule %s added for builder %s", rule.id, rule.builder_id)
        return rule

    def update_rule(self, rule_id: str, **changes: Any) -> Optional[AvailabilityRule]:
        with self._lock:
            current = self._rules.get(rule_id)
            if current is None:
                return None
            updated = AvailabilityRule.model_validate(
                {**current.model_dump(), **changes, "id": rule_id}
            )
            self._rules[rule_id] = updated
        return updated

    def delete_rule(self, rule_id: str) -> bool:
        with self._lock:
            return self._rules.pop(rule_id, None) is not None

    def add_exception(self, exception: AvailabilityException) -> AvailabilityException:
        with self._lock:
            replaced = [
                exc_id
                for exc_id, exc in self._exceptions.items()
                if exc.builder_id == exception.builder_id and exc.date == exception.date
            ]
            for exc_id in replaced:
                del self._exceptions[exc_id]
            self._exceptions[exception.id] = exception
        logger.info(
            "Availability exception %s (%s) set for builder %s on %s",
            exception.id, exception.kind.value, exception.builder_id, exception.date,
        )
        return exception

    def list_exceptions(
        self,
        builder_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[AvailabilityException]:
        with self._lock:
            found = [
                exc
                for exc in self._exceptions.values()
                if exc.builder_id == builder_id
                and (start_date is None or exc.date >= start_date)
                and (end_date is None or exc.date <= end_date)
            ]
        return sorted(found, key=lambda e: e.date)

    def delete_exception(self, exception_id: str) -> bool:
        with self._lock:
            return self._exceptions.pop(exception_id, None) is not None


class InMemoryBookingRepository(BookingRepository):
    """Bookings in a dict, guarded by per-builder locks."""

    def __init__(self, default_timeout: Optional[float] = None) -> None:
        self._bookings: dict[str, Booking] = {}
        self._locks = BuilderLocks(default_timeout)

    def _builder_bookings(self, builder_id: str) -> list[Booking]:
        return [b for b in list(self._bookings.values()) if b.builder_id == builder_id]

    def list_active(
        self,
        builder_id: str,
        start: datetime,
        end: datetime,
        timeout: Optional[float] = None,
    ) -> list[Booking]:
        window = Interval(start, end)
        with self._locks.hold(builder_id, timeout):
            found = [
                b.model_copy()
                for b in self._builder_bookings(builder_id)
                if b.status in ACTIVE_STATUSES
                and overlaps(b.blocked_interval, window)
            ]
        return sorted(found, key=lambda b: b.start_time)

    def insert_if_no_overlap(
        self,
        booking: Booking,
        padded: Interval,
        timeout: Optional[float] = None,
    ) -> InsertResult:
        with self._locks.hold(booking.builder_id, timeout):
            conflicts = [
                b.id
                for b in self._builder_bookings(booking.builder_id)
                if b.status in ACTIVE_STATUSES
                and (overlaps(b.interval, padded) or overlaps(b.blocked_interval, booking.interval))
            ]
            if conflicts:
                return InsertResult(conflicting_ids=conflicts)
            stored = booking.model_copy()
            self._bookings[stored.id] = stored
        return InsertResult(booking=stored.model_copy())

    def get(self, booking_id: str, timeout: Optional[float] = None) -> Optional[Booking]:
        booking = self._bookings.get(booking_id)
        return booking.model_copy() if booking else None

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
        existing = self._bookings.get(booking_id)
        if existing is None:
            return None
        with self._locks.hold(existing.builder_id, timeout):
            current = self._bookings[booking_id]
            if current.status not in expected:
                return StatusUpdate(booking=current.model_copy(), applied=False)
            changes: dict[str, Any] = {"status": new_status, "updated_at": utc_now()}
            if new_status == BookingStatus.CANCELLED:
                changes["cancelled_by"] = cancelled_by
                changes["cancel_reason"] = cancel_reason
            updated = current.model_copy(update=changes)
            self._bookings[booking_id] = updated
        return StatusUpdate(booking=updated.model_copy(), applied=True)

    def list_for_builder(
        self,
        builder_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        status: Optional[BookingStatus] = None,
    ) -> list[Booking]:
        found = [
            b.model_copy()
            for b in self._builder_bookings(builder_id)
            if (start is None or b.end_time > start)
            and (end is None or b.start_time < end)
            and (status is None or b.status == status)
        ]
        return sorted(found, key=lambda b: b.start_time)

    def list_for_client(
        self, client_id: str, status: Optional[BookingStatus] = None
    ) -> list[Booking]:
        found = [
            b.model_copy()
            for b in list(self._bookings.values())
            if b.client_id == client_id and (status is None or b.status == status)
        ]
        return sorted(found, key=lambda b: b.start_time)

    def list_pending_created_before(self, cutoff: datetime) -> list[Booking]:
        return [
            b.model_copy()
            for b in list(self._bookings.values())
            if b.status == BookingStatus.PENDING and b.created_at < cutoff
        ]


class InMemorySessionTypeRepository(SessionTypeRepository):
    """Session types keyed by id."""

    def __init__(self) -> None:
        self._session_types: dict[str, SessionType] = {}

    def get(self, session_type_id: str) -> Optional[SessionType]:
        return self._session_types.get(session_type_id)

    def list_for_builder(self, builder_id: str) -> list[SessionType]:
        return [s for s in self._session_types.values() if s.builder_id == builder_id]

    def save(self, session_type: SessionType) -> SessionType:
        self._session_types[session_type.id] = session_type
        return session_type

    def delete(self, session_type_id: str) -> bool:
        return self._session_types.pop(session_type_id, None) is not None


class InMemorySettingsRepository(SettingsRepository):
    """Scheduling settings keyed by builder id."""

    def __init__(self) -> None:
        self._settings: dict[str, SchedulingSettings] = {}

    def get_settings(self, builder_id: str) -> Optional[SchedulingSettings]:
        return self._settings.get(builder_id)

    def save_settings(self, builder_settings: SchedulingSettings) -> SchedulingSettings:
        self._settings[builder_settings.builder_id] = builder_settings
        return builder_settings
