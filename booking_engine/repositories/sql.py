"""
Relational repositories on SQLAlchemy.

The atomic insert runs in one transaction that first writes the builder's
row in ``builder_booking_locks``, then checks for overlapping active bookings
and inserts. The write is held until commit: a row lock on PostgreSQL, the
database write lock on SQLite. Every process sharing the database therefore
serializes on it. Within a process the per-builder lock of the in-memory
store is taken first, so threads queue there rather than in the database.

Status changes are a single conditional ``UPDATE``. Each transaction
bounds its waits by the caller's timeout (``lock_timeout`` and
``statement_timeout`` on PostgreSQL, ``busy_timeout`` on SQLite).
"""

import logging
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import and_, or_, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from booking_engine.repositories.base import (
    AvailabilityRepository,
    AvailabilitySnapshot,
    BookingRepository,
    InsertResult,
    SessionTypeRepository,
    SettingsRepository,
    StatusUpdate,
)
from booking_engine.repositories.database import session_scope
from booking_engine.repositories.locks import BuilderLocks
from booking_engine.repositories.models import (
    AvailabilityExceptionRow,
    AvailabilityRuleRow,
    BookingRow,
    BuilderLockRow,
    BuilderSettingsRow,
    ExceptionTimeSlotRow,
    SessionTypeRow,
)
from booking_engine.schemas.booking_schema import ACTIVE_STATUSES, Booking, BookingStatus
from booking_engine.schemas.scheduling_schema import (
    AvailabilityException,
    AvailabilityRule,
    ExceptionKind,
    ExceptionTimeSlot,
    SchedulingSettings,
    SessionType,
)
from booking_engine.time_model import Interval
from booking_engine.utils import utc_now

logger = logging.getLogger(__name__)

_ACTIVE_VALUES = [s.value for s in ACTIVE_STATUSES]


def _to_rule(row: AvailabilityRuleRow) -> AvailabilityRule:
    return AvailabilityRule(
        id=row.id,
        builder_id=row.builder_id,
        day_of_week=row.day_of_week,
        start_time=row.start_time,
        end_time=row.end_time,
    )


def _to_exception(row: AvailabilityExceptionRow) -> AvailabilityException:
    return AvailabilityException(
        id=row.id,
        builder_id=row.builder_id,
        date=row.date,
        kind=ExceptionKind(row.kind),
        slots=[ExceptionTimeSlot(start_time=s.start_time, end_time=s.end_time) for s in row.slots],
    )


def _to_booking(row: BookingRow) -> Booking:
    return Booking(
        id=row.id,
        builder_id=row.builder_id,
        client_id=row.client_id,
        session_type_id=row.session_type_id,
        start_time=row.start_time,
        end_time=row.end_time,
        status=BookingStatus(row.status),
        buffer_minutes=row.buffer_minutes,
        created_at=row.created_at,
        updated_at=row.updated_at,
        cancelled_by=row.cancelled_by,
        cancel_reason=row.cancel_reason,
    )


def _to_booking_row(booking: Booking) -> BookingRow:
    blocked = booking.blocked_interval
    return BookingRow(
        id=booking.id,
        builder_id=booking.builder_id,
        client_id=booking.client_id,
        session_type_id=booking.session_type_id,
        start_time=booking.start_time,
        end_time=booking.end_time,
        buffer_minutes=booking.buffer_minutes,
        blocked_start=blocked.start,
        blocked_end=blocked.end,
        status=booking.status.value,
        created_at=booking.created_at,
        updated_at=booking.updated_at,
        cancelled_by=booking.cancelled_by,
        cancel_reason=booking.cancel_reason,
    )


def _to_session_type(row: SessionTypeRow) -> SessionType:
    return SessionType(
        id=row.id,
        builder_id=row.builder_id,
        name=row.name,
        duration_minutes=row.duration_minutes,
        buffer_minutes=row.buffer_minutes,
        price=row.price,
        is_active=row.is_active,
    )


def _to_settings(row: BuilderSettingsRow) -> SchedulingSettings:
    return SchedulingSettings(
        builder_id=row.builder_id,
        timezone=row.timezone,
        min_notice_minutes=row.min_notice_minutes,
        buffer_minutes=row.buffer_minutes,
        max_advance_days=row.max_advance_days,
        accepting_bookings=row.accepting_bookings,
    )


class SqlAvailabilityRepository(AvailabilityRepository):
    """Rules and exceptions in ``availability_rules`` / ``availability_exceptions``."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def get_availability(
        self, builder_id: str, start_date: date, end_date: date
    ) -> AvailabilitySnapshot:
        rules_by_weekday: dict[int, list[AvailabilityRule]] = {}
        for rule in self.list_rules(builder_id):
            rules_by_weekday.setdefault(rule.day_of_week, []).append(rule)
        exceptions_by_date = {
            exc.date: exc for exc in self.list_exceptions(builder_id, start_date, end_date)
        }
        return AvailabilitySnapshot(rules_by_weekday, exceptions_by_date)

    def list_rules(self, builder_id: str) -> list[AvailabilityRule]:
        with session_scope(self._session_factory) as db:
            rows = (
                db.query(AvailabilityRuleRow)
                .filter(AvailabilityRuleRow.builder_id == builder_id)
                .order_by(AvailabilityRuleRow.day_of_week, AvailabilityRuleRow.start_time)
                .all()
            )
            return [_to_rule(r) for r in rows]

    def add_rule(self, rule: AvailabilityRule) -> AvailabilityRule:
        with session_scope(self._session_factory) as db:
            db.add(AvailabilityRuleRow(**rule.model_dump()))
        logger.info("Availability rule %s added for builder %s", rule.id, rule.builder_id)
        return rule

    def update_rule(self, rule_id: str, **changes: Any) -> Optional[AvailabilityRule]:
        with session_scope(self._session_factory) as db:
            row = db.get(AvailabilityRuleRow, rule_id)
            if row is None:
                return None
            updated = AvailabilityRule.model_validate(
                {**_to_rule(row).model_dump(), **changes, "id": rule_id}
            )
            row.builder_id = updated.builder_id
            row.day_of_week = updated.day_of_week
            row.start_time = updated.start_time
            row.end_time = updated.end_time
            return updated

    def delete_rule(self, rule_id: str) -> bool:
        with session_scope(self._session_factory) as db:
            deleted = db.query(AvailabilityRuleRow).filter(AvailabilityRuleRow.id == rule_id).delete()
            return deleted > 0

    def add_exception(self, exception: AvailabilityException) -> AvailabilityException:
        with session_scope(self._session_factory) as db:
            existing = (
                db.query(AvailabilityExceptionRow)
                .filter(
                    AvailabilityExceptionRow.builder_id == exception.builder_id,
                    AvailabilityExceptionRow.date == exception.date,
                )
                .all()
            )
            for row in existing:
                db.delete(row)
            db.flush()
            db.add(
                AvailabilityExceptionRow(
                    id=exception.id,
                    builder_id=exception.builder_id,
                    date=exception.date,
                    kind=exception.kind.value,
                    slots=[
                        ExceptionTimeSlotRow(start_time=s.start_time, end_time=s.end_time)
                        for s in exception.slots
                    ],
                )
            )
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
        with session_scope(self._session_factory) as db:
            query = db.query(AvailabilityExceptionRow).filter(
                AvailabilityExceptionRow.builder_id == builder_id
            )
            if start_date is not None:
                query = query.filter(AvailabilityExceptionRow.date >= start_date)
            if end_date is not None:
                query = query.filter(AvailabilityExceptionRow.date <= end_date)
            return [_to_exception(r) for r in query.order_by(AvailabilityExceptionRow.date).all()]

    def delete_exception(self, exception_id: str) -> bool:
        with session_scope(self._session_factory) as db:
            row = db.get(AvailabilityExceptionRow, exception_id)
            if row is None:
                return False
            db.delete(row)
            return True


class SqlBookingRepository(BookingRepository):
    """Bookings in the ``bookings`` table."""

    def __init__(self, session_factory: sessionmaker, default_timeout: Optional[float] = None) -> None:
        self._session_factory = session_factory
        self._locks = BuilderLocks(default_timeout)

    def _apply_timeout(self, db: Session, wait: float) -> None:
        """Bound lock waits and statements in this transaction by ``wait`` seconds."""
        millis = max(1, int(wait * 1000))
        dialect = db.get_bind().dialect.name
        if dialect == "postgresql":
            db.execute(text(f"SET LOCAL lock_timeout = {millis}"))
            db.execute(text(f"SET LOCAL statement_timeout = {millis}"))
        elif dialect == "sqlite":
            db.execute(text(f"PRAGMA busy_timeout = {millis}"))

    def _lock_builder(self, db: Session, builder_id: str) -> None:
        """Hold the builder's lock row until the transaction ends.

        The row is created on first use. Bumping its version takes a row
        lock on PostgreSQL and the write lock on SQLite, so a second
        transaction for the same builder, from any process, waits here.
        """
        dialect = db.get_bind().dialect.name
        if dialect in ("postgresql", "sqlite"):
            dialect_insert = pg_insert if dialect == "postgresql" else sqlite_insert
            db.execute(
                dialect_insert(BuilderLockRow)
                .values(builder_id=builder_id, version=0)
                .on_conflict_do_nothing(index_elements=["builder_id"])
            )
        elif db.get(BuilderLockRow, builder_id) is None:
            try:
                with db.begin_nested():
                    db.add(BuilderLockRow(builder_id=builder_id, version=0))
            except IntegrityError:
                logger.debug("Lock row for builder %s created concurrently", builder_id)
        db.execute(
            update(BuilderLockRow)
            .where(BuilderLockRow.builder_id == builder_id)
            .values(version=BuilderLockRow.version + 1)
            .execution_options(synchronize_session=False)
        )

    def list_active(
        self,
        builder_id: str,
        start: datetime,
        end: datetime,
        timeout: Optional[float] = None,
    ) -> list[Booking]:
        with session_scope(self._session_factory) as db:
            self._apply_timeout(db, self._locks.effective_timeout(timeout))
            rows = (
                db.query(BookingRow)
                .filter(
                    BookingRow.builder_id == builder_id,
                    BookingRow.status.in_(_ACTIVE_VALUES),
                    BookingRow.blocked_start < end,
                    BookingRow.blocked_end > start,
                )
                .order_by(BookingRow.start_time)
                .all()
            )
            return [_to_booking(r) for r in rows]

    def insert_if_no_overlap(
        self,
        booking: Booking,
        padded: Interval,
        timeout: Optional[float] = None,
    ) -> InsertResult:
        wait = self._locks.effective_timeout(timeout)
        with self._locks.hold(booking.builder_id, wait):
            with session_scope(self._session_factory) as db:
                self._apply_timeout(db, wait)
                self._lock_builder(db, booking.builder_id)
                conflicts = (
                    db.query(BookingRow.id)
                    .filter(
                        BookingRow.builder_id == booking.builder_id,
                        BookingRow.status.in_(_ACTIVE_VALUES),
                        or_(
                            and_(
                                BookingRow.start_time < padded.end,
                                BookingRow.end_time > padded.start,
                            ),
                            and_(
                                BookingRow.blocked_start < booking.end_time,
                                BookingRow.blocked_end > booking.start_time,
                            ),
                        ),
                    )
                    .all()
                )
                if conflicts:
                    return InsertResult(conflicting_ids=[c.id for c in conflicts])
                db.add(_to_booking_row(booking))
        return InsertResult(booking=booking.model_copy())

    def get(self, booking_id: str, timeout: Optional[float] = None) -> Optional[Booking]:
        with session_scope(self._session_factory) as db:
            self._apply_timeout(db, self._locks.effective_timeout(timeout))
            row = db.get(BookingRow, booking_id)
            return _to_booking(row) if row else None

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
        values: dict[str, Any] = {"status": new_status.value, "updated_at": utc_now()}
        if new_status == BookingStatus.CANCELLED:
            values["cancelled_by"] = cancelled_by
            values["cancel_reason"] = cancel_reason
        with session_scope(self._session_factory) as db:
            self._apply_timeout(db, self._locks.effective_timeout(timeout))
            # Applies only while the row still has one of the expected statuses.
            result = db.execute(
                update(BookingRow)
                .where(
                    BookingRow.id == booking_id,
                    BookingRow.status.in_([s.value for s in expected]),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            row = db.get(BookingRow, booking_id)
            if row is None:
                return None
            return StatusUpdate(booking=_to_booking(row), applied=result.rowcount == 1)

    def list_for_builder(
        self,
        builder_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        status: Optional[BookingStatus] = None,
    ) -> list[Booking]:
        with session_scope(self._session_factory) as db:
            query = db.query(BookingRow).filter(BookingRow.builder_id == builder_id)
            if start is not None:
                query = query.filter(BookingRow.end_time > start)
            if end is not None:
                query = query.filter(BookingRow.start_time < end)
            if status is not None:
                query = query.filter(BookingRow.status == status.value)
            return [_to_booking(r) for r in query.order_by(BookingRow.start_time).all()]

    def list_for_client(
        self, client_id: str, status: Optional[BookingStatus] = None
    ) -> list[Booking]:
        with session_scope(self._session_factory) as db:
            query = db.query(BookingRow).filter(BookingRow.client_id == client_id)
            if status is not None:
                query = query.filter(BookingRow.status == status.value)
            return [_to_booking(r) for r in query.order_by(BookingRow.start_time).all()]

    def list_pending_created_before(self, cutoff: datetime) -> list[Booking]:
        with session_scope(self._session_factory) as db:
            rows = (
                db.query(BookingRow)
                .filter(
                    BookingRow.status == BookingStatus.PENDING.value,
                    BookingRow.created_at < cutoff,
                )
                .all()
            )
            return [_to_booking(r) for r in rows]


class SqlSessionTypeRepository(SessionTypeRepository):
    """Session types in ``session_types``."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def get(self, session_type_id: str) -> Optional[SessionType]:
        with session_scope(self._session_factory) as db:
            row = db.get(SessionTypeRow, session_type_id)
            return _to_session_type(row) if row else None

    def list_for_builder(self, builder_id: str) -> list[SessionType]:
        with session_scope(self._session_factory) as db:
            rows = db.query(SessionTypeRow).filter(SessionTypeRow.builder_id == builder_id).all()
            return [_to_session_type(r) for r in rows]

    def save(self, session_type: SessionType) -> SessionType:
        with session_scope(self._session_factory) as db:
            db.merge(SessionTypeRow(**session_type.model_dump()))
        return session_type

    def delete(self, session_type_id: str) -> bool:
        with session_scope(self._session_factory) as db:
            deleted = db.query(SessionTypeRow).filter(SessionTypeRow.id == session_type_id).delete()
            return deleted > 0


class SqlSettingsRepository(SettingsRepository):
    """Per-builder settings in ``builder_settings``."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def get_settings(self, builder_id: str) -> Optional[SchedulingSettings]:
        with session_scope(self._session_factory) as db:
            row = db.get(BuilderSettingsRow, builder_id)
            return _to_settings(row) if row else None

    def save_settings(self, builder_settings: SchedulingSettings) -> SchedulingSettings:
        with session_scope(self._session_factory) as db:
            db.merge(BuilderSettingsRow(**builder_settings.model_dump()))
        logger.info("Scheduling settings saved for builder %s", builder_settings.builder_id)
        return builder_settings
