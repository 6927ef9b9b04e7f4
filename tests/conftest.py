"""Shared test fixtures and helpers."""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

import pytest

from booking_engine.config import BookingPolicyConfig
from booking_engine.events import EventOutbox
from booking_engine.identity import InMemoryIdentityProvider
from booking_engine.repositories.memory import (
    InMemoryAvailabilityRepository,
    InMemoryBookingRepository,
    InMemorySessionTypeRepository,
    InMemorySettingsRepository,
)
from booking_engine.scheduling.coordinator import BookingCoordinator
from booking_engine.schemas.booking_schema import Actor, ActorRole, Booking, BookingStatus
from booking_engine.schemas.scheduling_schema import (
    AvailabilityException,
    AvailabilityRule,
    ExceptionKind,
    ExceptionTimeSlot,
    SchedulingSettings,
    SessionType,
)

BUILDER_ID = "B-1"
OTHER_BUILDER_ID = "B-2"
CLIENT_ID = "C-1"
OTHER_CLIENT_ID = "C-2"
ADMIN_ID = "A-1"
SESSION_TYPE_ID = "ST-30"

# 2026-10-19 is a Monday.
MONDAY = date(2026, 10, 19)
TUESDAY = MONDAY + timedelta(days=1)
NOW = datetime(2026, 10, 19, 6, 0, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def utc(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=timezone.utc)


def make_settings(builder_id: str = BUILDER_ID, **overrides) -> SchedulingSettings:
    values = {
        "builder_id": builder_id,
        "timezone": "UTC",
        "min_notice_minutes": 0,
        "buffer_minutes": 10,
        "max_advance_days": 60,
        "accepting_bookings": True,
    }
    values.update(overrides)
    return SchedulingSettings(**values)


def make_rule(
    day_of_week: int, start: str, end: str, builder_id: str = BUILDER_ID
) -> AvailabilityRule:
    return AvailabilityRule(
        builder_id=builder_id,
        day_of_week=day_of_week,
        start_time=time.fromisoformat(start),
        end_time=time.fromisoformat(end),
    )


def make_blocked(day: date, builder_id: str = BUILDER_ID) -> AvailabilityException:
    return AvailabilityException(builder_id=builder_id, date=day, kind=ExceptionKind.BLOCKED)


def make_special_hours(
    day: date, windows: list[tuple[str, str]], builder_id: str = BUILDER_ID
) -> AvailabilityException:
    return AvailabilityException(
        builder_id=builder_id,
        date=day,
        kind=ExceptionKind.SPECIAL_HOURS,
        slots=[
            ExceptionTimeSlot(start_time=time.fromisoformat(s), end_time=time.fromisoformat(e))
            for s, e in windows
        ],
    )


def make_session_type(
    duration_minutes: int = 30,
    session_type_id: str = SESSION_TYPE_ID,
    builder_id: str = BUILDER_ID,
    **overrides,
) -> SessionType:
    return SessionType(
        id=session_type_id,
        builder_id=builder_id,
        name="Consultation",
        duration_minutes=duration_minutes,
        **overrides,
    )


def make_booking(
    start: datetime,
    duration_minutes: int = 30,
    status: BookingStatus = BookingStatus.CONFIRMED,
    builder_id: str = BUILDER_ID,
    client_id: str = CLIENT_ID,
    created_at: Optional[datetime] = None,
    buffer_minutes: int = 0,
) -> Booking:
    return Booking(
        builder_id=builder_id,
        client_id=client_id,
        session_type_id=SESSION_TYPE_ID,
        start_time=start,
        end_time=start + timedelta(minutes=duration_minutes),
        status=status,
        buffer_minutes=buffer_minutes,
        created_at=created_at or NOW,
        updated_at=created_at or NOW,
    )


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def availability_repo():
    return InMemoryAvailabilityRepository()


@pytest.fixture
def booking_repo():
    return InMemoryBookingRepository(default_timeout=2.0)


@pytest.fixture
def session_type_repo():
    repo = InMemorySessionTypeRepository()
    repo.save(make_session_type())
    return repo


@pytest.fixture
def settings_repo():
    repo = InMemorySettingsRepository()
    repo.save_settings(make_settings())
    return repo


@pytest.fixture
def identity():
    return InMemoryIdentityProvider([
        Actor(id=BUILDER_ID, role=ActorRole.BUILDER),
        Actor(id=OTHER_BUILDER_ID, role=ActorRole.BUILDER),
        Actor(id=CLIENT_ID, role=ActorRole.CLIENT),
        Actor(id=OTHER_CLIENT_ID, role=ActorRole.CLIENT),
        Actor(id=ADMIN_ID, role=ActorRole.ADMIN),
    ])


@pytest.fixture
def policy():
    return BookingPolicyConfig(
        max_query_range_days=31,
        auto_confirm_bookings=False,
        pending_hold_minutes=30,
    )


@pytest.fixture
def outbox():
    return EventOutbox()


@pytest.fixture
def coordinator(
    availability_repo, booking_repo, session_type_repo, settings_repo, identity, outbox, clock, policy
):
    """Coordinator for builder B-1: Monday 09:00-12:00 UTC, 30 min sessions, 10 min buffer."""
    availability_repo.add_rule(make_rule(1, "09:00", "12:00"))
    return BookingCoordinator(
        availability=availability_repo,
        bookings=booking_repo,
        session_types=session_type_repo,
        settings_repository=settings_repo,
        identity=identity,
        outbox=outbox,
        clock=clock,
        policy=policy,
        timeout=2.0,
    )
