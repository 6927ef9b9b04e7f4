"""
Slot generation.

Pure functions: everything they need (availability snapshot, active
bookings, session duration, settings, the current time) is passed in, and
nothing is read from or written to storage. The booking coordinator re-runs
``slots_for_day`` for a single date to re-validate a requested slot.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Iterable

from booking_engine.repositories.base import AvailabilitySnapshot
from booking_engine.scheduling.settings_resolver import effective_buffer
from booking_engine.schemas.booking_schema import Booking, Slot
from booking_engine.schemas.scheduling_schema import ExceptionKind, SchedulingSettings, SessionType
from booking_engine.time_model import (
    Interval,
    TzLike,
    day_of_week,
    iter_days,
    local_date,
    local_to_utc,
    merge_intervals,
)

logger = logging.getLogger(__name__)


def _window_pairs(day: date, snapshot: AvailabilitySnapshot, tz: TzLike) -> list[tuple[time, time]]:
    # A date exception takes precedence over the weekly rules.
    exception = snapshot.exceptions_by_date.get(day)
    if exception is not None:
        if exception.kind == ExceptionKind.BLOCKED:
            return []
        return [(s.start_time, s.end_time) for s in exception.slots]
    rules = snapshot.rules_by_weekday.get(day_of_week(day, tz), [])
    return [(r.start_time, r.end_time) for r in rules]


def day_windows(day: date, snapshot: AvailabilitySnapshot, tz: TzLike) -> list[Interval]:
    """Merged UTC availability windows for one local calendar date."""
    windows = []
    for start, end in _window_pairs(day, snapshot, tz):
        if end <= start:
            logger.debug("Discarding inverted window %s-%s on %s", start, end, day)
            continue
        windows.append(Interval(local_to_utc(day, start, tz), local_to_utc(day, end, tz)))
    return merge_intervals(windows)


def slots_for_day(
    day: date,
    snapshot: AvailabilitySnapshot,
    bookings: Iterable[Booking],
    duration_minutes: int,
    buffer_minutes: int,
    tz: TzLike,
    earliest_start: datetime,
) -> list[Slot]:
    """Bookable slots on ``day``.

    Candidates step through each window by ``duration + buffer``. A candidate
    starts inside the window and may end up to ``buffer`` minutes past it, so a
    09:00-12:00 window with 30 minute sessions and a 10 minute buffer offers
    11:40 but not 12:20. A candidate is dropped when it starts before
    ``earliest_start`` or when it sits closer to an active booking than the
    larger of the two buffers.
    """
    duration = timedelta(minutes=duration_minutes)
    buffer = timedelta(minutes=buffer_minutes)
    step = duration + buffer
    busy = [b for b in bookings if b.is_active]

    slots: list[Slot] = []
    for window in day_windows(day, snapshot, tz):
        candidate = window.start
        while candidate < window.end and candidate + duration <= window.end + buffer:
            interval = Interval(candidate, candidate + duration)
            if candidate >= earliest_start and not any(
                b.clashes_with(interval, buffer_minutes) for b in busy
            ):
                slots.append(Slot(start=interval.start, end=interval.end))
            candidate += step
    return slots


def bookable_dates(
    range_start: date,
    range_end: date,
    builder_settings: SchedulingSettings,
    now: datetime,
) -> tuple[date, date]:
    """Requested range clipped to ``[today, today + max_advance_days]`` in the builder's zone.

    The returned start is after the returned end when nothing is left.
    """
    today = local_date(now, builder_settings.timezone)
    last_day = today + timedelta(days=builder_settings.max_advance_days)
    return max(range_start, today), min(range_end, last_day)


def generate_slots(
    snapshot: AvailabilitySnapshot,
    bookings: Iterable[Booking],
    session_type: SessionType,
    builder_settings: SchedulingSettings,
    range_start: date,
    range_end: date,
    now: datetime,
) -> list[Slot]:
    """All bookable slots for the local dates ``range_start..range_end`` inclusive."""
    if not builder_settings.accepting_bookings:
        return []

    buffer_minutes = effective_buffer(session_type, builder_settings)
    first, last = bookable_dates(range_start, range_end, builder_settings, now)
    earliest_start = now + timedelta(minutes=builder_settings.min_notice_minutes)
    active = [b for b in bookings if b.is_active]

    slots: list[Slot] = []
    for day in iter_days(first, last):
        slots.extend(
            slots_for_day(
                day,
                snapshot,
                active,
                session_type.duration_minutes,
                buffer_minutes,
                builder_settings.timezone,
                earliest_start,
            )
        )
    return sorted(slots, key=lambda s: s.start)
