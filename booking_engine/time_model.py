"""
Timezone-aware time arithmetic for scheduling.

Rules and exceptions are stored as local wall-clock times in the builder's
timezone; bookings are stored as UTC instants. Everything that compares or
orders times goes through UTC first, so stepping and overlap tests stay
correct across DST transitions.

DST policy (pytz ``localize`` with ``is_dst=False``):
    - a wall-clock time inside a spring-forward gap resolves with the
      pre-transition offset, which lands it after the gap;
    - an ambiguous fall-back time resolves to the standard-time occurrence.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Iterator, Union

import pytz

from booking_engine.errors import ValidationError

logger = logging.getLogger(__name__)

TzLike = Union[str, pytz.BaseTzInfo]


@dataclass(frozen=True)
class Interval:
    """Half-open time interval ``[start, end)``."""

    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def is_empty(self) -> bool:
        return self.end <= self.start


def get_timezone(tz: TzLike) -> pytz.BaseTzInfo:
    """Resolve an IANA timezone name (or pass a pytz zone through)."""
    if not isinstance(tz, str):
        return tz
    try:
        return pytz.timezone(tz)
    except pytz.UnknownTimeZoneError:
        raise ValidationError(f"Unknown timezone: {tz!r}") from None


def local_to_utc(day: date, wall_time: time, tz: TzLike) -> datetime:
    """Convert a local date + wall-clock time in ``tz`` to a UTC instant."""
    zone = get_timezone(tz)
    local = zone.localize(datetime.combine(day, wall_time), is_dst=False)
    return zone.normalize(local).astimezone(timezone.utc)


def local_date(instant: datetime, tz: TzLike) -> date:
    """Calendar date of a UTC instant as seen in ``tz``."""
    if instant.tzinfo is None:
        raise ValidationError("Instant must be timezone-aware")
    return instant.astimezone(get_timezone(tz)).date()


def day_of_week(value: Union[date, datetime], tz: TzLike) -> int:
    """Weekday index with 0 = Sunday through 6 = Saturday.

    A ``datetime`` is first converted into ``tz``; a plain ``date`` is taken
    as already being a calendar date in ``tz``.
    """
    if isinstance(value, datetime):
        value = local_date(value, tz)
    return (value.weekday() + 1) % 7


def day_bounds(day: date, tz: TzLike) -> Interval:
    """UTC interval covering the local calendar day (23h/25h on DST days)."""
    return Interval(
        local_to_utc(day, time.min, tz),
        local_to_utc(day + timedelta(days=1), time.min, tz),
    )


def overlaps(a: Interval, b: Interval) -> bool:
    """Half-open overlap test; touching intervals do not overlap."""
    return a.start < b.end and b.start < a.end


def add_buffer(interval: Interval, buffer_minutes: int) -> Interval:
    """Pad both ends of an interval by ``buffer_minutes``."""
    pad = timedelta(minutes=buffer_minutes)
    return Interval(interval.start - pad, interval.end + pad)


def merge_intervals(intervals: Iterable[Interval]) -> list[Interval]:
    """Union of intervals: overlapping or adjacent ones are joined, empty ones dropped."""
    ordered = sorted((i for i in intervals if not i.is_empty), key=lambda i: i.start)
    if not ordered:
        return []

    merged = [ordered[0]]
    for current in ordered[1:]:
        last = merged[-1]
        if current.start <= last.end:
            if current.end > last.end:
                merged[-1] = Interval(last.start, current.end)
        else:
            merged.append(current)
    return merged


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yield each calendar date from ``start`` to ``end`` inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
