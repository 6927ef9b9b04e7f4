"""Booking, slot, actor and domain event models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from booking_engine.time_model import Interval, add_buffer, overlaps
from booking_engine.utils import generate_ref, utc_now


class BookingStatus(str, Enum):
    """Persisted lifecycle status of a booking."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# Statuses that occupy the builder's calendar.
ACTIVE_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError("Datetime must be timezone-aware")
    return value.astimezone(timezone.utc)


class Slot(BaseModel):
    """A bookable interval derived from availability, not yet reserved."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class Booking(BaseModel):
    """A reservation. Times are absolute UTC instants.

    ``buffer_minutes`` is the buffer in force when the booking was made. It
    keeps that much idle time on both sides of the booking, whatever buffer a
    later booking next to it uses.
    """

    id: str = Field(default_factory=lambda: generate_ref("BK"))
    builder_id: str
    client_id: str
    session_type_id: str
    start_time: datetime
    end_time: datetime
    status: BookingStatus = BookingStatus.PENDING
    buffer_minutes: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    cancelled_by: Optional[str] = None
    cancel_reason: Optional[str] = None

    @field_validator("start_time", "end_time", "created_at", "updated_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @model_validator(mode="after")
    def _end_after_start(self) -> "Booking":
        if self.end_time <= self.start_time:
            raise ValueError("Booking end_time must be after start_time")
        return self

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def interval(self) -> Interval:
        return Interval(self.start_time, self.end_time)

    @property
    def blocked_interval(self) -> Interval:
        """The booking plus its own buffer on both sides."""
        return add_buffer(self.interval, self.buffer_minutes)

    def clashes_with(self, interval: Interval, buffer_minutes: int) -> bool:
        """True when ``interval`` is closer to this booking than either side's buffer allows."""
        gap = max(buffer_minutes, self.buffer_minutes)
        return overlaps(add_buffer(interval, gap), self.interval)


class ActorRole(str, Enum):
    """Role an authenticated caller holds."""

    CLIENT = "client"
    BUILDER = "builder"
    ADMIN = "admin"


class Actor(BaseModel):
    """An identity resolved by the identity collaborator."""

    model_config = ConfigDict(frozen=True)

    id: str
    role: ActorRole


class BookingEventType(str, Enum):
    """Domain events collaborators can react to."""

    CREATED = "booking.created"
    CONFIRMED = "booking.confirmed"
    CANCELLED = "booking.cancelled"
    COMPLETED = "booking.completed"


class BookingEvent(BaseModel):
    """Record appended to the outbox after a committed change."""

    event_type: BookingEventType
    booking: Booking
    occurred_at: datetime = Field(default_factory=utc_now)
    request_id: Optional[str] = None
