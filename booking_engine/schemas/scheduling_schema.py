"""Availability, session type and per-builder settings models."""

from datetime import date, time
from decimal import Decimal
from enum import Enum
from typing import Optional

import pytz
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from booking_engine.utils import generate_ref


class SchedulingSettings(BaseModel):
    """Per-builder scheduling configuration, passed by value into every call."""

    model_config = ConfigDict(frozen=True)

    builder_id: str
    timezone: str = "UTC"
    min_notice_minutes: int = Field(default=0, ge=0)
    buffer_minutes: int = Field(default=0, ge=0)
    max_advance_days: int = Field(default=60, gt=0)
    accepting_bookings: bool = True

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        if value not in pytz.all_timezones_set:
            raise ValueError(f"Unknown timezone: {value!r}")
        return value


class AvailabilityRule(BaseModel):
    """Recurring weekly window in the builder's local wall-clock time.

    ``day_of_week`` uses 0 = Sunday through 6 = Saturday.
    """

    id: str = Field(default_factory=lambda: generate_ref("AR"))
    builder_id: str
    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    end_time: time


class ExceptionKind(str, Enum):
    """How a date exception overrides the weekly rules."""

    BLOCKED = "blocked"
    SPECIAL_HOURS = "special_hours"


class ExceptionTimeSlot(BaseModel):
    """Replacement window for a special-hours date."""

    start_time: time
    end_time: time


class AvailabilityException(BaseModel):
    """Date-specific override of the weekly availability pattern."""

    id: str = Field(default_factory=lambda: generate_ref("AX"))
    builder_id: str
    date: date
    kind: ExceptionKind
    slots: list[ExceptionTimeSlot] = Field(default_factory=list)

    @model_validator(mode="after")
    def _special_hours_need_slots(self) -> "AvailabilityException":
        if self.kind == ExceptionKind.SPECIAL_HOURS and not self.slots:
            raise ValueError("Special hours exceptions need at least one time slot")
        return self


class SessionType(BaseModel):
    """A bookable offering: how long it lasts and what it costs."""

    id: str = Field(default_factory=lambda: generate_ref("ST"))
    builder_id: str
    name: str = ""
    duration_minutes: int = Field(gt=0)
    buffer_minutes: Optional[int] = Field(default=None, ge=0)
    price: Decimal = Field(default=Decimal("0"), ge=0)
    is_active: bool = True
