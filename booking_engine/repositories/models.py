"""ORM tables for the relational store."""

from datetime import timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.types import TypeDecorator

from booking_engine.repositories.database import Base


class UTCDateTime(TypeDecorator):
    """Timestamp stored in UTC and always read back timezone-aware.

    SQLite has no timezone support, so values are written there as naive
    UTC and re-tagged on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Naive datetimes cannot be stored")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class BuilderSettingsRow(Base):
    __tablename__ = "builder_settings"

    builder_id = Column(String(64), primary_key=True)
    timezone = Column(String(64), nullable=False, default="UTC")
    min_notice_minutes = Column(Integer, nullable=False, default=0)
    buffer_minutes = Column(Integer, nullable=False, default=0)
    max_advance_days = Column(Integer, nullable=False, default=60)
    accepting_bookings = Column(Boolean, nullable=False, default=True)


class SessionTypeRow(Base):
    __tablename__ = "session_types"

    id = Column(String(64), primary_key=True)
    builder_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False, default="")
    duration_minutes = Column(Integer, nullable=False)
    buffer_minutes = Column(Integer, nullable=True)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)


class AvailabilityRuleRow(Base):
    __tablename__ = "availability_rules"

    id = Column(String(64), primary_key=True)
    builder_id = Column(String(64), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)


class AvailabilityExceptionRow(Base):
    __tablename__ = "availability_exceptions"
    __table_args__ = (UniqueConstraint("builder_id", "date", name="uq_exception_builder_date"),)

    id = Column(String(64), primary_key=True)
    builder_id = Column(String(64), nullable=False, index=True)
    date = Column(Date, nullable=False)
    kind = Column(String(32), nullable=False)

    slots = relationship(
        "ExceptionTimeSlotRow",
        back_populates="exception",
        cascade="all, delete-orphan",
        order_by="ExceptionTimeSlotRow.start_time",
    )


class ExceptionTimeSlotRow(Base):
    __tablename__ = "exception_time_slots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    exception_id = Column(
        String(64), ForeignKey("availability_exceptions.id", ondelete="CASCADE"), nullable=False
    )
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    exception = relationship("AvailabilityExceptionRow", back_populates="slots")


class BuilderLockRow(Base):
    """One row per builder that has ever booked; bookings for the builder lock it first."""

    __tablename__ = "builder_booking_locks"

    builder_id = Column(String(64), primary_key=True)
    version = Column(Integer, nullable=False, default=0)


class BookingRow(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_builder_start", "builder_id", "start_time"),
        Index("ix_bookings_builder_blocked", "builder_id", "blocked_start"),
    )

    id = Column(String(64), primary_key=True)
    builder_id = Column(String(64), nullable=False)
    client_id = Column(String(64), nullable=False, index=True)
    session_type_id = Column(String(64), nullable=False)
    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    # Interval widened by the booking's own buffer, kept for range queries.
    buffer_minutes = Column(Integer, nullable=False, default=0)
    blocked_start = Column(UTCDateTime, nullable=False)
    blocked_end = Column(UTCDateTime, nullable=False)
    status = Column(String(16), nullable=False, index=True)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)
    cancelled_by = Column(String(64), nullable=True)
    cancel_reason = Column(String(500), nullable=True)
