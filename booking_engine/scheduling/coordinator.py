"""
Booking coordinator.

Entry point for slot queries and every booking write. A create request is
re-validated against freshly generated slots for its date and then handed to
the repository's atomic insert, so two requests racing for the same slot
can never both succeed. Status changes go through the lifecycle table and a
compare-and-set in the repository.

Usage:
    coordinator = BookingCoordinator(
        availability=InMemoryAvailabilityRepository(),
        bookings=InMemoryBookingRepository(),
        session_types=InMemorySessionTypeRepository(),
        settings_repository=InMemorySettingsRepository(),
        identity=InMemoryIdentityProvider(),
    )
    slots = coordinator.get_available_slots("B-1", "ST-1", date(2026, 10, 19), date(2026, 10, 25))
    booking = coordinator.create_booking("B-1", "C-1", "ST-1", slots[0].start)
"""

from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional

from booking_engine.config import BookingPolicyConfig, settings
from booking_engine.errors import (
    Forbidden,
    InvalidTransitionError,
    NotAcceptingBookings,
    NotFound,
    SlotUnavailable,
    ValidationError,
)
from booking_engine.events import EventOutbox
from booking_engine.identity import IdentityProvider, can_complete_booking, can_manage_booking
from booking_engine.logging_context import get_request_logger
from booking_engine.repositories.base import (
    AvailabilityRepository,
    BookingRepository,
    SessionTypeRepository,
    SettingsRepository,
)
from booking_engine.scheduling.lifecycle import BookingLifecycle, BookingTrigger
from booking_engine.scheduling.settings_resolver import SettingsResolver, effective_buffer
from booking_engine.scheduling.slot_generator import bookable_dates, generate_slots, slots_for_day
from booking_engine.schemas.booking_schema import (
    Actor,
    Booking,
    BookingEventType,
    BookingStatus,
    Slot,
)
from booking_engine.schemas.scheduling_schema import SchedulingSettings, SessionType
from booking_engine.time_model import Interval, add_buffer, day_bounds, local_date
from booking_engine.utils import utc_now

logger = get_request_logger(__name__)

SYSTEM_ACTOR = "system"


def _require_id(name: str, value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required", details={"field": name})
    return value


def _require_instant(name: str, value: object) -> datetime:
    if not isinstance(value, datetime):
        raise ValidationError(f"{name} must be a datetime", details={"field": name})
    if value.tzinfo is None:
        raise ValidationError(f"{name} must be timezone-aware", details={"field": name})
    return value.astimezone(timezone.utc)


class BookingCoordinator:
    """Slot queries and booking commands for all builders."""

    def __init__(
        self,
        availability: AvailabilityRepository,
        bookings: BookingRepository,
        session_types: SessionTypeRepository,
        settings_repository: SettingsRepository,
        identity: IdentityProvider,
        outbox: Optional[EventOutbox] = None,
        clock: Callable[[], datetime] = utc_now,
        policy: Optional[BookingPolicyConfig] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._availability = availability
        self._bookings = bookings
        self._session_types = session_types
        self._resolver = SettingsResolver(settings_repository)
        self._identity = identity
        self._outbox = outbox or EventOutbox()
        self._clock = clock
        self._policy = policy or settings.booking
        self._timeout = timeout if timeout is not None else settings.storage.repository_timeout_sec
        self._lifecycle = BookingLifecycle()

    @property
    def outbox(self) -> EventOutbox:
        return self._outbox

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _session_type(self, builder_id: str, session_type_id: str) -> SessionType:
        session_type = self._session_types.get(session_type_id)
        if session_type is None:
            raise NotFound(
                f"Session type {session_type_id} not found",
                details={"session_type_id": session_type_id},
            )
        if session_type.builder_id != builder_id:
            raise ValidationError(
                f"Session type {session_type_id} does not belong to builder {builder_id}",
                details={"session_type_id": session_type_id, "builder_id": builder_id},
            )
        if not session_type.is_active:
            raise ValidationError(
                f"Session type {session_type_id} is not currently offered",
                details={"session_type_id": session_type_id},
            )
        return session_type

    def _booking(self, booking_id: str) -> Booking:
        booking = self._bookings.get(_require_id("booking_id", booking_id), timeout=self._timeout)
        if booking is None:
            raise NotFound(f"Booking {booking_id} not found", details={"booking_id": booking_id})
        return booking

    def _actor(self, actor_id: str) -> Actor:
        actor = self._identity.resolve(_require_id("actor_id", actor_id))
        if actor is None:
            raise Forbidden(f"Unknown actor {actor_id}", details={"actor_id": actor_id})
        return actor

    def _as_local_date(self, name: str, value: object, builder_settings: SchedulingSettings) -> date:
        if isinstance(value, datetime):
            return local_date(_require_instant(name, value), builder_settings.timezone)
        if isinstance(value, date):
            return value
        raise ValidationError(f"{name} must be a date", details={"field": name})

    # ------------------------------------------------------------------
    # Slot queries
    # ------------------------------------------------------------------

    def _active_bookings(
        self,
        builder_id: str,
        first: date,
        last: date,
        builder_settings: SchedulingSettings,
        buffer_minutes: int,
    ) -> list[Booking]:
        # A padded candidate can reach past its day by up to twice the buffer.
        margin = timedelta(minutes=2 * buffer_minutes)
        return self._bookings.list_active(
            builder_id,
            day_bounds(first, builder_settings.timezone).start - margin,
            day_bounds(last, builder_settings.timezone).end + margin,
            timeout=self._timeout,
        )

    def _candidate_slots(
        self,
        builder_id: str,
        session_type: SessionType,
        builder_settings: SchedulingSettings,
        first: date,
        last: date,
        now: datetime,
    ) -> list[Slot]:
        snapshot = self._availability.get_availability(builder_id, first, last)
        active = self._active_bookings(
            builder_id, first, last, builder_settings, effective_buffer(session_type, builder_settings)
        )
        return generate_slots(snapshot, active, session_type, builder_settings, first, last, now)

    def get_available_slots(
        self,
        builder_id: str,
        session_type_id: str,
        range_start: date,
        range_end: date,
    ) -> list[Slot]:
        """
        Bookable slots for the builder's local dates ``range_start..range_end``.

        Read-only; repeated calls with unchanged state return the same list.

        Raises:
            ValidationError: Malformed ids, inverted range, or a range longer
                than the configured maximum.
            NotFound: Unknown session type.
            StorageFailure: Repository unavailable or timed out.
        """
        _require_id("builder_id", builder_id)
        _require_id("session_type_id", session_type_id)
        session_type = self._session_type(builder_id, session_type_id)
        builder_settings = self._resolver.resolve(builder_id)

        start_day = self._as_local_date("range_start", range_start, builder_settings)
        end_day = self._as_local_date("range_end", range_end, builder_settings)
        if end_day < start_day:
            raise ValidationError(
                "range_end must not be before range_start",
                details={"range_start": start_day.isoformat(), "range_end": end_day.isoformat()},
            )
        span = (end_day - start_day).days + 1
        if span > self._policy.max_query_range_days:
            raise ValidationError(
                f"Date range spans {span} days, maximum is {self._policy.max_query_range_days}",
                details={"days": span},
            )

        if not builder_settings.accepting_bookings:
            logger.info("Builder %s is not accepting bookings, no slots", builder_id)
            return []

        now = self._clock()
        first, last = bookable_dates(start_day, end_day, builder_settings, now)
        if last < first:
            return []

        slots = self._candidate_slots(builder_id, session_type, builder_settings, first, last, now)
        logger.info(
            "Slot query: builder=%s session_type=%s %s..%s -> %d slots",
            builder_id, session_type_id, first, last, len(slots),
        )
        return slots

    # ------------------------------------------------------------------
    # Booking creation
    # ------------------------------------------------------------------

    def create_booking(
        self,
        builder_id: str,
        client_id: str,
        session_type_id: str,
        requested_start: datetime,
        auto_confirm: Optional[bool] = None,
    ) -> Booking:
        """
        Reserve the slot starting at ``requested_start``.

        The slot is re-derived from current availability and bookings, then
        committed with the repository's atomic insert. The booking is created
        PENDING, or CONFIRMED when auto-confirm applies.

        Raises:
            ValidationError: Malformed input.
            NotFound: Unknown session type.
            NotAcceptingBookings: The builder has paused bookings.
            SlotUnavailable: The slot is not offered or was just taken.
            StorageFailure: Repository unavailable or timed out.
        """
        _require_id("builder_id", builder_id)
        _require_id("client_id", client_id)
        _require_id("session_type_id", session_type_id)
        start = _require_instant("requested_start", requested_start)

        session_type = self._session_type(builder_id, session_type_id)
        builder_settings = self._resolver.resolve(builder_id)
        if not builder_settings.accepting_bookings:
            raise NotAcceptingBookings(
                f"Builder {builder_id} is not accepting bookings",
                details={"builder_id": builder_id},
            )

        now = self._clock()
        end = start + timedelta(minutes=session_type.duration_minutes)
        buffer_minutes = effective_buffer(session_type, builder_settings)
        day = local_date(start, builder_settings.timezone)

        offered = self._offered_starts(builder_id, session_type, builder_settings, day, now)
        if start not in offered:
            logger.warning(
                "Rejected stale or invalid slot: builder=%s start=%s", builder_id, start.isoformat()
            )
            raise SlotUnavailable(
                "Requested slot is not available",
                details={"builder_id": builder_id, "start": start.isoformat()},
            )

        if auto_confirm is None:
            auto_confirm = self._policy.auto_confirm_bookings
        booking = Booking(
            builder_id=builder_id,
            client_id=client_id,
            session_type_id=session_type_id,
            start_time=start,
            end_time=end,
            status=BookingStatus.CONFIRMED if auto_confirm else BookingStatus.PENDING,
            buffer_minutes=buffer_minutes,
            created_at=now,
            updated_at=now,
        )
        padded = add_buffer(Interval(start, end), buffer_minutes)
        result = self._bookings.insert_if_no_overlap(booking, padded, timeout=self._timeout)
        if result.conflict:
            logger.warning(
                "Slot taken concurrently: builder=%s start=%s conflicts=%s",
                builder_id, start.isoformat(), result.conflicting_ids,
            )
            raise SlotUnavailable(
                "Requested slot was just booked",
                details={"builder_id": builder_id, "start": start.isoformat()},
            )

        created = result.booking
        logger.info(
            "Booking %s created: builder=%s client=%s %s (%s)",
            created.id, builder_id, client_id, start.isoformat(), created.status.value,
        )
        self._outbox.record(BookingEventType.CREATED, created)
        return created

    def _offered_starts(
        self,
        builder_id: str,
        session_type: SessionType,
        builder_settings: SchedulingSettings,
        day: date,
        now: datetime,
    ) -> set[datetime]:
        first, last = bookable_dates(day, day, builder_settings, now)
        if last < first:
            return set()
        buffer_minutes = effective_buffer(session_type, builder_settings)
        snapshot = self._availability.get_availability(builder_id, day, day)
        active = self._active_bookings(builder_id, day, day, builder_settings, buffer_minutes)
        slots = slots_for_day(
            day,
            snapshot,
            active,
            session_type.duration_minutes,
            buffer_minutes,
            builder_settings.timezone,
            now + timedelta(minutes=builder_settings.min_notice_minutes),
        )
        return {s.start for s in slots}

    # ------------------------------------------------------------------
    # Status changes
    # ------------------------------------------------------------------

    def _change_status(
        self,
        booking: Booking,
        trigger: BookingTrigger,
        *,
        noop_status: Optional[BookingStatus] = None,
        **fields: Optional[str],
    ) -> tuple[Booking, bool]:
        """Apply ``trigger`` with a compare-and-set; returns (booking, changed).

        A booking already in ``noop_status`` is returned unchanged. If the
        stored status moved since it was read, the check is repeated against
        the new status, which either matches ``noop_status`` or raises.
        """
        current = booking
        while True:
            if noop_status is not None and current.status == noop_status:
                return current, False
            new_status = self._lifecycle.next_status(current.status, trigger)
            update = self._bookings.transition_status(
                current.id,
                self._lifecycle.sources(trigger),
                new_status,
                timeout=self._timeout,
                **fields,
            )
            if update is None:
                raise NotFound(f"Booking {current.id} not found", details={"booking_id": current.id})
            if update.applied:
                return update.booking, True
            current = update.booking

    def cancel_booking(
        self, booking_id: str, actor_id: str, reason: Optional[str] = None
    ) -> Booking:
        """
        Cancel a booking on behalf of its client, its builder or an admin.

        Cancelling an already cancelled booking returns it unchanged.

        Raises:
            NotFound: Unknown booking.
            Forbidden: Unknown actor or actor not allowed on this booking.
            InvalidTransitionError: The booking is completed.
        """
        booking = self._booking(booking_id)
        actor = self._actor(actor_id)
        if not can_manage_booking(actor, booking):
            logger.warning("Actor %s may not cancel booking %s", actor.id, booking.id)
            raise Forbidden(
                f"Actor {actor.id} may not cancel booking {booking.id}",
                details={"booking_id": booking.id, "actor_id": actor.id},
            )

        cancelled, changed = self._change_status(
            booking,
            BookingTrigger.CANCEL,
            noop_status=BookingStatus.CANCELLED,
            cancelled_by=actor.id,
            cancel_reason=reason,
        )
        if not changed:
            logger.info("Booking %s already cancelled", booking.id)
            return cancelled
        logger.info("Booking %s cancelled by %s (%s)", booking.id, actor.id, actor.role.value)
        self._outbox.record(BookingEventType.CANCELLED, cancelled)
        return cancelled

    def confirm_booking(self, booking_id: str) -> Booking:
        """Mark a pending booking as confirmed once payment has been captured.

        Confirming an already confirmed booking returns it unchanged, so a
        redelivered payment notification is harmless.
        """
        booking = self._booking(booking_id)
        confirmed, changed = self._change_status(
            booking, BookingTrigger.CONFIRM, noop_status=BookingStatus.CONFIRMED
        )
        if changed:
            logger.info("Booking %s confirmed", booking.id)
            self._outbox.record(BookingEventType.CONFIRMED, confirmed)
        return confirmed

    def complete_booking(self, booking_id: str, actor_id: str) -> Booking:
        """Mark a confirmed booking as delivered. Builder of the booking or admin only."""
        booking = self._booking(booking_id)
        actor = self._actor(actor_id)
        if not can_complete_booking(actor, booking):
            raise Forbidden(
                f"Actor {actor.id} may not complete booking {booking.id}",
                details={"booking_id": booking.id, "actor_id": actor.id},
            )
        completed, changed = self._change_status(
            booking, BookingTrigger.COMPLETE, noop_status=BookingStatus.COMPLETED
        )
        if changed:
            logger.info("Booking %s completed", booking.id)
            self._outbox.record(BookingEventType.COMPLETED, completed)
        return completed

    def reschedule_booking(
        self, booking_id: str, actor_id: str, new_start: datetime
    ) -> Booking:
        """
        Move a booking to another slot.

        The new booking is committed first and the original cancelled after,
        so the original is kept whenever the new slot cannot be had. A
        confirmed booking stays confirmed in its new slot.

        Raises:
            NotFound, Forbidden: As for ``cancel_booking``.
            InvalidTransitionError: The booking is cancelled or completed.
            SlotUnavailable, NotAcceptingBookings: As for ``create_booking``.
        """
        booking = self._booking(booking_id)
        actor = self._actor(actor_id)
        if not can_manage_booking(actor, booking):
            raise Forbidden(
                f"Actor {actor.id} may not reschedule booking {booking.id}",
                details={"booking_id": booking.id, "actor_id": actor.id},
            )
        if not booking.is_active:
            raise InvalidTransitionError(
                f"Booking {booking.id} is {booking.status.value} and cannot be rescheduled",
                details={"booking_id": booking.id, "status": booking.status.value},
            )

        replacement = self.create_booking(
            booking.builder_id,
            booking.client_id,
            booking.session_type_id,
            new_start,
            auto_confirm=booking.status == BookingStatus.CONFIRMED or None,
        )
        try:
            cancelled, _ = self._change_status(
                booking,
                BookingTrigger.CANCEL,
                cancelled_by=actor.id,
                cancel_reason=f"Rescheduled to {replacement.id}",
            )
        except InvalidTransitionError:
            # Original moved to a terminal status meanwhile; release the new slot.
            released, _ = self._change_status(
                replacement,
                BookingTrigger.CANCEL,
                cancelled_by=SYSTEM_ACTOR,
                cancel_reason=f"Reschedule of {booking.id} aborted",
            )
            logger.warning(
                "Reschedule of %s aborted, released %s", booking.id, replacement.id
            )
            self._outbox.record(BookingEventType.CANCELLED, released)
            raise
        self._outbox.record(BookingEventType.CANCELLED, cancelled)
        logger.info("Booking %s rescheduled to %s", booking.id, replacement.id)
        return replacement

    def expire_pending_bookings(self) -> list[Booking]:
        """Cancel pending bookings whose payment hold has run out.

        Returns the bookings that were cancelled by this run.
        """
        cutoff = self._clock() - timedelta(minutes=self._policy.pending_hold_minutes)
        expired: list[Booking] = []
        for booking in self._bookings.list_pending_created_before(cutoff):
            try:
                cancelled, changed = self._change_status(
                    booking,
                    BookingTrigger.EXPIRE,
                    cancelled_by=SYSTEM_ACTOR,
                    cancel_reason="Payment hold expired",
                )
            except InvalidTransitionError:
                logger.debug("Booking %s left pending state before expiry", booking.id)
                continue
            if changed:
                expired.append(cancelled)
                self._outbox.record(BookingEventType.CANCELLED, cancelled)
        if expired:
            logger.info("Expired %d pending booking(s)", len(expired))
        return expired

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def list_bookings_for_builder(
        self,
        builder_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        status: Optional[BookingStatus] = None,
    ) -> list[Booking]:
        _require_id("builder_id", builder_id)
        if start is not None:
            start = _require_instant("start", start)
        if end is not None:
            end = _require_instant("end", end)
        return self._bookings.list_for_builder(builder_id, start, end, status)

    def list_bookings_for_client(
        self, client_id: str, status: Optional[BookingStatus] = None
    ) -> list[Booking]:
        _require_id("client_id", client_id)
        return self._bookings.list_for_client(client_id, status)
