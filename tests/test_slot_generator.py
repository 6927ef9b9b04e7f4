"""Tests for slot generation."""

from datetime import date, datetime, timedelta, timezone

from booking_engine.repositories.base import AvailabilitySnapshot
from booking_engine.scheduling.slot_generator import (
    bookable_dates,
    day_windows,
    generate_slots,
    slots_for_day,
)
from booking_engine.schemas.booking_schema import BookingStatus
from tests.conftest import (
    MONDAY,
    NOW,
    TUESDAY,
    make_blocked,
    make_booking,
    make_rule,
    make_session_type,
    make_settings,
    make_special_hours,
    utc,
)


def snapshot(rules=(), exceptions=()):
    by_weekday = {}
    for rule in rules:
        by_weekday.setdefault(rule.day_of_week, []).append(rule)
    return AvailabilitySnapshot(by_weekday, {e.date: e for e in exceptions})


def starts(slots):
    return [s.start for s in slots]


MONDAY_MORNING = [make_rule(1, "09:00", "12:00")]


class TestConcreteScenario:
    def test_monday_morning_with_buffer(self):
        slots = generate_slots(
            snapshot(MONDAY_MORNING), [], make_session_type(30), make_settings(buffer_minutes=10),
            MONDAY, MONDAY, NOW,
        )
        # 12:20 falls outside the window; 11:40 only lets its trailing buffer overrun it.
        assert starts(slots) == [
            utc(MONDAY, 9), utc(MONDAY, 9, 40), utc(MONDAY, 10, 20), utc(MONDAY, 11), utc(MONDAY, 11, 40)
        ]

    def test_last_slot_never_ends_past_window_plus_buffer(self):
        slots = generate_slots(
            snapshot(MONDAY_MORNING), [], make_session_type(30), make_settings(buffer_minutes=10),
            MONDAY, MONDAY, NOW,
        )
        assert max(s.end for s in slots) == utc(MONDAY, 12, 10)

    def test_slot_never_starts_at_window_end(self):
        slots = generate_slots(
            snapshot(MONDAY_MORNING), [], make_session_type(30), make_settings(buffer_minutes=30),
            MONDAY, MONDAY, NOW,
        )
        assert utc(MONDAY, 12) not in starts(slots)

    def test_slot_ends_follow_duration(self):
        slots = generate_slots(
            snapshot(MONDAY_MORNING), [], make_session_type(30), make_settings(),
            MONDAY, MONDAY, NOW,
        )
        assert all(s.end - s.start == timedelta(minutes=30) for s in slots)

    def test_blocked_monday_has_no_slots(self):
        slots = generate_slots(
            snapshot(MONDAY_MORNING, [make_blocked(MONDAY)]), [], make_session_type(30),
            make_settings(), MONDAY, MONDAY, NOW,
        )
        assert slots == []

    def test_no_buffer_packs_back_to_back(self):
        slots = generate_slots(
            snapshot(MONDAY_MORNING), [], make_session_type(60), make_settings(buffer_minutes=0),
            MONDAY, MONDAY, NOW,
        )
        assert starts(slots) == [utc(MONDAY, 9), utc(MONDAY, 10), utc(MONDAY, 11)]


class TestExceptions:
    def test_special_hours_replace_rules(self):
        exception = make_special_hours(MONDAY, [("14:00", "15:00")])
        slots = generate_slots(
            snapshot(MONDAY_MORNING, [exception]), [], make_session_type(30),
            make_settings(buffer_minutes=0), MONDAY, MONDAY, NOW,
        )
        assert starts(slots) == [utc(MONDAY, 14), utc(MONDAY, 14, 30)]

    def test_special_hours_on_day_without_rules(self):
        exception = make_special_hours(TUESDAY, [("10:00", "11:00")])
        slots = generate_slots(
            snapshot(MONDAY_MORNING, [exception]), [], make_session_type(60),
            make_settings(), TUESDAY, TUESDAY, NOW,
        )
        assert starts(slots) == [utc(TUESDAY, 10)]

    def test_blocked_day_only_affects_its_date(self):
        next_monday = MONDAY + timedelta(days=7)
        slots = generate_slots(
            snapshot(MONDAY_MORNING, [make_blocked(MONDAY)]), [], make_session_type(60),
            make_settings(buffer_minutes=0), MONDAY, next_monday, NOW,
        )
        assert {s.start.date() for s in slots} == {next_monday}

    def test_day_without_rules_has_no_slots(self):
        slots = generate_slots(
            snapshot(MONDAY_MORNING), [], make_session_type(30), make_settings(),
            TUESDAY, TUESDAY, NOW,
        )
        assert slots == []


class TestWindows:
    def test_overlapping_rules_are_merged(self):
        rules = [make_rule(1, "09:00", "10:30"), make_rule(1, "10:00", "11:00")]
        windows = day_windows(MONDAY, snapshot(rules), "UTC")
        assert len(windows) == 1
        assert windows[0].start == utc(MONDAY, 9)
        assert windows[0].end == utc(MONDAY, 11)

    def test_adjacent_rules_produce_seamless_slots(self):
        rules = [make_rule(1, "09:00", "09:45"), make_rule(1, "09:45", "10:30")]
        slots = generate_slots(
            snapshot(rules), [], make_session_type(30), make_settings(buffer_minutes=0),
            MONDAY, MONDAY, NOW,
        )
        assert starts(slots) == [utc(MONDAY, 9), utc(MONDAY, 9, 30), utc(MONDAY, 10)]

    def test_inverted_rule_discarded(self):
        rules = [make_rule(1, "12:00", "09:00"), make_rule(1, "13:00", "14:00")]
        windows = day_windows(MONDAY, snapshot(rules), "UTC")
        assert [(w.start, w.end) for w in windows] == [(utc(MONDAY, 13), utc(MONDAY, 14))]

    def test_zero_length_rule_discarded(self):
        assert day_windows(MONDAY, snapshot([make_rule(1, "09:00", "09:00")]), "UTC") == []

    def test_duration_longer_than_window_yields_nothing(self):
        slots = generate_slots(
            snapshot(MONDAY_MORNING), [], make_session_type(240), make_settings(),
            MONDAY, MONDAY, NOW,
        )
        assert slots == []

    def test_windows_use_builder_timezone(self):
        rules = [make_rule(1, "09:00", "10:00")]
        slots = generate_slots(
            snapshot(rules), [], make_session_type(60),
            make_settings(timezone="America/New_York"), MONDAY, MONDAY, NOW,
        )
        assert starts(slots) == [utc(MONDAY, 13)]


class TestBookingsAndBuffer:
    def test_booked_slot_removed(self):
        booking = make_booking(utc(MONDAY, 9, 40))
        slots = generate_slots(
            snapshot(MONDAY_MORNING), [booking], make_session_type(30),
            make_settings(buffer_minutes=10), MONDAY, MONDAY, NOW,
        )
        assert utc(MONDAY, 9, 40) not in starts(slots)
        assert utc(MONDAY, 9) in starts(slots)
        assert utc(MONDAY, 10, 20) in starts(slots)

    def test_buffer_keeps_distance_from_foreign_booking(self):
        # Booking 10:00-10:30 blocks candidates within 10 minutes of it.
        booking = make_booking(utc(MONDAY, 10))
        slots = generate_slots(
            snapshot(MONDAY_MORNING), [booking], make_session_type(30),
            make_settings(buffer_minutes=10), MONDAY, MONDAY, NOW,
        )
        assert starts(slots) == [utc(MONDAY, 9), utc(MONDAY, 11), utc(MONDAY, 11, 40)]

    def test_cancelled_booking_frees_slot(self):
        booking = make_booking(utc(MONDAY, 9), status=BookingStatus.CANCELLED)
        slots = generate_slots(
            snapshot(MONDAY_MORNING), [booking], make_session_type(30),
            make_settings(), MONDAY, MONDAY, NOW,
        )
        assert starts(slots)[0] == utc(MONDAY, 9)

    def test_session_type_buffer_overrides_builder_buffer(self):
        slots = generate_slots(
            snapshot(MONDAY_MORNING), [], make_session_type(30, buffer_minutes=30),
            make_settings(buffer_minutes=10), MONDAY, MONDAY, NOW,
        )
        assert starts(slots) == [utc(MONDAY, 9), utc(MONDAY, 10), utc(MONDAY, 11)]

    def test_stored_booking_keeps_its_own_buffer_after(self):
        booking = make_booking(utc(MONDAY, 9), buffer_minutes=30)
        slots = generate_slots(
            snapshot(MONDAY_MORNING), [booking], make_session_type(30, buffer_minutes=0),
            make_settings(), MONDAY, MONDAY, NOW,
        )
        assert starts(slots) == [utc(MONDAY, 10), utc(MONDAY, 10, 30), utc(MONDAY, 11), utc(MONDAY, 11, 30)]

    def test_stored_booking_keeps_its_own_buffer_before(self):
        booking = make_booking(utc(MONDAY, 10), buffer_minutes=30)
        slots = generate_slots(
            snapshot(MONDAY_MORNING), [booking], make_session_type(30, buffer_minutes=0),
            make_settings(), MONDAY, MONDAY, NOW,
        )
        assert starts(slots) == [utc(MONDAY, 9), utc(MONDAY, 11), utc(MONDAY, 11, 30)]


class TestNoticeAndAdvance:
    def test_min_notice_excludes_early_slots(self):
        now = utc(MONDAY, 8, 30)
        slots = generate_slots(
            snapshot(MONDAY_MORNING), [], make_session_type(30),
            make_settings(min_notice_minutes=60), MONDAY, MONDAY, now,
        )
        assert all(s.start >= now + timedelta(minutes=60) for s in slots)
        assert starts(slots)[0] == utc(MONDAY, 9, 40)

    def test_past_slots_never_offered(self):
        now = utc(MONDAY, 10)
        slots = generate_slots(
            snapshot(MONDAY_MORNING), [], make_session_type(30), make_settings(),
            MONDAY, MONDAY, now,
        )
        assert starts(slots) == [utc(MONDAY, 10, 20), utc(MONDAY, 11), utc(MONDAY, 11, 40)]

    def test_dates_before_today_skipped(self):
        slots = generate_slots(
            snapshot(MONDAY_MORNING), [], make_session_type(30), make_settings(),
            MONDAY - timedelta(days=7), MONDAY, NOW,
        )
        assert {s.start.date() for s in slots} == {MONDAY}

    def test_max_advance_days_bounds_the_range(self):
        builder_settings = make_settings(max_advance_days=7)
        slots = generate_slots(
            snapshot(MONDAY_MORNING), [], make_session_type(30), builder_settings,
            MONDAY, MONDAY + timedelta(days=20), NOW,
        )
        last_allowed = MONDAY + timedelta(days=7)
        assert slots
        assert all(s.start.date() <= last_allowed for s in slots)
        assert {s.start.date() for s in slots} == {MONDAY, last_allowed}

    def test_bookable_dates_clip(self):
        first, last = bookable_dates(
            MONDAY - timedelta(days=3), MONDAY + timedelta(days=90), make_settings(max_advance_days=10), NOW
        )
        assert first == MONDAY
        assert last == MONDAY + timedelta(days=10)


class TestPausedAndDst:
    def test_not_accepting_bookings_yields_nothing(self):
        slots = generate_slots(
            snapshot(MONDAY_MORNING), [], make_session_type(30),
            make_settings(accepting_bookings=False), MONDAY, MONDAY, NOW,
        )
        assert slots == []

    def test_spring_forward_window_shrinks(self):
        # Sunday 2026-03-08, New York: 01:00 EST to 04:00 EDT is two real hours.
        sunday = date(2026, 3, 8)
        now = datetime(2026, 3, 1, tzinfo=timezone.utc)
        slots = generate_slots(
            snapshot([make_rule(0, "01:00", "04:00")]), [], make_session_type(60),
            make_settings(timezone="America/New_York", buffer_minutes=0), sunday, sunday, now,
        )
        assert starts(slots) == [
            datetime(2026, 3, 8, 6, 0, tzinfo=timezone.utc),
            datetime(2026, 3, 8, 7, 0, tzinfo=timezone.utc),
        ]

    def test_fall_back_window_grows(self):
        # Sunday 2026-11-01, New York: 00:00 EDT to 03:00 EST is four real hours.
        sunday = date(2026, 11, 1)
        slots = generate_slots(
            snapshot([make_rule(0, "00:00", "03:00")]), [], make_session_type(60),
            make_settings(timezone="America/New_York", buffer_minutes=0), sunday, sunday, NOW,
        )
        assert len(slots) == 4

    def test_slots_sorted_across_days(self):
        rules = [make_rule(1, "09:00", "10:00"), make_rule(2, "09:00", "10:00")]
        slots = generate_slots(
            snapshot(rules), [], make_session_type(30), make_settings(buffer_minutes=0),
            MONDAY, TUESDAY, NOW,
        )
        assert starts(slots) == sorted(starts(slots))
        assert len(slots) == 4


class TestSlotsForDay:
    def test_is_pure(self):
        snap = snapshot(MONDAY_MORNING)
        first = slots_for_day(MONDAY, snap, [], 30, 10, "UTC", NOW)
        second = slots_for_day(MONDAY, snap, [], 30, 10, "UTC", NOW)
        assert first == second

    def test_earliest_start_respected(self):
        slots = slots_for_day(MONDAY, snapshot(MONDAY_MORNING), [], 30, 0, "UTC", utc(MONDAY, 11))
        assert starts(slots) == [utc(MONDAY, 11), utc(MONDAY, 11, 30)]
