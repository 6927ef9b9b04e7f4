"""Tests for the event outbox, request id context and the identity collaborator."""

import logging

import pytest

from booking_engine.events import EventOutbox
from booking_engine.identity import InMemoryIdentityProvider, can_complete_booking, can_manage_booking
from booking_engine.logging_context import (
    LOG_FORMAT,
    NO_REQUEST,
    RequestIdFilter,
    get_request_id,
    request_scope,
)
from booking_engine.schemas.booking_schema import Actor, ActorRole, BookingEventType
from tests.conftest import BUILDER_ID, CLIENT_ID, MONDAY, OTHER_BUILDER_ID, OTHER_CLIENT_ID, make_booking, utc


class TestEventOutbox:
    def test_record_and_drain_in_order(self):
        outbox = EventOutbox()
        booking = make_booking(utc(MONDAY, 9))
        outbox.record(BookingEventType.CREATED, booking)
        outbox.record(BookingEventType.CONFIRMED, booking)
        assert outbox.pending() == 2
        assert [e.event_type for e in outbox.drain()] == [BookingEventType.CREATED, BookingEventType.CONFIRMED]
        assert outbox.pending() == 0

    def test_drain_by_type(self):
        outbox = EventOutbox()
        booking = make_booking(utc(MONDAY, 9))
        outbox.record(BookingEventType.CREATED, booking)
        outbox.record(BookingEventType.CANCELLED, booking)
        assert len(outbox.drain(BookingEventType.CANCELLED)) == 1
        assert [e.event_type for e in outbox.drain()] == [BookingEventType.CREATED]

    def test_event_carries_request_id_and_snapshot(self):
        outbox = EventOutbox()
        booking = make_booking(utc(MONDAY, 9))
        with request_scope("REQ-outbox"):
            event = outbox.record(BookingEventType.CREATED, booking)
        booking.client_id = "C-changed"
        assert event.request_id == "REQ-outbox"
        assert event.booking.client_id == CLIENT_ID


    def test_event_outside_request_has_no_id(self):
        event = EventOutbox().record(BookingEventType.CREATED, make_booking(utc(MONDAY, 9)))
        assert event.request_id is None


class TestRequestScope:
    def test_scope_restores_previous_id(self):
        with request_scope("REQ-outer"):
            with request_scope("REQ-inner") as inner:
                assert inner == "REQ-inner"
                assert get_request_id() == "REQ-inner"
            assert get_request_id() == "REQ-outer"
        assert get_request_id() is None

    def test_scope_generates_id(self):
        with request_scope() as request_id:
            assert request_id.startswith("REQ-")

    def test_scope_reset_on_error(self):
        with pytest.raises(RuntimeError):
            with request_scope("REQ-boom"):
                raise RuntimeError("boom")
        assert get_request_id() is None

    def test_handler_filter_formats_plain_logger_records(self):
        record = logging.LogRecord(
            "booking_engine.repositories.sql", logging.INFO, __file__, 1, "stored", None, None
        )
        handler = logging.Handler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.addFilter(RequestIdFilter())
        with request_scope("REQ-sql"):
            assert handler.filter(record)
        assert "[REQ-sql] booking_engine.repositories.sql INFO: stored" in handler.format(record)

    def test_filter_outside_request(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
        RequestIdFilter().filter(record)
        assert record.request_id == NO_REQUEST


class TestIdentity:
    def test_resolve_registered(self):
        provider = InMemoryIdentityProvider()
        provider.register("C-9", ActorRole.CLIENT)
        assert provider.resolve("C-9") == Actor(id="C-9", role=ActorRole.CLIENT)
        assert provider.resolve("C-unknown") is None

    def test_manage_permissions(self):
        booking = make_booking(utc(MONDAY, 9))
        assert can_manage_booking(Actor(id=CLIENT_ID, role=ActorRole.CLIENT), booking)
        assert can_manage_booking(Actor(id=BUILDER_ID, role=ActorRole.BUILDER), booking)
        assert can_manage_booking(Actor(id="A-9", role=ActorRole.ADMIN), booking)
        assert not can_manage_booking(Actor(id=OTHER_CLIENT_ID, role=ActorRole.CLIENT), booking)
        assert not can_manage_booking(Actor(id=OTHER_BUILDER_ID, role=ActorRole.BUILDER), booking)

    def test_client_id_matching_builder_role_is_not_enough(self):
        booking = make_booking(utc(MONDAY, 9))
        assert not can_manage_booking(Actor(id=CLIENT_ID, role=ActorRole.BUILDER), booking)

    def test_complete_permissions(self):
        booking = make_booking(utc(MONDAY, 9))
        assert can_complete_booking(Actor(id=BUILDER_ID, role=ActorRole.BUILDER), booking)
        assert can_complete_booking(Actor(id="A-9", role=ActorRole.ADMIN), booking)
        assert not can_complete_booking(Actor(id=CLIENT_ID, role=ActorRole.CLIENT), booking)
