"""Tests for the lifecycle event bus."""

import pytest

from carwash.events import (
    BOOKING_CANCELLED,
    BOOKING_CREATED,
    EventBus,
    LifecycleEvent,
)
from tests.conftest import FROZEN_NOW, make_booking


def event(name=BOOKING_CREATED):
    return LifecycleEvent(name=name, booking=make_booking(1), occurred_at=FROZEN_NOW)


def test_handler_receives_matching_events_only():
    bus = EventBus()
    received = []
    bus.subscribe(BOOKING_CANCELLED, received.append)
    bus.publish(event(BOOKING_CREATED))
    bus.publish(event(BOOKING_CANCELLED))
    assert [e.name for e in received] == [BOOKING_CANCELLED]


def test_subscribe_all_sees_everything():
    bus = EventBus()
    received = []
    bus.subscribe_all(received.append)
    bus.publish(event(BOOKING_CREATED))
    bus.publish(event(BOOKING_CANCELLED))
    assert len(received) == 2


def test_unknown_event_name_rejected():
    with pytest.raises(ValueError, match="Unknown event"):
        EventBus().subscribe("booking.deleted", lambda e: None)


def test_failing_handler_is_isolated():
    bus = EventBus()
    received = []

    def broken(e):
        raise RuntimeError("subscriber bug")

    bus.subscribe(BOOKING_CREATED, broken)
    bus.subscribe(BOOKING_CREATED, received.append)
    bus.publish(event())
    assert len(received) == 1


def test_event_carries_booking_snapshot():
    e = event()
    assert e.booking.confirmation_code == "TEST0001"
    assert e.old_status is None
