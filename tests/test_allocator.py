"""Tests for wash-bay assignment."""

import threading
from datetime import time

import pytest

from carwash.errors import BookingNotFoundError
from carwash.events import BOOKING_ASSIGNED
from carwash.scheduling.allocator import BayAllocator
from carwash.schemas.booking_schema import ActorRole, BookingStatus
from carwash.schemas.resource_schema import VehicleSize, WashBay
from carwash.workflow.status_workflow import StatusWorkflow
from tests.conftest import MONDAY, make_booking, seed_booking


@pytest.fixture
def bays(store):
    """Three bays: 1 small-medium, 2 any size, 3 medium-large."""
    store.add_bay(WashBay(id=1, bay_number=1, max_capacity=VehicleSize.MEDIUM))
    store.add_bay(WashBay(id=2, bay_number=2))
    store.add_bay(WashBay(id=3, bay_number=3, min_capacity=VehicleSize.MEDIUM))
    return store


@pytest.fixture
def allocator(bays, event_bus, clock):
    return BayAllocator(bays, event_bus, clock)


class CountingStore:
    """Wraps a store and counts per-bay booking queries."""

    def __init__(self, inner):
        self._inner = inner
        self.bay_queries = 0

    def list_bookings(self, day, **kwargs):
        if kwargs.get("bay_id") is not None:
            self.bay_queries += 1
        return self._inner.list_bookings(day, **kwargs)

    def __getattr__(self, name):
        return getattr(self._inner, name)


class TestFindBay:
    def test_lowest_numbered_eligible_bay_wins(self, allocator):
        assert allocator.find_bay(MONDAY, time(10), 60, VehicleSize.SMALL) == 1

    def test_size_filters_bays(self, allocator):
        assert allocator.find_bay(MONDAY, time(10), 60, VehicleSize.LARGE) == 2

    def test_bay_number_orders_not_id(self, store, event_bus, clock):
        store.add_bay(WashBay(id=1, bay_number=5))
        store.add_bay(WashBay(id=7, bay_number=2))
        allocator = BayAllocator(store, event_bus, clock)
        assert allocator.find_bay(MONDAY, time(10), 60, VehicleSize.MEDIUM) == 7

    def test_skips_conflicting_bay(self, allocator, bays):
        seed_booking(bays, make_booking(1, "10:00", bay_id=1))
        assert allocator.find_bay(MONDAY, time(10, 30), 60, VehicleSize.SMALL) == 2

    def test_adjacent_booking_does_not_conflict(self, allocator, bays):
        seed_booking(bays, make_booking(1, "10:00", bay_id=1))
        assert allocator.find_bay(MONDAY, time(11), 60, VehicleSize.SMALL) == 1

    def test_cancelled_booking_frees_bay(self, allocator, bays):
        seed_booking(bays, make_booking(1, "10:00", bay_id=1, status=BookingStatus.CANCELLED))
        assert allocator.find_bay(MONDAY, time(10), 60, VehicleSize.SMALL) == 1

    def test_disabled_bay_skipped(self, allocator, bays):
        bays.add_bay(WashBay(id=1, bay_number=1, is_enabled=False))
        assert allocator.find_bay(MONDAY, time(10), 60, VehicleSize.SMALL) == 2

    def test_no_bay_is_not_an_error(self, allocator, bays):
        seed_booking(bays, make_booking(1, "10:00", bay_id=2))
        seed_booking(bays, make_booking(2, "10:00", bay_id=3))
        assert allocator.find_bay(MONDAY, time(10), 60, VehicleSize.LARGE) is None


class TestAutoAssign:
    def test_assigns_and_persists(self, allocator, bays, clock):
        seed_booking(bays, make_booking(1, "10:00", vehicle_size=VehicleSize.LARGE))
        assert allocator.auto_assign(1, assigned_by="staff-7") is True
        booking = bays.get_booking(1)
        assert booking.assigned_bay_id == 2
        assert booking.assigned_at == clock.now
        assert booking.assigned_by == "staff-7"

    def test_emits_assigned_event(self, allocator, bays, recorded_events):
        seed_booking(bays, make_booking(1, "10:00"))
        allocator.auto_assign(1)
        assert [e.name for e in recorded_events] == [BOOKING_ASSIGNED]
        assert recorded_events[0].bay_id == 1

    def test_returns_false_when_no_bay(self, allocator, bays, recorded_events):
        seed_booking(bays, make_booking(1, "10:00", bay_id=2))
        seed_booking(bays, make_booking(2, "10:00", bay_id=3))
        seed_booking(bays, make_booking(3, "10:00", vehicle_size=VehicleSize.LARGE))
        assert allocator.auto_assign(3) is False
        assert bays.get_booking(3).assigned_bay_id is None
        assert recorded_events == []

    def test_unknown_booking(self, allocator):
        with pytest.raises(BookingNotFoundError):
            allocator.auto_assign(404)

    def test_idempotent_without_second_query(self, bays, event_bus, clock, recorded_events):
        counting = CountingStore(bays)
        allocator = BayAllocator(counting, event_bus, clock)
        seed_booking(bays, make_booking(1, "10:00"))

        assert allocator.auto_assign(1) is True
        first = bays.get_booking(1)
        queries = counting.bay_queries
        assert queries >= 1

        assert allocator.auto_assign(1) is True
        assert counting.bay_queries == queries
        assert bays.get_booking(1) == first
        assert len(recorded_events) == 1

    def test_two_bookings_same_slot_get_different_bays(self, allocator, bays):
        seed_booking(bays, make_booking(1, "10:00", vehicle_size=VehicleSize.MEDIUM))
        seed_booking(bays, make_booking(2, "10:00", vehicle_size=VehicleSize.MEDIUM))
        allocator.auto_assign(1)
        allocator.auto_assign(2)
        assert {bays.get_booking(1).assigned_bay_id, bays.get_booking(2).assigned_bay_id} == {1, 2}


class RacingClock:
    """On its first call, starts ``race`` in a thread and gives it a head start."""

    def __init__(self, clock, race):
        self._clock = clock
        self._race = race
        self.errors = []
        self.thread = None

    def _run(self):
        try:
            self._race()
        except Exception as exc:
            self.errors.append(exc)

    def __call__(self):
        if self.thread is None:
            self.thread = threading.Thread(target=self._run)
            self.thread.start()
            self.thread.join(timeout=0.2)
        return self._clock()

    def finish(self):
        self.thread.join(timeout=5)
        assert not self.thread.is_alive()
        assert self.errors == []


class TestConcurrentWriters:
    @pytest.fixture
    def pending(self, bays):
        return seed_booking(bays, make_booking(1, "10:00", status=BookingStatus.PENDING))

    def test_confirm_during_assignment_keeps_both_writes(
        self, pending, bays, workflow, event_bus, clock
    ):
        racing = RacingClock(
            clock,
            lambda: workflow.execute(1, BookingStatus.CONFIRMED, actor="staff-1", role=ActorRole.STAFF),
        )
        allocator = BayAllocator(bays, event_bus, racing)

        assert allocator.auto_assign(1) is True
        racing.finish()

        booking = bays.get_booking(1)
        assert booking.status == BookingStatus.CONFIRMED
        assert booking.assigned_bay_id == 1
        assert bays.list_history(1)[-1].to_status == booking.status
        result = workflow.validate(1)
        assert result.is_valid
        assert result.warnings == []

    def test_assignment_during_confirm_keeps_both_writes(
        self, pending, bays, event_bus, config_provider, clock
    ):
        allocator = BayAllocator(bays, event_bus, clock)
        racing = RacingClock(clock, lambda: allocator.auto_assign(1))
        workflow = StatusWorkflow(bays, event_bus, config_provider, racing)

        workflow.execute(1, BookingStatus.CONFIRMED, actor="staff-1", role=ActorRole.STAFF)
        racing.finish()

        booking = bays.get_booking(1)
        assert booking.status == BookingStatus.CONFIRMED
        assert booking.assigned_bay_id == 1
        assert bays.list_history(1)[-1].to_status == booking.status
