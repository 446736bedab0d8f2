"""Shared test fixtures and helpers."""

from datetime import date, datetime, time, timedelta
from typing import Optional

import pytest

from carwash.booking import BookingService, SagaRunner
from carwash.config import BookingConfigProvider, BookingDefaults
from carwash.events import EventBus, LifecycleEvent
from carwash.integrations.notifications import LoggingNotifier
from carwash.integrations.payments import MockPaymentGateway
from carwash.scheduling.clock import add_minutes, parse_hhmm
from carwash.schemas.booking_schema import (
    ActorRole,
    Booking,
    BookingRequest,
    BookingStatus,
)
from carwash.schemas.customer_schema import Customer
from carwash.schemas.resource_schema import BusinessHours, Service, VehicleSize, WashBay
from carwash.storage.memory import InMemoryBookingStore
from carwash.workflow.status_workflow import StatusWorkflow

# Monday 10 March 2025, 07:00 local time.
MONDAY = date(2025, 3, 10)
FROZEN_NOW = datetime(2025, 3, 10, 7, 0)

WASH_SERVICE_ID = 1  # 60 min, capacity 1
EXPRESS_SERVICE_ID = 2  # 30 min, capacity 2
RETIRED_SERVICE_ID = 3  # inactive


class FrozenClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: datetime = FROZEN_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_customer(name: str = "Alex Morgan") -> Customer:
    return Customer(name=name, email="alex@example.com", phone="+358 40 123 4567")


def make_request(
    start: str = "10:00",
    day: date = MONDAY,
    service_id: int = WASH_SERVICE_ID,
    vehicle_size: VehicleSize = VehicleSize.MEDIUM,
    **kwargs,
) -> BookingRequest:
    """Helper to create a BookingRequest with sensible defaults."""
    return BookingRequest(
        service_id=service_id,
        date=day,
        start_time=parse_hhmm(start),
        customer=kwargs.pop("customer", make_customer()),
        vehicle_size=vehicle_size,
        **kwargs,
    )


def make_booking(
    booking_id: int,
    start: str = "10:00",
    duration: int = 60,
    status: BookingStatus = BookingStatus.CONFIRMED,
    service_id: int = WASH_SERVICE_ID,
    day: date = MONDAY,
    bay_id: Optional[int] = None,
    vehicle_size: VehicleSize = VehicleSize.MEDIUM,
    code: Optional[str] = None,
) -> Booking:
    """Helper to create a stored-shape Booking without going through the service."""
    start_time = parse_hhmm(start)
    return Booking(
        id=booking_id,
        service_id=service_id,
        date=day,
        start_time=start_time,
        end_time=add_minutes(start_time, duration),
        duration_minutes=duration,
        price_cents=3500,
        status=status,
        customer=make_customer(),
        vehicle_size=vehicle_size,
        confirmation_code=code or f"TEST{booking_id:04d}",
        assigned_bay_id=bay_id,
        created_at=FROZEN_NOW - timedelta(days=1),
    )


def seed_booking(store: InMemoryBookingStore, booking: Booking) -> Booking:
    """Insert a booking with a consistent history (created, then confirmed)."""
    store.insert_booking(booking)
    store.append_history(
        booking.id, BookingStatus.PENDING, "seed", ActorRole.SYSTEM, booking.created_at
    )
    if booking.status != BookingStatus.PENDING:
        store.append_history(
            booking.id,
            booking.status,
            "seed",
            ActorRole.SYSTEM,
            booking.created_at,
            from_status=BookingStatus.PENDING,
        )
    return booking


def weekday_hours(
    break_start: Optional[time] = None, break_end: Optional[time] = None
) -> list[BusinessHours]:
    hours = [
        BusinessHours(
            day_of_week=day,
            start_time=time(8, 0),
            end_time=time(18, 0),
            break_start=break_start,
            break_end=break_end,
        )
        for day in range(5)
    ]
    hours.append(BusinessHours(day_of_week=5, is_open=False))
    hours.append(BusinessHours(day_of_week=6, is_open=False))
    return hours


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def store():
    """Store with one all-size bay, Mon-Fri 08:00-18:00, no break."""
    store = InMemoryBookingStore()
    store.add_service(Service(id=WASH_SERVICE_ID, name="Full Service Wash",
                              duration_minutes=60, price_cents=3500, capacity=1))
    store.add_service(Service(id=EXPRESS_SERVICE_ID, name="Express Exterior",
                              duration_minutes=30, price_cents=1500, capacity=2))
    store.add_service(Service(id=RETIRED_SERVICE_ID, name="Engine Bay Clean",
                              duration_minutes=45, price_cents=4500, is_active=False))
    store.add_bay(WashBay(id=1, bay_number=1, name="Bay 1"))
    for hours in weekday_hours():
        store.set_business_hours(hours)
    return store


@pytest.fixture
def config_provider(store):
    return BookingConfigProvider(store, defaults=BookingDefaults(
        interval_minutes=30,
        lead_time_hours=2,
        max_advance_days=30,
        cancellation_deadline_hours=24,
        auto_bay_assignment=True,
        auto_confirm=False,
        allow_customer_cancellation=True,
        capacity_policy="bay_pool",
    ))


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def recorded_events(event_bus):
    events: list[LifecycleEvent] = []
    event_bus.subscribe_all(events.append)
    return events


@pytest.fixture
def notifier():
    return LoggingNotifier()


@pytest.fixture
def payments(clock):
    return MockPaymentGateway(declined_methods={"pm_declined"}, clock=clock)


@pytest.fixture
def saga_runner():
    return SagaRunner(max_attempts=3, backoff_seconds=0.0, sleep=lambda seconds: None)


@pytest.fixture
def workflow(store, event_bus, config_provider, clock):
    return StatusWorkflow(store, event_bus, config_provider, clock)


@pytest.fixture
def booking_service(store, event_bus, notifier, payments, config_provider, clock, saga_runner):
    return BookingService(
        store,
        events=event_bus,
        notifier=notifier,
        payments=payments,
        config_provider=config_provider,
        clock=clock,
        runner=saga_runner,
    )
