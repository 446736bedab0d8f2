"""
Car-wash booking core entry point.

Runs either the periodic no-show sweeper or an offline demo that books,
pays for, and cancels washes against a seeded in-memory store.

Usage:
    Demo:     python main.py demo
    Sweeper:  python main.py sweep
"""

import logging
import signal
import sys
import threading
from datetime import datetime, time, timedelta

from carwash.config import BookingConfigProvider, settings

logger = logging.getLogger(__name__)


def _build_service(store):
    """Wire a BookingService with local notification and payment backends."""
    from carwash.booking import BookingService, SagaRunner
    from carwash.events import EventBus
    from carwash.integrations.notifications import LoggingNotifier
    from carwash.integrations.payments import MockPaymentGateway

    events = EventBus()
    events.subscribe_all(
        lambda event: logger.info(
            "Event %s: booking %s (%s)", event.name, event.booking.id, event.booking.status.value
        )
    )
    return BookingService(
        store,
        events=events,
        notifier=LoggingNotifier(),
        payments=MockPaymentGateway(declined_methods={"pm_card_declined"}),
        config_provider=BookingConfigProvider(store, ttl_seconds=30.0),
        runner=SagaRunner(settings.saga.max_attempts, settings.saga.retry_backoff_seconds),
    )


def _run_sweeper() -> None:
    """Sweep overdue confirmed bookings to no-show until interrupted."""
    from carwash.catalog import seed_defaults
    from carwash.storage.memory import InMemoryBookingStore
    from carwash.workflow import NoShowSweeper, StatusWorkflow

    store = seed_defaults(InMemoryBookingStore())
    sweeper = NoShowSweeper(
        StatusWorkflow(store),
        store,
        grace_minutes=settings.sweeper.no_show_grace_minutes,
    )
    stop = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    sweeper.run_forever(settings.sweeper.sweep_interval_seconds, stop)


def _run_demo() -> None:
    """Book, pay for, and cancel a few washes, printing each result."""
    from carwash.catalog import find_service, seed_defaults
    from carwash.errors import BookingError
    from carwash.schemas.booking_schema import ActorRole, BookingRequest
    from carwash.schemas.customer_schema import Customer
    from carwash.schemas.payment_schema import PaymentRequest
    from carwash.schemas.resource_schema import VehicleSize
    from carwash.scheduling import AvailabilityService
    from carwash.storage.memory import InMemoryBookingStore

    store = seed_defaults(InMemoryBookingStore())
    service = _build_service(store)
    availability = AvailabilityService(store)

    day = datetime.now().date() + timedelta(days=1)
    while day.weekday() >= 5:
        day += timedelta(days=1)

    services = store.list_services(active_only=True)
    wash = find_service(services, "full service")
    detail = find_service(services, "detail")

    slots = [s for s in availability.generate_slots(day, wash.id) if s.available]
    print(f"{wash.name} on {day:%A %d %B}: {len(slots)} open slots")
    print("  " + ", ".join(s.time for s in slots[:8]) + (" ..." if len(slots) > 8 else ""))

    customer = Customer(name="Jamie Rivera", email="jamie@example.com", phone="+61 412 345 678")
    plain = service.create_booking(
        BookingRequest(service_id=wash.id, date=day, start_time=time(9, 0), customer=customer,
                       vehicle_size=VehicleSize.SMALL, license_plate="ABC123"),
    )
    print(f"Booked {plain.confirmation_code}: {plain.status.value}, bay {plain.assigned_bay_id}")

    paid = service.create_booking(
        BookingRequest(service_id=detail.id, date=day, start_time=time(14, 0), customer=customer,
                       vehicle_size=VehicleSize.LARGE),
        payment=PaymentRequest(payment_method_id="pm_card_visa", customer_email=customer.email),
    )
    print(f"Booked {paid.confirmation_code}: {paid.status.value}, payment {paid.payment_status.value}")

    try:
        service.create_booking(
            BookingRequest(service_id=detail.id, date=day, start_time=time(16, 0),
                           customer=customer),
            payment=PaymentRequest(payment_method_id="pm_card_declined",
                                   customer_email=customer.email),
        )
    except BookingError as e:
        print(f"Declined booking rolled back: {e.code} ({e.user_message})")

    cancelled = service.cancel_booking(paid.id, actor="admin-1", role=ActorRole.ADMIN,
                                       reason="Customer called to cancel")
    print(f"Cancelled {cancelled.confirmation_code}: payment {cancelled.payment_status.value}")

    for row in service.workflow.history(cancelled.id):
        previous = row.from_status.value if row.from_status else "-"
        print(f"  {row.created_at:%H:%M:%S} {previous} -> {row.to_status.value} by {row.actor}")


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "sweep":
        _run_sweeper()
    else:
        _run_demo()
