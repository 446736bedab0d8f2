"""Default car-wash catalog: services, bays, and opening hours used for seeding."""

import logging
from datetime import time
from typing import Optional

from carwash.schemas.resource_schema import BusinessHours, Service, VehicleSize, WashBay
from carwash.storage.memory import InMemoryBookingStore

logger = logging.getLogger(__name__)

DEFAULT_SERVICES: list[Service] = [
    Service(
        id=1,
        name="Express Exterior",
        description="Touchless exterior wash, spot-free rinse, and air dry.",
        duration_minutes=30,
        price_cents=1500,
        capacity=2,
    ),
    Service(
        id=2,
        name="Full Service Wash",
        description="Exterior wash, interior vacuum, windows, and dashboard wipe-down.",
        duration_minutes=60,
        price_cents=3500,
        capacity=2,
    ),
    Service(
        id=3,
        name="Premium Detail",
        description="Hand wash, clay bar, wax, upholstery shampoo, and tyre shine.",
        duration_minutes=120,
        price_cents=12000,
        capacity=1,
    ),
    Service(
        id=4,
        name="Engine Bay Clean",
        description="Degrease and steam clean of the engine compartment.",
        duration_minutes=45,
        price_cents=4500,
        capacity=1,
        is_active=False,
    ),
]

DEFAULT_BAYS: list[WashBay] = [
    WashBay(id=1, bay_number=1, name="Compact Bay", max_capacity=VehicleSize.MEDIUM),
    WashBay(id=2, bay_number=2, name="Standard Bay"),
    WashBay(id=3, bay_number=3, name="Truck Bay", min_capacity=VehicleSize.MEDIUM),
]

WEEKDAY_HOURS = dict(start_time=time(8, 0), end_time=time(18, 0),
                     break_start=time(12, 0), break_end=time(13, 0))

DEFAULT_HOURS: list[BusinessHours] = [
    *(BusinessHours(day_of_week=day, **WEEKDAY_HOURS) for day in range(5)),
    BusinessHours(day_of_week=5, start_time=time(9, 0), end_time=time(16, 0)),
    BusinessHours(day_of_week=6, is_open=False),
]


def find_service(services: list[Service], query: str) -> Optional[Service]:
    """Match a free-text query to a service by name. Returns None if no match."""
    normalized = query.lower().strip()
    if not normalized:
        return None
    for service in services:
        name = service.name.lower()
        if normalized == name or normalized in name:
            return service
    return None


def seed_defaults(store: InMemoryBookingStore) -> InMemoryBookingStore:
    """Load the default catalog into an empty store."""
    for service in DEFAULT_SERVICES:
        store.add_service(service)
    for bay in DEFAULT_BAYS:
        store.add_bay(bay)
    for hours in DEFAULT_HOURS:
        store.set_business_hours(hours)
    logger.info(
        "Seeded %d services, %d bays, %d opening-hour rows",
        len(DEFAULT_SERVICES), len(DEFAULT_BAYS), len(DEFAULT_HOURS),
    )
    return store
