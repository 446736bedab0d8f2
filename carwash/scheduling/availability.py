"""
Bookable time-slot generation for a (date, service) pair.

Walks the business-hours window in ``interval_minutes`` steps and drops
starts that are inside the lead time, touch the break, or run past closing.
Remaining starts are scored against the day's occupying bookings, which are
fetched once per call. Results reflect the instant they were computed.

Two capacity policies are supported (see ``CapacityPolicy``):
    bay_pool          capacity = enabled bays, every service competes
    service_capacity  capacity = service.capacity, only that service competes
"""

import logging
from datetime import date, timedelta
from typing import Hashable, Optional, TypedDict

from carwash.config import BookingConfigProvider, BookingConfiguration, CapacityPolicy
from carwash.errors import ServiceNotFoundError
from carwash.scheduling.clock import (
    Clock,
    add_minutes,
    combine,
    format_hhmm,
    iter_grid,
    minutes_of_day,
    parse_hhmm,
    system_clock,
)
from carwash.scheduling.conflicts import NON_OCCUPYING_STATUSES, count_overlapping
from carwash.scheduling.rules import break_overlaps
from carwash.schemas.booking_schema import Booking, TimeSlot
from carwash.schemas.resource_schema import Service
from carwash.storage.base import BookingStore

logger = logging.getLogger(__name__)


class DateAvailability(TypedDict):
    """Summary of availability for a single date."""

    date: str
    day_name: str
    slot_count: int


def slot_capacity(store: BookingStore, service: Service, policy: CapacityPolicy) -> int:
    if policy == CapacityPolicy.SERVICE_CAPACITY:
        return service.capacity
    return len(store.list_bays(enabled_only=True))


def competing_bookings(
    store: BookingStore, day: date, service: Service, policy: CapacityPolicy
) -> list[Booking]:
    """Occupying bookings on ``day`` that draw from the same capacity pool."""
    service_id = service.id if policy == CapacityPolicy.SERVICE_CAPACITY else None
    return store.list_bookings(
        day, service_id=service_id, exclude_statuses=NON_OCCUPYING_STATUSES
    )


def slot_lock_key(day: date, service_id: int, policy: CapacityPolicy) -> Hashable:
    """Lock key that serializes check-then-insert for one capacity pool."""
    if policy == CapacityPolicy.SERVICE_CAPACITY:
        return ("slot", day, service_id)
    return ("slot", day)


def require_active_service(store: BookingStore, service_id: int) -> Service:
    service = store.get_service(service_id)
    if service is None:
        raise ServiceNotFoundError(service_id)
    if not service.is_active:
        raise ServiceNotFoundError(service_id, inactive=True)
    return service


class AvailabilityService:
    """Read-only view of the booking grid."""

    def __init__(
        self,
        store: BookingStore,
        config_provider: Optional[BookingConfigProvider] = None,
        clock: Clock = system_clock,
    ) -> None:
        self._store = store
        self._config_provider = config_provider or BookingConfigProvider(store)
        self._clock = clock

    def generate_slots(
        self,
        day: date,
        service_id: int,
        config: Optional[BookingConfiguration] = None,
    ) -> list[TimeSlot]:
        """Ordered slots for ``day``; empty when the business is closed."""
        config = config or self._config_provider.load()
        service = require_active_service(self._store, service_id)
        now = self._clock()

        if self._store.get_holiday(day) is not None:
            logger.debug("No slots on %s: holiday", day)
            return []
        hours = self._store.get_business_hours(day.weekday())
        if hours is None or not hours.is_open:
            logger.debug("No slots on %s: closed", day)
            return []
        if day > now.date() + timedelta(days=config.max_advance_days):
            logger.debug("No slots on %s: beyond %d-day window", day, config.max_advance_days)
            return []

        earliest = now + timedelta(hours=config.lead_time_hours)
        capacity = slot_capacity(self._store, service, config.capacity_policy)
        existing = competing_bookings(self._store, day, service, config.capacity_policy)
        close = minutes_of_day(hours.end_time)

        slots: list[TimeSlot] = []
        for start in iter_grid(hours.start_time, hours.end_time, config.interval_minutes):
            if combine(day, start) < earliest:
                continue
            if minutes_of_day(start) + service.duration_minutes > close:
                continue
            end = add_minutes(start, service.duration_minutes)
            if break_overlaps(hours, start, end):
                continue

            booked = count_overlapping(start, end, existing)
            slots.append(
                TimeSlot(
                    time=format_hhmm(start),
                    available=booked < capacity,
                    capacity=capacity,
                    remaining_capacity=max(capacity - booked, 0),
                )
            )

        logger.debug(
            "Generated %d slots for service %s on %s (%d available)",
            len(slots), service_id, day, sum(1 for s in slots if s.available),
        )
        return slots

    def is_fully_booked(self, day: date, times: list[str], service_id: int) -> bool:
        """True unless at least one of ``times`` is offered and available."""
        wanted = {format_hhmm(parse_hhmm(t)) for t in times}
        return not any(
            slot.available for slot in self.generate_slots(day, service_id) if slot.time in wanted
        )

    def next_available_slot(
        self, service_id: int, start_day: Optional[date] = None, days: Optional[int] = None
    ) -> Optional[tuple[date, TimeSlot]]:
        """First available slot on or after ``start_day`` within the booking window."""
        config = self._config_provider.load()
        day = start_day or self._clock().date()
        horizon = days if days is not None else config.max_advance_days + 1
        for offset in range(horizon):
            candidate = day + timedelta(days=offset)
            for slot in self.generate_slots(candidate, service_id, config):
                if slot.available:
                    return candidate, slot
        return None

    def get_available_dates(
        self, service_id: int, start_day: Optional[date] = None, limit: int = 5
    ) -> list[DateAvailability]:
        """Get the next N dates with at least one available slot."""
        config = self._config_provider.load()
        day = start_day or self._clock().date()
        results: list[DateAvailability] = []
        for offset in range(config.max_advance_days + 1):
            candidate = day + timedelta(days=offset)
            count = sum(
                1 for slot in self.generate_slots(candidate, service_id, config) if slot.available
            )
            if count:
                results.append(
                    {
                        "date": candidate.isoformat(),
                        "day_name": candidate.strftime("%A"),
                        "slot_count": count,
                    }
                )
            if len(results) >= limit:
                break
        return results
