"""
Wash-bay assignment.

Picks the lowest-numbered enabled bay that fits the vehicle and has no
overlapping occupying booking. Finding no bay is an ordinary outcome
(``None`` / ``False``); the booking simply stays unassigned.
"""

from datetime import date, time
from typing import Optional

from carwash.errors import BookingNotFoundError
from carwash.events import BOOKING_ASSIGNED, EventBus, LifecycleEvent
from carwash.logging_context import get_operation_logger
from carwash.scheduling.clock import Clock, add_minutes, system_clock
from carwash.scheduling.conflicts import NON_OCCUPYING_STATUSES, overlapping_bookings
from carwash.schemas.booking_schema import Booking
from carwash.schemas.resource_schema import VehicleSize, WashBay
from carwash.storage.base import BookingStore, booking_lock_key

logger = get_operation_logger(__name__)


def bay_lock_key(day: date) -> tuple[str, date]:
    return ("bays", day)


class BayAllocator:
    """Assigns physical wash bays to bookings."""

    def __init__(
        self,
        store: BookingStore,
        events: Optional[EventBus] = None,
        clock: Clock = system_clock,
    ) -> None:
        self._store = store
        self._events = events
        self._clock = clock

    def eligible_bays(self, vehicle_size: VehicleSize) -> list[WashBay]:
        """Enabled bays accepting ``vehicle_size``, lowest bay number first."""
        return [
            bay for bay in self._store.list_bays(enabled_only=True) if bay.accepts(vehicle_size)
        ]

    def find_bay(
        self,
        day: date,
        start_time: time,
        duration_minutes: int,
        vehicle_size: VehicleSize,
        exclude_booking_id: Optional[int] = None,
    ) -> Optional[int]:
        """Return the first free eligible bay id, or ``None`` when every bay conflicts."""
        end_time = add_minutes(start_time, duration_minutes)
        for bay in self.eligible_bays(vehicle_size):
            assigned = [
                b for b in self._store.list_bookings(
                    day, bay_id=bay.id, exclude_statuses=NON_OCCUPYING_STATUSES
                )
                if b.id != exclude_booking_id
            ]
            if not overlapping_bookings(start_time, end_time, assigned):
                return bay.id
        return None

    def auto_assign(self, booking_id: int, assigned_by: str = "system") -> bool:
        """
        Assign a bay to a booking if it has none.

        Idempotent: an already-assigned booking returns True without any
        allocation query. Returns False when no eligible bay is free.

        Raises:
            BookingNotFoundError: If the booking does not exist.
        """
        booking = self._store.get_booking(booking_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        if booking.assigned_bay_id is not None:
            return True

        # The booking key keeps status writers from interleaving with the bay write.
        lock_keys = (bay_lock_key(booking.date), booking_lock_key(booking_id))
        with self._store.transaction(*lock_keys) as tx:
            booking = self._store.get_booking(booking_id)
            if booking is None:
                raise BookingNotFoundError(booking_id)
            if booking.assigned_bay_id is not None:
                return True

            bay_id = self.find_bay(
                booking.date,
                booking.start_time,
                booking.duration_minutes,
                booking.vehicle_size,
                exclude_booking_id=booking.id,
            )
            if bay_id is None:
                logger.warning(
                    "No bay available for booking %s on %s at %s (size %s)",
                    booking.id, booking.date, booking.start_time, booking.vehicle_size.name,
                )
                return False

            now = self._clock()
            updated = self._store.update_booking(
                booking.model_copy(
                    update={
                        "assigned_bay_id": bay_id,
                        "assigned_at": now,
                        "assigned_by": assigned_by,
                        "updated_at": now,
                    }
                )
            )
            tx.on_commit(lambda: self._publish_assigned(updated, assigned_by))

        logger.info("Booking %s assigned to bay %s", booking_id, bay_id)
        return True

    def _publish_assigned(self, booking: Booking, actor: str) -> None:
        if self._events is None:
            return
        self._events.publish(
            LifecycleEvent(
                name=BOOKING_ASSIGNED,
                booking=booking,
                occurred_at=self._clock(),
                bay_id=booking.assigned_bay_id,
                actor=actor,
            )
        )
