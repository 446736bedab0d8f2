"""
Thread-safe in-memory implementation of ``BookingStore``.

Used by the test-suite, the demo, and any deployment small enough to keep
its calendar in process. Transactions take per-key re-entrant locks (in a
stable order, so overlapping key sets cannot deadlock) and keep an undo
journal so a failed unit of work leaves no partial writes behind.
"""

import itertools
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Hashable, Iterable, Optional

from carwash.errors import BookingNotFoundError
from carwash.schemas.booking_schema import (
    ActorRole,
    Booking,
    BookingStatus,
    BookingStatusHistory,
)
from carwash.schemas.resource_schema import BusinessHours, Holiday, Service, WashBay
from carwash.storage.base import BookingStore, Transaction

logger = logging.getLogger(__name__)


def _sort_key(lock_key: Hashable) -> str:
    return repr(lock_key)


class InMemoryBookingStore(BookingStore):
    """Dict-backed store with serializable per-key transactions."""

    def __init__(self) -> None:
        self._services: dict[int, Service] = {}
        self._bays: dict[int, WashBay] = {}
        self._hours: dict[int, BusinessHours] = {}
        self._holidays: dict[date, Holiday] = {}
        self._config: dict[str, Any] = {}
        self._bookings: dict[int, Booking] = {}
        self._codes: dict[str, int] = {}
        self._history: dict[int, list[BookingStatusHistory]] = {}

        self._booking_ids = itertools.count(1)
        self._history_ids = itertools.count(1)

        self._data_lock = threading.RLock()
        self._key_locks: dict[Hashable, threading.RLock] = {}
        self._key_locks_guard = threading.Lock()
        self._local = threading.local()

    # --- Seeding (administrative edits) ---

    def add_service(self, service: Service) -> Service:
        with self._data_lock:
            self._services[service.id] = service
        return service

    def add_bay(self, bay: WashBay) -> WashBay:
        with self._data_lock:
            self._bays[bay.id] = bay
        return bay

    def set_business_hours(self, hours: BusinessHours) -> BusinessHours:
        with self._data_lock:
            self._hours[hours.day_of_week] = hours
        return hours

    def add_holiday(self, holiday: Holiday) -> Holiday:
        with self._data_lock:
            self._holidays[holiday.date] = holiday
        return holiday

    def set_config_value(self, key: str, value: Any) -> None:
        with self._data_lock:
            self._config[key] = value

    # --- Transactions ---

    def _stack(self) -> list[Transaction]:
        if not hasattr(self._local, "stack"):
            self._local.stack = []
        return self._local.stack

    def _lock_for(self, lock_key: Hashable) -> threading.RLock:
        with self._key_locks_guard:
            lock = self._key_locks.get(lock_key)
            if lock is None:
                lock = threading.RLock()
                self._key_locks[lock_key] = lock
            return lock

    @contextmanager
    def transaction(self, *lock_keys: Hashable) -> Iterator[Transaction]:
        keys = sorted(set(lock_keys), key=_sort_key)
        locks = [self._lock_for(key) for key in keys]
        for lock in locks:
            lock.acquire()

        stack = self._stack()
        outer = stack[-1] if stack else None
        tx = Transaction()
        stack.append(tx)
        try:
            yield tx
        except BaseException:
            logger.debug("Rolling back transaction on keys %s", keys)
            with self._data_lock:
                tx.rollback()
            raise
        finally:
            stack.pop()
            for lock in reversed(locks):
                lock.release()

        if outer is not None:
            outer.absorb(tx)
        else:
            tx.run_commit_callbacks()

    def _record_undo(self, action) -> None:
        stack = self._stack()
        if stack:
            stack[-1].record_undo(action)

    # --- Reference data ---

    def get_service(self, service_id: int) -> Optional[Service]:
        return self._services.get(service_id)

    def list_services(self, active_only: bool = False) -> list[Service]:
        with self._data_lock:
            services = sorted(self._services.values(), key=lambda s: s.id)
        return [s for s in services if s.is_active or not active_only]

    def list_bays(self, enabled_only: bool = True) -> list[WashBay]:
        with self._data_lock:
            bays = sorted(self._bays.values(), key=lambda b: b.bay_number)
        return [b for b in bays if b.is_enabled or not enabled_only]

    def get_business_hours(self, day_of_week: int) -> Optional[BusinessHours]:
        return self._hours.get(day_of_week)

    def get_holiday(self, day: date) -> Optional[Holiday]:
        return self._holidays.get(day)

    def get_config_values(self) -> dict[str, Any]:
        with self._data_lock:
            return dict(self._config)

    # --- Bookings ---

    def allocate_booking_id(self) -> int:
        with self._data_lock:
            return next(self._booking_ids)

    def get_booking(self, booking_id: int) -> Optional[Booking]:
        return self._bookings.get(booking_id)

    def get_booking_by_code(self, confirmation_code: str) -> Optional[Booking]:
        with self._data_lock:
            booking_id = self._codes.get(confirmation_code.upper())
            return self._bookings.get(booking_id) if booking_id is not None else None

    def confirmation_code_exists(self, confirmation_code: str) -> bool:
        return confirmation_code.upper() in self._codes

    def list_bookings(
        self,
        day: date,
        service_id: Optional[int] = None,
        bay_id: Optional[int] = None,
        statuses: Optional[Iterable[BookingStatus]] = None,
        exclude_statuses: Optional[Iterable[BookingStatus]] = None,
    ) -> list[Booking]:
        include = set(statuses) if statuses is not None else None
        exclude = set(exclude_statuses or ())
        with self._data_lock:
            candidates = list(self._bookings.values())
        return sorted(
            (
                b for b in candidates
                if b.date == day
                and (service_id is None or b.service_id == service_id)
                and (bay_id is None or b.assigned_bay_id == bay_id)
                and (include is None or b.status in include)
                and b.status not in exclude
            ),
            key=lambda b: (b.start_time, b.id),
        )

    def list_bookings_by_status(self, status: BookingStatus) -> list[Booking]:
        with self._data_lock:
            candidates = list(self._bookings.values())
        return sorted(
            (b for b in candidates if b.status == status),
            key=lambda b: (b.date, b.start_time, b.id),
        )

    def list_bookings_from(
        self,
        day: date,
        exclude_statuses: Optional[Iterable[BookingStatus]] = None,
    ) -> list[Booking]:
        exclude = set(exclude_statuses or ())
        with self._data_lock:
            candidates = list(self._bookings.values())
        return sorted(
            (b for b in candidates if b.date >= day and b.status not in exclude),
            key=lambda b: (b.date, b.start_time, b.id),
        )

    def insert_booking(self, booking: Booking) -> Booking:
        code = booking.confirmation_code.upper()
        with self._data_lock:
            if booking.id in self._bookings:
                raise ValueError(f"Booking {booking.id} already exists")
            if code in self._codes:
                raise ValueError(f"Confirmation code {code} already in use")
            self._bookings[booking.id] = booking
            self._codes[code] = booking.id

        def undo() -> None:
            self._bookings.pop(booking.id, None)
            self._codes.pop(code, None)

        self._record_undo(undo)
        return booking

    def update_booking(self, booking: Booking) -> Booking:
        with self._data_lock:
            previous = self._bookings.get(booking.id)
            if previous is None:
                raise BookingNotFoundError(booking.id)
            if previous.confirmation_code != booking.confirmation_code:
                raise ValueError("Confirmation codes are immutable")
            self._bookings[booking.id] = booking

        def undo() -> None:
            self._bookings[previous.id] = previous

        self._record_undo(undo)
        return booking

    # --- Status history ---

    def append_history(
        self,
        booking_id: int,
        to_status: BookingStatus,
        actor: str,
        actor_role: ActorRole,
        created_at: datetime,
        from_status: Optional[BookingStatus] = None,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        compensation: bool = False,
    ) -> BookingStatusHistory:
        with self._data_lock:
            if booking_id not in self._bookings:
                raise BookingNotFoundError(booking_id)
            row = BookingStatusHistory(
                id=next(self._history_ids),
                booking_id=booking_id,
                from_status=from_status,
                to_status=to_status,
                actor=actor,
                actor_role=actor_role,
                reason=reason,
                notes=notes,
                compensation=compensation,
                created_at=created_at,
            )
            rows = self._history.setdefault(booking_id, [])
            rows.append(row)

        def undo() -> None:
            if row in rows:
                rows.remove(row)

        self._record_undo(undo)
        return row

    def list_history(self, booking_id: int) -> list[BookingStatusHistory]:
        with self._data_lock:
            return list(self._history.get(booking_id, []))
