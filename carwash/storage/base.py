"""
Abstract persistence interface consumed by the booking core.

The core only needs logical operations: point lookups, per-day range
queries, create/update, append-only history, and a transaction scope that
serializes work on the same lock keys. Any transactional store can back it;
``InMemoryBookingStore`` is the reference implementation.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import date, datetime
from typing import Any, Callable, Hashable, Iterable, Optional

from carwash.schemas.booking_schema import (
    ActorRole,
    Booking,
    BookingStatus,
    BookingStatusHistory,
)
from carwash.schemas.resource_schema import BusinessHours, Holiday, Service, WashBay

logger = logging.getLogger(__name__)


def booking_lock_key(booking_id: int) -> tuple[str, int]:
    """Lock key held by every writer of a single booking row."""
    return ("booking", booking_id)


class Transaction:
    """
    Bookkeeping for one atomic unit of work.

    Writes register an undo action; a failing transaction replays them in
    reverse. Callbacks registered with ``on_commit`` run only after the
    outermost transaction commits and its locks are released.
    """

    def __init__(self) -> None:
        self._undo: list[Callable[[], None]] = []
        self._on_commit: list[Callable[[], None]] = []

    def on_commit(self, callback: Callable[[], None]) -> None:
        self._on_commit.append(callback)

    def record_undo(self, action: Callable[[], None]) -> None:
        self._undo.append(action)

    def absorb(self, inner: "Transaction") -> None:
        """Fold a committed nested transaction into this one."""
        self._undo.extend(inner._undo)
        self._on_commit.extend(inner._on_commit)

    def rollback(self) -> None:
        for action in reversed(self._undo):
            action()
        self._undo.clear()
        self._on_commit.clear()

    def run_commit_callbacks(self) -> None:
        callbacks, self._on_commit = self._on_commit, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Post-commit callback %r failed", callback)


class BookingStore(ABC):
    """Logical storage operations the booking core depends on."""

    # --- Transactions ---

    @abstractmethod
    def transaction(self, *lock_keys: Hashable) -> AbstractContextManager[Transaction]:
        """Open an atomic scope holding exclusive locks on ``lock_keys``.

        Two scopes sharing any key never run concurrently. Scopes nest; the
        inner one commits into the outer.
        """

    # --- Reference data ---

    @abstractmethod
    def get_service(self, service_id: int) -> Optional[Service]: ...

    @abstractmethod
    def list_services(self, active_only: bool = False) -> list[Service]: ...

    @abstractmethod
    def list_bays(self, enabled_only: bool = True) -> list[WashBay]: ...

    @abstractmethod
    def get_business_hours(self, day_of_week: int) -> Optional[BusinessHours]: ...

    @abstractmethod
    def get_holiday(self, day: date) -> Optional[Holiday]: ...

    @abstractmethod
    def get_config_values(self) -> dict[str, Any]: ...

    # --- Bookings ---

    @abstractmethod
    def allocate_booking_id(self) -> int: ...

    @abstractmethod
    def get_booking(self, booking_id: int) -> Optional[Booking]: ...

    @abstractmethod
    def get_booking_by_code(self, confirmation_code: str) -> Optional[Booking]: ...

    @abstractmethod
    def confirmation_code_exists(self, confirmation_code: str) -> bool: ...

    @abstractmethod
    def list_bookings(
        self,
        day: date,
        service_id: Optional[int] = None,
        bay_id: Optional[int] = None,
        statuses: Optional[Iterable[BookingStatus]] = None,
        exclude_statuses: Optional[Iterable[BookingStatus]] = None,
    ) -> list[Booking]:
        """Bookings on ``day`` ordered by start time, filtered as requested."""

    @abstractmethod
    def list_bookings_by_status(self, status: BookingStatus) -> list[Booking]:
        """Bookings in ``status`` on any day, ordered by date and start time."""

    @abstractmethod
    def list_bookings_from(
        self,
        day: date,
        exclude_statuses: Optional[Iterable[BookingStatus]] = None,
    ) -> list[Booking]:
        """Bookings on or after ``day``, ordered by date and start time."""

    @abstractmethod
    def insert_booking(self, booking: Booking) -> Booking: ...

    @abstractmethod
    def update_booking(self, booking: Booking) -> Booking: ...

    # --- Status history ---

    @abstractmethod
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
    ) -> BookingStatusHistory: ...

    @abstractmethod
    def list_history(self, booking_id: int) -> list[BookingStatusHistory]:
        """History rows for a booking, oldest first."""
