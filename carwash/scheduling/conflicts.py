"""
Overlap detection shared by slot generation, booking creation, and bay assignment.

Intervals are half-open ``[start, end)``: a wash ending at 11:00 does not
collide with one starting at 11:00. Every call site goes through
``overlaps``; do not inline comparisons elsewhere.
"""

from collections.abc import Iterable
from datetime import time
from typing import TypeVar

from carwash.schemas.booking_schema import Booking, BookingStatus

T = TypeVar("T", time, int)

NON_OCCUPYING_STATUSES = frozenset({BookingStatus.CANCELLED, BookingStatus.NO_SHOW})


def overlaps(a_start: T, a_end: T, b_start: T, b_end: T) -> bool:
    """True iff ``[a_start, a_end)`` and ``[b_start, b_end)`` intersect."""
    return a_start < b_end and b_start < a_end


def occupies_calendar(status: BookingStatus) -> bool:
    """Every status except cancelled and no-show holds its slot, pending included."""
    return status not in NON_OCCUPYING_STATUSES


def overlapping_bookings(start: time, end: time, bookings: Iterable[Booking]) -> list[Booking]:
    """Calendar-occupying bookings whose interval intersects ``[start, end)``."""
    return [
        b for b in bookings
        if occupies_calendar(b.status) and overlaps(start, end, b.start_time, b.end_time)
    ]


def count_overlapping(start: time, end: time, bookings: Iterable[Booking]) -> int:
    return len(overlapping_bookings(start, end, bookings))
