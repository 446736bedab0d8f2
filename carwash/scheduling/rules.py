"""
Intake rules a requested booking slot must satisfy before conflict checks.

Two independent rule groups, each checking a different concern:
1. BookingWindowRule -- lead time and maximum advance-booking window
2. CalendarRule      -- holidays, closed days, business hours, breaks

They are composed into a BookingRulePipeline. ``violations()`` reports every
broken rule; ``enforce()`` raises the first one.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Optional

from carwash.config import BookingConfiguration
from carwash.errors import (
    AdvanceBookingLimitError,
    BookingRuleError,
    BreakOverlapError,
    HolidayBookingError,
    LeadTimeViolationError,
    OutsideBusinessHoursError,
)
from carwash.scheduling.clock import combine, format_hhmm
from carwash.scheduling.conflicts import overlaps
from carwash.schemas.resource_schema import BusinessHours
from carwash.storage.base import BookingStore

logger = logging.getLogger(__name__)


def break_overlaps(hours: BusinessHours, start: time, end: time) -> bool:
    """True if ``[start, end)`` intersects the configured break."""
    if not hours.has_break:
        return False
    return overlaps(start, end, hours.break_start, hours.break_end)


class BookingWindowRule:
    """How early and how far ahead a slot may be booked."""

    def check_lead_time(
        self, day: date, start: time, config: BookingConfiguration, now: datetime
    ) -> Optional[BookingRuleError]:
        requested = combine(day, start)
        if requested < now + timedelta(hours=config.lead_time_hours):
            return LeadTimeViolationError(requested, config.lead_time_hours)
        return None

    def check_advance_limit(
        self, day: date, config: BookingConfiguration, now: datetime
    ) -> Optional[BookingRuleError]:
        if day > now.date() + timedelta(days=config.max_advance_days):
            return AdvanceBookingLimitError(day, config.max_advance_days)
        return None


class CalendarRule:
    """Whether the business is open for the whole requested interval."""

    def __init__(self, store: BookingStore) -> None:
        self._store = store

    def check_open(self, day: date) -> Optional[BookingRuleError]:
        holiday = self._store.get_holiday(day)
        if holiday is not None:
            return HolidayBookingError(day, holiday.name)
        hours = self._store.get_business_hours(day.weekday())
        if hours is None or not hours.is_open:
            return OutsideBusinessHoursError(
                f"Closed on {day.isoformat()} ({day:%A})", date=day.isoformat()
            )
        return None

    def check_hours(self, day: date, start: time, end: time) -> Optional[BookingRuleError]:
        hours = self._store.get_business_hours(day.weekday())
        if hours is None or not hours.is_open:
            return None  # reported by check_open
        if start < hours.start_time or end > hours.end_time:
            return OutsideBusinessHoursError(
                f"Booking {format_hhmm(start)}-{format_hhmm(end)} on {day.isoformat()} is "
                f"outside business hours ({format_hhmm(hours.start_time)} - "
                f"{format_hhmm(hours.end_time)})",
                date=day.isoformat(),
                start_time=format_hhmm(start),
            )
        if break_overlaps(hours, start, end):
            return BreakOverlapError(
                f"Booking {format_hhmm(start)}-{format_hhmm(end)} overlaps the break "
                f"({format_hhmm(hours.break_start)} - {format_hhmm(hours.break_end)})",
                date=day.isoformat(),
                start_time=format_hhmm(start),
            )
        return None


class BookingRulePipeline:
    """Composes every intake rule."""

    def __init__(self, store: BookingStore) -> None:
        self.window = BookingWindowRule()
        self.calendar = CalendarRule(store)

    def violations(
        self,
        day: date,
        start: time,
        end: time,
        config: BookingConfiguration,
        now: datetime,
    ) -> list[BookingRuleError]:
        results = [
            self.calendar.check_open(day),
            self.calendar.check_hours(day, start, end),
            self.window.check_lead_time(day, start, config, now),
            self.window.check_advance_limit(day, config, now),
        ]
        return [r for r in results if r is not None]

    def enforce(
        self,
        day: date,
        start: time,
        end: time,
        config: BookingConfiguration,
        now: datetime,
    ) -> None:
        found = self.violations(day, start, end, config, now)
        if found:
            logger.info("Booking request rejected: %s", found[0].message)
            raise found[0]
