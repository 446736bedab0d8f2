"""
Booking domain errors.

Four families callers need to tell apart:

1. NotFoundError       -- a referenced service, booking, or bay does not exist
2. ConflictError       -- the requested slot is taken; offer another slot
3. InvalidTransitionError -- a status change broke a workflow rule
4. BookingRuleError    -- the request itself is outside hours, on a holiday, etc.

"No slot" and "no bay" are not errors: availability and allocation return
empty results for those.
"""

from datetime import date, datetime, time
from enum import Enum
from typing import Any, Optional


class BookingError(Exception):
    """Base class for every error raised by the booking core."""

    code = "BOOKING_ERROR"
    user_message = "Something went wrong with your booking."

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


class ConfigurationError(BookingError):
    code = "CONFIGURATION_ERROR"


# --- Not found ---


class NotFoundError(BookingError):
    code = "NOT_FOUND"


class ServiceNotFoundError(NotFoundError):
    code = "SERVICE_NOT_FOUND"
    user_message = "The requested service is not available."

    def __init__(self, service_id: int, inactive: bool = False) -> None:
        state = "inactive" if inactive else "not found"
        super().__init__(f"Service {service_id} {state}", service_id=service_id)


class BookingNotFoundError(NotFoundError):
    code = "BOOKING_NOT_FOUND"
    user_message = "The booking was not found. Please check your confirmation code."

    def __init__(self, identifier: Any) -> None:
        super().__init__(f"Booking not found: {identifier}", identifier=identifier)


# --- Conflict ---


class ConflictError(BookingError):
    code = "CONFLICT"


class SlotUnavailableError(ConflictError):
    code = "TIME_SLOT_UNAVAILABLE"
    user_message = "The selected time slot is no longer available. Please choose a different time."

    def __init__(self, day: date, start_time: time, service_id: int) -> None:
        super().__init__(
            f"Time slot {start_time:%H:%M} on {day.isoformat()} is not available "
            f"for service {service_id}",
            date=day.isoformat(),
            start_time=f"{start_time:%H:%M}",
            service_id=service_id,
        )


# --- Workflow ---


class TransitionViolation(str, Enum):
    """Which workflow rule a rejected status change broke."""

    NO_RULE = "no_rule"
    ROLE_NOT_PERMITTED = "role_not_permitted"
    CONDITION_FAILED = "condition_failed"
    REASON_REQUIRED = "reason_required"
    ALREADY_TERMINAL = "already_terminal"


class InvalidTransitionError(BookingError):
    """Raised when a status change is not valid for the booking's current state."""

    code = "INVALID_STATUS_TRANSITION"
    user_message = "This booking cannot be changed to the requested status."

    def __init__(
        self,
        message: str,
        violation: TransitionViolation,
        booking_id: Optional[int] = None,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            violation=violation.value,
            booking_id=booking_id,
            from_status=from_status,
            to_status=to_status,
        )
        self.violation = violation


# --- Intake rules ---


class BookingRuleError(BookingError):
    code = "BOOKING_RULE_VIOLATION"


class InvalidBookingRequestError(BookingRuleError):
    code = "INVALID_BOOKING_REQUEST"


class HolidayBookingError(BookingRuleError):
    code = "HOLIDAY_BOOKING_NOT_ALLOWED"
    user_message = "Bookings are not available on this date due to a holiday."

    def __init__(self, day: date, holiday_name: str) -> None:
        super().__init__(
            f"Cannot book on {day.isoformat()} due to holiday: {holiday_name}",
            date=day.isoformat(),
            holiday_name=holiday_name,
        )


class OutsideBusinessHoursError(BookingRuleError):
    code = "OUTSIDE_BUSINESS_HOURS"
    user_message = "The selected time is outside our business hours."


class BreakOverlapError(BookingRuleError):
    code = "BREAK_OVERLAP"
    user_message = "The selected time overlaps our break."


class LeadTimeViolationError(BookingRuleError):
    code = "INSUFFICIENT_LEAD_TIME"

    def __init__(self, requested: datetime, lead_time_hours: int) -> None:
        super().__init__(
            f"Booking must be made at least {lead_time_hours} hours in advance. "
            f"Requested time: {requested.isoformat()}",
            requested=requested.isoformat(),
            lead_time_hours=lead_time_hours,
        )
        self.user_message = f"Bookings must be made at least {lead_time_hours} hours in advance."


class AdvanceBookingLimitError(BookingRuleError):
    code = "ADVANCE_BOOKING_LIMIT_EXCEEDED"

    def __init__(self, day: date, max_advance_days: int) -> None:
        super().__init__(
            f"Cannot book more than {max_advance_days} days in advance. "
            f"Requested date: {day.isoformat()}",
            date=day.isoformat(),
            max_advance_days=max_advance_days,
        )
        self.user_message = f"Bookings can only be made up to {max_advance_days} days in advance."


# --- Payments ---


class PaymentError(BookingError):
    code = "PAYMENT_FAILED"
    user_message = "Your payment could not be processed."
