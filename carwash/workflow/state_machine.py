"""
Booking status transition table.

Six statuses, one initial (PENDING, entered from "no prior status" at
creation) and three terminal (COMPLETED, CANCELLED, NO_SHOW). Every legal
change is an explicit ``StatusTransition``; anything not listed is rejected.

Usage:
    violation = check_transition(BookingStatus.CONFIRMED, BookingStatus.CANCELLED,
                                 ActorRole.CUSTOMER, booking, config, now)
    if violation is None:
        ...
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from carwash.config import BookingConfiguration
from carwash.errors import TransitionViolation
from carwash.scheduling.clock import hours_until
from carwash.schemas.booking_schema import ActorRole, Booking, BookingStatus, TERMINAL_STATUSES


TransitionCondition = Callable[[Booking, BookingConfiguration, datetime, ActorRole], bool]

PRIVILEGED_ROLES = frozenset({ActorRole.ADMIN, ActorRole.SYSTEM})

_CUSTOMER_ADMIN_SYSTEM = frozenset({ActorRole.CUSTOMER, ActorRole.ADMIN, ActorRole.SYSTEM})
_STAFF_ADMIN_SYSTEM = frozenset({ActorRole.STAFF, ActorRole.ADMIN, ActorRole.SYSTEM})


def outside_cancellation_deadline(
    booking: Booking, config: BookingConfiguration, now: datetime, role: ActorRole
) -> bool:
    """Customers may cancel only while the appointment is far enough away."""
    if role in PRIVILEGED_ROLES:
        return True
    return hours_until(booking.starts_at, now) >= config.cancellation_deadline_hours


@dataclass(frozen=True)
class StatusTransition:
    """A single legal status change. ``from_status=None`` is booking creation."""

    from_status: Optional[BookingStatus]
    to_status: BookingStatus
    label: str
    allowed_roles: frozenset[ActorRole]
    requires_reason: bool = False
    condition: Optional[TransitionCondition] = None


STATUS_WORKFLOW: list[StatusTransition] = [
    # --- Creation ---
    StatusTransition(None, BookingStatus.PENDING, "Create booking", _CUSTOMER_ADMIN_SYSTEM),

    # --- Happy path ---
    StatusTransition(BookingStatus.PENDING, BookingStatus.CONFIRMED, "Confirm booking",
                     _STAFF_ADMIN_SYSTEM),
    StatusTransition(BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS, "Start service",
                     _STAFF_ADMIN_SYSTEM),
    StatusTransition(BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED, "Complete service",
                     _STAFF_ADMIN_SYSTEM),
    StatusTransition(BookingStatus.CONFIRMED, BookingStatus.COMPLETED, "Mark as completed",
                     frozenset({ActorRole.ADMIN, ActorRole.SYSTEM})),

    # --- Cancellation ---
    StatusTransition(BookingStatus.PENDING, BookingStatus.CANCELLED, "Cancel booking",
                     _CUSTOMER_ADMIN_SYSTEM, requires_reason=True),
    StatusTransition(BookingStatus.CONFIRMED, BookingStatus.CANCELLED, "Cancel booking",
                     _CUSTOMER_ADMIN_SYSTEM, requires_reason=True,
                     condition=outside_cancellation_deadline),

    # --- No-show ---
    StatusTransition(BookingStatus.CONFIRMED, BookingStatus.NO_SHOW, "Mark as no-show",
                     _STAFF_ADMIN_SYSTEM),
    StatusTransition(BookingStatus.IN_PROGRESS, BookingStatus.NO_SHOW, "Mark as no-show",
                     _STAFF_ADMIN_SYSTEM),
]


def find_transition(
    from_status: Optional[BookingStatus], to_status: BookingStatus
) -> Optional[StatusTransition]:
    """First rule matching ``(from_status, to_status)``, or None."""
    for rule in STATUS_WORKFLOW:
        if rule.from_status == from_status and rule.to_status == to_status:
            return rule
    return None


def check_transition(
    from_status: Optional[BookingStatus],
    to_status: BookingStatus,
    role: ActorRole,
    booking: Optional[Booking],
    config: BookingConfiguration,
    now: datetime,
) -> Optional[TransitionViolation]:
    """
    Return the rule a status change would break, or None when it is allowed.

    The reason requirement is not checked here; it depends on the call, not
    on the booking.
    """
    if from_status in TERMINAL_STATUSES:
        return TransitionViolation.ALREADY_TERMINAL

    rule = find_transition(from_status, to_status)
    if rule is None:
        return TransitionViolation.NO_RULE
    if role not in rule.allowed_roles:
        return TransitionViolation.ROLE_NOT_PERMITTED
    if (
        to_status == BookingStatus.CANCELLED
        and role == ActorRole.CUSTOMER
        and not config.allow_customer_cancellation
    ):
        return TransitionViolation.ROLE_NOT_PERMITTED
    if rule.condition is not None and booking is not None:
        if not rule.condition(booking, config, now, role):
            return TransitionViolation.CONDITION_FAILED
    return None


def is_transition_allowed(
    from_status: Optional[BookingStatus],
    to_status: BookingStatus,
    role: ActorRole,
    booking: Optional[Booking],
    config: BookingConfiguration,
    now: datetime,
) -> bool:
    return check_transition(from_status, to_status, role, booking, config, now) is None


def available_transitions(
    booking: Booking, role: ActorRole, config: BookingConfiguration, now: datetime
) -> list[StatusTransition]:
    """Transitions ``role`` could execute on ``booking`` right now."""
    return [
        rule for rule in STATUS_WORKFLOW
        if rule.from_status == booking.status
        and check_transition(booking.status, rule.to_status, role, booking, config, now) is None
    ]


def workflow_description() -> dict[str, list[dict]]:
    """Serializable overview of statuses and transitions, for docs and admin screens."""
    return {
        "statuses": [
            {"status": status.value, "terminal": status in TERMINAL_STATUSES}
            for status in BookingStatus
        ],
        "transitions": [
            {
                "from": rule.from_status.value if rule.from_status else None,
                "to": rule.to_status.value,
                "label": rule.label,
                "roles": sorted(role.value for role in rule.allowed_roles),
                "requires_reason": rule.requires_reason,
                "conditional": rule.condition is not None,
            }
            for rule in STATUS_WORKFLOW
        ],
    }
