"""
Executes and audits booking status changes.

Every change re-reads the booking under its ``("booking", id)`` lock, checks
the transition table against the *persisted* status, then writes the new
status and one history row in the same transaction. Lifecycle events are
published only after commit.
"""

from datetime import datetime
from typing import Optional

from carwash.config import BookingConfigProvider, BookingConfiguration
from carwash.errors import BookingNotFoundError, InvalidTransitionError, TransitionViolation
from carwash.events import (
    BOOKING_CANCELLED,
    BOOKING_STATUS_CHANGED,
    EventBus,
    LifecycleEvent,
)
from carwash.logging_context import get_operation_logger
from carwash.scheduling.clock import Clock, system_clock
from carwash.schemas.booking_schema import (
    ActorRole,
    Booking,
    BookingStatus,
    BookingStatusHistory,
    WorkflowValidation,
)
from carwash.storage.base import BookingStore, booking_lock_key
from carwash.workflow.state_machine import (
    StatusTransition,
    available_transitions,
    check_transition,
    find_transition,
)

logger = get_operation_logger(__name__)


def _name(status: Optional[BookingStatus]) -> str:
    return status.value if status is not None else "none"


_VIOLATION_MESSAGES = {
    TransitionViolation.ALREADY_TERMINAL: "booking is already {from_} (terminal)",
    TransitionViolation.NO_RULE: "no transition from {from_} to {to}",
    TransitionViolation.ROLE_NOT_PERMITTED: "role '{role}' may not move a booking from {from_} to {to}",
    TransitionViolation.CONDITION_FAILED: (
        "transition from {from_} to {to} is not allowed at this time "
        "(cancellation deadline passed)"
    ),
    TransitionViolation.REASON_REQUIRED: "a reason is required to move from {from_} to {to}",
}


class StatusWorkflow:
    """The only writer of ``Booking.status``."""

    def __init__(
        self,
        store: BookingStore,
        events: Optional[EventBus] = None,
        config_provider: Optional[BookingConfigProvider] = None,
        clock: Clock = system_clock,
    ) -> None:
        self._store = store
        self._events = events
        self._config_provider = config_provider or BookingConfigProvider(store)
        self._clock = clock

    def _reject(
        self,
        violation: TransitionViolation,
        booking_id: Optional[int],
        from_status: Optional[BookingStatus],
        to_status: BookingStatus,
        role: ActorRole,
    ) -> InvalidTransitionError:
        message = _VIOLATION_MESSAGES[violation].format(
            from_=_name(from_status), to=_name(to_status), role=role.value
        )
        logger.info("Rejected status change for booking %s: %s", booking_id, message)
        return InvalidTransitionError(
            f"Invalid status transition: {message}",
            violation,
            booking_id=booking_id,
            from_status=_name(from_status),
            to_status=_name(to_status),
        )

    def _check(
        self,
        booking: Booking,
        to_status: BookingStatus,
        role: ActorRole,
        reason: Optional[str],
        config: BookingConfiguration,
        now: datetime,
    ) -> None:
        violation = check_transition(booking.status, to_status, role, booking, config, now)
        if violation is None:
            rule = find_transition(booking.status, to_status)
            if rule.requires_reason and not reason:
                violation = TransitionViolation.REASON_REQUIRED
        if violation is not None:
            raise self._reject(violation, booking.id, booking.status, to_status, role)

    def ensure_allowed(
        self,
        booking_id: int,
        to_status: BookingStatus,
        role: ActorRole,
        reason: Optional[str] = None,
    ) -> Booking:
        """Check a status change without applying it. Returns the current booking."""
        booking = self._store.get_booking(booking_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        reason = reason.strip() if reason else None
        self._check(booking, to_status, role, reason, self._config_provider.load(), self._clock())
        return booking

    def record_creation(self, booking: Booking, actor: str, role: ActorRole) -> BookingStatusHistory:
        """
        Write the initial history row for a freshly inserted booking.

        Must run inside the transaction that inserted the booking.

        Raises:
            InvalidTransitionError: If ``role`` may not create bookings.
        """
        config = self._config_provider.load()
        violation = check_transition(None, booking.status, role, booking, config, self._clock())
        if violation is not None:
            raise self._reject(violation, booking.id, None, booking.status, role)
        return self._store.append_history(
            booking.id,
            booking.status,
            actor=actor,
            actor_role=role,
            created_at=booking.created_at,
            notes="Booking created",
        )

    def execute(
        self,
        booking_id: int,
        to_status: BookingStatus,
        actor: str,
        role: ActorRole,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Booking:
        """
        Move a booking to ``to_status``.

        Args:
            booking_id: Booking to change.
            to_status: Target status.
            actor: Who is making the change (user id, "system", ...).
            role: The actor's role; checked against the transition table.
            reason: Free text, mandatory for cancellations.
            notes: Extra audit text stored on the history row.

        Returns:
            The updated booking.

        Raises:
            BookingNotFoundError: If the booking does not exist.
            InvalidTransitionError: If the change breaks any workflow rule.
        """
        config = self._config_provider.load()
        reason = reason.strip() if reason else None

        with self._store.transaction(booking_lock_key(booking_id)) as tx:
            booking = self._store.get_booking(booking_id)
            if booking is None:
                raise BookingNotFoundError(booking_id)

            now = self._clock()
            from_status = booking.status
            self._check(booking, to_status, role, reason, config, now)

            updates: dict = {"status": to_status, "updated_at": now}
            if to_status == BookingStatus.CANCELLED:
                updates["cancellation_reason"] = reason
                if booking.cancelled_at is None:
                    updates["cancelled_at"] = now
            if to_status == BookingStatus.COMPLETED and booking.completed_at is None:
                updates["completed_at"] = now

            updated = self._store.update_booking(booking.model_copy(update=updates))
            self._store.append_history(
                booking_id,
                to_status,
                actor=actor,
                actor_role=role,
                created_at=now,
                from_status=from_status,
                reason=reason,
                notes=notes,
            )
            tx.on_commit(lambda: self._publish_change(updated, from_status, reason, actor, now))

        logger.info(
            "Booking %s: %s -> %s by %s (%s)",
            booking_id, from_status.value, to_status.value, actor, role.value,
        )
        return updated

    def restore_status(
        self,
        booking_id: int,
        restore_to: BookingStatus,
        actor: str,
        reason: str,
    ) -> Booking:
        """
        Undo the most recent status change as a saga compensation.

        Only an exact reversal of the last history row is accepted; the new
        row is flagged ``compensation=True`` so ``validate`` can tell it from
        an ordinary transition.

        Raises:
            InvalidTransitionError: If the last change was not ``restore_to -> current``.
        """
        with self._store.transaction(booking_lock_key(booking_id)) as tx:
            booking = self._store.get_booking(booking_id)
            if booking is None:
                raise BookingNotFoundError(booking_id)

            rows = self._store.list_history(booking_id)
            last = rows[-1] if rows else None
            if (
                last is None
                or last.compensation
                or last.to_status != booking.status
                or last.from_status != restore_to
            ):
                raise self._reject(
                    TransitionViolation.NO_RULE, booking_id, booking.status, restore_to,
                    ActorRole.SYSTEM,
                )

            now = self._clock()
            from_status = booking.status
            updates: dict = {"status": restore_to, "updated_at": now}
            if from_status == BookingStatus.CANCELLED:
                updates.update(cancelled_at=None, cancellation_reason=None)
            if from_status == BookingStatus.COMPLETED:
                updates["completed_at"] = None

            updated = self._store.update_booking(booking.model_copy(update=updates))
            self._store.append_history(
                booking_id,
                restore_to,
                actor=actor,
                actor_role=ActorRole.SYSTEM,
                created_at=now,
                from_status=from_status,
                reason=reason,
                compensation=True,
            )
            tx.on_commit(lambda: self._publish_change(updated, from_status, reason, actor, now))

        logger.warning(
            "Booking %s restored %s -> %s by compensation: %s",
            booking_id, from_status.value, restore_to.value, reason,
        )
        return updated

    def available_transitions(self, booking_id: int, role: ActorRole) -> list[StatusTransition]:
        booking = self._store.get_booking(booking_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        return available_transitions(booking, role, self._config_provider.load(), self._clock())

    def history(self, booking_id: int) -> list[BookingStatusHistory]:
        """Status history, newest first."""
        if self._store.get_booking(booking_id) is None:
            raise BookingNotFoundError(booking_id)
        return list(reversed(self._store.list_history(booking_id)))

    def validate(self, booking_id: int) -> WorkflowValidation:
        """
        Replay a booking's history against the transition table.

        Errors mean the history could not have been produced by ``execute``
        (out-of-band writes, corruption). Warnings mean bookkeeping is
        incomplete: a missing reason, or a current status that disagrees
        with the last row.
        """
        booking = self._store.get_booking(booking_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)

        rows = self._store.list_history(booking_id)
        errors: list[str] = []
        warnings: list[str] = []
        if not rows:
            warnings.append("No status history recorded")

        previous: Optional[BookingStatusHistory] = None
        for index, row in enumerate(rows, start=1):
            step = f"#{index} {_name(row.from_status)} -> {_name(row.to_status)}"
            expected_from = previous.to_status if previous else None
            if row.from_status != expected_from:
                errors.append(f"{step}: booking was {_name(expected_from)} at that point")

            if row.compensation:
                if (
                    previous is None
                    or previous.compensation
                    or row.to_status != previous.from_status
                ):
                    errors.append(f"{step}: compensation does not reverse the previous change")
            else:
                rule = find_transition(row.from_status, row.to_status)
                if rule is None:
                    errors.append(f"{step}: no such transition")
                elif row.actor_role not in rule.allowed_roles:
                    errors.append(f"{step}: role '{row.actor_role.value}' not permitted")
                elif rule.requires_reason and not row.reason:
                    warnings.append(f"{step}: reason required but missing")
            previous = row

        if previous is not None and previous.to_status != booking.status:
            warnings.append(
                f"Current status {booking.status.value} does not match last history "
                f"entry {previous.to_status.value}"
            )

        if errors:
            logger.error("Booking %s history is inconsistent: %s", booking_id, errors)
        elif warnings:
            logger.warning("Booking %s history has warnings: %s", booking_id, warnings)

        return WorkflowValidation(
            booking_id=booking_id,
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
        )

    def _publish_change(
        self,
        booking: Booking,
        old_status: BookingStatus,
        reason: Optional[str],
        actor: str,
        occurred_at: datetime,
    ) -> None:
        if self._events is None:
            return
        self._events.publish(
            LifecycleEvent(
                name=BOOKING_STATUS_CHANGED,
                booking=booking,
                occurred_at=occurred_at,
                old_status=old_status,
                new_status=booking.status,
                reason=reason,
                actor=actor,
            )
        )
        if booking.status == BookingStatus.CANCELLED:
            self._events.publish(
                LifecycleEvent(
                    name=BOOKING_CANCELLED,
                    booking=booking,
                    occurred_at=occurred_at,
                    old_status=old_status,
                    new_status=booking.status,
                    reason=reason,
                    actor=actor,
                )
            )
