"""
No-show auto-progression.

Finds CONFIRMED bookings whose start time is more than the grace period in
the past and moves them to NO_SHOW through ``StatusWorkflow.execute``, so
history and eligibility rules still apply. Each booking is its own
transaction; one failure is logged and the sweep moves on.
"""

import threading
from datetime import timedelta
from typing import Optional

from carwash.logging_context import get_operation_logger, new_operation_id, set_operation_id
from carwash.scheduling.clock import Clock, system_clock
from carwash.schemas.booking_schema import ActorRole, BookingStatus, SweepResult
from carwash.storage.base import BookingStore
from carwash.workflow.status_workflow import StatusWorkflow

logger = get_operation_logger(__name__)

DEFAULT_GRACE_MINUTES = 30
SWEEPER_ACTOR = "no-show-sweeper"


class NoShowSweeper:
    """Periodic CONFIRMED -> NO_SHOW driver."""

    def __init__(
        self,
        workflow: StatusWorkflow,
        store: BookingStore,
        clock: Clock = system_clock,
        grace_minutes: int = DEFAULT_GRACE_MINUTES,
    ) -> None:
        self._workflow = workflow
        self._store = store
        self._clock = clock
        self._grace = timedelta(minutes=grace_minutes)

    def sweep(self) -> SweepResult:
        set_operation_id(new_operation_id("sweep"))
        cutoff = self._clock() - self._grace
        overdue = [
            b for b in self._store.list_bookings_by_status(BookingStatus.CONFIRMED)
            if b.starts_at < cutoff
        ]
        result = SweepResult()
        if not overdue:
            logger.debug("No overdue confirmed bookings before %s", cutoff)
            return result

        for booking in overdue:
            result.processed += 1
            try:
                self._workflow.execute(
                    booking.id,
                    BookingStatus.NO_SHOW,
                    actor=SWEEPER_ACTOR,
                    role=ActorRole.SYSTEM,
                    notes=f"Not checked in within {int(self._grace.total_seconds() // 60)} minutes",
                )
            except Exception as e:
                logger.error("No-show sweep failed for booking %s: %s", booking.id, e)
                result.failed[booking.id] = str(e)
            else:
                result.transitioned.append(booking.id)

        logger.info(
            "No-show sweep: %d processed, %d marked no-show, %d failed",
            result.processed, len(result.transitioned), len(result.failed),
        )
        return result

    def run_forever(self, interval_seconds: float, stop: Optional[threading.Event] = None) -> None:
        """Sweep every ``interval_seconds`` until ``stop`` is set."""
        stop = stop or threading.Event()
        logger.info("No-show sweeper started (every %.0fs)", interval_seconds)
        while not stop.is_set():
            try:
                self.sweep()
            except Exception:
                logger.exception("No-show sweep aborted")
            stop.wait(interval_seconds)
        logger.info("No-show sweeper stopped")
