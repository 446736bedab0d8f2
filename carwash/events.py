"""
Booking lifecycle events and the in-process bus that delivers them.

Producers (the orchestrator, the status workflow, the bay allocator) get an
``EventBus`` passed in and publish after their transaction commits.
Subscribers are independent: a failing handler is logged and skipped, it
never reaches the producer or the other handlers.

Usage:
    bus = EventBus()
    bus.subscribe(BOOKING_CREATED, lambda event: print(event.booking.confirmation_code))
    bus.subscribe_all(audit_handler)
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from pydantic import BaseModel

from carwash.schemas.booking_schema import Booking, BookingStatus

logger = logging.getLogger(__name__)

BOOKING_CREATED = "booking.created"
BOOKING_STATUS_CHANGED = "booking.statusChanged"
BOOKING_ASSIGNED = "booking.assigned"
BOOKING_CANCELLED = "booking.cancelled"

EVENT_NAMES = (BOOKING_CREATED, BOOKING_STATUS_CHANGED, BOOKING_ASSIGNED, BOOKING_CANCELLED)

_WILDCARD = "*"


class LifecycleEvent(BaseModel):
    """Full booking snapshot plus what changed."""

    name: str
    booking: Booking
    occurred_at: datetime
    old_status: Optional[BookingStatus] = None
    new_status: Optional[BookingStatus] = None
    bay_id: Optional[int] = None
    reason: Optional[str] = None
    actor: Optional[str] = None


EventHandler = Callable[[LifecycleEvent], None]


class EventBus:
    """Synchronous publish/subscribe channel for lifecycle events."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        """Register a handler for one event name."""
        if event_name != _WILDCARD and event_name not in EVENT_NAMES:
            raise ValueError(f"Unknown event '{event_name}'. Known: {list(EVENT_NAMES)}")
        with self._lock:
            self._handlers.setdefault(event_name, []).append(handler)
        logger.debug("Handler subscribed to %s", event_name)

    def subscribe_all(self, handler: EventHandler) -> None:
        """Register a handler for every event."""
        self.subscribe(_WILDCARD, handler)

    def publish(self, event: LifecycleEvent) -> None:
        with self._lock:
            handlers = list(self._handlers.get(event.name, [])) + list(
                self._handlers.get(_WILDCARD, [])
            )
        logger.debug(
            "Publishing %s for booking %s to %d handler(s)",
            event.name, event.booking.id, len(handlers),
        )
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Event handler %r failed for %s (booking %s)",
                    handler, event.name, event.booking.id,
                )
