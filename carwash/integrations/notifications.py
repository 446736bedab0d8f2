"""
Notification dispatch interface.

The core hands a kind, a recipient, and a template payload to a
``Notifier`` and never waits on delivery. Transport (email, SMS, push) is
the implementation's concern.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, TypedDict

logger = logging.getLogger(__name__)

BOOKING_CONFIRMATION = "booking_confirmation"
BOOKING_CANCELLATION = "booking_cancellation"


class SentNotification(TypedDict):
    kind: str
    recipient: str
    payload: dict[str, Any]


class Notifier(ABC):
    @abstractmethod
    def send(self, kind: str, recipient: str, payload: dict[str, Any]) -> None:
        """Queue a notification. May raise; callers treat failures as non-fatal."""


class LoggingNotifier(Notifier):
    """Writes notifications to the log and keeps them for inspection."""

    def __init__(self) -> None:
        self.sent: list[SentNotification] = []
        self._lock = threading.Lock()

    def send(self, kind: str, recipient: str, payload: dict[str, Any]) -> None:
        with self._lock:
            self.sent.append({"kind": kind, "recipient": recipient, "payload": dict(payload)})
        logger.info("Notification %s -> %s: %s", kind, recipient, payload)
