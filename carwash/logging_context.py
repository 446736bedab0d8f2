"""Operation ID logging context for tracing bookings across modules.

Every saga run, status transition batch, and sweep gets its own operation
ID so that a single booking's journey (availability check, insert, bay
assignment, history write, notification) can be followed in the logs.

Usage:
    from carwash.logging_context import get_operation_logger, set_operation_id

    set_operation_id("op-create_booking-1a2b3c")
    logger = get_operation_logger(__name__)
    logger.info("Inserting booking")  # record.operation_id == "op-create_booking-1a2b3c"
"""

import logging
import uuid
from contextvars import ContextVar

_operation_id: ContextVar[str] = ContextVar("operation_id", default="-")


def new_operation_id(prefix: str = "op") -> str:
    """Build a short unique operation ID such as ``saga-7f3a9c1e``."""
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def set_operation_id(operation_id: str) -> None:
    """Set the correlation ID for the current context."""
    _operation_id.set(operation_id)


class OperationIdFilter(logging.Filter):
    """Injects operation_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.operation_id = _operation_id.get()  # type: ignore[attr-defined]
        return True


def get_operation_logger(name: str) -> logging.Logger:
    """Return a logger with the OperationIdFilter attached.

    The filter adds ``operation_id`` to each record so formatters can
    include ``%(operation_id)s`` in their format string.
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, OperationIdFilter) for f in logger.filters):
        logger.addFilter(OperationIdFilter())
    return logger
