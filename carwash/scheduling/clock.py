"""Pure time arithmetic for the daily booking grid. No state, no I/O."""

from collections.abc import Iterator
from datetime import date, datetime, time, timedelta
from typing import Callable

Clock = Callable[[], datetime]

MINUTES_PER_DAY = 24 * 60


def system_clock() -> datetime:
    """Local wall-clock time; appointments are booked in local time."""
    return datetime.now()


def parse_hhmm(value: str) -> time:
    """Parse ``"HH:MM"`` into a ``time``."""
    return datetime.strptime(value.strip(), "%H:%M").time()


def format_hhmm(value: time) -> str:
    return value.strftime("%H:%M")


def minutes_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


def from_minutes(total: int) -> time:
    if not 0 <= total < MINUTES_PER_DAY:
        raise ValueError(f"{total} minutes is outside a single day")
    return time(total // 60, total % 60)


def add_minutes(value: time, minutes: int) -> time:
    """Shift a wall-clock time, refusing to wrap past midnight.

    >>> add_minutes(time(9, 30), 45)
    datetime.time(10, 15)
    """
    return from_minutes(minutes_of_day(value) + minutes)


def combine(day: date, value: time) -> datetime:
    return datetime.combine(day, value)


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Half-open [midnight, next midnight) for ``day``."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def hours_until(moment: datetime, now: datetime) -> float:
    return (moment - now).total_seconds() / 3600


def iter_grid(start: time, end: time, step_minutes: int) -> Iterator[time]:
    """Yield ``start``, ``start + step``, ... while strictly before ``end``."""
    if step_minutes < 1:
        raise ValueError("step_minutes must be >= 1")
    current = minutes_of_day(start)
    stop = minutes_of_day(end)
    while current < stop:
        yield from_minutes(current)
        current += step_minutes
