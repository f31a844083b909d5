"""
Clock (``approval_kernel.domain.clock``).

Services and the SLA monitor read time through an injected ``Clock``; the
domain aggregate and the engines take ``now`` as a parameter instead.  Due
dates, response times and sweep decisions are therefore reproducible: a test
drives a ``DeterministicClock`` across an SLA window and every timestamp
written along the way follows from it.

All clocks return timezone-aware UTC datetimes.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

# Default start of a DeterministicClock: Monday 2024-01-01 12:00 UTC.
DEFAULT_TEST_EPOCH = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of the current UTC time."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Manually driven clock for tests.

    Time stands still until ``advance()`` moves it, so an
    SLA scenario reads as a sequence of explicit steps::

        clock = DeterministicClock()
        service.start_workflow(snapshot, requester)
        clock.advance(hours=25)
        monitor.sweep()
    """

    def __init__(self, start: datetime | None = None):
        current = start or DEFAULT_TEST_EPOCH
        if current.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware start")
        self._current = current.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: int = 0, *, minutes: int = 0, hours: int = 0) -> datetime:
        """Move forward and return the new time."""
        step = timedelta(seconds=seconds, minutes=minutes, hours=hours)
        if step < timedelta(0):
            raise ValueError("DeterministicClock only moves forward")
        self._current += step
        return self._current
