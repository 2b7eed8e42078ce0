"""
Clock -- injectable source of the current time.

Posting timestamps, card expiry checks and batch run timestamps all read the
time through a ``Clock`` handed in by the caller, so a test (or a re-run of a
past processing day) can pin it.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone

# Default pinned instant for tests: start of the 2024 processing year, noon UTC.
DEFAULT_FIXED_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware UTC timestamps."""

    @abstractmethod
    def now(self) -> datetime: ...

    def today(self) -> date:
        """Calendar date of ``now()``, used as the default processing date."""
        return self.now().date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    Repeated ``now()`` calls return the same instant, so two postings made in
    one test share a processing timestamp unless ``advance()`` is called.
    """

    def __init__(self, fixed_time: datetime | None = None):
        fixed_time = fixed_time or DEFAULT_FIXED_TIME
        if fixed_time.tzinfo is None:
            raise ValueError("DeterministicClock requires a timezone-aware datetime")
        self._current = fixed_time

    def now(self) -> datetime:
        return self._current

    def advance(self, **delta: float) -> datetime:
        """Move forward by ``timedelta(**delta)`` and return the new time."""
        step = timedelta(**delta)
        if step < timedelta(0):
            raise ValueError("DeterministicClock cannot move backwards")
        self._current += step
        return self._current
