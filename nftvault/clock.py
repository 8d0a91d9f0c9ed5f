"""
clock.py - Time sources for interest accrual

Interest accrues from elapsed wall-clock time, read at the start of every
mutating vault call. Tests and simulations use LogicalClock, which only moves
when told to; services use SystemClock.
"""

from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol, Union, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Source of the current time."""

    def now(self) -> datetime:
        ...


class LogicalClock:
    """
    Manually advanced clock.

    Time can only move forward, never backward.
    """

    def __init__(self, start: Optional[datetime] = None):
        self._current_time: datetime = start or datetime(2025, 1, 1)

    def now(self) -> datetime:
        return self._current_time

    def advance(self, delta: Union[timedelta, int]) -> datetime:
        """
        Move the clock forward by delta (a timedelta or a number of seconds).

        Raises:
            ValueError: If delta is negative.
        """
        if not isinstance(delta, timedelta):
            delta = timedelta(seconds=delta)
        if delta < timedelta(0):
            raise ValueError(f"Cannot move time backwards by {delta}")
        self._current_time = self._current_time + delta
        return self._current_time

    def advance_to(self, new_time: datetime) -> datetime:
        """
        Set the clock to new_time.

        Raises:
            ValueError: If new_time is before the current time.
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time
        return self._current_time

    def __repr__(self) -> str:
        return f"LogicalClock({self._current_time.isoformat()})"


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def __repr__(self) -> str:
        return "SystemClock()"


def elapsed_seconds(start: Optional[datetime], end: datetime) -> int:
    """
    Whole seconds from start to end, floored; 0 if start is None or after end.

    Uses the integer fields of the timedelta so no float rounding enters
    the accrual arithmetic.
    """
    if start is None:
        return 0
    delta = end - start
    seconds = delta.days * 86400 + delta.seconds
    return max(0, seconds)
