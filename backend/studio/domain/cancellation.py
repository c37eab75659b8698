"""Free-cancellation window arithmetic."""

from datetime import datetime


def hours_until(start: datetime, now: datetime) -> float:
    """Hours between ``now`` and ``start``; negative once the class has started."""
    return (start - now).total_seconds() / 3600.0


def is_free_cancellation(start: datetime, now: datetime, window_hours: int) -> bool:
    """A cancellation is free when at least ``window_hours`` remain before start."""
    return hours_until(start, now) >= window_hours
