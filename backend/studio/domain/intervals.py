"""
Calendar intervals shared by rooms and staff members.

A resource's calendar mixes two kinds of entities, individual sessions and
class occurrences. Both are projected onto ``CalendarInterval`` so conflict
detection runs over one sequence regardless of kind.

Intervals are half-open: ``[start, end)``. One ending exactly when another
starts is not a conflict.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional


class IntervalKind(str, Enum):
    INDIVIDUAL_SESSION = "individual_session"
    CLASS_OCCURRENCE = "class_occurrence"


class ResourceKind(str, Enum):
    ROOM = "room"
    STAFF = "staff"


# Statuses that no longer occupy the resource
RELEASED_STATUSES = frozenset({"cancelled"})


@dataclass(frozen=True)
class CalendarInterval:
    """Common ``(start, end, status)`` projection of a session or class occurrence."""

    kind: IntervalKind
    entity_id: str
    start: datetime
    end: datetime
    status: str

    @property
    def is_active(self) -> bool:
        return self.status not in RELEASED_STATUSES

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return intervals_overlap(self.start, self.end, start, end)

    def overlap_minutes(self, start: datetime, end: datetime) -> int:
        return overlap_minutes(self.start, self.end, start, end)


def intervals_overlap(s1: datetime, e1: datetime, s2: datetime, e2: datetime) -> bool:
    """Return True iff ``[s1, e1)`` and ``[s2, e2)`` share at least one instant."""
    return s1 < e2 and s2 < e1


def overlap_minutes(s1: datetime, e1: datetime, s2: datetime, e2: datetime) -> int:
    """Length of the overlap in whole minutes (0 when the intervals are disjoint)."""
    if not intervals_overlap(s1, e1, s2, e2):
        return 0
    overlap = min(e1, e2) - max(s1, s2)
    return int(overlap.total_seconds() // 60)


def validate_interval(start: datetime, end: datetime) -> Optional[str]:
    """Return a reason string if the interval is unusable, None otherwise."""
    for label, value in (("start", start), ("end", end)):
        if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
            return f"{label} must be timezone-aware"
    if end <= start:
        return "end must be after start"
    return None


def _sort_key(interval: CalendarInterval) -> tuple:
    return (interval.start, interval.kind.value, interval.entity_id)


def find_conflicts(
    intervals: Iterable[CalendarInterval],
    start: datetime,
    end: datetime,
    exclude_entity_id: Optional[str] = None,
) -> List[CalendarInterval]:
    """
    Return every active interval overlapping ``[start, end)``.

    Results are ordered by start, then kind, then id so repeated checks report
    the same conflicting entity first.
    """
    hits = [
        interval
        for interval in intervals
        if interval.is_active
        and interval.entity_id != exclude_entity_id
        and interval.overlaps(start, end)
    ]
    return sorted(hits, key=_sort_key)


def find_first_conflict(
    intervals: Iterable[CalendarInterval],
    start: datetime,
    end: datetime,
    exclude_entity_id: Optional[str] = None,
) -> Optional[CalendarInterval]:
    conflicts = find_conflicts(intervals, start, end, exclude_entity_id)
    return conflicts[0] if conflicts else None
