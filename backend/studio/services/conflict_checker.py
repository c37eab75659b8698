# backend/studio/services/conflict_checker.py
"""
Conflict Checker Service for the studio scheduling core.

Detects double-booking of rooms and staff members. A resource's calendar is
the union of its individual sessions and class occurrences; both are read as
``CalendarInterval`` values and tested with half-open overlap, so a session
ending at 11:00 never conflicts with one starting at 11:00.

Write paths call ``assert_no_conflicts`` inside their own transaction. It takes
the room lock before the staff lock and reports a room conflict before a staff
conflict, so concurrent writers touching the same pair cannot deadlock and the
error a caller sees is deterministic.
"""

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.exceptions import NotFoundException, ResourceConflictException, ValidationException
from ..domain.intervals import (
    CalendarInterval,
    ResourceKind,
    find_conflicts,
    find_first_conflict,
    validate_interval,
)
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.calendar_repository import CalendarRepository
from ..repositories.factory import RepositoryFactory
from ..schemas.results import ConflictCheckResult, ConflictDetails, ResourceCalendarEntry
from .base import BaseService

logger = logging.getLogger(__name__)

_RESOURCE_LABELS = {ResourceKind.ROOM: "Room", ResourceKind.STAFF: "Staff member"}


class ConflictChecker(BaseService):
    """
    Service for room and staff conflict detection.

    Reads are side-effect free. ``assert_no_conflicts`` is meant to run inside
    the caller's unit of work, after which the caller persists the interval.
    """

    def __init__(self, db: Session, repository: Optional[CalendarRepository] = None):
        """
        Initialize conflict checker service.

        Args:
            db: Database session
            repository: Optional CalendarRepository instance
        """
        super().__init__(db)
        self.logger = logging.getLogger(__name__)
        self.repository = repository or RepositoryFactory.create_calendar_repository(db)

    @BaseService.measure_operation("check_conflict")
    def check_conflict(
        self,
        resource_kind: ResourceKind,
        resource_id: str,
        start: datetime,
        end: datetime,
        exclude_entity_id: Optional[str] = None,
    ) -> ConflictCheckResult:
        """
        Check one resource for an active interval overlapping ``[start, end)``.

        Args:
            resource_kind: room or staff
            resource_id: The room or staff member to check
            start: Candidate start (timezone-aware)
            end: Candidate end (timezone-aware)
            exclude_entity_id: Entity to ignore, typically the one being moved

        Returns:
            ConflictCheckResult with details of the earliest conflicting interval

        Raises:
            ValidationException: If the interval is naive or inverted
            NotFoundException: If the resource does not exist
        """
        kind = ResourceKind(resource_kind)
        self._validate(start, end)
        if self.repository.get_resource(kind, resource_id) is None:
            raise NotFoundException.for_entity(_RESOURCE_LABELS[kind], resource_id)

        conflict = self._first_conflict(kind, resource_id, start, end, exclude_entity_id)
        if conflict is None:
            return ConflictCheckResult(conflict=False)
        return ConflictCheckResult(
            conflict=True,
            details=ConflictDetails.from_interval(kind, conflict, start, end),
        )

    def assert_no_conflicts(
        self,
        room_id: str,
        staff_id: str,
        start: datetime,
        end: datetime,
        exclude_entity_id: Optional[str] = None,
    ) -> None:
        """
        Lock room then staff, then fail on the first conflict found.

        Must be called inside an open transaction; the locks are held until the
        caller commits or rolls back.

        Raises:
            ValidationException: If the interval is naive or inverted
            NotFoundException: If the room or staff member does not exist
            ResourceConflictException: Room conflict first, then staff conflict
        """
        self._validate(start, end)

        ordered = ((ResourceKind.ROOM, room_id), (ResourceKind.STAFF, staff_id))
        for kind, resource_id in ordered:
            if self.repository.lock_resource(kind, resource_id) is None:
                raise NotFoundException.for_entity(_RESOURCE_LABELS[kind], resource_id)

        for kind, resource_id in ordered:
            conflict = self._first_conflict(kind, resource_id, start, end, exclude_entity_id)
            if conflict is not None:
                self._report(kind, resource_id, conflict)

    @BaseService.measure_operation("find_conflicts")
    def find_conflicts(
        self,
        resource_kind: ResourceKind,
        resource_id: str,
        start: datetime,
        end: datetime,
        exclude_entity_id: Optional[str] = None,
    ) -> List[ConflictDetails]:
        """Every active interval overlapping the candidate slot, with overlap length."""
        kind = ResourceKind(resource_kind)
        self._validate(start, end)
        intervals = self.repository.get_active_intervals(kind, resource_id, start, end)
        return [
            ConflictDetails.from_interval(kind, interval, start, end)
            for interval in find_conflicts(intervals, start, end, exclude_entity_id)
        ]

    def get_resource_calendar(
        self,
        resource_kind: ResourceKind,
        resource_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> List[ResourceCalendarEntry]:
        """Active intervals of one resource inside a window, ordered by start."""
        kind = ResourceKind(resource_kind)
        self._validate(window_start, window_end)
        if self.repository.get_resource(kind, resource_id) is None:
            raise NotFoundException.for_entity(_RESOURCE_LABELS[kind], resource_id)
        intervals = self.repository.get_active_intervals(kind, resource_id, window_start, window_end)
        return [ResourceCalendarEntry.from_interval(interval) for interval in intervals]

    # Helpers

    @staticmethod
    def _validate(start: datetime, end: datetime) -> None:
        reason = validate_interval(start, end)
        if reason is not None:
            raise ValidationException(
                f"Invalid interval: {reason}",
                code="INVALID_INTERVAL",
                details={"start": str(start), "end": str(end)},
            )

    def _first_conflict(
        self,
        kind: ResourceKind,
        resource_id: str,
        start: datetime,
        end: datetime,
        exclude_entity_id: Optional[str],
    ) -> Optional[CalendarInterval]:
        intervals = self.repository.get_active_intervals(kind, resource_id, start, end)
        return find_first_conflict(intervals, start, end, exclude_entity_id)

    def _report(self, kind: ResourceKind, resource_id: str, conflict: CalendarInterval) -> None:
        prometheus_metrics.record_conflict(kind.value)
        self.logger.warning(
            f"{_RESOURCE_LABELS[kind]} {resource_id} conflicts with "
            f"{conflict.kind.value} {conflict.entity_id} "
            f"({conflict.start.isoformat()} - {conflict.end.isoformat()})"
        )
        raise ResourceConflictException(
            conflict_type=kind.value,
            conflicting_entity_id=conflict.entity_id,
            conflicting_entity_kind=conflict.kind.value,
            conflicting_start=conflict.start,
            conflicting_end=conflict.end,
        )
