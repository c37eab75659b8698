# backend/studio/repositories/calendar_repository.py
"""
Resource calendar store.

Reads a room's or staff member's calendar as one sequence of
``CalendarInterval`` values built from both individual sessions and class
occurrences, and locks resource rows before a conflict check.
"""

from datetime import datetime
import logging
from typing import List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..domain.intervals import RELEASED_STATUSES, CalendarInterval, ResourceKind
from ..models.class_schedule import ClassOccurrence
from ..models.individual_session import IndividualSession
from ..models.resource import Room, StaffMember
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

Resource = Union[Room, StaffMember]


class CalendarRepository(BaseRepository[Room]):
    """Calendar queries spanning sessions and class occurrences."""

    def __init__(self, db: Session):
        super().__init__(db, Room)
        self.logger = logging.getLogger(__name__)

    # Resources

    @staticmethod
    def _resource_model(resource_kind: ResourceKind) -> type:
        return Room if ResourceKind(resource_kind) == ResourceKind.ROOM else StaffMember

    def get_resource(self, resource_kind: ResourceKind, resource_id: str) -> Optional[Resource]:
        model = self._resource_model(resource_kind)
        try:
            return self.db.get(model, resource_id)
        except SQLAlchemyError as exc:
            self.logger.error("Error loading %s %s: %s", resource_kind, resource_id, str(exc))
            raise RepositoryException(f"Failed to load {resource_kind}") from exc

    def lock_resource(self, resource_kind: ResourceKind, resource_id: str) -> Optional[Resource]:
        """SELECT ... FOR UPDATE on the room or staff row."""
        model = self._resource_model(resource_kind)
        return (
            self.db.query(model)
            .filter(model.id == resource_id)
            .populate_existing()
            .with_for_update()
            .first()
        )

    # Intervals

    def get_active_intervals(
        self,
        resource_kind: ResourceKind,
        resource_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> List[CalendarInterval]:
        """
        Return the resource's active intervals that overlap ``[window_start, window_end)``.

        The SQL filter uses the same half-open test as the domain layer, so a
        neighbour touching the window boundary is not returned.
        """
        kind = ResourceKind(resource_kind)
        session_column = (
            IndividualSession.room_id if kind == ResourceKind.ROOM else IndividualSession.staff_id
        )
        occurrence_column = (
            ClassOccurrence.room_id if kind == ResourceKind.ROOM else ClassOccurrence.trainer_id
        )
        released = list(RELEASED_STATUSES)

        try:
            sessions = (
                self.db.query(IndividualSession)
                .filter(
                    session_column == resource_id,
                    IndividualSession.deleted_at.is_(None),
                    IndividualSession.status.notin_(released),
                    IndividualSession.start_at < window_end,
                    IndividualSession.end_at > window_start,
                )
                .all()
            )
            occurrences = (
                self.db.query(ClassOccurrence)
                .filter(
                    occurrence_column == resource_id,
                    ClassOccurrence.status.notin_(released),
                    ClassOccurrence.start_at < window_end,
                    ClassOccurrence.end_at > window_start,
                )
                .all()
            )
        except SQLAlchemyError as exc:
            self.logger.error(
                "Error loading calendar for %s %s: %s", kind.value, resource_id, str(exc)
            )
            raise RepositoryException(f"Failed to load calendar for {kind.value}") from exc

        intervals = [s.to_interval() for s in sessions]
        intervals.extend(o.to_interval() for o in occurrences)
        return sorted(intervals, key=lambda i: (i.start, i.kind.value, i.entity_id))
