"""External calendar sync trigger and reference bookkeeping."""

import logging
from typing import Optional, Union

from sqlalchemy.orm import Session

from ..core.enums import SyncOperation
from ..core.exceptions import NotFoundException
from ..core.ulid_helper import generate_ulid
from ..domain.intervals import IntervalKind
from ..events import CalendarSyncRequested, EventPublisher
from ..models.class_schedule import ClassOccurrence
from ..models.event_outbox import EventOutbox
from ..models.individual_session import IndividualSession
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)

SyncedEntity = Union[IndividualSession, ClassOccurrence]


class CalendarSyncService(BaseService):
    """
    Schedules push-only sync of sessions and occurrences.

    ``schedule_sync`` only writes an outbox row in the caller's transaction.
    The outbox worker pushes it after commit and hands the calendar's id back
    through ``record_external_reference``, which touches nothing but that id.
    """

    def __init__(self, db: Session, publisher: Optional[EventPublisher] = None):
        super().__init__(db)
        self.publisher = publisher or EventPublisher(
            RepositoryFactory.create_event_outbox_repository(db)
        )
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.occurrence_repository = RepositoryFactory.create_class_occurrence_repository(db)

    def schedule_sync(
        self,
        entity_kind: IntervalKind,
        entity_id: str,
        operation: SyncOperation,
        external_sync_id: Optional[str] = None,
    ) -> EventOutbox:
        event = CalendarSyncRequested(
            entity_kind=IntervalKind(entity_kind).value,
            entity_id=entity_id,
            operation=SyncOperation(operation).value,
            revision=generate_ulid(),
            external_sync_id=external_sync_id,
        )
        return self.publisher.publish(event)

    def sync_entity(self, entity: SyncedEntity, operation: SyncOperation) -> EventOutbox:
        kind = (
            IntervalKind.INDIVIDUAL_SESSION
            if isinstance(entity, IndividualSession)
            else IntervalKind.CLASS_OCCURRENCE
        )
        return self.schedule_sync(kind, entity.id, operation, entity.external_sync_id)

    @BaseService.measure_operation("record_external_reference")
    def record_external_reference(
        self, entity_kind: IntervalKind, entity_id: str, external_id: Optional[str]
    ) -> None:
        """Store the calendar's opaque id on the entity. A None id is ignored."""
        if not external_id:
            return
        with self.transaction():
            entity = self._load(IntervalKind(entity_kind), entity_id)
            if entity is None:
                raise NotFoundException.for_entity(IntervalKind(entity_kind).value, entity_id)
            if entity.external_sync_id == external_id:
                return
            entity.external_sync_id = external_id
        self.logger.info(f"Stored external calendar id for {entity_kind} {entity_id}")

    def _load(self, kind: IntervalKind, entity_id: str) -> Optional[SyncedEntity]:
        if kind == IntervalKind.INDIVIDUAL_SESSION:
            return self.session_repository.get_by_id(entity_id, load_relationships=False)
        return self.occurrence_repository.get_by_id(entity_id, load_relationships=False)

