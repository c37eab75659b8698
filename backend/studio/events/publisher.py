"""Event publisher - writes domain events to the transactional outbox."""

import logging
from typing import Any, Dict, Protocol

from ..models.event_outbox import EventOutbox
from ..repositories.event_outbox_repository import EventOutboxRepository

logger = logging.getLogger(__name__)


class Event(Protocol):
    """Protocol for event types."""

    event_type: str

    @property
    def aggregate_id(self) -> str:
        ...

    def idempotency_key(self) -> str:
        ...

    def to_dict(self) -> Dict[str, Any]:
        ...


class EventPublisher:
    """
    Publishes domain events to the outbox.

    The row is written inside the caller's transaction, so the event exists
    only if that transaction commits; delivery happens afterwards in Celery.
    """

    def __init__(self, outbox_repository: EventOutboxRepository):
        self.outbox_repo = outbox_repository

    def publish(self, event: Event) -> EventOutbox:
        row = self.outbox_repo.enqueue(
            event_type=event.event_type,
            aggregate_id=event.aggregate_id,
            payload=event.to_dict(),
            idempotency_key=event.idempotency_key(),
        )
        logger.debug("Queued %s for %s", event.event_type, event.aggregate_id)
        return row
