# backend/studio/repositories/event_outbox_repository.py
"""
Repository for event outbox operations.

Notification and calendar-sync events are inserted inside the caller's
transaction; the Celery dispatcher reads them only after that transaction
commits.
"""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Any, Optional, cast

from sqlalchemy import Select, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import Session
import ulid

from ..database.session_utils import get_dialect_name
from ..models.event_outbox import EventOutbox, EventOutboxStatus
from ..models.types import now_utc

logger = logging.getLogger(__name__)


class EventOutboxRepository:
    """Data access helpers for event outbox rows."""

    def __init__(self, db: Session):
        self.db = db
        self._dialect = get_dialect_name(db, default="postgresql").lower()

    def enqueue(
        self,
        event_type: str,
        aggregate_id: str,
        payload: Optional[dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
        next_attempt_at: Optional[datetime] = None,
    ) -> EventOutbox:
        """
        Insert a new outbox row unless one already exists for the idempotency key.

        Returns the persisted row (existing or newly created).
        """
        payload = payload or {}
        next_attempt = next_attempt_at or now_utc()
        key = idempotency_key or f"{event_type}:{aggregate_id}:{int(next_attempt.timestamp())}"

        event_id = str(ulid.ULID())
        values = dict(
            id=event_id,
            event_type=event_type,
            aggregate_id=aggregate_id,
            payload=payload,
            idempotency_key=key,
            status=EventOutboxStatus.PENDING.value,
            attempt_count=0,
            next_attempt_at=next_attempt,
            created_at=next_attempt,
            updated_at=next_attempt,
        )

        inserted = False
        if self._dialect == "postgresql":
            pg_stmt = (
                pg_insert(EventOutbox)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["idempotency_key"])
                .returning(EventOutbox.id)
            )
            inserted = self.db.execute(pg_stmt).scalar_one_or_none() is not None
        else:
            stmt = insert(EventOutbox).values(**values)
            if self._dialect == "sqlite":
                stmt = stmt.prefix_with("OR IGNORE")
            result = self.db.execute(stmt)
            inserted = bool(getattr(result, "rowcount", 0))

        if inserted:
            row = cast(Optional[EventOutbox], self.db.get(EventOutbox, event_id))
            if row is None:
                raise RuntimeError("Inserted outbox row could not be reloaded")
            return row

        logger.debug("Outbox event %s already enqueued", key)
        existing = self.get_by_key(key)
        if existing is None:
            raise RuntimeError("Outbox row not found after enqueue conflict")
        return existing

    def get_by_key(self, idempotency_key: str) -> Optional[EventOutbox]:
        result = self.db.execute(
            select(EventOutbox).where(EventOutbox.idempotency_key == idempotency_key)
        )
        return cast(Optional[EventOutbox], result.scalar_one_or_none())

    def fetch_pending(self, limit: int = 200, now: Optional[datetime] = None) -> list[EventOutbox]:
        """Return pending events eligible for delivery ordered by attempt time."""
        cutoff = now or now_utc()
        stmt: Select[Any] = (
            select(EventOutbox)
            .where(EventOutbox.status == EventOutboxStatus.PENDING.value)
            .where(EventOutbox.next_attempt_at <= cutoff)
            .order_by(EventOutbox.next_attempt_at.asc(), EventOutbox.id.asc())
            .limit(limit)
        )
        if self._dialect == "postgresql":
            stmt = stmt.with_for_update(skip_locked=True)

        return list(self.db.execute(stmt).scalars().all())

    def get_by_id(self, event_id: str) -> Optional[EventOutbox]:
        return cast(Optional[EventOutbox], self.db.get(EventOutbox, event_id))

    def mark_sent(self, event_id: str, attempt_count: int) -> None:
        """Update row to SENT state."""
        now = now_utc()
        self.db.execute(
            update(EventOutbox)
            .where(EventOutbox.id == event_id)
            .values(
                status=EventOutboxStatus.SENT.value,
                attempt_count=attempt_count,
                last_error=None,
                next_attempt_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.flush()

    def mark_failed(
        self,
        event_id: str,
        *,
        attempt_count: int,
        backoff_seconds: int,
        error: str | None = None,
        terminal: bool = False,
    ) -> None:
        """Update row after delivery failure."""
        now = now_utc()
        values: dict[str, Any] = {
            "attempt_count": attempt_count,
            "updated_at": now,
            "last_error": (error[:1000] if error else None),
        }
        if terminal:
            values["status"] = EventOutboxStatus.FAILED.value
            values["next_attempt_at"] = now
        else:
            values["status"] = EventOutboxStatus.PENDING.value
            values["next_attempt_at"] = now + timedelta(seconds=max(backoff_seconds, 1))

        self.db.execute(
            update(EventOutbox)
            .where(EventOutbox.id == event_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.flush()
