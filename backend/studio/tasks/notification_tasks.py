# backend/studio/tasks/notification_tasks.py
"""
Celery tasks for dispatching outbox events.

Implements a two-step workflow:
1. `outbox.dispatch_pending` periodically enqueues delivery tasks.
2. `outbox.deliver_event` performs delivery with retries and backoff.

``calendar.sync`` rows go to the external calendar and the id it returns is
written back onto the session or occurrence; every other event type goes to
the notification channel.
"""

from __future__ import annotations

from contextlib import contextmanager
from time import monotonic
from typing import Any, Iterator, Optional, cast

from celery.app.task import Task  # noqa: F401 - used for type hints
from celery.utils.log import get_task_logger
from sqlalchemy.orm import Session

from studio.core.config import settings
from studio.database import SessionLocal
from studio.domain.intervals import IntervalKind
from studio.events import CalendarSyncRequested
from studio.models.event_outbox import EventOutbox, EventOutboxStatus
from studio.monitoring.prometheus_metrics import PrometheusMetrics
from studio.repositories.event_outbox_repository import EventOutboxRepository
from studio.services.calendar_sync_service import CalendarSyncService
from studio.services.notification_provider import (
    CalendarSyncProvider,
    NotificationProvider,
    NotificationProviderTemporaryError,
)
from studio.tasks.celery_app import celery_app

logger = get_task_logger(__name__)

MAX_DELIVERY_ATTEMPTS = 5
BACKOFF_SECONDS = [30, 120, 600, 1800, 7200]


def _next_backoff(attempt_number: int) -> int:
    """Return backoff delay for the given attempt (1-indexed)."""
    index = max(0, min(attempt_number - 1, len(BACKOFF_SECONDS) - 1))
    return BACKOFF_SECONDS[index]


@contextmanager
def _session_scope() -> Iterator[Session]:
    """Provide transactional scope for use in tasks."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _deliver(event: EventOutbox) -> None:
    """Hand one outbox row to the provider that owns its event type."""
    payload = dict(event.payload or {})
    if event.event_type == CalendarSyncRequested.event_type:
        external_id = CalendarSyncProvider(session_factory=SessionLocal).push(
            payload, event.idempotency_key, event_type=event.event_type
        )
        if external_id:
            with _session_scope() as session:
                CalendarSyncService(session).record_external_reference(
                    IntervalKind(payload["entity_kind"]), payload["entity_id"], external_id
                )
        return

    NotificationProvider(session_factory=SessionLocal).send(
        event_type=event.event_type,
        payload=payload,
        idempotency_key=event.idempotency_key,
    )


@celery_app.task(name="outbox.dispatch_pending", max_retries=0, queue="notifications")
def dispatch_pending() -> int:
    """
    Fetch pending outbox events and enqueue delivery tasks.

    Returns the number of events scheduled.
    """
    with _session_scope() as session:
        repo = EventOutboxRepository(session)
        pending = repo.fetch_pending(limit=settings.outbox_batch_size)
        for event in pending:
            deliver_event.apply_async((event.id,), queue="notifications")
        scheduled: int = len(pending)
        if scheduled:
            logger.info("Scheduled %s outbox events for delivery", scheduled)
        return scheduled


@celery_app.task(
    name="outbox.deliver_event",
    bind=True,
    max_retries=MAX_DELIVERY_ATTEMPTS,
    default_retry_delay=BACKOFF_SECONDS[0],
    queue="notifications",
)
def deliver_event(self: "Task[Any, Any]", event_id: str) -> Optional[str]:
    """
    Deliver a single outbox event.

    The row is marked SENT only after the provider accepted it. A failure
    records the attempt and schedules a retry; the last allowed attempt marks
    the row FAILED and re-raises.
    """
    session = SessionLocal()
    try:
        repo = EventOutboxRepository(session)
        event = repo.get_by_id(event_id)
        if event is None:
            logger.warning("Outbox event %s missing; skipping", event_id)
            session.commit()
            return None
        if event.status != EventOutboxStatus.PENDING.value:
            logger.info("Outbox event %s already %s; skipping", event_id, event.status)
            session.commit()
            return cast(str, event.id)

        attempt_number = event.attempt_count + 1
        PrometheusMetrics.record_notification_attempt(event.event_type)
        # Providers write through their own sessions; end this read first
        session.commit()

        start = monotonic()
        try:
            _deliver(event)
        except Exception as exc:
            PrometheusMetrics.observe_notification_dispatch(event.event_type, monotonic() - start)
            backoff = _record_failure(session, event, attempt_number, exc)
            if backoff is None:
                raise
            raise self.retry(countdown=backoff, exc=exc)

        repo.mark_sent(event.id, attempt_number)
        session.commit()
        PrometheusMetrics.observe_notification_dispatch(event.event_type, monotonic() - start)
        PrometheusMetrics.record_notification_outcome(event.event_type, "sent")
        logger.info(
            "Delivered outbox event %s type=%s attempts=%s",
            event.id,
            event.event_type,
            attempt_number,
        )
        return cast(str, event.id)
    finally:
        session.close()


def _record_failure(
    session: Session, event: EventOutbox, attempt_number: int, exc: Exception
) -> Optional[int]:
    """
    Store a failed attempt on the outbox row.

    Returns the retry countdown, or None when the attempt was the last one.
    """
    backoff = _next_backoff(attempt_number)
    terminal = attempt_number >= MAX_DELIVERY_ATTEMPTS
    EventOutboxRepository(session).mark_failed(
        event.id,
        attempt_count=attempt_number,
        backoff_seconds=backoff,
        error=str(exc),
        terminal=terminal,
    )
    session.commit()

    transient = isinstance(exc, NotificationProviderTemporaryError)
    if terminal:
        PrometheusMetrics.record_notification_outcome(event.event_type, "failed")
        logger.error(
            "Outbox event %s failed after %s attempts: %s",
            event.id,
            attempt_number,
            exc,
            exc_info=not transient,
        )
        return None

    logger.warning(
        "Retrying outbox event %s attempt=%s backoff=%ss: %s",
        event.id,
        attempt_number,
        backoff,
        exc,
        exc_info=not transient,
    )
    return backoff
