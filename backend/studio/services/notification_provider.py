# backend/studio/services/notification_provider.py
"""
Provider shims used by the outbox dispatcher.

``NotificationProvider`` stands in for the outbound notification channel and
``CalendarSyncProvider`` for the external calendar. Both record each delivery
in the notification_delivery table keyed by the outbox idempotency key, so a
redelivered event is acknowledged without being sent twice. A test-only
environment flag (``NOTIFICATION_PROVIDER_RAISE_ON``) triggers transient
failures.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
import json
import logging
import os
from typing import Any, Callable, Dict, Generator, Optional

from sqlalchemy.orm import Session
import ulid

from ..core.enums import SyncOperation
from ..database import SessionLocal
from ..repositories.notification_delivery_repository import NotificationDeliveryRepository

logger = logging.getLogger(__name__)


class NotificationProviderTemporaryError(RuntimeError):
    """Exception raised to simulate transient provider failures."""


def _should_raise(event_type: str, idempotency_key: str) -> bool:
    """Determine whether to simulate a provider failure."""
    raw = os.getenv("NOTIFICATION_PROVIDER_RAISE_ON")
    if not raw:
        return False

    tokens = {token.strip() for token in raw.split(",") if token.strip()}
    if not tokens:
        return False

    return (
        "*" in tokens
        or event_type in tokens
        or idempotency_key in tokens
        or any(token and token in idempotency_key for token in tokens if len(token) > 4)
    )


@contextmanager
def _managed_session(session_factory: Callable[[], Session]) -> Generator[Session, None, None]:
    """Context manager that yields a session and guarantees cleanup."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@dataclass(slots=True)
class NotificationDispatchResult:
    """Metadata describing a simulated provider send."""

    idempotency_key: str
    event_type: str
    attempt_count: int
    stored_payload: Dict[str, Any]


class NotificationProvider:
    """
    Lightweight provider shim that writes to notification_delivery.

    Usage:
        provider = NotificationProvider()
        provider.send(event_type="booking.confirmed", payload={...}, idempotency_key="...")
    """

    def __init__(self, session_factory: Callable[[], Session] | None = None) -> None:
        self._session_factory = session_factory or SessionLocal

    def send(
        self,
        event_type: str,
        payload: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> NotificationDispatchResult:
        """Simulate sending a notification message."""
        if not idempotency_key:
            raise ValueError("idempotency_key is required for notification dispatch")

        if _should_raise(event_type, idempotency_key):
            logger.warning("Simulating provider failure for %s (%s)", event_type, idempotency_key)
            raise NotificationProviderTemporaryError(
                f"Simulated transient failure for {event_type}"
            )

        payload = payload or {}
        logger.info(
            "Dispatching notification %s key=%s payload=%s",
            event_type,
            idempotency_key,
            json.dumps(payload, sort_keys=True, default=str)[:500],
        )

        with _managed_session(self._session_factory) as session:
            record = NotificationDeliveryRepository(session).record_delivery(
                event_type, idempotency_key, payload
            )
            logger.debug(
                "Notification delivery recorded id=%s attempts=%s",
                record.id,
                record.attempt_count,
            )
            return NotificationDispatchResult(
                idempotency_key=idempotency_key,
                event_type=event_type,
                attempt_count=record.attempt_count,
                stored_payload=dict(record.payload or {}),
            )


class CalendarSyncProvider:
    """
    Push-only shim for the external calendar.

    ``push`` returns the opaque id the calendar assigned to the entity (None for
    deletes). Redelivering the same sync request returns the id from the first
    delivery.
    """

    def __init__(self, session_factory: Callable[[], Session] | None = None) -> None:
        self._session_factory = session_factory or SessionLocal

    def push(
        self,
        payload: Dict[str, Any],
        idempotency_key: str,
        event_type: str = "calendar.sync",
    ) -> Optional[str]:
        if not idempotency_key:
            raise ValueError("idempotency_key is required for calendar sync")

        if _should_raise(event_type, idempotency_key):
            logger.warning("Simulating calendar failure for %s", idempotency_key)
            raise NotificationProviderTemporaryError("Simulated transient calendar failure")

        operation = payload.get("operation", SyncOperation.UPSERT.value)
        external_id: Optional[str] = None
        if operation != SyncOperation.DELETE.value:
            external_id = payload.get("external_sync_id") or f"cal_{ulid.ULID()}"

        with _managed_session(self._session_factory) as session:
            repo = NotificationDeliveryRepository(session)
            previous = repo.get_by_idempotency_key(idempotency_key)
            if previous is not None:
                # Redelivery keeps the id handed out the first time
                external_id = (previous.payload or {}).get("external_id") or external_id
            repo.record_delivery(
                event_type, idempotency_key, {**payload, "external_id": external_id}
            )

        logger.info(
            "Calendar %s for %s %s -> %s",
            operation,
            payload.get("entity_kind"),
            payload.get("entity_id"),
            external_id,
        )
        return external_id
