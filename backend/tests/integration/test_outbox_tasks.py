"""Outbox delivery and ledger housekeeping tasks against a real database."""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from studio.core.enums import PassStatus
from studio.models import EventOutbox, IndividualSession, NotificationDelivery, Pass
from studio.models.event_outbox import EventOutboxStatus
from studio.schemas import SessionCreate
from studio.services.class_booking_service import ClassBookingService
from studio.services.notification_provider import NotificationProviderTemporaryError
from studio.services.session_service import SessionService
from studio.tasks import ledger_tasks, notification_tasks
from studio.tasks.ledger_tasks import expire_passes
from studio.tasks.notification_tasks import MAX_DELIVERY_ATTEMPTS, deliver_event, dispatch_pending

from scheduling_helpers import NOW, at


@pytest.fixture(autouse=True)
def task_sessions(monkeypatch, session_factory):
    monkeypatch.setattr(notification_tasks, "SessionLocal", session_factory)
    monkeypatch.setattr(ledger_tasks, "SessionLocal", session_factory)
    monkeypatch.delenv("NOTIFICATION_PROVIDER_RAISE_ON", raising=False)


@pytest.fixture
def confirmed_event(db, policy, make_occurrence, make_client, make_pass):
    occurrence = make_occurrence()
    client = make_client()
    make_pass(client, 5)
    ClassBookingService(db, policy=policy).book(occurrence.id, client.id, now=NOW)
    event = db.query(EventOutbox).filter(EventOutbox.event_type == "booking.confirmed").one()
    db.commit()
    return event


def _reload(db, event_id):
    db.expire_all()
    refreshed = db.get(EventOutbox, event_id)
    db.commit()
    return refreshed


def test_deliver_event_missing_returns_none():
    assert deliver_event.run("missing-event-id") is None


def test_deliver_event_marks_sent_and_records_delivery(db, confirmed_event):
    assert deliver_event.run(confirmed_event.id) == confirmed_event.id

    refreshed = _reload(db, confirmed_event.id)
    assert refreshed.status == EventOutboxStatus.SENT.value
    assert refreshed.attempt_count == 1
    deliveries = (
        db.query(NotificationDelivery)
        .filter(NotificationDelivery.idempotency_key == confirmed_event.idempotency_key)
        .count()
    )
    assert deliveries == 1


def test_sent_event_is_not_delivered_twice(db, confirmed_event):
    deliver_event.run(confirmed_event.id)
    deliver_event.run(confirmed_event.id)

    delivery = (
        db.query(NotificationDelivery)
        .filter(NotificationDelivery.idempotency_key == confirmed_event.idempotency_key)
        .one()
    )
    assert delivery.attempt_count == 1


def test_temporary_error_keeps_event_pending(db, confirmed_event, monkeypatch):
    monkeypatch.setenv("NOTIFICATION_PROVIDER_RAISE_ON", "booking.confirmed")

    with pytest.raises(NotificationProviderTemporaryError):
        deliver_event.run(confirmed_event.id)

    refreshed = _reload(db, confirmed_event.id)
    assert refreshed.status == EventOutboxStatus.PENDING.value
    assert refreshed.attempt_count == 1
    assert "booking.confirmed" in refreshed.last_error
    assert refreshed.next_attempt_at > datetime.now(timezone.utc)


def test_temporary_error_on_last_attempt_is_terminal(db, confirmed_event, monkeypatch):
    confirmed_event.attempt_count = MAX_DELIVERY_ATTEMPTS - 1
    db.add(confirmed_event)
    db.commit()
    monkeypatch.setenv("NOTIFICATION_PROVIDER_RAISE_ON", "*")

    with pytest.raises(NotificationProviderTemporaryError):
        deliver_event.run(confirmed_event.id)

    assert _reload(db, confirmed_event.id).status == EventOutboxStatus.FAILED.value


def test_generic_error_retries(db, confirmed_event):
    with patch(
        "studio.tasks.notification_tasks.NotificationProvider.send",
        side_effect=RuntimeError("boom"),
    ):
        with pytest.raises(RuntimeError):
            deliver_event.run(confirmed_event.id)

    refreshed = _reload(db, confirmed_event.id)
    assert refreshed.status == EventOutboxStatus.PENDING.value
    assert refreshed.last_error == "boom"


def test_calendar_sync_stores_external_id(db, make_room, make_staff):
    session = SessionService(db).create_session(
        SessionCreate(
            room_id=make_room().id, staff_id=make_staff().id, start_at=at(days=1), end_at=at(days=1, hours=1)
        )
    )
    sync = db.query(EventOutbox).filter(EventOutbox.event_type == "calendar.sync").one()
    db.commit()

    deliver_event.run(sync.id)

    db.expire_all()
    stored = db.get(IndividualSession, session.id)
    assert stored.external_sync_id is not None
    assert stored.external_sync_id.startswith("cal_")


def test_dispatch_pending_enqueues_events(db, confirmed_event):
    pending_ids = {
        row.id
        for row in db.query(EventOutbox).filter(EventOutbox.status == EventOutboxStatus.PENDING.value)
    }
    db.commit()

    with patch("studio.tasks.notification_tasks.deliver_event.apply_async") as mocked_apply:
        scheduled = dispatch_pending()

    assert scheduled == len(pending_ids)
    assert confirmed_event.id in pending_ids
    assert {call.args[0][0] for call in mocked_apply.call_args_list} == pending_ids


def test_expire_passes_task(db, make_client, make_pass):
    client = make_client()
    lapsed = make_pass(
        client,
        5,
        valid_from=datetime(2019, 1, 1, tzinfo=timezone.utc),
        valid_until=datetime(2020, 1, 1, tzinfo=timezone.utc),
    )
    current = make_pass(client, 5)
    db.commit()

    assert expire_passes.run() == 1

    db.expire_all()
    assert db.get(Pass, lapsed.id).status == PassStatus.EXPIRED.value
    assert db.get(Pass, current.id).status == PassStatus.ACTIVE.value
