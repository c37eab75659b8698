"""Individual session write path: conflicts, reschedule, cancel, delete, attendance."""

import pytest

from studio.core.enums import PassStatus, SessionStatus
from studio.core.exceptions import NotFoundException, PolicyViolationException, ResourceConflictException
from studio.domain.actor import Actor
from studio.models import AuditLog, EventOutbox
from studio.schemas import SessionCreate, SessionUpdate, SessionUpsert
from studio.services.session_service import SessionService

from scheduling_helpers import NOW, at


@pytest.fixture
def sessions(db):
    return SessionService(db)


@pytest.fixture
def room(make_room):
    return make_room("Studio A")


@pytest.fixture
def trainer(make_staff):
    return make_staff("Anna")


def _create(sessions, room, trainer, start_hours: float, end_hours: float, client_id=None):
    return sessions.create_session(
        SessionCreate(
            room_id=room.id,
            staff_id=trainer.id,
            client_id=client_id,
            start_at=at(hours=start_hours),
            end_at=at(hours=end_hours),
        ),
        actor=Actor.staff(trainer.id),
    )


class TestCreateSession:
    def test_creates_and_queues_side_effects(self, db, sessions, room, trainer):
        session = _create(sessions, room, trainer, 2, 3)

        assert session.status == SessionStatus.SCHEDULED.value
        event_types = {row.event_type for row in db.query(EventOutbox).all()}
        assert event_types == {"session.scheduled", "calendar.sync"}
        audit = db.query(AuditLog).filter(AuditLog.entity_id == session.id).one()
        assert audit.action == "create"
        assert audit.actor_role == "staff"

    def test_room_conflict(self, sessions, room, make_staff, trainer):
        existing = _create(sessions, room, trainer, 2, 3)
        with pytest.raises(ResourceConflictException) as exc_info:
            _create(sessions, room, make_staff(), 2.5, 3.5)
        assert exc_info.value.conflict_type == "room"
        assert exc_info.value.conflicting_entity_id == existing.id

    def test_staff_conflict(self, sessions, room, make_room, trainer):
        _create(sessions, room, trainer, 2, 3)
        with pytest.raises(ResourceConflictException) as exc_info:
            _create(sessions, make_room(), trainer, 2, 3)
        assert exc_info.value.conflict_type == "staff"

    def test_back_to_back_sessions_allowed(self, sessions, room, trainer):
        _create(sessions, room, trainer, 2, 3)
        assert _create(sessions, room, trainer, 3, 4).start_at == at(hours=3)

    def test_class_occurrence_blocks_the_trainer(self, sessions, room, trainer, make_occurrence):
        occurrence = make_occurrence(start_at=at(hours=2), trainer=trainer)
        with pytest.raises(ResourceConflictException) as exc_info:
            _create(sessions, room, trainer, 2.5, 3)
        assert exc_info.value.conflicting_entity_id == occurrence.id

    def test_failed_create_leaves_nothing_behind(self, db, sessions, room, trainer):
        _create(sessions, room, trainer, 2, 3)
        outbox_before = db.query(EventOutbox).count()
        with pytest.raises(ResourceConflictException):
            _create(sessions, room, trainer, 2, 3)
        assert db.query(EventOutbox).count() == outbox_before

    def test_unknown_client(self, sessions, room, trainer):
        with pytest.raises(NotFoundException):
            _create(sessions, room, trainer, 2, 3, client_id="missing")


class TestUpdateSession:
    def test_reschedule_ignores_own_interval(self, sessions, room, trainer):
        session = _create(sessions, room, trainer, 2, 3)
        moved = sessions.update_session(
            session.id, SessionUpdate(start_at=at(hours=2.5), end_at=at(hours=3.5))
        )
        assert moved.start_at == at(hours=2.5)

    def test_reschedule_into_conflict_keeps_original(self, sessions, room, trainer):
        first = _create(sessions, room, trainer, 2, 3)
        second = _create(sessions, room, trainer, 4, 5)
        with pytest.raises(ResourceConflictException):
            sessions.update_session(second.id, SessionUpdate(start_at=at(hours=2.5), end_at=at(hours=3.5)))
        assert sessions.get_session(second.id).start_at == at(hours=4)
        assert sessions.get_session(first.id).start_at == at(hours=2)

    def test_title_change_skips_conflict_check(self, db, sessions, room, trainer):
        session = _create(sessions, room, trainer, 2, 3)
        updated = sessions.update_session(session.id, SessionUpdate(title="Rehab"))
        assert updated.title == "Rehab"

    def test_upsert_creates_then_updates(self, sessions, room, trainer):
        payload = dict(room_id=room.id, staff_id=trainer.id, start_at=at(hours=2), end_at=at(hours=3))
        created = sessions.create_or_update_session(SessionUpsert(**payload))
        updated = sessions.create_or_update_session(
            SessionUpsert(session_id=created.id, **{**payload, "end_at": at(hours=4)})
        )
        assert updated.id == created.id
        assert updated.end_at == at(hours=4)

    def test_cancelled_session_cannot_be_rescheduled(self, sessions, room, trainer):
        session = _create(sessions, room, trainer, 2, 3)
        sessions.cancel_session(session.id)
        with pytest.raises(PolicyViolationException) as exc_info:
            sessions.update_session(session.id, SessionUpdate(title="x"))
        assert exc_info.value.code == "SESSION_NOT_SCHEDULED"


class TestCancelAndDelete:
    def test_cancel_releases_the_slot(self, db, sessions, room, trainer):
        session = _create(sessions, room, trainer, 2, 3)
        sessions.cancel_session(session.id, reason="client ill")
        assert _create(sessions, room, trainer, 2, 3).id != session.id
        sync_ops = [
            row.payload["operation"]
            for row in db.query(EventOutbox).filter(EventOutbox.event_type == "calendar.sync")
        ]
        assert "delete" in sync_ops

    def test_audit_history_lists_each_write(self, sessions, room, trainer):
        session = _create(sessions, room, trainer, 2, 3)
        sessions.cancel_session(session.id, actor=Actor.admin("admin-1"))

        history = sessions.audit.history("individual_session", session.id)
        assert sorted(entry.action for entry in history) == ["cancel", "create"]

    def test_cancel_twice(self, sessions, room, trainer):
        session = _create(sessions, room, trainer, 2, 3)
        sessions.cancel_session(session.id)
        with pytest.raises(PolicyViolationException) as exc_info:
            sessions.cancel_session(session.id)
        assert exc_info.value.code == "ALREADY_CANCELLED"

    def test_delete_future_session(self, sessions, room, trainer):
        session = _create(sessions, room, trainer, 2, 3)
        sessions.delete_session(session.id, now=NOW)
        with pytest.raises(NotFoundException):
            sessions.get_session(session.id)
        _create(sessions, room, trainer, 2, 3)

    def test_started_session_cannot_be_deleted(self, sessions, room, trainer):
        session = _create(sessions, room, trainer, 2, 3)
        with pytest.raises(PolicyViolationException) as exc_info:
            sessions.delete_session(session.id, now=at(hours=2))
        assert exc_info.value.code == "SESSION_STARTED"


class TestAttendance:
    def test_check_in_deducts_one_credit(self, db, sessions, room, trainer, make_client, make_pass):
        client = make_client()
        pass_ = make_pass(client, 1)
        session = _create(sessions, room, trainer, 2, 3, client_id=client.id)

        result = sessions.record_session_attendance(session.id, attended=True, now=at(hours=3))

        assert result.status == SessionStatus.COMPLETED.value
        assert result.credit_deducted and result.pass_id == pass_.id
        db.refresh(pass_)
        assert pass_.status == PassStatus.DEPLETED.value

    def test_check_in_without_credits_stays_unpaid(self, sessions, room, trainer, make_client):
        client = make_client()
        session = _create(sessions, room, trainer, 2, 3, client_id=client.id)

        result = sessions.record_session_attendance(session.id, attended=True, now=at(hours=3))

        assert result.attended and not result.credit_deducted
        assert result.message == "no credits available; session left unpaid"

    def test_no_show(self, sessions, room, trainer, make_client, make_pass):
        client = make_client()
        make_pass(client, 3)
        session = _create(sessions, room, trainer, 2, 3, client_id=client.id)

        result = sessions.record_session_attendance(session.id, attended=False, now=at(hours=3))

        assert result.status == SessionStatus.NO_SHOW.value
        assert result.credit_deducted is False

    def test_attendance_recorded_once(self, sessions, room, trainer):
        session = _create(sessions, room, trainer, 2, 3)
        sessions.record_session_attendance(session.id, attended=True, now=at(hours=3))
        with pytest.raises(PolicyViolationException) as exc_info:
            sessions.record_session_attendance(session.id, attended=False, now=at(hours=3))
        assert exc_info.value.code == "ATTENDANCE_RECORDED"
