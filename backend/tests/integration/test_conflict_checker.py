"""Room and staff conflict detection against the stored calendar."""

from datetime import timedelta

import pytest

from studio.core.enums import SessionStatus
from studio.core.exceptions import NotFoundException, ResourceConflictException, ValidationException
from studio.domain.intervals import ResourceKind
from studio.models import IndividualSession
from studio.services.conflict_checker import ConflictChecker

from scheduling_helpers import at


@pytest.fixture
def room(make_room):
    return make_room("Studio A")


@pytest.fixture
def trainer(make_staff):
    return make_staff("Anna")


@pytest.fixture
def ten_to_eleven(db, room, trainer):
    """An existing 10:00-11:00 session in Studio A with Anna."""
    session = IndividualSession(
        room_id=room.id,
        staff_id=trainer.id,
        start_at=at(hours=2),
        end_at=at(hours=3),
        status=SessionStatus.SCHEDULED.value,
    )
    db.add(session)
    db.commit()
    return session


class TestCheckConflict:
    def test_overlapping_slot_conflicts(self, db, room, ten_to_eleven):
        result = ConflictChecker(db).check_conflict(
            ResourceKind.ROOM, room.id, at(hours=2.5), at(hours=3.5)
        )
        assert result.conflict is True
        assert result.conflict_type == "room"
        assert result.conflicting_entity_id == ten_to_eleven.id
        assert result.details.overlap_minutes == 30

    def test_adjacent_slots_do_not_conflict(self, db, room, ten_to_eleven):
        checker = ConflictChecker(db)
        assert not checker.check_conflict(ResourceKind.ROOM, room.id, at(hours=3), at(hours=4)).conflict
        assert not checker.check_conflict(ResourceKind.ROOM, room.id, at(hours=1), at(hours=2)).conflict

    def test_staff_is_checked_independently(self, db, make_room, trainer, ten_to_eleven):
        other_room = make_room("Studio B")
        checker = ConflictChecker(db)
        assert not checker.check_conflict(
            ResourceKind.ROOM, other_room.id, at(hours=2), at(hours=3)
        ).conflict
        result = checker.check_conflict(ResourceKind.STAFF, trainer.id, at(hours=2), at(hours=3))
        assert result.conflict and result.conflict_type == "staff"

    def test_cancelled_session_frees_the_slot(self, db, room, ten_to_eleven):
        ten_to_eleven.status = SessionStatus.CANCELLED.value
        db.commit()
        assert not ConflictChecker(db).check_conflict(
            ResourceKind.ROOM, room.id, at(hours=2), at(hours=3)
        ).conflict

    def test_excluding_the_session_itself(self, db, room, ten_to_eleven):
        result = ConflictChecker(db).check_conflict(
            ResourceKind.ROOM, room.id, at(hours=2.5), at(hours=3.5), exclude_entity_id=ten_to_eleven.id
        )
        assert result.conflict is False

    def test_class_occurrences_occupy_rooms(self, db, make_occurrence, room):
        occurrence = make_occurrence(start_at=at(days=1), room=room)
        result = ConflictChecker(db).check_conflict(
            ResourceKind.ROOM, room.id, at(days=1, hours=0.5), at(days=1, hours=2)
        )
        assert result.conflict
        assert result.details.conflicting_entity_kind == "class_occurrence"
        assert result.conflicting_entity_id == occurrence.id

    def test_unknown_resource(self, db):
        with pytest.raises(NotFoundException):
            ConflictChecker(db).check_conflict(ResourceKind.ROOM, "missing", at(), at(hours=1))

    def test_invalid_interval(self, db, room):
        with pytest.raises(ValidationException) as exc_info:
            ConflictChecker(db).check_conflict(ResourceKind.ROOM, room.id, at(hours=1), at(hours=1))
        assert exc_info.value.code == "INVALID_INTERVAL"


class TestAssertNoConflicts:
    def test_room_conflict_reported_before_staff(self, db, room, trainer, ten_to_eleven):
        with pytest.raises(ResourceConflictException) as exc_info:
            ConflictChecker(db).assert_no_conflicts(room.id, trainer.id, at(hours=2), at(hours=3))
        assert exc_info.value.conflict_type == "room"
        assert exc_info.value.conflicting_entity_id == ten_to_eleven.id

    def test_staff_conflict_in_another_room(self, db, make_room, trainer, ten_to_eleven):
        other_room = make_room("Studio B")
        with pytest.raises(ResourceConflictException) as exc_info:
            ConflictChecker(db).assert_no_conflicts(
                other_room.id, trainer.id, at(hours=2.5), at(hours=3.5)
            )
        assert exc_info.value.conflict_type == "staff"

    def test_missing_staff_member(self, db, room):
        with pytest.raises(NotFoundException):
            ConflictChecker(db).assert_no_conflicts(room.id, "missing", at(), at(hours=1))


class TestCalendarQueries:
    def test_find_conflicts_lists_every_overlap(self, db, room, trainer, make_occurrence, ten_to_eleven):
        make_occurrence(start_at=at(hours=3), room=room)
        hits = ConflictChecker(db).find_conflicts(ResourceKind.ROOM, room.id, at(hours=2.5), at(hours=3.5))
        assert [hit.overlap_minutes for hit in hits] == [30, 30]
        assert hits[0].conflicting_entity_id == ten_to_eleven.id

    def test_resource_calendar_window(self, db, room, ten_to_eleven, make_occurrence):
        make_occurrence(start_at=at(days=5), room=room)
        entries = ConflictChecker(db).get_resource_calendar(
            ResourceKind.ROOM, room.id, at(), at(days=1)
        )
        assert [entry.entity_id for entry in entries] == [ten_to_eleven.id]
