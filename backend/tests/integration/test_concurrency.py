"""
Races between independent sessions on the same rows.

Every worker thread opens its own session; the shared ``db`` fixture is closed
before the threads start so it never holds the database lock.
"""

from concurrent.futures import ThreadPoolExecutor
import threading
from typing import Any, Callable, List

import pytest

from studio.core.enums import RegistrationStatus
from studio.core.exceptions import NoCreditsAvailableException, ResourceConflictException
from studio.models import ClassRegistration, IndividualSession, Pass
from studio.schemas import SessionCreate
from studio.services.class_booking_service import ClassBookingService
from studio.services.credit_ledger_service import CreditLedgerService
from studio.services.session_service import SessionService

from scheduling_helpers import NOW, at


def _race(session_factory, workers: List[Callable[[Any], Any]]) -> List[Any]:
    """Run each worker on its own session, all released together. Returns results or exceptions."""
    barrier = threading.Barrier(len(workers))

    def _run(worker):
        session = session_factory()
        try:
            barrier.wait()
            return worker(session)
        except Exception as exc:  # collected for assertions
            return exc
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=len(workers)) as pool:
        return list(pool.map(_run, workers))


@pytest.mark.integration
class TestConcurrentWrites:
    def test_single_credit_is_deducted_once(self, db, session_factory, make_client, make_pass):
        client = make_client()
        pass_ = make_pass(client, 1)
        client_id, pass_id = client.id, pass_.id
        db.close()

        results = _race(
            session_factory,
            [
                lambda s: CreditLedgerService(s).deduct_credit(client_id, "race", now=NOW)
                for _ in range(2)
            ],
        )

        assert sum(isinstance(r, Pass) for r in results) == 1
        assert sum(isinstance(r, NoCreditsAvailableException) for r in results) == 1
        check = session_factory()
        try:
            assert check.get(Pass, pass_id).credits_left == 0
        finally:
            check.close()

    def test_last_seat_goes_to_one_client(self, db, session_factory, policy, make_occurrence, make_client):
        occurrence = make_occurrence(capacity=1)
        client_ids = [make_client().id for _ in range(4)]
        occurrence_id = occurrence.id
        db.close()

        def _booker(client_id):
            return lambda s: ClassBookingService(s, policy=policy).book(occurrence_id, client_id, now=NOW)

        results = _race(session_factory, [_booker(client_id) for client_id in client_ids])

        assert not [r for r in results if isinstance(r, Exception)]
        statuses = sorted(r.status for r in results)
        assert statuses == ["booked", "waitlist", "waitlist", "waitlist"]
        check = session_factory()
        try:
            booked = (
                check.query(ClassRegistration)
                .filter(
                    ClassRegistration.occurrence_id == occurrence_id,
                    ClassRegistration.status == RegistrationStatus.BOOKED.value,
                )
                .count()
            )
            assert booked == 1
        finally:
            check.close()

    def test_room_is_not_double_booked(self, db, session_factory, make_room, make_staff):
        room_id = make_room().id
        staff_ids = [make_staff().id, make_staff().id]
        db.close()

        def _creator(staff_id, offset):
            data = SessionCreate(
                room_id=room_id,
                staff_id=staff_id,
                start_at=at(days=1, hours=offset),
                end_at=at(days=1, hours=offset + 1),
            )
            return lambda s: SessionService(s).create_session(data)

        results = _race(session_factory, [_creator(staff_ids[0], 0), _creator(staff_ids[1], 0.5)])

        assert sum(isinstance(r, IndividualSession) for r in results) == 1
        conflicts = [r for r in results if isinstance(r, ResourceConflictException)]
        assert len(conflicts) == 1
        assert conflicts[0].conflict_type == "room"

    def test_freed_seat_goes_to_waitlist_not_concurrent_booker(
        self, db, session_factory, policy, make_occurrence, make_client
    ):
        occurrence = make_occurrence(capacity=1)
        a_id, w_id, c_id = (make_client().id for _ in range(3))
        occurrence_id = occurrence.id
        seeding = ClassBookingService(db, policy=policy)
        seeding.book(occurrence_id, a_id, now=NOW)
        waitlisted = seeding.book(occurrence_id, w_id, now=NOW)
        db.close()

        results = _race(
            session_factory,
            [
                lambda s: ClassBookingService(s, policy=policy).cancel(occurrence_id, a_id, now=at(hours=1)),
                lambda s: ClassBookingService(s, policy=policy).book(occurrence_id, c_id, now=at(hours=1)),
            ],
        )

        assert not [r for r in results if isinstance(r, Exception)]
        cancelled, late_booking = results
        assert cancelled.promoted_registration_id == waitlisted.registration_id
        assert late_booking.status == "waitlist"
        check = session_factory()
        try:
            assert check.get(ClassRegistration, waitlisted.registration_id).status == "booked"
            assert check.get(ClassRegistration, late_booking.registration_id).status == "waitlist"
            booked = (
                check.query(ClassRegistration)
                .filter(
                    ClassRegistration.occurrence_id == occurrence_id,
                    ClassRegistration.status == RegistrationStatus.BOOKED.value,
                )
                .count()
            )
            assert booked == 1
        finally:
            check.close()
