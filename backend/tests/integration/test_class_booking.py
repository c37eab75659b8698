"""Booking orchestrator: capacity, waitlist, cancellation window and refunds."""

from decimal import Decimal

import pytest

from studio.core.enums import OccurrenceStatus, PaymentStatus, RegistrationStatus
from studio.core.exceptions import (
    DuplicateRegistrationException,
    LockedResourceException,
    NotFoundException,
    PolicyViolationException,
)
from studio.domain.actor import Actor
from studio.models import ClassRegistration, EventOutbox
from studio.repositories.client_repository import ClientRepository
from studio.services.class_booking_service import ClassBookingService

from scheduling_helpers import NOW, at


@pytest.fixture
def booking(db, policy):
    return ClassBookingService(db, policy=policy)


def _registration(db, registration_id: str) -> ClassRegistration:
    return db.get(ClassRegistration, registration_id)


def _events(db, event_type: str):
    return db.query(EventOutbox).filter(EventOutbox.event_type == event_type).all()


class TestBook:
    def test_booking_with_pass_is_paid(self, db, booking, make_occurrence, make_client, make_pass):
        occurrence = make_occurrence()
        client = make_client()
        pass_ = make_pass(client, 5)

        result = booking.book(occurrence.id, client.id, now=NOW)

        assert result.status == RegistrationStatus.BOOKED.value
        assert result.payment_status == PaymentStatus.PAID.value
        assert result.credits_used == 1
        assert result.pass_id == pass_.id
        db.refresh(pass_)
        assert pass_.credits_left == 4
        assert len(_events(db, "booking.confirmed")) == 1

    def test_booking_without_pass_is_unpaid(self, db, booking, make_occurrence, make_client):
        occurrence = make_occurrence(credits_required=2)
        client = make_client()

        result = booking.book(occurrence.id, client.id, now=NOW)

        assert result.payment_status == PaymentStatus.UNPAID.value
        assert result.credits_used == 0
        assert result.unpaid_amount == Decimal("2000")
        assert ClientRepository(db).get_unpaid_balance(client.id) == Decimal("2000")

    def test_unpaid_amount_uses_occurrence_price(self, db, booking, make_occurrence, make_client):
        occurrence = make_occurrence(price=Decimal("3500"))
        client = make_client()
        result = booking.book(occurrence.id, client.id, now=NOW)
        assert result.unpaid_amount == Decimal("3500")

    def test_full_class_waitlists_without_charging(self, db, booking, make_occurrence, make_client, make_pass):
        occurrence = make_occurrence(capacity=1)
        first, second = make_client(), make_client()
        second_pass = make_pass(second, 5)

        booking.book(occurrence.id, first.id, now=NOW)
        result = booking.book(occurrence.id, second.id, now=NOW)

        assert result.status == RegistrationStatus.WAITLIST.value
        assert result.payment_status == PaymentStatus.PENDING.value
        assert result.waitlist_position == 1
        db.refresh(second_pass)
        assert second_pass.credits_left == 5
        assert len(_events(db, "booking.waitlisted")) == 1

    def test_duplicate_booking_rejected(self, booking, make_occurrence, make_client):
        occurrence = make_occurrence()
        client = make_client()
        booking.book(occurrence.id, client.id, now=NOW)
        with pytest.raises(DuplicateRegistrationException):
            booking.book(occurrence.id, client.id, now=NOW)

    def test_can_rebook_after_cancelling(self, booking, make_occurrence, make_client):
        occurrence = make_occurrence()
        client = make_client()
        booking.book(occurrence.id, client.id, now=NOW)
        booking.cancel(occurrence.id, client.id, now=NOW)
        assert booking.book(occurrence.id, client.id, now=NOW).status == RegistrationStatus.BOOKED.value

    def test_started_or_cancelled_class_not_bookable(self, booking, make_occurrence, make_client):
        client = make_client()
        started = make_occurrence(start_at=at(hours=-1))
        cancelled = make_occurrence(status=OccurrenceStatus.CANCELLED.value)

        with pytest.raises(PolicyViolationException) as exc_info:
            booking.book(started.id, client.id, now=NOW)
        assert exc_info.value.code == "CLASS_STARTED"
        with pytest.raises(PolicyViolationException) as exc_info:
            booking.book(cancelled.id, client.id, now=NOW)
        assert exc_info.value.code == "CLASS_CANCELLED"

    def test_unknown_occurrence_or_client(self, booking, make_occurrence, make_client):
        with pytest.raises(NotFoundException):
            booking.book("missing", make_client().id, now=NOW)
        with pytest.raises(NotFoundException):
            booking.book(make_occurrence().id, "missing", now=NOW)


class TestCancel:
    def test_free_cancellation_refunds_the_same_pass(self, db, booking, make_occurrence, make_client, make_pass):
        occurrence = make_occurrence(start_at=at(days=3))
        client = make_client()
        pass_ = make_pass(client, 1)
        booking.book(occurrence.id, client.id, now=NOW)

        result = booking.cancel(occurrence.id, client.id, now=NOW)

        assert result.free_cancellation is True
        assert result.refund.applied and result.refund.pass_id == pass_.id
        db.refresh(pass_)
        assert pass_.credits_left == 1
        assert pass_.status == "active"
        assert _registration(db, result.registration_id).status == RegistrationStatus.CANCELLED.value

    def test_free_cancellation_clears_unpaid_amount(self, db, booking, make_occurrence, make_client):
        occurrence = make_occurrence()
        client = make_client()
        booking.book(occurrence.id, client.id, now=NOW)

        result = booking.cancel(occurrence.id, client.id, now=NOW)

        assert result.refund.unpaid_reduced == Decimal("1000")
        assert ClientRepository(db).get_unpaid_balance(client.id) == Decimal("0")

    def test_client_locked_inside_window(self, db, booking, make_occurrence, make_client, make_pass):
        occurrence = make_occurrence(start_at=at(hours=2))
        client = make_client()
        make_pass(client, 5)
        result = booking.book(occurrence.id, client.id, now=NOW)

        with pytest.raises(LockedResourceException):
            booking.cancel(occurrence.id, client.id, now=NOW)
        assert _registration(db, result.registration_id).status == RegistrationStatus.BOOKED.value

    def test_staff_may_cancel_late_without_refund(self, db, booking, make_occurrence, make_client, make_pass):
        occurrence = make_occurrence(start_at=at(hours=2))
        client = make_client()
        pass_ = make_pass(client, 5)
        booking.book(occurrence.id, client.id, now=NOW)

        result = booking.cancel(occurrence.id, client.id, actor=Actor.staff("staff-1"), now=NOW)

        assert result.free_cancellation is False
        assert result.refund.applied is False
        db.refresh(pass_)
        assert pass_.credits_left == 4

    def test_admin_refund_override(self, db, booking, make_occurrence, make_client, make_pass):
        occurrence = make_occurrence(start_at=at(hours=2))
        client = make_client()
        pass_ = make_pass(client, 5)
        booking.book(occurrence.id, client.id, now=NOW)

        result = booking.cancel(occurrence.id, client.id, actor=Actor.admin(), refund=True, now=NOW)

        assert result.refund.refunded == 1
        db.refresh(pass_)
        assert pass_.credits_left == 5

    def test_client_cannot_force_refund_override(self, db, booking, make_occurrence, make_client, make_pass):
        occurrence = make_occurrence(start_at=at(days=3))
        client = make_client()
        pass_ = make_pass(client, 5)
        booking.book(occurrence.id, client.id, now=NOW)

        result = booking.cancel(occurrence.id, client.id, refund=False, now=NOW)

        assert result.refund.refunded == 1
        db.refresh(pass_)
        assert pass_.credits_left == 5

    def test_cancel_twice(self, booking, make_occurrence, make_client):
        occurrence = make_occurrence()
        client = make_client()
        booking.book(occurrence.id, client.id, now=NOW)
        booking.cancel(occurrence.id, client.id, now=NOW)
        with pytest.raises(PolicyViolationException) as exc_info:
            booking.cancel(occurrence.id, client.id, now=NOW)
        assert exc_info.value.code == "ALREADY_CANCELLED"

    def test_attended_registration_is_final(self, db, booking, make_occurrence, make_client):
        occurrence = make_occurrence()
        client = make_client()
        result = booking.book(occurrence.id, client.id, now=NOW)
        _registration(db, result.registration_id).status = RegistrationStatus.ATTENDED.value
        db.commit()

        with pytest.raises(PolicyViolationException) as exc_info:
            booking.cancel(occurrence.id, client.id, now=NOW)
        assert exc_info.value.code == "REGISTRATION_FINAL"

    def test_no_registration(self, booking, make_occurrence, make_client):
        with pytest.raises(NotFoundException):
            booking.cancel(make_occurrence().id, make_client().id, now=NOW)

    def test_leaving_the_waitlist_charges_nothing(self, db, booking, make_occurrence, make_client):
        occurrence = make_occurrence(capacity=1)
        first, second = make_client(), make_client()
        booking.book(occurrence.id, first.id, now=NOW)
        booking.book(occurrence.id, second.id, now=NOW)

        result = booking.cancel(occurrence.id, second.id, now=NOW)

        assert result.previous_status == RegistrationStatus.WAITLIST.value
        assert result.refund is None
        assert result.promoted_registration_id is None


class TestWaitlistPromotion:
    def test_capacity_one_scenario(self, db, booking, make_occurrence, make_client, make_pass):
        """A books, B waitlists, A cancels freely, B is promoted and charged."""
        occurrence = make_occurrence(capacity=1, start_at=at(days=2))
        a, b = make_client("A"), make_client("B")
        pass_a, pass_b = make_pass(a, 3), make_pass(b, 3)

        booked = booking.book(occurrence.id, a.id, now=NOW)
        waitlisted = booking.book(occurrence.id, b.id, now=NOW)
        result = booking.cancel(occurrence.id, a.id, now=NOW)

        assert booked.status == "booked" and waitlisted.status == "waitlist"
        assert result.promoted_registration_id == waitlisted.registration_id
        promoted = _registration(db, waitlisted.registration_id)
        assert promoted.status == RegistrationStatus.BOOKED.value
        assert promoted.payment_status == PaymentStatus.PAID.value
        assert promoted.pass_id == pass_b.id
        db.refresh(pass_a)
        db.refresh(pass_b)
        assert (pass_a.credits_left, pass_b.credits_left) == (3, 2)
        summary = booking.get_occurrence_summary(occurrence.id)
        assert summary.confirmed_count == 1 and summary.waitlist_count == 0
        assert len(_events(db, "waitlist.promoted")) == 1

    def test_no_promotion_once_class_has_started(self, db, booking, make_occurrence, make_client, make_pass):
        occurrence = make_occurrence(capacity=1, start_at=at(hours=2))
        a, b = make_client("A"), make_client("B")
        pass_b = make_pass(b, 5)
        booking.book(occurrence.id, a.id, now=NOW)
        waitlisted = booking.book(occurrence.id, b.id, now=NOW)

        result = booking.cancel(
            occurrence.id, a.id, actor=Actor.staff("staff-1"), now=at(hours=2.5)
        )

        assert result.promoted_registration_id is None
        assert _registration(db, waitlisted.registration_id).status == RegistrationStatus.WAITLIST.value
        db.refresh(pass_b)
        assert pass_b.credits_left == 5
        assert ClientRepository(db).get_unpaid_balance(b.id) == Decimal("0")
        assert _events(db, "waitlist.promoted") == []

    def test_waitlist_is_first_in_first_out(self, db, booking, make_occurrence, make_client):
        occurrence = make_occurrence(capacity=1)
        clients = [make_client() for _ in range(4)]
        booking.book(occurrence.id, clients[0].id, now=NOW)
        second = booking.book(occurrence.id, clients[1].id, now=at(hours=1))
        third = booking.book(occurrence.id, clients[2].id, now=at(hours=2))
        fourth = booking.book(occurrence.id, clients[3].id, now=at(hours=3))
        assert [second.waitlist_position, third.waitlist_position, fourth.waitlist_position] == [1, 2, 3]

        result = booking.cancel(occurrence.id, clients[0].id, now=at(hours=4))

        assert result.promoted_registration_id == second.registration_id
        assert [entry.registration_id for entry in booking.get_waitlist(occurrence.id)] == [
            third.registration_id,
            fourth.registration_id,
        ]

    def test_promoted_client_without_pass_owes_the_fee(self, db, booking, make_occurrence, make_client, make_pass):
        occurrence = make_occurrence(capacity=1)
        a, b = make_client(), make_client()
        make_pass(a, 2)
        booking.book(occurrence.id, a.id, now=NOW)
        waitlisted = booking.book(occurrence.id, b.id, now=NOW)

        booking.cancel(occurrence.id, a.id, now=NOW)

        promoted = _registration(db, waitlisted.registration_id)
        assert promoted.payment_status == PaymentStatus.UNPAID.value
        assert ClientRepository(db).get_unpaid_balance(b.id) == Decimal("1000")

    def test_seats_never_exceed_capacity(self, booking, make_occurrence, make_client):
        occurrence = make_occurrence(capacity=2)
        results = [booking.book(occurrence.id, make_client().id, now=NOW) for _ in range(5)]
        assert [r.status for r in results].count("booked") == 2
        summary = booking.get_occurrence_summary(occurrence.id)
        assert summary.available_spots == 0 and summary.is_full
        assert summary.waitlist_count == 3
