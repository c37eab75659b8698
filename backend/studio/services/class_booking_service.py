# backend/studio/services/class_booking_service.py
"""
Class Booking Service (booking orchestrator).

Owns the registration state machine of group classes:

    book:    -> booked (seat free) | waitlist (class full)
    cancel:  booked | waitlist -> cancelled, then promote the head of the waitlist
    promote: waitlist -> booked (internal, inside the cancelling transaction)

Every transition runs in one unit of work that first locks the occurrence
row, so capacity counting, the ledger mutation and the registration write are
serialized per occurrence. The ledger is called with ``use_transaction=False``
and takes its pass locks after the occurrence lock, never before.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import BookingPolicy
from ..core.enums import (
    ACTIVE_REGISTRATION_STATUSES,
    OccurrenceStatus,
    PaymentStatus,
    RegistrationStatus,
)
from ..core.exceptions import (
    DuplicateRegistrationException,
    LockedResourceException,
    NoCreditsAvailableException,
    NotFoundException,
    PolicyViolationException,
)
from ..core.ulid_helper import generate_ulid
from ..domain.actor import SYSTEM_ACTOR, Actor
from ..domain.cancellation import hours_until, is_free_cancellation
from ..models.class_schedule import ClassOccurrence, ClassRegistration
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.results import (
    BookingResult,
    CancellationResult,
    OccurrenceSummary,
    RefundOutcome,
    WaitlistEntry,
)
from .audit_service import AuditService
from .base import BaseService
from .credit_ledger_service import CreditLedgerService
from .notification_service import NotificationService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Charge:
    payment_status: str
    credits_used: int = 0
    pass_id: Optional[str] = None
    unpaid_amount: Decimal = Decimal("0")


class ClassBookingService(BaseService):
    """
    Booking, cancellation and waitlist promotion for class occurrences.

    The booking policy (free-cancellation window, fallback credit price) is
    passed in explicitly; it defaults to the one derived from settings.
    """

    def __init__(
        self,
        db: Session,
        policy: Optional[BookingPolicy] = None,
        ledger: Optional[CreditLedgerService] = None,
        notification_service: Optional[NotificationService] = None,
        audit_service: Optional[AuditService] = None,
    ):
        super().__init__(db)
        self.policy = policy or BookingPolicy.from_settings()
        self.occurrence_repository = RepositoryFactory.create_class_occurrence_repository(db)
        self.registration_repository = RepositoryFactory.create_class_registration_repository(db)
        self.client_repository = RepositoryFactory.create_client_repository(db)
        self.ledger = ledger or CreditLedgerService(db)
        self.notifications = notification_service or NotificationService(db)
        self.audit = audit_service or AuditService(db)

    # Booking

    @BaseService.measure_operation("book_class")
    def book(
        self,
        occurrence_id: str,
        client_id: str,
        actor: Optional[Actor] = None,
        now: Optional[datetime] = None,
    ) -> BookingResult:
        """
        Book a client into a class occurrence.

        A free seat books immediately: one pass is charged
        ``credits_required`` credits, or when no pass can cover it the fee is
        added to the client's unpaid balance. A full class puts the client on
        the waitlist without touching the ledger.

        Raises:
            NotFoundException: Occurrence or client missing
            PolicyViolationException: Occurrence cancelled or already started
            DuplicateRegistrationException: Client already booked or waitlisted
        """
        moment = self._resolve_now(now)
        actor = actor or Actor.client(client_id)

        with self.transaction():
            occurrence = self._lock_occurrence(occurrence_id)
            self._ensure_bookable(occurrence, moment)
            if self.client_repository.get_by_id(client_id, load_relationships=False) is None:
                raise NotFoundException.for_entity("Client", client_id)

            existing = self.registration_repository.get_active_for_client(occurrence_id, client_id)
            if existing is not None:
                self.logger.warning(
                    f"Client {client_id} already holds registration {existing.id} "
                    f"({existing.status}) for occurrence {occurrence_id}"
                )
                raise DuplicateRegistrationException(occurrence_id, client_id, existing.id)

            confirmed = self.registration_repository.count_confirmed(occurrence_id)
            is_full = confirmed >= occurrence.capacity
            registration_id = generate_ulid()

            if is_full:
                charge = _Charge(payment_status=PaymentStatus.PENDING.value)
                status = RegistrationStatus.WAITLIST.value
            else:
                charge = self._charge(occurrence, client_id, registration_id, moment)
                status = RegistrationStatus.BOOKED.value

            registration = self._create_registration(
                registration_id, occurrence_id, client_id, status, charge, moment
            )

            position: Optional[int] = None
            if is_full:
                position = self.registration_repository.count_waitlist(occurrence_id)
                self.notifications.booking_waitlisted(registration, occurrence, position)
            else:
                self.notifications.booking_confirmed(registration, occurrence)

            self._write_audit(
                registration,
                "waitlist" if is_full else "book",
                actor=actor,
                before=None,
                after=registration.to_dict(),
            )

        prometheus_metrics.record_registration(status)
        self.log_operation(
            "book_class",
            occurrence_id=occurrence_id,
            client_id=client_id,
            registration_id=registration.id,
            status=status,
            payment_status=registration.payment_status,
        )
        return BookingResult(
            registration_id=registration.id,
            occurrence_id=occurrence_id,
            client_id=client_id,
            status=registration.status,
            payment_status=registration.payment_status,
            credits_used=registration.credits_used,
            pass_id=registration.pass_id,
            unpaid_amount=Decimal(registration.unpaid_amount or 0),
            waitlist_position=position,
        )

    # Cancellation

    @BaseService.measure_operation("cancel_class_booking")
    def cancel(
        self,
        occurrence_id: str,
        client_id: str,
        actor: Optional[Actor] = None,
        refund: Optional[bool] = None,
        now: Optional[datetime] = None,
    ) -> CancellationResult:
        """
        Cancel a client's registration.

        Cancelling less than ``cancellation_window_hours`` before start is
        locked for clients; staff and admins may still cancel and may force
        ``refund`` either way. Without an override the booking is refunded iff
        the cancellation is free. A freed seat goes to the head of the
        waitlist in the same transaction.

        Raises:
            NotFoundException: Occurrence or registration missing
            LockedResourceException: Inside the window and not privileged
            PolicyViolationException: Registration already cancelled or final
        """
        moment = self._resolve_now(now)
        actor = actor or Actor.client(client_id)

        with self.transaction():
            occurrence = self._lock_occurrence(occurrence_id)
            registration = self._get_cancellable_registration(occurrence_id, client_id)

            remaining_hours = hours_until(occurrence.start_at, moment)
            free = is_free_cancellation(
                occurrence.start_at, moment, self.policy.cancellation_window_hours
            )
            if not free and not actor.is_privileged:
                self.logger.warning(
                    f"Cancellation of registration {registration.id} locked: "
                    f"{remaining_hours:.2f}h before start"
                )
                raise LockedResourceException(
                    self.policy.cancellation_window_hours, remaining_hours
                )
            grant_refund = refund if (refund is not None and actor.is_privileged) else free

            before = registration.to_dict()
            previous_status = registration.status
            registration.mark_cancelled(moment)
            self.registration_repository.flush()

            refund_outcome: Optional[RefundOutcome] = None
            promoted: Optional[ClassRegistration] = None
            if previous_status == RegistrationStatus.BOOKED.value:
                refund_outcome = self._reverse_charge(registration, grant_refund, moment)
                promoted = self._promote_next(occurrence, moment)

            self.notifications.booking_cancelled(
                registration,
                previous_status,
                cancelled_by_role=actor.to_dict()["role"],
                free_cancellation=free,
                credits_refunded=refund_outcome.refunded if refund_outcome else 0,
            )
            self._write_audit(
                registration, "cancel", actor=actor, before=before, after=registration.to_dict()
            )

        prometheus_metrics.record_registration("cancelled")
        self.log_operation(
            "cancel_class_booking",
            occurrence_id=occurrence_id,
            client_id=client_id,
            registration_id=registration.id,
            free_cancellation=free,
            promoted_registration_id=promoted.id if promoted else None,
        )
        return CancellationResult(
            registration_id=registration.id,
            occurrence_id=occurrence_id,
            client_id=client_id,
            previous_status=previous_status,
            free_cancellation=free,
            refund=refund_outcome,
            promoted_registration_id=promoted.id if promoted else None,
        )

    def cancel_all_for_occurrence(
        self,
        occurrence: ClassOccurrence,
        actor: Actor,
        reason: Optional[str],
        now: datetime,
    ) -> List[CancellationResult]:
        """
        Release every booked or waitlisted registration of a cancelled class.

        Runs inside the caller's transaction with the occurrence already
        locked. The studio cancelled, so paid seats are always refunded and
        unpaid amounts always removed.
        """
        results: List[CancellationResult] = []
        registrations = self.registration_repository.list_for_occurrence(
            occurrence.id, ACTIVE_REGISTRATION_STATUSES
        )
        for registration in registrations:
            before = registration.to_dict()
            previous_status = registration.status
            registration.mark_cancelled(now)

            refund_outcome: Optional[RefundOutcome] = None
            if previous_status == RegistrationStatus.BOOKED.value:
                refund_outcome = self._reverse_charge(registration, True, now)

            self.notifications.class_cancelled(registration, occurrence, reason)
            self._write_audit(
                registration, "cancel", actor=actor, before=before, after=registration.to_dict()
            )
            prometheus_metrics.record_registration("cancelled")
            results.append(
                CancellationResult(
                    registration_id=registration.id,
                    occurrence_id=occurrence.id,
                    client_id=registration.client_id,
                    previous_status=previous_status,
                    free_cancellation=True,
                    refund=refund_outcome,
                )
            )
        self.registration_repository.flush()
        return results

    # Read models

    def get_occurrence_summary(self, occurrence_id: str) -> OccurrenceSummary:
        occurrence = self.occurrence_repository.get_by_id(occurrence_id, load_relationships=False)
        if occurrence is None:
            raise NotFoundException.for_entity("Class occurrence", occurrence_id)
        confirmed = self.registration_repository.count_confirmed(occurrence_id)
        waitlist = self.get_waitlist(occurrence_id)
        return OccurrenceSummary(
            occurrence_id=occurrence_id,
            status=occurrence.status,
            capacity=occurrence.capacity,
            confirmed_count=confirmed,
            available_spots=max(occurrence.capacity - confirmed, 0),
            waitlist_count=len(waitlist),
            waitlist=waitlist,
        )

    def get_waitlist(self, occurrence_id: str) -> List[WaitlistEntry]:
        """Waitlisted registrations in promotion order."""
        return [
            WaitlistEntry(
                registration_id=registration.id,
                client_id=registration.client_id,
                position=index,
                booked_at=registration.booked_at,
            )
            for index, registration in enumerate(
                self.registration_repository.get_waitlist(occurrence_id), start=1
            )
        ]

    # Internal transitions

    def _promote_next(
        self, occurrence: ClassOccurrence, now: datetime
    ) -> Optional[ClassRegistration]:
        """
        Move the earliest waitlisted registration into a free seat.

        Caller must hold the occurrence lock. No-op when the waitlist is empty,
        the class is not scheduled or has already started, or no seat is free.
        """
        if occurrence.status != OccurrenceStatus.SCHEDULED.value:
            return None
        if occurrence.start_at <= now:
            return None
        if self.registration_repository.count_confirmed(occurrence.id) >= occurrence.capacity:
            return None
        candidate = self.registration_repository.next_waitlisted(occurrence.id)
        if candidate is None:
            return None

        before = candidate.to_dict()
        charge = self._charge(occurrence, candidate.client_id, candidate.id, now)
        candidate.status = RegistrationStatus.BOOKED.value
        self._apply_charge(candidate, charge)
        self.registration_repository.flush()

        self.notifications.waitlist_promoted(candidate, occurrence)
        self._write_audit(
            candidate, "promote", actor=SYSTEM_ACTOR, before=before, after=candidate.to_dict()
        )
        prometheus_metrics.record_registration("promoted")
        self.logger.info(
            f"Promoted registration {candidate.id} from waitlist of occurrence {occurrence.id}",
            extra={"client_id": candidate.client_id, "payment_status": candidate.payment_status},
        )
        return candidate

    def _charge(
        self, occurrence: ClassOccurrence, client_id: str, registration_id: str, now: datetime
    ) -> _Charge:
        """Deduct from a pass, falling back to the unpaid balance."""
        credits = occurrence.credits_required or 1
        try:
            pass_ = self.ledger.deduct_credit(
                client_id,
                reason="class_booking",
                credits=credits,
                reference_id=registration_id,
                now=now,
                use_transaction=False,
            )
        except NoCreditsAvailableException:
            amount = occurrence.unit_price(self.policy.credit_price) * credits
            self.client_repository.add_unpaid(client_id, amount)
            self.logger.info(
                f"No pass available for client {client_id}; {amount} added to unpaid balance"
            )
            return _Charge(payment_status=PaymentStatus.UNPAID.value, unpaid_amount=amount)
        return _Charge(
            payment_status=PaymentStatus.PAID.value, credits_used=credits, pass_id=pass_.id
        )

    def _reverse_charge(
        self, registration: ClassRegistration, grant_refund: bool, now: datetime
    ) -> RefundOutcome:
        """Undo exactly what the booking charged, when a refund is granted."""
        credits = registration.credits_used or 0
        if not grant_refund:
            return RefundOutcome(requested=credits, reason="refund not granted")

        if registration.payment_status == PaymentStatus.PAID.value and credits > 0:
            return self.ledger.refund_credit(
                registration.client_id,
                credits,
                reason="class_cancellation",
                pass_id=registration.pass_id,
                reference_id=registration.id,
                now=now,
                use_transaction=False,
            )

        if registration.payment_status == PaymentStatus.UNPAID.value:
            amount = Decimal(registration.unpaid_amount or 0)
            if amount > 0:
                self.client_repository.reduce_unpaid(registration.client_id, amount)
            return RefundOutcome(
                requested=0,
                applied=True,
                unpaid_reduced=amount,
                reason="unpaid balance reduced",
            )

        return RefundOutcome(requested=0, applied=True, reason="nothing charged")

    # Helpers

    def _lock_occurrence(self, occurrence_id: str) -> ClassOccurrence:
        occurrence = self.occurrence_repository.get_for_update(occurrence_id)
        if occurrence is None:
            raise NotFoundException.for_entity("Class occurrence", occurrence_id)
        return occurrence

    def _ensure_bookable(self, occurrence: ClassOccurrence, now: datetime) -> None:
        if occurrence.status == OccurrenceStatus.CANCELLED.value:
            raise PolicyViolationException(
                "This class has been cancelled",
                code="CLASS_CANCELLED",
                details={"occurrence_id": occurrence.id},
            )
        if occurrence.status == OccurrenceStatus.COMPLETED.value or occurrence.start_at <= now:
            raise PolicyViolationException(
                "This class has already started",
                code="CLASS_STARTED",
                details={
                    "occurrence_id": occurrence.id,
                    "start_at": occurrence.start_at.isoformat(),
                },
            )

    def _get_cancellable_registration(
        self, occurrence_id: str, client_id: str
    ) -> ClassRegistration:
        registration = self.registration_repository.get_active_for_client(occurrence_id, client_id)
        if registration is not None:
            return registration

        latest = self.registration_repository.get_latest_for_client(occurrence_id, client_id)
        if latest is None:
            raise NotFoundException(
                "Registration not found",
                details={"occurrence_id": occurrence_id, "client_id": client_id},
            )
        if latest.status == RegistrationStatus.CANCELLED.value:
            raise PolicyViolationException(
                "Registration is already cancelled",
                code="ALREADY_CANCELLED",
                details={"registration_id": latest.id},
            )
        raise PolicyViolationException(
            f"Registration is {latest.status} and can no longer be cancelled",
            code="REGISTRATION_FINAL",
            details={"registration_id": latest.id, "status": latest.status},
        )

    def _create_registration(
        self,
        registration_id: str,
        occurrence_id: str,
        client_id: str,
        status: str,
        charge: _Charge,
        now: datetime,
    ) -> ClassRegistration:
        try:
            return self.registration_repository.create(
                id=registration_id,
                occurrence_id=occurrence_id,
                client_id=client_id,
                status=status,
                booked_at=now,
                payment_status=charge.payment_status,
                credits_used=charge.credits_used,
                pass_id=charge.pass_id,
                unpaid_amount=charge.unpaid_amount,
            )
        except IntegrityError as exc:
            raise DuplicateRegistrationException(occurrence_id, client_id) from exc

    @staticmethod
    def _apply_charge(registration: ClassRegistration, charge: _Charge) -> None:
        registration.payment_status = charge.payment_status
        registration.credits_used = charge.credits_used
        registration.pass_id = charge.pass_id
        registration.unpaid_amount = charge.unpaid_amount

    def _write_audit(
        self,
        registration: ClassRegistration,
        action: str,
        *,
        actor: Actor,
        before: Optional[Dict[str, Any]],
        after: Optional[Dict[str, Any]],
    ) -> None:
        self.audit.record_change(
            "class_registration",
            registration.id,
            action,
            actor=actor.to_dict(),
            before=before,
            after=after,
        )
