"""Credit ledger service: pass availability, deduction, refund and issuance."""

from __future__ import annotations

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.enums import PassStatus
from ..core.exceptions import NoCreditsAvailableException, NotFoundException, ValidationException
from ..core.timezone_utils import is_aware
from ..domain.pass_selection import select_pass, select_refund_target
from ..models.credit_pass import Pass, PassLedgerEntry
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.results import RefundOutcome
from .base import BaseService

logger = logging.getLogger(__name__)


class CreditLedgerService(BaseService):
    """
    Manages the passes a client holds.

    Mutations lock the client's passes (``FOR UPDATE``) before choosing one, and
    deductions go through a guarded UPDATE so ``credits_left`` never drops below
    zero. Each mutation appends a ``PassLedgerEntry``.

    Mutating methods take ``use_transaction``; the booking orchestrator passes
    False so the ledger change commits or rolls back with the booking.
    """

    def __init__(self, db: Session):
        super().__init__(db)
        self.pass_repository = RepositoryFactory.create_pass_repository(db)
        self.client_repository = RepositoryFactory.create_client_repository(db)

    # Reads

    def has_available_credits(self, client_id: str, now: Optional[datetime] = None) -> bool:
        return self.get_available_pass(client_id, now=now) is not None

    def get_available_pass(
        self, client_id: str, credits: int = 1, now: Optional[datetime] = None
    ) -> Optional[Pass]:
        """The pass a deduction of ``credits`` would consume right now, if any."""
        moment = self._resolve_now(now)
        return select_pass(self.pass_repository.list_for_client(client_id), moment, credits)

    def total_available_credits(self, client_id: str, now: Optional[datetime] = None) -> int:
        return self.pass_repository.get_total_available_credits(client_id, self._resolve_now(now))

    def list_passes(self, client_id: str) -> List[Pass]:
        return self.pass_repository.list_for_client(client_id)

    def ledger_history(self, pass_id: str) -> List[PassLedgerEntry]:
        return self.pass_repository.list_ledger_entries(pass_id)

    # Mutations

    @BaseService.measure_operation("ledger_deduct_credit")
    def deduct_credit(
        self,
        client_id: str,
        reason: str,
        *,
        credits: int = 1,
        reference_id: Optional[str] = None,
        now: Optional[datetime] = None,
        use_transaction: bool = True,
    ) -> Pass:
        """
        Take ``credits`` from the client's highest-priority pass.

        The soonest-expiring available pass is chosen (oldest purchase first on
        ties). A pass reaching zero becomes ``depleted``.

        Raises:
            NoCreditsAvailableException: No pass holds ``credits`` credits
        """
        if credits < 1:
            raise ValidationException("credits must be positive", details={"credits": credits})
        moment = self._resolve_now(now)

        def _deduct() -> Pass:
            passes = self.pass_repository.list_for_client(client_id, for_update=True)
            chosen = select_pass(passes, moment, credits)
            if chosen is None or not self.pass_repository.decrement_if_available(
                chosen.id, credits, moment
            ):
                self.logger.warning(
                    f"No credits available for client {client_id} "
                    f"(requested {credits}, reason {reason})"
                )
                raise NoCreditsAvailableException(client_id, credits)

            updated = self.pass_repository.reload(chosen)
            self.pass_repository.add_ledger_entry(updated, -credits, reason, reference_id)
            prometheus_metrics.record_ledger_mutation("deduct", credits)
            self.logger.info(
                f"Deducted {credits} credit(s) from pass {updated.id}",
                extra={
                    "client_id": client_id,
                    "pass_id": updated.id,
                    "credits_left": updated.credits_left,
                    "reason": reason,
                },
            )
            return updated

        if use_transaction:
            with self.transaction():
                return _deduct()
        return _deduct()

    @BaseService.measure_operation("ledger_refund_credit")
    def refund_credit(
        self,
        client_id: str,
        count: int,
        reason: str,
        *,
        pass_id: Optional[str] = None,
        reference_id: Optional[str] = None,
        now: Optional[datetime] = None,
        use_transaction: bool = True,
    ) -> RefundOutcome:
        """
        Return ``count`` credits to a pass.

        With ``pass_id`` that pass is credited (a depleted pass becomes active
        again). Without it, the most recently updated pass with room is used.
        ``credits_left`` is clamped at ``total_credits``.

        Returns:
            RefundOutcome; ``applied`` is False when no pass could take the refund

        Raises:
            NotFoundException: ``pass_id`` does not name a pass of this client
        """
        if count < 1:
            raise ValidationException("refund count must be positive", details={"count": count})
        moment = self._resolve_now(now)

        def _refund() -> RefundOutcome:
            if pass_id is not None:
                target = self.pass_repository.get_for_update(pass_id)
                if target is None or target.client_id != client_id:
                    raise NotFoundException.for_entity("Pass", pass_id)
            else:
                passes = self.pass_repository.list_for_client(client_id, for_update=True)
                target = select_refund_target(passes)

            if target is None:
                return self._unapplied(client_id, count, reason, None)

            new_balance = min(target.total_credits, target.credits_left + count)
            refunded = new_balance - target.credits_left
            if refunded <= 0:
                return self._unapplied(client_id, count, reason, target.id)

            target.credits_left = new_balance
            if target.status == PassStatus.DEPLETED.value:
                target.status = (
                    PassStatus.EXPIRED.value
                    if target.valid_until is not None and target.valid_until < moment
                    else PassStatus.ACTIVE.value
                )
            target.updated_at = moment
            self.pass_repository.flush()
            self.pass_repository.add_ledger_entry(target, refunded, reason, reference_id)
            prometheus_metrics.record_ledger_mutation("refund", refunded)
            self.logger.info(
                f"Refunded {refunded} credit(s) to pass {target.id}",
                extra={"client_id": client_id, "pass_id": target.id, "reason": reason},
            )
            return RefundOutcome(
                pass_id=target.id,
                requested=count,
                refunded=refunded,
                applied=True,
                reason=reason,
            )

        if use_transaction:
            with self.transaction():
                return _refund()
        return _refund()

    @BaseService.measure_operation("ledger_issue_pass")
    def issue_pass(
        self,
        client_id: str,
        total_credits: int,
        *,
        valid_from: Optional[datetime] = None,
        valid_until: Optional[datetime] = None,
        source: str = "manual",
        name: Optional[str] = None,
        use_transaction: bool = True,
    ) -> Pass:
        """Create a new active pass holding ``total_credits`` credits."""
        if total_credits < 1:
            raise ValidationException(
                "total_credits must be positive", details={"total_credits": total_credits}
            )
        start = self._resolve_now(valid_from)
        if valid_until is not None:
            if not is_aware(valid_until):
                raise ValidationException("valid_until must be timezone-aware")
            if valid_until <= start:
                raise ValidationException("valid_until must be after valid_from")

        def _issue() -> Pass:
            if self.client_repository.get_by_id(client_id, load_relationships=False) is None:
                raise NotFoundException.for_entity("Client", client_id)
            pass_ = self.pass_repository.create(
                client_id=client_id,
                name=name,
                total_credits=total_credits,
                credits_left=total_credits,
                valid_from=start,
                valid_until=valid_until,
                status=PassStatus.ACTIVE.value,
                source=source,
            )
            self.pass_repository.add_ledger_entry(pass_, total_credits, f"issue:{source}")
            prometheus_metrics.record_ledger_mutation("issue", total_credits)
            self.logger.info(f"Issued pass {pass_.id} ({total_credits} credits) to {client_id}")
            return pass_

        if use_transaction:
            with self.transaction():
                return _issue()
        return _issue()

    @BaseService.measure_operation("ledger_expire_passes")
    def expire_passes(self, now: Optional[datetime] = None) -> int:
        """Mark active passes whose validity ended as expired. Returns how many changed."""
        moment = self._resolve_now(now)
        with self.transaction():
            expired = self.pass_repository.get_expired_active_passes(moment)
            for pass_ in expired:
                pass_.status = PassStatus.EXPIRED.value
                pass_.updated_at = moment
            self.pass_repository.flush()

        if expired:
            prometheus_metrics.record_ledger_mutation("expire", len(expired))
            self.logger.info(f"Expired {len(expired)} pass(es)")
        return len(expired)

    # Helpers

    def _unapplied(
        self, client_id: str, count: int, reason: str, pass_id: Optional[str]
    ) -> RefundOutcome:
        prometheus_metrics.record_ledger_mutation("refund_unapplied", count)
        self.logger.warning(
            f"Refund of {count} credit(s) for client {client_id} could not be applied "
            f"(reason {reason}, pass {pass_id or 'none'})"
        )
        return RefundOutcome(
            pass_id=pass_id,
            requested=count,
            refunded=0,
            applied=False,
            reason="no pass with room for the refund",
        )
