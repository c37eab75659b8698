# backend/studio/repositories/pass_repository.py
"""
Repository for the credit ledger.

Passes are read under ``FOR UPDATE`` by the ledger service. Deductions are
applied with a guarded UPDATE (``credits_left >= :n``) whose row count tells the
caller whether the decrement actually happened, so ``credits_left`` cannot
underflow even when two writers raced past the read.
"""

from datetime import datetime
import logging
from typing import List, Optional, cast

from sqlalchemy import case, func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import PassStatus
from ..core.exceptions import RepositoryException
from ..models.credit_pass import Pass, PassLedgerEntry
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PassRepository(BaseRepository[Pass]):
    def __init__(self, db: Session):
        super().__init__(db, Pass)

    def list_for_client(self, client_id: str, *, for_update: bool = False) -> List[Pass]:
        """
        All passes of a client in a stable order.

        With ``for_update`` the rows stay locked until the transaction ends.
        """
        query = (
            self.db.query(Pass)
            .filter(Pass.client_id == client_id)
            .order_by(Pass.created_at.asc(), Pass.id.asc())
            .populate_existing()
        )
        if for_update:
            return cast(List[Pass], query.with_for_update().all())
        try:
            return cast(List[Pass], query.all())
        except SQLAlchemyError as exc:
            logger.error("Failed to list passes for client %s: %s", client_id, str(exc))
            raise RepositoryException("Failed to list passes") from exc

    def get_total_available_credits(self, client_id: str, now: datetime) -> int:
        try:
            total = (
                self.db.query(func.coalesce(func.sum(Pass.credits_left), 0))
                .filter(
                    Pass.client_id == client_id,
                    Pass.status == PassStatus.ACTIVE.value,
                    Pass.credits_left > 0,
                    Pass.valid_from <= now,
                    (Pass.valid_until.is_(None)) | (Pass.valid_until >= now),
                )
                .scalar()
            )
            return int(total or 0)
        except SQLAlchemyError as exc:
            logger.error("Failed to total credits for client %s: %s", client_id, str(exc))
            raise RepositoryException("Failed to total available credits") from exc

    def decrement_if_available(self, pass_id: str, credits: int, now: datetime) -> bool:
        """
        Atomically take ``credits`` from an active pass.

        Returns False when the pass no longer holds enough credits. A pass that
        reaches zero flips to ``depleted`` in the same statement.
        """
        remaining = Pass.credits_left - credits
        stmt = (
            update(Pass)
            .where(
                Pass.id == pass_id,
                Pass.status == PassStatus.ACTIVE.value,
                Pass.credits_left >= credits,
            )
            .values(
                credits_left=remaining,
                status=case(
                    (remaining == 0, PassStatus.DEPLETED.value),
                    else_=Pass.status,
                ),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        return result.rowcount == 1

    def reload(self, pass_: Pass) -> Pass:
        self.db.refresh(pass_)
        return pass_

    def add_ledger_entry(
        self,
        pass_: Pass,
        delta: int,
        reason: str,
        reference_id: Optional[str] = None,
    ) -> PassLedgerEntry:
        entry = PassLedgerEntry.for_movement(pass_, delta, reason, reference_id)
        self.db.add(entry)
        self.db.flush()
        return entry

    def list_ledger_entries(self, pass_id: str) -> List[PassLedgerEntry]:
        try:
            return cast(
                List[PassLedgerEntry],
                self.db.query(PassLedgerEntry)
                .filter(PassLedgerEntry.pass_id == pass_id)
                .order_by(PassLedgerEntry.created_at.asc(), PassLedgerEntry.id.asc())
                .all(),
            )
        except SQLAlchemyError as exc:
            logger.error("Failed to list ledger entries for pass %s: %s", pass_id, str(exc))
            raise RepositoryException("Failed to list ledger entries") from exc

    def get_expired_active_passes(self, now: datetime) -> List[Pass]:
        """Active passes whose validity window closed before ``now``."""
        return cast(
            List[Pass],
            self.db.query(Pass)
            .filter(
                Pass.status == PassStatus.ACTIVE.value,
                Pass.valid_until.isnot(None),
                Pass.valid_until < now,
            )
            .order_by(Pass.valid_until.asc(), Pass.id.asc())
            .populate_existing()
            .with_for_update()
            .all(),
        )
