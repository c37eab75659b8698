# backend/studio/models/credit_pass.py
"""
Credit pass models.

A ``Pass`` is one prepaid bundle of credits with a validity window. Every
change to ``credits_left`` is mirrored by an append-only ``PassLedgerEntry``.
"""

from typing import Any, Dict, Optional

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import PassStatus
from ..database import Base
from .types import UTCDateTime, now_utc


class Pass(Base):
    """A client's prepaid credit bundle."""

    __tablename__ = "passes"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    client_id = Column(String(26), ForeignKey("clients.id"), nullable=False, index=True)
    name = Column(String(200), nullable=True)
    total_credits = Column(Integer, nullable=False)
    credits_left = Column(Integer, nullable=False)
    valid_from = Column(UTCDateTime, nullable=False)
    valid_until = Column(UTCDateTime, nullable=True)
    status = Column(String(20), nullable=False, default=PassStatus.ACTIVE.value)
    source = Column(String(50), nullable=False, default="manual")

    created_at = Column(UTCDateTime, nullable=False, default=now_utc, server_default=func.now())
    updated_at = Column(UTCDateTime, nullable=False, default=now_utc, server_default=func.now())

    client = relationship("Client", back_populates="passes")

    __table_args__ = (
        CheckConstraint("total_credits > 0", name="ck_passes_total_credits"),
        CheckConstraint(
            "credits_left >= 0 AND credits_left <= total_credits",
            name="ck_passes_credits_left_range",
        ),
        CheckConstraint("status IN ('active', 'expired', 'depleted')", name="ck_passes_status"),
        Index("ix_passes_client_status", "client_id", "status"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "name": self.name,
            "total_credits": self.total_credits,
            "credits_left": self.credits_left,
            "valid_from": self.valid_from.isoformat() if self.valid_from else None,
            "valid_until": self.valid_until.isoformat() if self.valid_until else None,
            "status": self.status,
        }

    def __repr__(self) -> str:
        return f"<Pass {self.id} {self.credits_left}/{self.total_credits} {self.status}>"


class PassLedgerEntry(Base):
    """Append-only record of a credit movement on a pass."""

    __tablename__ = "pass_ledger_entries"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    pass_id = Column(String(26), ForeignKey("passes.id"), nullable=False, index=True)
    client_id = Column(String(26), ForeignKey("clients.id"), nullable=False, index=True)
    delta = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    reason = Column(String(255), nullable=False)
    reference_id = Column(String(64), nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=now_utc, server_default=func.now())

    @classmethod
    def for_movement(
        cls,
        pass_: Pass,
        delta: int,
        reason: str,
        reference_id: Optional[str] = None,
    ) -> "PassLedgerEntry":
        return cls(
            pass_id=pass_.id,
            client_id=pass_.client_id,
            delta=delta,
            balance_after=pass_.credits_left,
            reason=reason,
            reference_id=reference_id,
        )
