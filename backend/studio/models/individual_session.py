# backend/studio/models/individual_session.py
"""
Individual (one-on-one) session model.

A session occupies one room and one staff member for ``[start_at, end_at)``.
Cancelled or soft-deleted sessions release both resources.
"""

from datetime import datetime
import logging
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, CheckConstraint, Column, ForeignKey, Index, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import SessionStatus
from ..database import Base
from ..domain.intervals import CalendarInterval, IntervalKind
from .types import UTCDateTime, now_utc

logger = logging.getLogger(__name__)


class IndividualSession(Base):
    """A scheduled one-on-one session, or blocked staff/room time when ``client_id`` is null."""

    __tablename__ = "individual_sessions"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    room_id = Column(String(26), ForeignKey("rooms.id"), nullable=False)
    staff_id = Column(String(26), ForeignKey("staff_members.id"), nullable=False)
    client_id = Column(String(26), ForeignKey("clients.id"), nullable=True)
    title = Column(String(200), nullable=True)
    notes = Column(Text, nullable=True)

    start_at = Column(UTCDateTime, nullable=False)
    end_at = Column(UTCDateTime, nullable=False)

    status = Column(String(20), nullable=False, default=SessionStatus.SCHEDULED.value)
    attended = Column(Boolean, nullable=False, default=False)
    credit_pass_id = Column(String(26), ForeignKey("passes.id"), nullable=True)
    external_sync_id = Column(String(255), nullable=True)

    cancelled_at = Column(UTCDateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    deleted_at = Column(UTCDateTime, nullable=True)

    created_by_id = Column(String(26), nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=now_utc, server_default=func.now())
    updated_at = Column(
        UTCDateTime,
        nullable=False,
        default=now_utc,
        server_default=func.now(),
        onupdate=now_utc,
    )

    room = relationship("Room", lazy="select")
    staff = relationship("StaffMember", lazy="select")
    client = relationship("Client", lazy="select")

    __table_args__ = (
        CheckConstraint("end_at > start_at", name="ck_individual_sessions_time_order"),
        CheckConstraint(
            "status IN ('scheduled', 'completed', 'cancelled', 'no_show')",
            name="ck_individual_sessions_status",
        ),
        Index("ix_individual_sessions_room_start", "room_id", "start_at"),
        Index("ix_individual_sessions_staff_start", "staff_id", "start_at"),
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_interval(self) -> CalendarInterval:
        status = SessionStatus.CANCELLED.value if self.is_deleted else self.status
        return CalendarInterval(
            kind=IntervalKind.INDIVIDUAL_SESSION,
            entity_id=self.id,
            start=self.start_at,
            end=self.end_at,
            status=status,
        )

    def cancel(self, reason: Optional[str] = None, at: Optional[datetime] = None) -> None:
        self.status = SessionStatus.CANCELLED.value
        self.cancelled_at = at or now_utc()
        self.cancellation_reason = reason
        logger.info(f"Session {self.id} cancelled")

    def soft_delete(self, at: Optional[datetime] = None) -> None:
        self.deleted_at = at or now_utc()
        logger.info(f"Session {self.id} soft-deleted")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "room_id": self.room_id,
            "staff_id": self.staff_id,
            "client_id": self.client_id,
            "title": self.title,
            "start_at": self.start_at.isoformat() if self.start_at else None,
            "end_at": self.end_at.isoformat() if self.end_at else None,
            "status": self.status,
            "attended": bool(self.attended),
            "external_sync_id": self.external_sync_id,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
        }

    def __repr__(self) -> str:
        return f"<IndividualSession {self.id} {self.start_at}-{self.end_at} {self.status}>"
