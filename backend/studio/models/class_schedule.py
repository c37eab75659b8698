# backend/studio/models/class_schedule.py
"""
Group class models: templates, occurrences and registrations.

An occurrence occupies its room and trainer like a session does, and owns the
registrations of the clients attending it.
"""

from decimal import Decimal
import logging
from typing import Any, Dict, Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import OccurrenceStatus, PaymentStatus, RegistrationStatus
from ..database import Base
from ..domain.intervals import CalendarInterval, IntervalKind
from .types import UTCDateTime, now_utc

logger = logging.getLogger(__name__)

_ACTIVE_REGISTRATION_PREDICATE = text("status IN ('booked', 'waitlist')")


class ClassTemplate(Base):
    """Reusable definition of a class type and its default fees."""

    __tablename__ = "class_templates"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    duration_minutes = Column(Integer, nullable=False, default=60)
    capacity = Column(Integer, nullable=False, default=10)
    credits_required = Column(Integer, nullable=False, default=1)
    base_price = Column(Numeric(12, 2), nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=now_utc, server_default=func.now())

    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_class_templates_capacity"),
        CheckConstraint("credits_required >= 1", name="ck_class_templates_credits"),
    )


class ClassOccurrence(Base):
    """A single scheduled run of a class."""

    __tablename__ = "class_occurrences"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    template_id = Column(String(26), ForeignKey("class_templates.id"), nullable=True)
    title = Column(String(200), nullable=True)
    room_id = Column(String(26), ForeignKey("rooms.id"), nullable=False)
    trainer_id = Column(String(26), ForeignKey("staff_members.id"), nullable=False)

    start_at = Column(UTCDateTime, nullable=False)
    end_at = Column(UTCDateTime, nullable=False)
    capacity = Column(Integer, nullable=False)
    credits_required = Column(Integer, nullable=False, default=1)
    price = Column(Numeric(12, 2), nullable=True)

    status = Column(String(20), nullable=False, default=OccurrenceStatus.SCHEDULED.value)
    external_sync_id = Column(String(255), nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=now_utc, server_default=func.now())
    updated_at = Column(
        UTCDateTime,
        nullable=False,
        default=now_utc,
        server_default=func.now(),
        onupdate=now_utc,
    )

    template = relationship("ClassTemplate", lazy="select")
    room = relationship("Room", lazy="select")
    trainer = relationship("StaffMember", lazy="select")
    registrations = relationship(
        "ClassRegistration",
        back_populates="occurrence",
        order_by="ClassRegistration.booked_at",
        lazy="select",
    )

    __table_args__ = (
        CheckConstraint("end_at > start_at", name="ck_class_occurrences_time_order"),
        CheckConstraint("capacity > 0", name="ck_class_occurrences_capacity"),
        CheckConstraint("credits_required >= 1", name="ck_class_occurrences_credits"),
        CheckConstraint(
            "status IN ('scheduled', 'cancelled', 'completed')",
            name="ck_class_occurrences_status",
        ),
        Index("ix_class_occurrences_room_start", "room_id", "start_at"),
        Index("ix_class_occurrences_trainer_start", "trainer_id", "start_at"),
    )

    @property
    def display_name(self) -> str:
        if self.title:
            return self.title
        if self.template is not None:
            return self.template.name
        return "Class"

    def unit_price(self, fallback: Decimal) -> Decimal:
        """Fee of one credit for this occurrence: own price, then template, then ``fallback``."""
        if self.price is not None:
            return Decimal(self.price)
        if self.template is not None and self.template.base_price is not None:
            return Decimal(self.template.base_price)
        return Decimal(fallback)

    def to_interval(self) -> CalendarInterval:
        return CalendarInterval(
            kind=IntervalKind.CLASS_OCCURRENCE,
            entity_id=self.id,
            start=self.start_at,
            end=self.end_at,
            status=self.status,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "template_id": self.template_id,
            "title": self.display_name,
            "room_id": self.room_id,
            "trainer_id": self.trainer_id,
            "start_at": self.start_at.isoformat() if self.start_at else None,
            "end_at": self.end_at.isoformat() if self.end_at else None,
            "capacity": self.capacity,
            "credits_required": self.credits_required,
            "status": self.status,
        }


class ClassRegistration(Base):
    """
    A client's seat (or waitlist slot) in a class occurrence.

    ``pass_id``/``credits_used`` and ``unpaid_amount`` record exactly what the
    booking charged so a refund reverses the same amount.
    """

    __tablename__ = "class_registrations"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    occurrence_id = Column(String(26), ForeignKey("class_occurrences.id"), nullable=False)
    client_id = Column(String(26), ForeignKey("clients.id"), nullable=False)
    status = Column(String(20), nullable=False, default=RegistrationStatus.BOOKED.value)
    booked_at = Column(UTCDateTime, nullable=False, default=now_utc)
    credits_used = Column(Integer, nullable=False, default=0)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    pass_id = Column(String(26), ForeignKey("passes.id"), nullable=True)
    unpaid_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    cancelled_at = Column(UTCDateTime, nullable=True)
    checked_in_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=now_utc, server_default=func.now())
    updated_at = Column(
        UTCDateTime,
        nullable=False,
        default=now_utc,
        server_default=func.now(),
        onupdate=now_utc,
    )

    occurrence = relationship("ClassOccurrence", back_populates="registrations")
    client = relationship("Client", lazy="select")

    __table_args__ = (
        CheckConstraint("credits_used >= 0", name="ck_class_registrations_credits_used"),
        CheckConstraint(
            "status IN ('booked', 'waitlist', 'attended', 'no_show', 'cancelled')",
            name="ck_class_registrations_status",
        ),
        CheckConstraint(
            "payment_status IN ('paid', 'unpaid', 'pending')",
            name="ck_class_registrations_payment_status",
        ),
        Index(
            "uq_class_registrations_active_client",
            "occurrence_id",
            "client_id",
            unique=True,
            postgresql_where=_ACTIVE_REGISTRATION_PREDICATE,
            sqlite_where=_ACTIVE_REGISTRATION_PREDICATE,
        ),
        Index("ix_class_registrations_occurrence_status", "occurrence_id", "status", "booked_at"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in (RegistrationStatus.BOOKED.value, RegistrationStatus.WAITLIST.value)

    def mark_cancelled(self, at: Optional[Any] = None) -> None:
        self.status = RegistrationStatus.CANCELLED.value
        self.cancelled_at = at or now_utc()
        logger.info(f"Registration {self.id} cancelled")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "occurrence_id": self.occurrence_id,
            "client_id": self.client_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "credits_used": self.credits_used,
            "pass_id": self.pass_id,
            "unpaid_amount": str(self.unpaid_amount) if self.unpaid_amount is not None else None,
            "booked_at": self.booked_at.isoformat() if self.booked_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
        }
