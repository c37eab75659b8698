# backend/studio/schemas/results.py
"""
Result models returned by the scheduling and ledger services.

These are the conceptual operation surface; an API layer serializes them as-is.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import Field

from ..core.enums import PaymentStatus, RegistrationStatus
from ..domain.intervals import CalendarInterval, IntervalKind, ResourceKind
from .base import StandardizedModel


class ConflictDetails(StandardizedModel):
    """One interval that blocks a candidate slot."""

    conflict_type: ResourceKind
    conflicting_entity_id: str
    conflicting_entity_kind: IntervalKind
    conflicting_start: datetime
    conflicting_end: datetime
    overlap_minutes: int = 0

    @classmethod
    def from_interval(
        cls,
        resource_kind: ResourceKind,
        interval: CalendarInterval,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> "ConflictDetails":
        minutes = interval.overlap_minutes(start, end) if start and end else 0
        return cls(
            conflict_type=resource_kind,
            conflicting_entity_id=interval.entity_id,
            conflicting_entity_kind=interval.kind,
            conflicting_start=interval.start,
            conflicting_end=interval.end,
            overlap_minutes=minutes,
        )


class ConflictCheckResult(StandardizedModel):
    conflict: bool
    details: Optional[ConflictDetails] = None

    @property
    def conflict_type(self) -> Optional[str]:
        return self.details.conflict_type if self.details else None  # type: ignore[return-value]

    @property
    def conflicting_entity_id(self) -> Optional[str]:
        return self.details.conflicting_entity_id if self.details else None


class ResourceCalendarEntry(StandardizedModel):
    kind: IntervalKind
    entity_id: str
    start: datetime
    end: datetime
    status: str

    @classmethod
    def from_interval(cls, interval: CalendarInterval) -> "ResourceCalendarEntry":
        return cls(
            kind=interval.kind,
            entity_id=interval.entity_id,
            start=interval.start,
            end=interval.end,
            status=interval.status,
        )


class RefundOutcome(StandardizedModel):
    """
    What a refund actually did.

    ``applied`` is False when no pass could take the credits back; callers
    surface that instead of treating the refund as done.
    """

    pass_id: Optional[str] = None
    requested: int
    refunded: int = 0
    applied: bool = False
    unpaid_reduced: Decimal = Decimal("0")
    reason: Optional[str] = None


class BookingResult(StandardizedModel):
    registration_id: str
    occurrence_id: str
    client_id: str
    status: RegistrationStatus
    payment_status: PaymentStatus
    credits_used: int = 0
    pass_id: Optional[str] = None
    unpaid_amount: Decimal = Decimal("0")
    waitlist_position: Optional[int] = None


class CancellationResult(StandardizedModel):
    registration_id: str
    occurrence_id: str
    client_id: str
    previous_status: RegistrationStatus
    free_cancellation: bool
    refund: Optional[RefundOutcome] = None
    promoted_registration_id: Optional[str] = None


class SessionAttendanceResult(StandardizedModel):
    """Outcome of checking a client in (or marking a no-show) for a session."""

    session_id: str
    status: str
    attended: bool
    credit_deducted: bool = False
    pass_id: Optional[str] = None
    message: Optional[str] = None


class ClassAttendanceResult(StandardizedModel):
    occurrence_id: str
    updated: Dict[str, str] = Field(default_factory=dict)
    skipped: Dict[str, str] = Field(default_factory=dict)


class WaitlistEntry(StandardizedModel):
    registration_id: str
    client_id: str
    position: int
    booked_at: datetime


class OccurrenceSummary(StandardizedModel):
    occurrence_id: str
    status: str
    capacity: int
    confirmed_count: int
    available_spots: int
    waitlist_count: int
    waitlist: List[WaitlistEntry] = Field(default_factory=list)

    @property
    def is_full(self) -> bool:
        return self.available_spots <= 0
