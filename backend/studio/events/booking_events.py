"""Scheduling domain events delivered through the outbox."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Dict, Optional


class _OutboxEvent:
    event_type: ClassVar[str] = "event"

    @property
    def aggregate_id(self) -> str:
        raise NotImplementedError

    def idempotency_key(self) -> str:
        return f"{self.event_type}:{self.aggregate_id}"

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)  # type: ignore[call-overload]
        for key, value in payload.items():
            if isinstance(value, datetime):
                payload[key] = value.isoformat()
        payload["event_type"] = self.event_type
        return payload


@dataclass
class BookingConfirmed(_OutboxEvent):
    """Fired after a client gets a seat in a class."""

    event_type: ClassVar[str] = "booking.confirmed"

    registration_id: str
    occurrence_id: str
    client_id: str
    class_name: str
    starts_at: datetime
    starts_at_local: str
    payment_status: str
    credits_used: int

    @property
    def aggregate_id(self) -> str:
        return self.registration_id


@dataclass
class BookingWaitlisted(_OutboxEvent):
    """Fired when a booking lands on the waitlist of a full class."""

    event_type: ClassVar[str] = "booking.waitlisted"

    registration_id: str
    occurrence_id: str
    client_id: str
    class_name: str
    starts_at: datetime
    position: int

    @property
    def aggregate_id(self) -> str:
        return self.registration_id


@dataclass
class BookingCancelled(_OutboxEvent):
    event_type: ClassVar[str] = "booking.cancelled"

    registration_id: str
    occurrence_id: str
    client_id: str
    previous_status: str
    cancelled_by_role: Optional[str]
    free_cancellation: bool
    credits_refunded: int = 0
    cancelled_at: Optional[datetime] = None

    @property
    def aggregate_id(self) -> str:
        return self.registration_id


@dataclass
class WaitlistPromoted(_OutboxEvent):
    """Fired when a waitlisted client is moved into a freed seat."""

    event_type: ClassVar[str] = "waitlist.promoted"

    registration_id: str
    occurrence_id: str
    client_id: str
    class_name: str
    starts_at: datetime
    starts_at_local: str
    payment_status: str
    credits_used: int

    @property
    def aggregate_id(self) -> str:
        return self.registration_id


@dataclass
class ClassCancelled(_OutboxEvent):
    """Sent to every registrant when the studio cancels an occurrence."""

    event_type: ClassVar[str] = "class.cancelled"

    occurrence_id: str
    registration_id: str
    client_id: str
    class_name: str
    starts_at: datetime
    reason: Optional[str] = None

    @property
    def aggregate_id(self) -> str:
        return self.registration_id


@dataclass
class ClassRescheduled(_OutboxEvent):
    event_type: ClassVar[str] = "class.rescheduled"

    occurrence_id: str
    registration_id: str
    client_id: str
    class_name: str
    previous_start: datetime
    new_start: datetime
    new_start_local: str

    @property
    def aggregate_id(self) -> str:
        return self.registration_id

    def idempotency_key(self) -> str:
        return f"{self.event_type}:{self.registration_id}:{self.new_start.isoformat()}"


@dataclass
class SessionChanged(_OutboxEvent):
    """Base for individual-session notifications; ``revision`` distinguishes repeats."""

    event_type: ClassVar[str] = "session.changed"

    session_id: str
    staff_id: str
    room_id: str
    client_id: Optional[str]
    start_at: datetime
    end_at: datetime
    start_local: str
    revision: str = field(default="")

    @property
    def aggregate_id(self) -> str:
        return self.session_id

    def idempotency_key(self) -> str:
        return f"{self.event_type}:{self.session_id}:{self.revision}"


@dataclass
class SessionScheduled(SessionChanged):
    event_type: ClassVar[str] = "session.scheduled"


@dataclass
class SessionUpdated(SessionChanged):
    event_type: ClassVar[str] = "session.updated"


@dataclass
class SessionCancelled(SessionChanged):
    event_type: ClassVar[str] = "session.cancelled"


@dataclass
class CalendarSyncRequested(_OutboxEvent):
    """Push one entity's state to the external calendar."""

    event_type: ClassVar[str] = "calendar.sync"

    entity_kind: str
    entity_id: str
    operation: str
    revision: str
    external_sync_id: Optional[str] = None

    @property
    def aggregate_id(self) -> str:
        return self.entity_id

    def idempotency_key(self) -> str:
        return ":".join(
            (self.event_type, self.entity_kind, self.entity_id, self.operation, self.revision)
        )
