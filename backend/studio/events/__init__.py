from .booking_events import (
    BookingCancelled,
    BookingConfirmed,
    BookingWaitlisted,
    CalendarSyncRequested,
    ClassCancelled,
    ClassRescheduled,
    SessionCancelled,
    SessionScheduled,
    SessionUpdated,
    WaitlistPromoted,
)
from .publisher import EventPublisher

__all__ = [
    "BookingCancelled",
    "BookingConfirmed",
    "BookingWaitlisted",
    "CalendarSyncRequested",
    "ClassCancelled",
    "ClassRescheduled",
    "EventPublisher",
    "SessionCancelled",
    "SessionScheduled",
    "SessionUpdated",
    "WaitlistPromoted",
]
