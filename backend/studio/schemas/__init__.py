from .base import StandardizedModel, StrictRequestModel
from .results import (
    BookingResult,
    CancellationResult,
    ClassAttendanceResult,
    ConflictCheckResult,
    ConflictDetails,
    OccurrenceSummary,
    RefundOutcome,
    ResourceCalendarEntry,
    SessionAttendanceResult,
    WaitlistEntry,
)
from .scheduling import (
    OccurrenceCreate,
    OccurrenceReschedule,
    SessionCreate,
    SessionUpdate,
    SessionUpsert,
)

__all__ = [
    "BookingResult",
    "CancellationResult",
    "ClassAttendanceResult",
    "ConflictCheckResult",
    "ConflictDetails",
    "OccurrenceCreate",
    "OccurrenceReschedule",
    "OccurrenceSummary",
    "RefundOutcome",
    "ResourceCalendarEntry",
    "SessionAttendanceResult",
    "SessionCreate",
    "SessionUpdate",
    "SessionUpsert",
    "StandardizedModel",
    "StrictRequestModel",
    "WaitlistEntry",
]
