# backend/studio/core/enums.py
"""
Core enums for the studio scheduling core.

Status values are persisted as plain strings; these enums keep the values
consistent between models, services and tests.
"""

from enum import Enum


class SessionStatus(str, Enum):
    """Lifecycle of an individual (one-on-one) session."""

    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class OccurrenceStatus(str, Enum):
    """Lifecycle of a scheduled class occurrence."""

    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class RegistrationStatus(str, Enum):
    """State of a client's registration for a class occurrence."""

    BOOKED = "booked"
    WAITLIST = "waitlist"
    ATTENDED = "attended"
    NO_SHOW = "no_show"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PAID = "paid"
    UNPAID = "unpaid"
    PENDING = "pending"


class PassStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    DEPLETED = "depleted"


class ActorRole(str, Enum):
    """Roles of whoever triggers a write. Staff and admins are privileged."""

    CLIENT = "client"
    STAFF = "staff"
    ADMIN = "admin"
    SYSTEM = "system"


class SyncOperation(str, Enum):
    UPSERT = "upsert"
    DELETE = "delete"


# Registrations that hold a seat or a waitlist slot
ACTIVE_REGISTRATION_STATUSES = (RegistrationStatus.BOOKED.value, RegistrationStatus.WAITLIST.value)

# Registrations that count against capacity
CONFIRMED_REGISTRATION_STATUSES = (
    RegistrationStatus.BOOKED.value,
    RegistrationStatus.ATTENDED.value,
)

PRIVILEGED_ROLES = frozenset({ActorRole.STAFF.value, ActorRole.ADMIN.value, ActorRole.SYSTEM.value})
