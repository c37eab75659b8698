"""
Database models for the studio scheduling core.

- Resources: rooms and staff members
- Calendar entities: individual sessions and class occurrences
- Class registrations and templates
- Credit ledger: passes and their ledger entries
- Audit trail and event outbox
"""

from .audit_log import AuditLog
from .class_schedule import ClassOccurrence, ClassRegistration, ClassTemplate
from .client import Client
from .credit_pass import Pass, PassLedgerEntry
from .event_outbox import EventOutbox, EventOutboxStatus, NotificationDelivery
from .individual_session import IndividualSession
from .resource import Room, StaffMember

__all__ = [
    "AuditLog",
    "ClassOccurrence",
    "ClassRegistration",
    "ClassTemplate",
    "Client",
    "EventOutbox",
    "EventOutboxStatus",
    "IndividualSession",
    "NotificationDelivery",
    "Pass",
    "PassLedgerEntry",
    "Room",
    "StaffMember",
]
