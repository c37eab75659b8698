# backend/studio/repositories/factory.py
"""
Repository Factory for the studio scheduling core.

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .audit_repository import AuditRepository
    from .calendar_repository import CalendarRepository
    from .class_repository import (
        ClassOccurrenceRepository,
        ClassRegistrationRepository,
        ClassTemplateRepository,
    )
    from .client_repository import ClientRepository
    from .event_outbox_repository import EventOutboxRepository
    from .pass_repository import PassRepository
    from .session_repository import SessionRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation to ensure consistent initialization
    and makes it easy to swap implementations if needed.
    """

    @staticmethod
    def create_calendar_repository(db: Session) -> "CalendarRepository":
        """Create repository for room/staff calendar reads and resource locks."""
        from .calendar_repository import CalendarRepository

        return CalendarRepository(db)

    @staticmethod
    def create_session_repository(db: Session) -> "SessionRepository":
        from .session_repository import SessionRepository

        return SessionRepository(db)

    @staticmethod
    def create_class_template_repository(db: Session) -> "ClassTemplateRepository":
        from .class_repository import ClassTemplateRepository

        return ClassTemplateRepository(db)

    @staticmethod
    def create_class_occurrence_repository(db: Session) -> "ClassOccurrenceRepository":
        from .class_repository import ClassOccurrenceRepository

        return ClassOccurrenceRepository(db)

    @staticmethod
    def create_class_registration_repository(db: Session) -> "ClassRegistrationRepository":
        from .class_repository import ClassRegistrationRepository

        return ClassRegistrationRepository(db)

    @staticmethod
    def create_pass_repository(db: Session) -> "PassRepository":
        """Create repository for the credit ledger."""
        from .pass_repository import PassRepository

        return PassRepository(db)

    @staticmethod
    def create_client_repository(db: Session) -> "ClientRepository":
        from .client_repository import ClientRepository

        return ClientRepository(db)

    @staticmethod
    def create_audit_repository(db: Session) -> "AuditRepository":
        from .audit_repository import AuditRepository

        return AuditRepository(db)

    @staticmethod
    def create_event_outbox_repository(db: Session) -> "EventOutboxRepository":
        from .event_outbox_repository import EventOutboxRepository

        return EventOutboxRepository(db)

