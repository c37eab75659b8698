# backend/studio/repositories/class_repository.py
"""
Repositories for class templates, occurrences and registrations.

Capacity checks count registrations while the occurrence row is locked by the
caller; nothing here commits.
"""

import logging
from typing import List, Optional, cast

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import (
    ACTIVE_REGISTRATION_STATUSES,
    CONFIRMED_REGISTRATION_STATUSES,
    RegistrationStatus,
)
from ..core.exceptions import RepositoryException
from ..models.class_schedule import ClassOccurrence, ClassRegistration, ClassTemplate
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ClassTemplateRepository(BaseRepository[ClassTemplate]):
    def __init__(self, db: Session):
        super().__init__(db, ClassTemplate)


class ClassOccurrenceRepository(BaseRepository[ClassOccurrence]):
    def __init__(self, db: Session):
        super().__init__(db, ClassOccurrence)


class ClassRegistrationRepository(BaseRepository[ClassRegistration]):
    def __init__(self, db: Session):
        super().__init__(db, ClassRegistration)

    def get_active_for_client(
        self, occurrence_id: str, client_id: str
    ) -> Optional[ClassRegistration]:
        """The client's booked or waitlisted registration, if any."""
        try:
            return cast(
                Optional[ClassRegistration],
                self.db.query(ClassRegistration)
                .filter(
                    ClassRegistration.occurrence_id == occurrence_id,
                    ClassRegistration.client_id == client_id,
                    ClassRegistration.status.in_(ACTIVE_REGISTRATION_STATUSES),
                )
                .populate_existing()
                .first(),
            )
        except SQLAlchemyError as exc:
            self.logger.error("Error loading registration: %s", str(exc))
            raise RepositoryException("Failed to load registration") from exc

    def get_latest_for_client(
        self, occurrence_id: str, client_id: str
    ) -> Optional[ClassRegistration]:
        """Most recent registration in any status (used to explain why cancel is refused)."""
        try:
            return cast(
                Optional[ClassRegistration],
                self.db.query(ClassRegistration)
                .filter(
                    ClassRegistration.occurrence_id == occurrence_id,
                    ClassRegistration.client_id == client_id,
                )
                .order_by(ClassRegistration.booked_at.desc(), ClassRegistration.id.desc())
                .populate_existing()
                .first(),
            )
        except SQLAlchemyError as exc:
            self.logger.error("Error loading registration: %s", str(exc))
            raise RepositoryException("Failed to load registration") from exc

    def count_confirmed(self, occurrence_id: str) -> int:
        """Registrations counting against capacity (booked + attended)."""
        try:
            total = (
                self.db.query(func.count(ClassRegistration.id))
                .filter(
                    ClassRegistration.occurrence_id == occurrence_id,
                    ClassRegistration.status.in_(CONFIRMED_REGISTRATION_STATUSES),
                )
                .scalar()
            )
            return int(total or 0)
        except SQLAlchemyError as exc:
            self.logger.error("Error counting registrations: %s", str(exc))
            raise RepositoryException("Failed to count registrations") from exc

    def count_waitlist(self, occurrence_id: str) -> int:
        try:
            total = (
                self.db.query(func.count(ClassRegistration.id))
                .filter(
                    ClassRegistration.occurrence_id == occurrence_id,
                    ClassRegistration.status == RegistrationStatus.WAITLIST.value,
                )
                .scalar()
            )
            return int(total or 0)
        except SQLAlchemyError as exc:
            self.logger.error("Error counting waitlist: %s", str(exc))
            raise RepositoryException("Failed to count waitlist") from exc

    def get_waitlist(self, occurrence_id: str) -> List[ClassRegistration]:
        """Waitlisted registrations in FIFO order (booked_at, then id)."""
        try:
            return cast(
                List[ClassRegistration],
                self.db.query(ClassRegistration)
                .filter(
                    ClassRegistration.occurrence_id == occurrence_id,
                    ClassRegistration.status == RegistrationStatus.WAITLIST.value,
                )
                .order_by(ClassRegistration.booked_at.asc(), ClassRegistration.id.asc())
                .populate_existing()
                .all(),
            )
        except SQLAlchemyError as exc:
            self.logger.error("Error loading waitlist: %s", str(exc))
            raise RepositoryException("Failed to load waitlist") from exc

    def next_waitlisted(self, occurrence_id: str) -> Optional[ClassRegistration]:
        waitlist = self.get_waitlist(occurrence_id)
        return waitlist[0] if waitlist else None

    def list_for_occurrence(
        self, occurrence_id: str, statuses: Optional[tuple] = None
    ) -> List[ClassRegistration]:
        try:
            query = self.db.query(ClassRegistration).filter(
                ClassRegistration.occurrence_id == occurrence_id
            )
            if statuses:
                query = query.filter(ClassRegistration.status.in_(statuses))
            return cast(
                List[ClassRegistration],
                query.order_by(ClassRegistration.booked_at.asc(), ClassRegistration.id.asc())
                .populate_existing()
                .all(),
            )
        except SQLAlchemyError as exc:
            self.logger.error("Error listing registrations: %s", str(exc))
            raise RepositoryException("Failed to list registrations") from exc
