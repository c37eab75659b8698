# backend/studio/repositories/session_repository.py
"""Data access for individual sessions."""

import logging
from typing import Optional, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.individual_session import IndividualSession
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class SessionRepository(BaseRepository[IndividualSession]):
    def __init__(self, db: Session):
        super().__init__(db, IndividualSession)

    def get_live(self, session_id: str) -> Optional[IndividualSession]:
        """Return the session unless it has been soft-deleted."""
        try:
            return cast(
                Optional[IndividualSession],
                self.db.query(IndividualSession)
                .filter(
                    IndividualSession.id == session_id,
                    IndividualSession.deleted_at.is_(None),
                )
                .first(),
            )
        except SQLAlchemyError as exc:
            self.logger.error("Error loading session %s: %s", session_id, str(exc))
            raise RepositoryException("Failed to load session") from exc
