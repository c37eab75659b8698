# backend/studio/services/notification_service.py
"""
Notification Service for the studio scheduling core.

Turns committed-to-be transitions into outbox events. Nothing is sent from
here: events are inserted in the caller's transaction and delivered by the
outbox worker after commit, so a failed delivery can never roll back a
booking and a rolled-back booking never notifies anyone.
"""

from datetime import datetime
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.timezone_utils import format_for_studio
from ..core.ulid_helper import generate_ulid
from ..events import (
    BookingCancelled,
    BookingConfirmed,
    BookingWaitlisted,
    ClassCancelled,
    ClassRescheduled,
    EventPublisher,
    SessionCancelled,
    SessionScheduled,
    SessionUpdated,
    WaitlistPromoted,
)
from ..models.class_schedule import ClassOccurrence, ClassRegistration
from ..models.event_outbox import EventOutbox
from ..models.individual_session import IndividualSession
from ..repositories.factory import RepositoryFactory

logger = logging.getLogger(__name__)


class NotificationService:
    """Queue booking, class and session notifications on the outbox."""

    def __init__(self, db: Session, publisher: Optional[EventPublisher] = None):
        self.db = db
        self.publisher = publisher or EventPublisher(
            RepositoryFactory.create_event_outbox_repository(db)
        )

    # Class bookings

    def booking_confirmed(
        self, registration: ClassRegistration, occurrence: ClassOccurrence
    ) -> EventOutbox:
        return self.publisher.publish(
            BookingConfirmed(
                registration_id=registration.id,
                occurrence_id=occurrence.id,
                client_id=registration.client_id,
                class_name=occurrence.display_name,
                starts_at=occurrence.start_at,
                starts_at_local=format_for_studio(occurrence.start_at),
                payment_status=registration.payment_status,
                credits_used=registration.credits_used,
            )
        )

    def booking_waitlisted(
        self, registration: ClassRegistration, occurrence: ClassOccurrence, position: int
    ) -> EventOutbox:
        return self.publisher.publish(
            BookingWaitlisted(
                registration_id=registration.id,
                occurrence_id=occurrence.id,
                client_id=registration.client_id,
                class_name=occurrence.display_name,
                starts_at=occurrence.start_at,
                position=position,
            )
        )

    def booking_cancelled(
        self,
        registration: ClassRegistration,
        previous_status: str,
        *,
        cancelled_by_role: Optional[str],
        free_cancellation: bool,
        credits_refunded: int = 0,
    ) -> EventOutbox:
        return self.publisher.publish(
            BookingCancelled(
                registration_id=registration.id,
                occurrence_id=registration.occurrence_id,
                client_id=registration.client_id,
                previous_status=previous_status,
                cancelled_by_role=cancelled_by_role,
                free_cancellation=free_cancellation,
                credits_refunded=credits_refunded,
                cancelled_at=registration.cancelled_at,
            )
        )

    def waitlist_promoted(
        self, registration: ClassRegistration, occurrence: ClassOccurrence
    ) -> EventOutbox:
        return self.publisher.publish(
            WaitlistPromoted(
                registration_id=registration.id,
                occurrence_id=occurrence.id,
                client_id=registration.client_id,
                class_name=occurrence.display_name,
                starts_at=occurrence.start_at,
                starts_at_local=format_for_studio(occurrence.start_at),
                payment_status=registration.payment_status,
                credits_used=registration.credits_used,
            )
        )

    # Class schedule

    def class_cancelled(
        self,
        registration: ClassRegistration,
        occurrence: ClassOccurrence,
        reason: Optional[str] = None,
    ) -> EventOutbox:
        return self.publisher.publish(
            ClassCancelled(
                occurrence_id=occurrence.id,
                registration_id=registration.id,
                client_id=registration.client_id,
                class_name=occurrence.display_name,
                starts_at=occurrence.start_at,
                reason=reason,
            )
        )

    def class_rescheduled(
        self,
        registration: ClassRegistration,
        occurrence: ClassOccurrence,
        previous_start: datetime,
    ) -> EventOutbox:
        return self.publisher.publish(
            ClassRescheduled(
                occurrence_id=occurrence.id,
                registration_id=registration.id,
                client_id=registration.client_id,
                class_name=occurrence.display_name,
                previous_start=previous_start,
                new_start=occurrence.start_at,
                new_start_local=format_for_studio(occurrence.start_at),
            )
        )

    # Individual sessions

    def session_scheduled(self, session: IndividualSession) -> EventOutbox:
        return self.publisher.publish(SessionScheduled(**self._session_fields(session)))

    def session_updated(self, session: IndividualSession) -> EventOutbox:
        return self.publisher.publish(SessionUpdated(**self._session_fields(session)))

    def session_cancelled(self, session: IndividualSession) -> EventOutbox:
        return self.publisher.publish(SessionCancelled(**self._session_fields(session)))

    @staticmethod
    def _session_fields(session: IndividualSession) -> dict:
        return {
            "session_id": session.id,
            "staff_id": session.staff_id,
            "room_id": session.room_id,
            "client_id": session.client_id,
            "start_at": session.start_at,
            "end_at": session.end_at,
            "start_local": format_for_studio(session.start_at),
            "revision": generate_ulid(),
        }
