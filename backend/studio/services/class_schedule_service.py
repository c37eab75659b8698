# backend/studio/services/class_schedule_service.py
"""
Class Schedule Service: managing class occurrences.

Scheduling and rescheduling lock the room and trainer rows and run the same
conflict check as individual sessions, so classes and sessions can never
double-book a resource. Cancelling a class hands its registrations to the
booking orchestrator for release and refund.
"""

from datetime import datetime, timedelta
import logging
from typing import Mapping, Optional, Union

from sqlalchemy.orm import Session

from ..core.config import BookingPolicy
from ..core.enums import (
    ACTIVE_REGISTRATION_STATUSES,
    OccurrenceStatus,
    RegistrationStatus,
    SyncOperation,
)
from ..core.exceptions import NotFoundException, PolicyViolationException, ValidationException
from ..domain.actor import SYSTEM_ACTOR, Actor
from ..models.class_schedule import ClassOccurrence
from ..repositories.factory import RepositoryFactory
from ..schemas.results import ClassAttendanceResult
from ..schemas.scheduling import OccurrenceCreate, OccurrenceReschedule
from .audit_service import AuditService
from .base import BaseService
from .calendar_sync_service import CalendarSyncService
from .class_booking_service import ClassBookingService
from .conflict_checker import ConflictChecker
from .notification_service import NotificationService

logger = logging.getLogger(__name__)

AttendanceMark = Union[str, bool]


class ClassScheduleService(BaseService):
    """Schedule, move, cancel and close class occurrences."""

    def __init__(
        self,
        db: Session,
        policy: Optional[BookingPolicy] = None,
        conflict_checker: Optional[ConflictChecker] = None,
        booking_service: Optional[ClassBookingService] = None,
        notification_service: Optional[NotificationService] = None,
        calendar_sync: Optional[CalendarSyncService] = None,
        audit_service: Optional[AuditService] = None,
    ):
        super().__init__(db)
        self.template_repository = RepositoryFactory.create_class_template_repository(db)
        self.occurrence_repository = RepositoryFactory.create_class_occurrence_repository(db)
        self.registration_repository = RepositoryFactory.create_class_registration_repository(db)
        self.conflict_checker = conflict_checker or ConflictChecker(db)
        self.notifications = notification_service or NotificationService(db)
        self.audit = audit_service or AuditService(db)
        self.booking_service = booking_service or ClassBookingService(
            db,
            policy=policy,
            notification_service=self.notifications,
            audit_service=self.audit,
        )
        self.calendar_sync = calendar_sync or CalendarSyncService(db)

    @BaseService.measure_operation("schedule_occurrence")
    def schedule_occurrence(
        self, data: OccurrenceCreate, actor: Optional[Actor] = None
    ) -> ClassOccurrence:
        """
        Create an occurrence after checking its room and trainer.

        Capacity, credits and duration fall back to the template when omitted.

        Raises:
            ValidationException: No capacity given and no template to take it from
            NotFoundException: Template, room or trainer missing
            ResourceConflictException: Room or trainer already allocated
        """
        actor = actor or SYSTEM_ACTOR
        with self.transaction():
            template = None
            if data.template_id:
                template = self.template_repository.get_by_id(
                    data.template_id, load_relationships=False
                )
                if template is None:
                    raise NotFoundException.for_entity("Class template", data.template_id)

            end_at = data.end_at or data.start_at + timedelta(minutes=template.duration_minutes)
            capacity = data.capacity or (template.capacity if template else None)
            if capacity is None:
                raise ValidationException(
                    "capacity is required when no template is given", code="CAPACITY_REQUIRED"
                )
            credits_required = data.credits_required or (
                template.credits_required if template else 1
            )

            self.conflict_checker.assert_no_conflicts(
                data.room_id, data.trainer_id, data.start_at, end_at
            )
            occurrence = self.occurrence_repository.create(
                template_id=data.template_id,
                title=data.title,
                room_id=data.room_id,
                trainer_id=data.trainer_id,
                start_at=data.start_at,
                end_at=end_at,
                capacity=capacity,
                credits_required=credits_required,
                price=data.price,
                status=OccurrenceStatus.SCHEDULED.value,
            )
            self.calendar_sync.sync_entity(occurrence, SyncOperation.UPSERT)
            self._write_audit(occurrence, "schedule", actor, None, occurrence.to_dict())

        self.log_operation(
            "schedule_occurrence",
            occurrence_id=occurrence.id,
            room_id=occurrence.room_id,
            trainer_id=occurrence.trainer_id,
        )
        return occurrence

    @BaseService.measure_operation("reschedule_occurrence")
    def reschedule_occurrence(
        self,
        occurrence_id: str,
        data: OccurrenceReschedule,
        actor: Optional[Actor] = None,
        now: Optional[datetime] = None,
    ) -> ClassOccurrence:
        """Move a future scheduled occurrence and tell its registrants."""
        actor = actor or SYSTEM_ACTOR
        moment = self._resolve_now(now)
        with self.transaction():
            occurrence = self._lock_occurrence(occurrence_id)
            if occurrence.status != OccurrenceStatus.SCHEDULED.value:
                raise PolicyViolationException(
                    f"Class is {occurrence.status} and can no longer be rescheduled",
                    code="CLASS_NOT_SCHEDULED",
                    details={"occurrence_id": occurrence_id, "status": occurrence.status},
                )
            if occurrence.start_at <= moment:
                raise PolicyViolationException(
                    "This class has already started",
                    code="CLASS_STARTED",
                    details={"occurrence_id": occurrence_id},
                )

            room_id = data.room_id or occurrence.room_id
            trainer_id = data.trainer_id or occurrence.trainer_id
            self.conflict_checker.assert_no_conflicts(
                room_id, trainer_id, data.start_at, data.end_at, exclude_entity_id=occurrence.id
            )

            before = occurrence.to_dict()
            previous_start = occurrence.start_at
            occurrence.room_id = room_id
            occurrence.trainer_id = trainer_id
            occurrence.start_at = data.start_at
            occurrence.end_at = data.end_at
            self.occurrence_repository.flush()

            if occurrence.start_at != previous_start:
                for registration in self.registration_repository.list_for_occurrence(
                    occurrence.id, ACTIVE_REGISTRATION_STATUSES
                ):
                    self.notifications.class_rescheduled(registration, occurrence, previous_start)
            self.calendar_sync.sync_entity(occurrence, SyncOperation.UPSERT)
            self._write_audit(occurrence, "reschedule", actor, before, occurrence.to_dict())

        self.log_operation("reschedule_occurrence", occurrence_id=occurrence_id)
        return occurrence

    @BaseService.measure_operation("cancel_occurrence")
    def cancel_occurrence(
        self,
        occurrence_id: str,
        actor: Optional[Actor] = None,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ClassOccurrence:
        """
        Cancel a class the studio will not run.

        Every booked or waitlisted registration is cancelled and refunded in the
        same transaction, and each registrant is notified.
        """
        actor = actor or SYSTEM_ACTOR
        moment = self._resolve_now(now)
        with self.transaction():
            occurrence = self._lock_occurrence(occurrence_id)
            if occurrence.status == OccurrenceStatus.CANCELLED.value:
                raise PolicyViolationException(
                    "This class is already cancelled",
                    code="ALREADY_CANCELLED",
                    details={"occurrence_id": occurrence_id},
                )
            if occurrence.status == OccurrenceStatus.COMPLETED.value:
                raise PolicyViolationException(
                    "A completed class cannot be cancelled",
                    code="CLASS_COMPLETED",
                    details={"occurrence_id": occurrence_id},
                )

            before = occurrence.to_dict()
            occurrence.status = OccurrenceStatus.CANCELLED.value
            occurrence.cancelled_at = moment
            occurrence.cancellation_reason = reason
            self.occurrence_repository.flush()

            released = self.booking_service.cancel_all_for_occurrence(
                occurrence, actor, reason, moment
            )
            self.calendar_sync.sync_entity(occurrence, SyncOperation.DELETE)
            self._write_audit(occurrence, "cancel", actor, before, occurrence.to_dict())

        self.log_operation(
            "cancel_occurrence",
            occurrence_id=occurrence_id,
            registrations_released=len(released),
        )
        return occurrence

    @BaseService.measure_operation("complete_occurrence")
    def complete_occurrence(
        self,
        occurrence_id: str,
        actor: Optional[Actor] = None,
        now: Optional[datetime] = None,
    ) -> ClassOccurrence:
        actor = actor or SYSTEM_ACTOR
        moment = self._resolve_now(now)
        with self.transaction():
            occurrence = self._lock_occurrence(occurrence_id)
            if occurrence.status != OccurrenceStatus.SCHEDULED.value:
                raise PolicyViolationException(
                    f"Class is {occurrence.status} and cannot be completed",
                    code="CLASS_NOT_SCHEDULED",
                    details={"occurrence_id": occurrence_id, "status": occurrence.status},
                )
            if occurrence.start_at > moment:
                raise PolicyViolationException(
                    "A class cannot be completed before it starts",
                    code="CLASS_NOT_STARTED",
                    details={"occurrence_id": occurrence_id},
                )
            before = occurrence.to_dict()
            occurrence.status = OccurrenceStatus.COMPLETED.value
            self.occurrence_repository.flush()
            self._write_audit(occurrence, "complete", actor, before, occurrence.to_dict())

        self.log_operation("complete_occurrence", occurrence_id=occurrence_id)
        return occurrence

    @BaseService.measure_operation("record_class_attendance")
    def record_class_attendance(
        self,
        occurrence_id: str,
        marks: Mapping[str, AttendanceMark],
        actor: Optional[Actor] = None,
        now: Optional[datetime] = None,
    ) -> ClassAttendanceResult:
        """
        Mark booked registrations as attended or no_show.

        ``marks`` maps registration id to ``"attended"``/``"no_show"`` (or a
        bool). Registrations that are not currently booked are reported in
        ``skipped`` with their status; both attendance states are final.
        """
        actor = actor or SYSTEM_ACTOR
        moment = self._resolve_now(now)
        resolved = {registration_id: _resolve_mark(mark) for registration_id, mark in marks.items()}

        result = ClassAttendanceResult(occurrence_id=occurrence_id)
        with self.transaction():
            occurrence = self._lock_occurrence(occurrence_id)
            if occurrence.status == OccurrenceStatus.CANCELLED.value:
                raise PolicyViolationException(
                    "Attendance cannot be recorded for a cancelled class",
                    code="CLASS_CANCELLED",
                    details={"occurrence_id": occurrence_id},
                )

            for registration_id, new_status in resolved.items():
                registration = self.registration_repository.get_by_id(
                    registration_id, load_relationships=False
                )
                if registration is None or registration.occurrence_id != occurrence_id:
                    result.skipped[registration_id] = "not_found"
                    continue
                if registration.status != RegistrationStatus.BOOKED.value:
                    result.skipped[registration_id] = registration.status
                    continue

                before = registration.to_dict()
                registration.status = new_status
                if new_status == RegistrationStatus.ATTENDED.value:
                    registration.checked_in_at = moment
                result.updated[registration_id] = new_status
                self.audit.record_change(
                    "class_registration",
                    registration.id,
                    "attendance",
                    actor=actor.to_dict(),
                    before=before,
                    after=registration.to_dict(),
                )
            self.registration_repository.flush()

        if result.skipped:
            self.logger.warning(
                f"Attendance for occurrence {occurrence_id} skipped {len(result.skipped)} "
                f"registration(s)"
            )
        return result

    # Helpers

    def _lock_occurrence(self, occurrence_id: str) -> ClassOccurrence:
        occurrence = self.occurrence_repository.get_for_update(occurrence_id)
        if occurrence is None:
            raise NotFoundException.for_entity("Class occurrence", occurrence_id)
        return occurrence

    def _write_audit(
        self,
        occurrence: ClassOccurrence,
        action: str,
        actor: Actor,
        before: Optional[dict],
        after: Optional[dict],
    ) -> None:
        self.audit.record_change(
            "class_occurrence",
            occurrence.id,
            action,
            actor=actor.to_dict(),
            before=before,
            after=after,
        )


def _resolve_mark(mark: AttendanceMark) -> str:
    if isinstance(mark, bool):
        return RegistrationStatus.ATTENDED.value if mark else RegistrationStatus.NO_SHOW.value
    value = str(mark).lower()
    if value not in (RegistrationStatus.ATTENDED.value, RegistrationStatus.NO_SHOW.value):
        raise ValidationException(
            f"Unknown attendance mark: {mark}",
            code="INVALID_ATTENDANCE",
            details={"mark": str(mark)},
        )
    return value
