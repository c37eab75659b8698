# backend/studio/services/session_service.py
"""
Session Service: the write path of individual (one-on-one) sessions.

Every create or reschedule runs the room and staff conflict check inside the
same transaction that persists the session, with both resource rows locked.
Cancelling or deleting releases the interval at once. Notifications and the
external calendar sync are queued on the outbox and delivered after commit.
"""

from datetime import datetime
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..core.enums import SessionStatus, SyncOperation
from ..core.exceptions import (
    NoCreditsAvailableException,
    NotFoundException,
    PolicyViolationException,
    ValidationException,
)
from ..domain.actor import SYSTEM_ACTOR, Actor
from ..models.individual_session import IndividualSession
from ..repositories.factory import RepositoryFactory
from ..schemas.results import SessionAttendanceResult
from ..schemas.scheduling import SessionCreate, SessionUpdate, SessionUpsert
from .audit_service import AuditService
from .base import BaseService
from .calendar_sync_service import CalendarSyncService
from .conflict_checker import ConflictChecker
from .credit_ledger_service import CreditLedgerService
from .notification_service import NotificationService

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = ("room_id", "staff_id", "client_id", "start_at", "end_at", "title", "notes")


class SessionService(BaseService):
    """Create, reschedule, cancel and delete individual sessions."""

    def __init__(
        self,
        db: Session,
        conflict_checker: Optional[ConflictChecker] = None,
        ledger: Optional[CreditLedgerService] = None,
        notification_service: Optional[NotificationService] = None,
        calendar_sync: Optional[CalendarSyncService] = None,
        audit_service: Optional[AuditService] = None,
    ):
        super().__init__(db)
        self.repository = RepositoryFactory.create_session_repository(db)
        self.client_repository = RepositoryFactory.create_client_repository(db)
        self.conflict_checker = conflict_checker or ConflictChecker(db)
        self.ledger = ledger or CreditLedgerService(db)
        self.notifications = notification_service or NotificationService(db)
        self.calendar_sync = calendar_sync or CalendarSyncService(db)
        self.audit = audit_service or AuditService(db)

    @BaseService.measure_operation("create_session")
    def create_session(
        self, data: SessionCreate, actor: Optional[Actor] = None
    ) -> IndividualSession:
        """
        Persist a new session after the room and staff checks.

        Raises:
            ResourceConflictException: Room conflict reported before staff conflict
            NotFoundException: Room, staff member or client missing
        """
        actor = actor or SYSTEM_ACTOR
        with self.transaction():
            self.conflict_checker.assert_no_conflicts(
                data.room_id, data.staff_id, data.start_at, data.end_at
            )
            self._ensure_client(data.client_id)
            session = self.repository.create(
                room_id=data.room_id,
                staff_id=data.staff_id,
                client_id=data.client_id,
                start_at=data.start_at,
                end_at=data.end_at,
                title=data.title,
                notes=data.notes,
                status=SessionStatus.SCHEDULED.value,
                created_by_id=actor.id,
            )
            self.notifications.session_scheduled(session)
            self.calendar_sync.sync_entity(session, SyncOperation.UPSERT)
            self._write_audit(session, "create", actor, None, session.to_dict())

        self.log_operation(
            "create_session",
            session_id=session.id,
            room_id=session.room_id,
            staff_id=session.staff_id,
        )
        return session

    @BaseService.measure_operation("update_session")
    def update_session(
        self, session_id: str, data: SessionUpdate, actor: Optional[Actor] = None
    ) -> IndividualSession:
        """
        Reschedule or edit a session.

        The conflict check ignores the session's own current interval. Only
        sessions still in ``scheduled`` can change.
        """
        actor = actor or SYSTEM_ACTOR
        changes = data.model_dump(exclude_unset=True)

        with self.transaction():
            session = self._lock_live_session(session_id)
            if session.status != SessionStatus.SCHEDULED.value:
                raise PolicyViolationException(
                    f"Session is {session.status} and can no longer be rescheduled",
                    code="SESSION_NOT_SCHEDULED",
                    details={"session_id": session_id, "status": session.status},
                )

            before = session.to_dict()
            target: Dict[str, Any] = {field: getattr(session, field) for field in _UPDATABLE_FIELDS}
            target.update({key: value for key, value in changes.items() if key in target})
            if target["end_at"] <= target["start_at"]:
                raise ValidationException(
                    "end_at must be after start_at",
                    code="INVALID_INTERVAL",
                    details={"session_id": session_id},
                )

            moves = any(
                target[field] != getattr(session, field)
                for field in ("room_id", "staff_id", "start_at", "end_at")
            )
            if moves:
                self.conflict_checker.assert_no_conflicts(
                    target["room_id"],
                    target["staff_id"],
                    target["start_at"],
                    target["end_at"],
                    exclude_entity_id=session.id,
                )
            if "client_id" in changes:
                self._ensure_client(target["client_id"])

            for field, value in target.items():
                setattr(session, field, value)
            self.repository.flush()

            self.notifications.session_updated(session)
            self.calendar_sync.sync_entity(session, SyncOperation.UPSERT)
            self._write_audit(session, "update", actor, before, session.to_dict())

        self.log_operation("update_session", session_id=session.id, moved=moves)
        return session

    def create_or_update_session(
        self, data: SessionUpsert, actor: Optional[Actor] = None
    ) -> IndividualSession:
        """Create when ``data.session_id`` is empty, otherwise reschedule that session."""
        fields = data.model_dump(exclude={"session_id"})
        if data.session_id:
            return self.update_session(data.session_id, SessionUpdate(**fields), actor)
        return self.create_session(SessionCreate(**fields), actor)

    @BaseService.measure_operation("cancel_session")
    def cancel_session(
        self, session_id: str, actor: Optional[Actor] = None, reason: Optional[str] = None
    ) -> IndividualSession:
        """Cancel a scheduled session; its room and staff time are free again on commit."""
        actor = actor or SYSTEM_ACTOR
        with self.transaction():
            session = self._lock_live_session(session_id)
            if session.status == SessionStatus.CANCELLED.value:
                raise PolicyViolationException(
                    "Session is already cancelled",
                    code="ALREADY_CANCELLED",
                    details={"session_id": session_id},
                )
            if session.status != SessionStatus.SCHEDULED.value:
                raise PolicyViolationException(
                    f"Session is {session.status} and can no longer be cancelled",
                    code="SESSION_NOT_SCHEDULED",
                    details={"session_id": session_id, "status": session.status},
                )

            before = session.to_dict()
            session.cancel(reason)
            self.repository.flush()

            self.notifications.session_cancelled(session)
            self.calendar_sync.sync_entity(session, SyncOperation.DELETE)
            self._write_audit(session, "cancel", actor, before, session.to_dict())

        self.log_operation("cancel_session", session_id=session_id, reason=reason)
        return session

    @BaseService.measure_operation("delete_session")
    def delete_session(
        self, session_id: str, actor: Optional[Actor] = None, now: Optional[datetime] = None
    ) -> None:
        """
        Soft-delete a session that has not started yet.

        Raises:
            NotFoundException: Unknown or already deleted session
            PolicyViolationException: The session already started
        """
        actor = actor or SYSTEM_ACTOR
        moment = self._resolve_now(now)
        with self.transaction():
            session = self._lock_live_session(session_id)
            if session.start_at <= moment:
                raise PolicyViolationException(
                    "Sessions that already started cannot be deleted",
                    code="SESSION_STARTED",
                    details={"session_id": session_id, "start_at": session.start_at.isoformat()},
                )

            before = session.to_dict()
            was_scheduled = session.status == SessionStatus.SCHEDULED.value
            session.soft_delete(moment)
            self.repository.flush()

            if was_scheduled:
                self.notifications.session_cancelled(session)
            self.calendar_sync.sync_entity(session, SyncOperation.DELETE)
            self._write_audit(session, "delete", actor, before, session.to_dict())

        self.log_operation("delete_session", session_id=session_id)

    @BaseService.measure_operation("record_session_attendance")
    def record_session_attendance(
        self,
        session_id: str,
        attended: bool,
        actor: Optional[Actor] = None,
        now: Optional[datetime] = None,
    ) -> SessionAttendanceResult:
        """
        Close a scheduled session as completed (attended) or no_show.

        Checking a client in deducts one credit when a pass has one; without
        one the session stays unpaid and the result says so.
        """
        actor = actor or SYSTEM_ACTOR
        moment = self._resolve_now(now)
        with self.transaction():
            session = self._lock_live_session(session_id)
            if session.status != SessionStatus.SCHEDULED.value:
                raise PolicyViolationException(
                    f"Attendance already recorded (session is {session.status})",
                    code="ATTENDANCE_RECORDED",
                    details={"session_id": session_id, "status": session.status},
                )

            before = session.to_dict()
            credit_deducted = False
            message: Optional[str] = None
            if attended:
                session.status = SessionStatus.COMPLETED.value
                session.attended = True
                if session.client_id and session.credit_pass_id is None:
                    try:
                        pass_ = self.ledger.deduct_credit(
                            session.client_id,
                            reason="session_checkin",
                            reference_id=session.id,
                            now=moment,
                            use_transaction=False,
                        )
                    except NoCreditsAvailableException:
                        message = "no credits available; session left unpaid"
                    else:
                        session.credit_pass_id = pass_.id
                        credit_deducted = True
            else:
                session.status = SessionStatus.NO_SHOW.value
                session.attended = False
            self.repository.flush()

            self._write_audit(session, "attendance", actor, before, session.to_dict())

        self.log_operation(
            "record_session_attendance",
            session_id=session_id,
            attended=attended,
            credit_deducted=credit_deducted,
        )
        return SessionAttendanceResult(
            session_id=session.id,
            status=session.status,
            attended=bool(session.attended),
            credit_deducted=credit_deducted,
            pass_id=session.credit_pass_id,
            message=message,
        )

    def get_session(self, session_id: str) -> IndividualSession:
        session = self.repository.get_live(session_id)
        if session is None:
            raise NotFoundException.for_entity("Session", session_id)
        return session

    # Helpers

    def _lock_live_session(self, session_id: str) -> IndividualSession:
        session = self.repository.get_for_update(session_id)
        if session is None or session.is_deleted:
            raise NotFoundException.for_entity("Session", session_id)
        return session

    def _ensure_client(self, client_id: Optional[str]) -> None:
        if client_id is None:
            return
        if self.client_repository.get_by_id(client_id, load_relationships=False) is None:
            raise NotFoundException.for_entity("Client", client_id)

    def _write_audit(
        self,
        session: IndividualSession,
        action: str,
        actor: Actor,
        before: Optional[Dict[str, Any]],
        after: Optional[Dict[str, Any]],
    ) -> None:
        self.audit.record_change(
            "individual_session",
            session.id,
            action,
            actor=actor.to_dict(),
            before=before,
            after=after,
        )
