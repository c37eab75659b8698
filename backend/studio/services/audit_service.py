"""Service for writing audit trail entries of scheduling transitions."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from ..models.audit_log import AuditLog
from ..repositories.factory import RepositoryFactory


class AuditService:
    """Append audit rows inside the caller's transaction."""

    def __init__(self, db: Session):
        self.db = db
        self.repository = RepositoryFactory.create_audit_repository(db)

    def record_change(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        *,
        actor: Any | None = None,
        before: Mapping[str, Any] | None = None,
        after: Mapping[str, Any] | None = None,
    ) -> AuditLog:
        """Snapshot ``before``/``after`` and persist one immutable row."""
        entry = AuditLog.from_change(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor=actor,
            before=_sanitize(before),
            after=_sanitize(after),
        )
        self.repository.write(entry)
        return entry

    def history(
        self, entity_type: str, entity_id: str, limit: int = 100
    ) -> list[AuditLog]:
        rows, _ = self.repository.list(entity_type=entity_type, entity_id=entity_id, limit=limit)
        return rows


def _sanitize(payload: Optional[Mapping[str, Any]]) -> Optional[dict[str, Any]]:
    if payload is None:
        return None
    return {key: _json_safe(value) for key, value in payload.items()}


def _json_safe(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {key: _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    return value
