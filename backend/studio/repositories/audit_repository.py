"""
Repository helpers for audit_log persistence and querying.

The audit trail is append-only: rows are written and read, never updated.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Select, and_, func, select
from sqlalchemy.orm import Session

from ..models.audit_log import AuditLog


class AuditRepository:
    """Persist and query audit trail entries."""

    def __init__(self, db: Session):
        self.db = db

    def write(self, audit: AuditLog) -> None:
        """Persist a new audit row inside the active transaction."""
        self.db.add(audit)
        self.db.flush()

    def list(
        self,
        *,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        action: Optional[str] = None,
        actor_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AuditLog], int]:
        """Return audit rows matching supplied filters, oldest first."""
        limit = max(0, limit)
        offset = max(0, offset)

        conditions = _build_filters(entity_type, entity_id, action, actor_id)
        if start is not None:
            conditions.append(AuditLog.occurred_at >= start)
        if end is not None:
            conditions.append(AuditLog.occurred_at <= end)

        stmt: Select[Any] = select(AuditLog).order_by(
            AuditLog.occurred_at.asc(), AuditLog.id.asc()
        )
        count_stmt = select(func.count()).select_from(AuditLog)

        if conditions:
            stmt = stmt.where(and_(*conditions))
            count_stmt = count_stmt.where(and_(*conditions))

        stmt = stmt.offset(offset).limit(limit)

        rows = list(self.db.execute(stmt).scalars().all())
        total = self.db.execute(count_stmt).scalar_one()

        return rows, int(total)


def _build_filters(
    entity_type: Optional[str],
    entity_id: Optional[str],
    action: Optional[str],
    actor_id: Optional[str],
) -> list[Any]:
    clauses: list[Any] = []
    if entity_type:
        clauses.append(AuditLog.entity_type == entity_type)
    if entity_id:
        clauses.append(AuditLog.entity_id == entity_id)
    if action:
        clauses.append(AuditLog.action == action)
    if actor_id:
        clauses.append(AuditLog.actor_id == actor_id)
    return clauses
