# backend/studio/tasks/__init__.py
"""
Celery tasks for the studio scheduling core.

- Outbox delivery (notifications and external calendar pushes)
- Credit pass expiry
"""

from studio.tasks.celery_app import celery_app
from studio.tasks.ledger_tasks import expire_passes
from studio.tasks.notification_tasks import deliver_event, dispatch_pending

__all__ = [
    "celery_app",
    "deliver_event",
    "dispatch_pending",
    "expire_passes",
]
