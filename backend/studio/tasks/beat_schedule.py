# backend/studio/tasks/beat_schedule.py
"""
Celery Beat schedule for the studio workers.

The outbox dispatcher runs on a short interval so notifications and calendar
pushes follow their commits closely; pass expiry is housekeeping.
"""

from datetime import timedelta
from typing import Any, Dict

from studio.core.config import settings


def get_beat_schedule() -> Dict[str, Dict[str, Any]]:
    return {
        "dispatch-outbox-events": {
            "task": "outbox.dispatch_pending",
            "schedule": timedelta(seconds=settings.outbox_dispatch_interval_seconds),
            "options": {"queue": "notifications"},
        },
        "expire-passes": {
            "task": "ledger.expire_passes",
            "schedule": timedelta(seconds=settings.pass_expiry_interval_seconds),
            "options": {"queue": "maintenance", "priority": 3},
        },
    }
