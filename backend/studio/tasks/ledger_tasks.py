# backend/studio/tasks/ledger_tasks.py
"""Periodic credit ledger housekeeping."""

from celery.utils.log import get_task_logger

from studio.database import SessionLocal
from studio.services.credit_ledger_service import CreditLedgerService
from studio.tasks.celery_app import celery_app

logger = get_task_logger(__name__)


@celery_app.task(name="ledger.expire_passes", max_retries=0, queue="maintenance")
def expire_passes() -> int:
    """Flip active passes past their validity to expired. Returns the count."""
    session = SessionLocal()
    try:
        expired = CreditLedgerService(session).expire_passes()
        if expired:
            logger.info("Expired %s pass(es)", expired)
        return expired
    finally:
        session.close()
