"""
Signing background tasks: expiration sweep and notification delivery
"""

import logging
from datetime import datetime
from typing import Optional

import httpx
from celery import Celery

from config import settings
from database import SessionLocal
from app.services.notification_service import HttpNotifier
from app.services.signing_workflow_service import SigningWorkflowService

logger = logging.getLogger(__name__)

# Create Celery instance
celery_app = Celery(
    "signing_tasks",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND
)

celery_app.conf.beat_schedule = {
    "expire-overdue-signing-cycles": {
        "task": "app.tasks.signing_tasks.expire_overdue_cycles_task",
        "schedule": settings.EXPIRATION_SWEEP_INTERVAL_MINUTES * 60.0,
    },
}


@celery_app.task
def expire_overdue_cycles_task():
    """Close signing cycles that are past due or have no live signer left"""

    db = SessionLocal()

    try:
        started_at = datetime.utcnow()
        closed_count = SigningWorkflowService(db).expire_overdue_cycles(started_at)

        return {
            "closed_count": closed_count,
            "swept_at": started_at.isoformat()
        }

    except Exception as e:
        logger.error(f"Signing expiration sweep failed: {e}")
        raise e

    finally:
        db.close()


@celery_app.task(bind=True, max_retries=3)
def send_signing_notification_task(
    self,
    signer_id: str,
    document_id: str,
    token: str,
    message: Optional[str] = None,
    reminder: bool = False,
    file_name: Optional[str] = None
):
    """Deliver one signing request through the notification service"""

    try:
        HttpNotifier().notify(
            signer_id, document_id, token,
            message=message, reminder=reminder, file_name=file_name
        )
        return {"success": True, "signer_id": signer_id}

    except httpx.HTTPError as exc:
        logger.warning(
            f"Signing notice for signer {signer_id} failed "
            f"(attempt {self.request.retries + 1}): {exc}"
        )

        # Retry task
        if self.request.retries < self.max_retries:
            raise self.retry(countdown=60 * (self.request.retries + 1))

        raise exc
