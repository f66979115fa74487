"""
Background tasks for the CoOwnSign backend
"""

from .signing_tasks import (
    celery_app,
    expire_overdue_cycles_task,
    send_signing_notification_task
)

__all__ = [
    "celery_app",
    "expire_overdue_cycles_task",
    "send_signing_notification_task"
]
