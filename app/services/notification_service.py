"""Signer notification dispatch"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
import jinja2

from config import settings

logger = logging.getLogger(__name__)


NOTIFICATION_TEMPLATES = {
    "signature_request_title.txt": "Signature requested: {{ file_name }}",
    "signature_request_body.txt": (
        "{% if reminder %}Reminder: {% endif %}"
        "You have been asked to sign \"{{ file_name }}\"."
        "{% if message %}\n\n{{ message }}{% endif %}"
        "\n\nSign here: {{ signing_url }}"
    ),
}


@dataclass(frozen=True)
class SigningNotice:
    """A notification the workflow decided to send"""
    signer_id: str
    document_id: str
    token: str
    message: Optional[str] = None
    reminder: bool = False
    file_name: Optional[str] = None


class Notifier(ABC):
    """Delivers signing requests to signers. Must never block signing."""

    @abstractmethod
    def notify(self, signer_id: str, document_id: str, token: str,
               message: Optional[str] = None, reminder: bool = False,
               file_name: Optional[str] = None) -> None:
        ...


def signing_url(document_id: str, token: str) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/documents/{document_id}/sign?token={token}"


class HttpNotifier(Notifier):
    """Posts signing requests to the platform notification service"""

    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None,
                 timeout: Optional[float] = None, client: Optional[httpx.Client] = None):
        self.base_url = (base_url if base_url is not None else settings.NOTIFICATION_SERVICE_URL).rstrip("/")
        self.token = token if token is not None else settings.NOTIFICATION_SERVICE_TOKEN
        self.timeout = timeout or settings.NOTIFICATION_TIMEOUT
        self.client = client
        self.template_env = jinja2.Environment(
            loader=jinja2.DictLoader(NOTIFICATION_TEMPLATES),
            autoescape=False,
        )

    def render(self, document_id: str, token: str, message: Optional[str] = None,
               reminder: bool = False, file_name: Optional[str] = None) -> Dict[str, str]:
        context = {
            "file_name": file_name or "a document",
            "message": message,
            "signing_url": signing_url(document_id, token),
            "reminder": reminder,
        }
        return {
            "title": self.template_env.get_template("signature_request_title.txt").render(**context),
            "body": self.template_env.get_template("signature_request_body.txt").render(**context),
        }

    def build_payload(self, signer_id: str, document_id: str, token: str,
                      message: Optional[str] = None, reminder: bool = False,
                      file_name: Optional[str] = None) -> Dict[str, Any]:
        content = self.render(document_id, token, message, reminder, file_name)
        return {
            "userId": signer_id,
            "title": content["title"],
            "body": content["body"],
            "type": "signature_reminder" if reminder else "signature_request",
            "priority": "high",
            "data": {"documentId": document_id, "signingUrl": signing_url(document_id, token)},
        }

    def notify(self, signer_id: str, document_id: str, token: str,
               message: Optional[str] = None, reminder: bool = False,
               file_name: Optional[str] = None) -> None:
        if not self.base_url:
            logger.info(f"Notification service not configured, skipping notice to signer {signer_id}")
            return

        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        payload = self.build_payload(signer_id, document_id, token, message, reminder, file_name)

        url = f"{self.base_url}/api/notifications"
        if self.client is not None:
            response = self.client.post(url, json=payload, headers=headers, timeout=self.timeout)
        else:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(url, json=payload, headers=headers)
        response.raise_for_status()

        logger.info(f"Signing notice sent to signer {signer_id} for document {document_id}")


class CeleryNotifier(Notifier):
    """Queues notices for the Celery worker"""

    def notify(self, signer_id: str, document_id: str, token: str,
               message: Optional[str] = None, reminder: bool = False,
               file_name: Optional[str] = None) -> None:
        from app.tasks.signing_tasks import send_signing_notification_task

        send_signing_notification_task.delay(signer_id, document_id, token, message, reminder, file_name)
        logger.info(f"Signing notice queued for signer {signer_id} on document {document_id}")


def dispatch_notices(notifier: Notifier, notices) -> int:
    """Send notices one by one; failures are logged and never raised"""
    sent = 0
    for notice in notices:
        try:
            notifier.notify(notice.signer_id, notice.document_id, notice.token,
                            message=notice.message, reminder=notice.reminder,
                            file_name=notice.file_name)
            sent += 1
        except Exception as e:
            logger.error(f"Failed to notify signer {notice.signer_id} for document {notice.document_id}: {e}")
    return sent


def build_notifier() -> Notifier:
    """Notifier for the configured backend"""
    if settings.NOTIFICATION_BACKEND == "celery":
        return CeleryNotifier()
    return HttpNotifier()
