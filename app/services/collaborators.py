"""
External collaborators of the signing workflow: document metadata and group membership
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Set

import httpx
from sqlalchemy.orm import Session

from config import settings
from app.models.document import Document
from app.services.signing_errors import CollaboratorUnavailable, DocumentNotFound

logger = logging.getLogger(__name__)


class DocumentStore(ABC):
    """Read-only access to uploaded document metadata"""

    @abstractmethod
    def get_metadata(self, document_id: str) -> Dict[str, Any]:
        """Return ``{"fileName", "size", "groupId"}`` or raise DocumentNotFound"""


class SqlDocumentStore(DocumentStore):
    """Document metadata from the shared ``documents`` table"""

    def __init__(self, db: Session):
        self.db = db

    def get_metadata(self, document_id: str) -> Dict[str, Any]:
        document = self.db.get(Document, document_id)
        if not document:
            raise DocumentNotFound()
        return {
            "fileName": document.file_name,
            "size": document.file_size,
            "groupId": document.group_id,
            "contentType": document.content_type,
        }


class GroupDirectory(ABC):
    """Group membership lookups"""

    @abstractmethod
    def is_member(self, group_id: str, user_id: str) -> bool:
        ...


class HttpGroupDirectory(GroupDirectory):
    """Membership from the group service's ``GET /api/group/{id}`` endpoint.

    Member sets are cached for the lifetime of the instance, which is one
    request.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None
    ):
        self.base_url = (base_url if base_url is not None else settings.GROUP_SERVICE_URL).rstrip("/")
        self.token = token if token is not None else settings.GROUP_SERVICE_TOKEN
        self.timeout = timeout or settings.GROUP_SERVICE_TIMEOUT
        self.client = client
        self._members: Dict[str, Set[str]] = {}

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _fetch_members(self, group_id: str) -> Set[str]:
        if not self.base_url:
            raise CollaboratorUnavailable("Group service is not configured")

        url = f"{self.base_url}/api/group/{group_id}"
        try:
            if self.client is not None:
                response = self.client.get(url, headers=self._headers(), timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.get(url, headers=self._headers())
        except httpx.HTTPError as e:
            logger.error(f"Group service request for group {group_id} failed: {e}")
            raise CollaboratorUnavailable()

        if response.status_code == 404:
            logger.warning(f"Group {group_id} not found in group service")
            return set()
        if response.status_code >= 400:
            logger.error(f"Group service returned {response.status_code} for group {group_id}")
            raise CollaboratorUnavailable()

        members = response.json().get("members") or []
        return {str(m.get("userId")) for m in members if m.get("userId")}

    def is_member(self, group_id: str, user_id: str) -> bool:
        if group_id not in self._members:
            self._members[group_id] = self._fetch_members(group_id)
        return str(user_id) in self._members[group_id]
