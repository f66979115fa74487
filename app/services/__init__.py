"""
Service layer for the CoOwnSign backend
"""

from .audit_service import AuditService
from .signature_service import SignatureService
from .signature_recorder import SignatureRecorder
from .signing_workflow_service import SigningWorkflowService

__all__ = [
    "AuditService",
    "SignatureService",
    "SignatureRecorder",
    "SigningWorkflowService",
]
