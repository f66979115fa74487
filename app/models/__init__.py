"""
Database models for CoOwnSign
"""

from .signing import (
    SigningCycle, SignerAssignment, SigningMode, SignatureStatus, SignerStatus,
    TERMINAL_STATUSES
)
from .document import Document
from .audit import SignatureEvent, SignatureEventType

__all__ = [
    "Document",
    "SigningCycle",
    "SignerAssignment",
    "SigningMode",
    "SignatureStatus",
    "SignerStatus",
    "TERMINAL_STATUSES",
    "SignatureEvent",
    "SignatureEventType",
]
