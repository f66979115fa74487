"""
Signature audit trail model
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Enum, UniqueConstraint

from database import Base


class SignatureEventType(str, enum.Enum):
    """Signing audit event type enumeration"""
    SENT_FOR_SIGNING = "sent_for_signing"
    SIGNED = "signed"
    DECLINED = "declined"
    TOKEN_EXPIRED = "token_expired"
    CYCLE_EXPIRED = "cycle_expired"
    CANCELLED = "cancelled"
    REMINDER_SENT = "reminder_sent"
    FULLY_SIGNED = "fully_signed"


class SignatureEvent(Base):
    """Append-only, hash-chained record of a signing state change.

    Each event stores the hash of the previous event for the same document, so
    rewriting or deleting any row breaks every hash after it.
    """
    __tablename__ = "signature_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    document_id = Column(String(36), ForeignKey("documents.id"), nullable=False, index=True)
    cycle_id = Column(String(36), ForeignKey("signing_cycles.id"), nullable=True, index=True)
    assignment_id = Column(String(36), ForeignKey("signer_assignments.id"), nullable=True)

    sequence = Column(Integer, nullable=False)
    event_type = Column(Enum(SignatureEventType), nullable=False, index=True)
    actor_id = Column(String(36), nullable=True)
    ip_address = Column(String(45), nullable=True)
    details = Column(JSON, nullable=True)

    previous_hash = Column(String(64), nullable=True)
    event_hash = Column(String(64), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("document_id", "sequence", name="uq_signature_events_document_sequence"),
    )

    def __repr__(self):
        return f"<SignatureEvent(document_id={self.document_id}, sequence={self.sequence}, type={self.event_type})>"
