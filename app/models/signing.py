"""
Signing cycle and signer assignment models
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, DateTime, Text, ForeignKey, JSON, Enum,
    Index, UniqueConstraint, text
)
from sqlalchemy.orm import relationship

from database import Base


class SigningMode(str, enum.Enum):
    """Ordering policy of a signing cycle"""
    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"


class SignatureStatus(str, enum.Enum):
    """Aggregate signature status of a document / signing cycle"""
    DRAFT = "draft"
    SENT_FOR_SIGNING = "sent_for_signing"
    PARTIALLY_SIGNED = "partially_signed"
    FULLY_SIGNED = "fully_signed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    SignatureStatus.FULLY_SIGNED,
    SignatureStatus.EXPIRED,
    SignatureStatus.CANCELLED,
})


class SignerStatus(str, enum.Enum):
    """Status of one signer's obligation within a cycle"""
    PENDING = "pending"
    SIGNED = "signed"
    EXPIRED = "expired"
    DECLINED = "declined"

    @property
    def is_terminal(self) -> bool:
        return self != SignerStatus.PENDING


class SigningCycle(Base):
    """One send-for-signing request against a document"""
    __tablename__ = "signing_cycles"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    document_id = Column(String(36), ForeignKey("documents.id"), nullable=False, index=True)

    # Configuration
    signing_mode = Column(Enum(SigningMode), nullable=False, default=SigningMode.PARALLEL)
    due_date = Column(DateTime, nullable=True)
    token_expiration_days = Column(Integer, nullable=False)
    message = Column(Text, nullable=True)
    created_by = Column(String(36), nullable=True)

    # Cached aggregate, recomputed after every mutation
    status = Column(Enum(SignatureStatus), nullable=False, default=SignatureStatus.SENT_FOR_SIGNING)

    # Closure
    closed_at = Column(DateTime, nullable=True)
    cancelled_by = Column(String(36), nullable=True)
    cancel_reason = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    document = relationship("Document", back_populates="signing_cycles")
    assignments = relationship(
        "SignerAssignment",
        back_populates="cycle",
        order_by="SignerAssignment.signing_order",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        # At most one open cycle per document
        Index(
            "uq_signing_cycles_open_document",
            "document_id",
            unique=True,
            postgresql_where=text("closed_at IS NULL"),
            sqlite_where=text("closed_at IS NULL"),
        ),
    )

    def __repr__(self):
        return f"<SigningCycle(id={self.id}, document_id={self.document_id}, status={self.status})>"

    @property
    def is_open(self) -> bool:
        return self.closed_at is None and not self.status.is_terminal

    def is_past_due(self, now: datetime) -> bool:
        return self.due_date is not None and now > self.due_date

    @property
    def total_signers(self) -> int:
        return len(self.assignments)

    @property
    def signed_count(self) -> int:
        return sum(1 for a in self.assignments if a.status == SignerStatus.SIGNED)


class SignerAssignment(Base):
    """One signer's obligation within a signing cycle"""
    __tablename__ = "signer_assignments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    cycle_id = Column(String(36), ForeignKey("signing_cycles.id", ondelete="CASCADE"), nullable=False, index=True)
    signer_id = Column(String(36), nullable=False, index=True)
    signing_order = Column(Integer, nullable=False)  # 1-based
    status = Column(Enum(SignerStatus), nullable=False, default=SignerStatus.PENDING)

    # Single-use signing token
    signing_token = Column(String(128), nullable=False, unique=True, index=True)
    token_expires_at = Column(DateTime, nullable=False)
    token_used_at = Column(DateTime, nullable=True)

    # Signature data
    signed_at = Column(DateTime, nullable=True)
    signature_data = Column(Text, nullable=True)  # Rendered signature as data URL
    signature_hash = Column(String(64), nullable=True)  # SHA256 of submitted image bytes
    signature_metadata = Column(JSON, nullable=True)  # width, height, format

    # Audit metadata captured at signing time
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    device_info = Column(Text, nullable=True)  # JSON device information
    geolocation = Column(String(100), nullable=True)  # "lat,lng" format

    # Other terminal transitions
    expired_at = Column(DateTime, nullable=True)
    declined_at = Column(DateTime, nullable=True)
    decline_reason = Column(Text, nullable=True)

    # Reminders
    last_notified_at = Column(DateTime, nullable=True)
    reminder_count = Column(Integer, nullable=False, default=0)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    cycle = relationship("SigningCycle", back_populates="assignments")

    __table_args__ = (
        UniqueConstraint("cycle_id", "signer_id", name="uq_signer_assignments_cycle_signer"),
        UniqueConstraint("cycle_id", "signing_order", name="uq_signer_assignments_cycle_order"),
    )

    def __repr__(self):
        return f"<SignerAssignment(id={self.id}, signer_id={self.signer_id}, order={self.signing_order}, status={self.status})>"

    def is_token_expired(self, now: datetime) -> bool:
        return now > self.token_expires_at

    @property
    def token_hint(self) -> str:
        """Token prefix that is safe to log"""
        return f"{self.signing_token[:8]}..."
