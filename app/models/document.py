"""
Document model and related functionality
"""

import uuid

from sqlalchemy import Column, Integer, String, DateTime, Text, Enum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from database import Base
from app.models.signing import SignatureStatus


class Document(Base):
    """Uploaded group document that can be sent for signing.

    Rows are written by the upload subsystem. The signing workflow only reads
    the file metadata and maintains ``signature_status``, which is a cache of
    the latest signing cycle's aggregate status and is never set by clients.
    """
    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    group_id = Column(String(36), nullable=False, index=True)

    # File information
    file_name = Column(String(255), nullable=False)
    file_size = Column(Integer, nullable=False, default=0)  # bytes
    content_type = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    uploaded_by = Column(String(36), nullable=True)

    # Signing
    signature_status = Column(Enum(SignatureStatus), nullable=False, default=SignatureStatus.DRAFT)
    latest_cycle_id = Column(String(36), nullable=True)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    signing_cycles = relationship(
        "SigningCycle",
        back_populates="document",
        order_by="SigningCycle.created_at",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<Document(id={self.id}, file_name='{self.file_name}', status={self.signature_status})>"
