"""
Signing workflow Pydantic schemas
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, validator
from pydantic.alias_generators import to_camel

from app.models.signing import SigningMode, SignatureStatus, SignerStatus
from app.models.audit import SignatureEventType
from config import settings


SIGNING_MODE_CODES = {0: SigningMode.PARALLEL, 1: SigningMode.SEQUENTIAL}


class CamelModel(BaseModel):
    """Base schema using the camelCase field names of the web client"""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class SendForSigningRequest(CamelModel):
    """Send for signing request schema"""
    signer_ids: List[str] = Field(default_factory=list)
    signing_mode: SigningMode = SigningMode.PARALLEL
    due_date: Optional[datetime] = None
    message: Optional[str] = Field(None, max_length=1000)
    token_expiration_days: int = settings.DEFAULT_TOKEN_EXPIRATION_DAYS

    @validator("signing_mode", pre=True)
    def accept_numeric_mode(cls, v):
        """Existing clients send 0 (parallel) / 1 (sequential)"""
        if isinstance(v, int) and not isinstance(v, bool):
            if v not in SIGNING_MODE_CODES:
                raise ValueError("signingMode must be 0 (parallel) or 1 (sequential)")
            return SIGNING_MODE_CODES[v]
        if isinstance(v, str):
            return v.lower()
        return v

    @validator("due_date")
    def normalise_due_date(cls, v):
        return to_naive_utc(v)

    @validator("signer_ids", each_item=True)
    def strip_signer_id(cls, v):
        return v.strip()


class SendForSigningResponse(CamelModel):
    """Send for signing response schema"""
    document_id: str
    cycle_id: str
    status: SignatureStatus
    signing_mode: SigningMode
    total_signers: int
    message: str
    signing_tokens: Dict[str, str]


class SignDocumentRequest(CamelModel):
    """Signature submission schema"""
    signature_data: Optional[str] = None  # Base64 encoded canvas image
    signing_token: str
    device_info: Optional[str] = Field(None, max_length=1000)
    location: Optional[str] = Field(None, max_length=100)  # "lat,lng"


class SignDocumentResponse(CamelModel):
    """Signature submission response schema"""
    document_id: str
    signature_id: str
    signer_id: str
    signed_at: datetime
    status: SignatureStatus
    is_complete: bool
    next_signer_id: Optional[str] = None
    message: str


class DeclineRequest(CamelModel):
    signing_token: str
    reason: Optional[str] = Field(None, max_length=1000)


class DeclineResponse(CamelModel):
    document_id: str
    signer_id: str
    status: SignatureStatus
    message: str


class CancelSigningRequest(CamelModel):
    reason: Optional[str] = Field(None, max_length=1000)


class CancelSigningResponse(CamelModel):
    document_id: str
    cycle_id: str
    status: SignatureStatus
    message: str


class RemindSignersRequest(CamelModel):
    signer_ids: Optional[List[str]] = None


class RemindSignersResponse(CamelModel):
    document_id: str
    reminders_sent: int
    signer_ids: List[str]


class SignatureDetailResponse(CamelModel):
    """Per-signer detail in a status response"""
    id: str
    document_id: str
    signer_id: str
    status: SignerStatus
    signature_order: int
    signed_at: Optional[datetime] = None
    token_expires_at: datetime
    ip_address: Optional[str] = None
    device_info: Optional[str] = None
    geolocation: Optional[str] = None
    is_current_signer: bool
    is_pending: bool


class DocumentSignatureStatusResponse(CamelModel):
    """Full signature status of a document"""
    document_id: str
    file_name: str
    file_size: int
    cycle_id: Optional[str] = None
    status: SignatureStatus
    signing_mode: Optional[SigningMode] = None
    total_signers: int = 0
    signed_count: int = 0
    progress_percentage: float = 0.0
    due_date: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    signatures: List[SignatureDetailResponse] = Field(default_factory=list)


class PendingSignatureResponse(CamelModel):
    """One entry in a signer's inbox"""
    document_id: str
    group_id: str
    file_name: str
    description: Optional[str] = None
    cycle_id: str
    signing_token: str
    signing_mode: SigningMode
    signature_order: int
    total_signers: int
    message: Optional[str] = None
    due_date: Optional[datetime] = None
    token_expires_at: datetime
    sent_at: datetime
    is_my_turn: bool


class TokenVerificationResponse(CamelModel):
    """Result of checking a signing link before showing the signing page"""
    is_valid: bool
    document_id: str
    file_name: str
    signer_id: str
    signature_order: int
    expires_at: datetime
    is_my_turn: bool
    status: SignatureStatus


class SignatureEventResponse(CamelModel):
    """Audit trail entry"""
    id: str
    sequence: int
    event_type: SignatureEventType
    cycle_id: Optional[str] = None
    assignment_id: Optional[str] = None
    actor_id: Optional[str] = None
    ip_address: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    previous_hash: Optional[str] = None
    event_hash: str
    created_at: datetime


class AuditTrailResponse(CamelModel):
    document_id: str
    is_valid: bool
    broken_at: Optional[int] = None
    events: List[SignatureEventResponse]
