"""
Pydantic schemas for request/response validation
"""

from .signing import (
    SendForSigningRequest, SendForSigningResponse,
    SignDocumentRequest, SignDocumentResponse,
    DeclineRequest, DeclineResponse,
    CancelSigningRequest, CancelSigningResponse,
    RemindSignersRequest, RemindSignersResponse,
    SignatureDetailResponse, DocumentSignatureStatusResponse,
    PendingSignatureResponse, TokenVerificationResponse,
    SignatureEventResponse, AuditTrailResponse
)

__all__ = [
    "SendForSigningRequest", "SendForSigningResponse",
    "SignDocumentRequest", "SignDocumentResponse",
    "DeclineRequest", "DeclineResponse",
    "CancelSigningRequest", "CancelSigningResponse",
    "RemindSignersRequest", "RemindSignersResponse",
    "SignatureDetailResponse", "DocumentSignatureStatusResponse",
    "PendingSignatureResponse", "TokenVerificationResponse",
    "SignatureEventResponse", "AuditTrailResponse",
]
