"""
Typed errors raised by the signing workflow
"""

from typing import Any, Dict, Optional


class SigningError(Exception):
    """Base class for every signing workflow failure.

    ``code`` is the stable error kind the client switches on, ``message`` is
    safe to show to the end user.
    """

    code = "SigningError"
    status_code = 400
    default_message = "The signing request could not be completed"

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.default_message
        self.details: Dict[str, Any] = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, "details": self.details}


# Operator input errors (send for signing)

class NoSigners(SigningError):
    code = "NoSigners"
    default_message = "Select at least one signer"


class DuplicateSigner(SigningError):
    code = "DuplicateSigner"
    default_message = "A signer can only be assigned once per signing request"


class InvalidConfiguration(SigningError):
    code = "InvalidConfiguration"
    default_message = "Invalid signing configuration"


class SignerNotInGroup(SigningError):
    code = "SignerNotInGroup"
    status_code = 403
    default_message = "Every signer must be a member of the document's group"


class SignerMismatch(SigningError):
    code = "SignerMismatch"
    status_code = 403
    default_message = "You can only list your own pending signatures"


class CycleAlreadyOpen(SigningError):
    code = "CycleAlreadyOpen"
    status_code = 409
    default_message = "This document already has an open signing request. Cancel it or wait for it to finish."


# Signer errors (sign / decline)

class TokenNotFound(SigningError):
    code = "TokenNotFound"
    status_code = 404
    default_message = "This signing link is invalid"


class TokenAlreadyUsed(SigningError):
    code = "TokenAlreadyUsed"
    status_code = 409
    default_message = "This document has already been signed with this link"


class TokenExpired(SigningError):
    code = "TokenExpired"
    status_code = 410
    default_message = "This signing link has expired. Request a new one from the document owner."


class NotYourTurn(SigningError):
    code = "NotYourTurn"
    status_code = 409
    default_message = "Waiting for an earlier signer to sign first"


class CycleClosed(SigningError):
    code = "CycleClosed"
    status_code = 409
    default_message = "This signing request is closed. The document owner can start a new one."


class MissingSignature(SigningError):
    code = "MissingSignature"
    default_message = "Please provide your signature"


class InvalidSignatureData(SigningError):
    code = "InvalidSignatureData"
    default_message = "The signature image could not be read"


# Lookup and collaborator errors

class DocumentNotFound(SigningError):
    code = "DocumentNotFound"
    status_code = 404
    default_message = "Document not found"


class CycleNotFound(SigningError):
    code = "CycleNotFound"
    status_code = 404
    default_message = "Signing request not found"


class CollaboratorUnavailable(SigningError):
    code = "CollaboratorUnavailable"
    status_code = 503
    default_message = "A required service is temporarily unavailable. Please try again."
