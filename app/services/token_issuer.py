"""
Signing token issuance and validation
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from config import settings
from app.models.signing import SignerAssignment
from app.services.signing_errors import InvalidConfiguration, TokenNotFound, TokenAlreadyUsed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime


@dataclass(frozen=True)
class TokenValidation:
    assignment: SignerAssignment
    expired: bool

    @property
    def signer_assignment_id(self) -> str:
        return self.assignment.id


class TokenIssuer:
    """Mints and validates single-use signer tokens.

    Tokens are random URL-safe strings with no relation to the signer or
    document id. Binding a token to its assignment is the caller's job.
    """

    def __init__(
        self,
        allowed_expiration_days: Optional[Iterable[int]] = None,
        token_bytes: Optional[int] = None
    ):
        self.allowed_expiration_days = frozenset(
            allowed_expiration_days or settings.SIGNING_TOKEN_EXPIRATION_DAYS
        )
        self.token_bytes = token_bytes or settings.SIGNING_TOKEN_BYTES

    def check_expiration_days(self, expiration_days) -> int:
        """Reject expiration windows outside the allow-list"""
        if (
            isinstance(expiration_days, bool)
            or not isinstance(expiration_days, int)
            or expiration_days not in self.allowed_expiration_days
        ):
            allowed = ", ".join(str(d) for d in sorted(self.allowed_expiration_days))
            raise InvalidConfiguration(
                f"Token expiration must be one of: {allowed} days",
                field="tokenExpirationDays",
                allowed=sorted(self.allowed_expiration_days),
            )
        return expiration_days

    def issue(self, signer_id: str, expiration_days: int, now: Optional[datetime] = None) -> IssuedToken:
        """Mint a token for one signer"""
        self.check_expiration_days(expiration_days)
        now = now or datetime.utcnow()

        token = secrets.token_urlsafe(self.token_bytes)
        expires_at = now + timedelta(days=expiration_days)

        logger.debug(f"Issued signing token {token[:8]}... for signer {signer_id}, expires {expires_at.isoformat()}")
        return IssuedToken(token=token, expires_at=expires_at)

    def lookup(self, db: Session, token: str) -> SignerAssignment:
        """Find the assignment a token was issued for, whatever its status"""
        assignment = None
        if token:
            assignment = db.query(SignerAssignment).filter(
                SignerAssignment.signing_token == token
            ).first()

        if not assignment:
            logger.warning(f"Unknown signing token {(token or '')[:8]}...")
            raise TokenNotFound()

        return assignment

    def validate(self, db: Session, token: str, now: Optional[datetime] = None) -> TokenValidation:
        """Resolve a token to a still-pending assignment"""
        now = now or datetime.utcnow()
        assignment = self.lookup(db, token)

        if assignment.status.is_terminal:
            logger.warning(
                f"Signing token {assignment.token_hint} reused for assignment {assignment.id} "
                f"in status {assignment.status.value}"
            )
            raise TokenAlreadyUsed(status=assignment.status.value)

        return TokenValidation(assignment=assignment, expired=assignment.is_token_expired(now))
