"""
Signature recording with turn and token checks
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.models.audit import SignatureEventType
from app.models.document import Document
from app.models.signing import SigningCycle, SignerAssignment, SignatureStatus, SignerStatus
from app.services.audit_service import AuditService
from app.services.order_enforcer import OrderEnforcer
from app.services.signature_service import SignatureService
from app.services.signing_errors import (
    CycleClosed, NotYourTurn, TokenAlreadyUsed, TokenExpired, TokenNotFound
)
from app.services.status_aggregator import StatusAggregator
from app.services.token_issuer import TokenIssuer

logger = logging.getLogger(__name__)


@dataclass
class SignerContext:
    """Request metadata captured alongside a signature"""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_info: Optional[str] = None
    geolocation: Optional[str] = None


@dataclass
class SignDocumentResult:
    assignment: SignerAssignment
    cycle: SigningCycle
    document_status: SignatureStatus
    next_signer_id: Optional[str]

    @property
    def is_complete(self) -> bool:
        return self.document_status == SignatureStatus.FULLY_SIGNED


class SignatureRecorder:
    """Validates a signing attempt and, if valid, records it.

    Checks run before any write. The only write path for a signature is a
    conditional Pending -> Signed update, so at most one call per assignment
    can succeed however many race.
    """

    def __init__(
        self,
        token_issuer: Optional[TokenIssuer] = None,
        order_enforcer: Optional[OrderEnforcer] = None,
        status_aggregator: Optional[StatusAggregator] = None
    ):
        self.token_issuer = token_issuer or TokenIssuer()
        self.order_enforcer = order_enforcer or OrderEnforcer()
        self.status_aggregator = status_aggregator or StatusAggregator()

    @staticmethod
    def lock_document(db: Session, document_id: str) -> Document:
        """Lock the document row. Writers to a document's audit chain hold it."""
        return db.query(Document).filter(
            Document.id == document_id
        ).with_for_update().one()

    def lock_cycle(self, db: Session, cycle_id: str) -> SigningCycle:
        """Lock the document, then the cycle and every sibling assignment.

        Always in that order, so a signature on one cycle and a retirement
        on an older cycle of the same document take turns on the chain.
        """
        document_id = db.query(SigningCycle.document_id).filter(
            SigningCycle.id == cycle_id
        ).scalar()
        if document_id is not None:
            self.lock_document(db, document_id)

        cycle = db.query(SigningCycle).filter(
            SigningCycle.id == cycle_id
        ).populate_existing().with_for_update().one()

        db.query(SignerAssignment).filter(
            SignerAssignment.cycle_id == cycle_id
        ).order_by(SignerAssignment.signing_order).populate_existing().with_for_update().all()

        return cycle

    def transition(
        self,
        db: Session,
        assignment: SignerAssignment,
        new_status: SignerStatus,
        values: Dict[str, Any]
    ) -> bool:
        """Compare-and-swap an assignment out of Pending.

        Returns False when another transaction moved it first.
        """
        values = dict(values, status=new_status, updated_at=datetime.utcnow())
        updated = db.query(SignerAssignment).filter(
            SignerAssignment.id == assignment.id,
            SignerAssignment.status == SignerStatus.PENDING,
        ).update(values, synchronize_session=False)

        db.refresh(assignment)
        return updated == 1

    def expire_assignment(self, db: Session, cycle: SigningCycle, assignment: SignerAssignment, now: datetime) -> bool:
        """Mark a lapsed token's assignment Expired and record it"""
        if not self.transition(db, assignment, SignerStatus.EXPIRED, {"expired_at": now}):
            return False

        AuditService.record_event(
            db,
            document_id=cycle.document_id,
            event_type=SignatureEventType.TOKEN_EXPIRED,
            cycle_id=cycle.id,
            assignment_id=assignment.id,
            actor_id=assignment.signer_id,
            details={"signer_id": assignment.signer_id, "token_expires_at": assignment.token_expires_at},
            now=now,
        )
        logger.info(f"Signing token {assignment.token_hint} for signer {assignment.signer_id} expired")
        return True

    def close_if_terminal(self, db: Session, cycle: SigningCycle, document: Document, now: datetime) -> SignatureStatus:
        """Recompute the aggregate and log the closing event when it became terminal"""
        was_open = cycle.closed_at is None
        status = self.status_aggregator.apply(cycle, document, now)

        if was_open and status.is_terminal:
            event_type = {
                SignatureStatus.FULLY_SIGNED: SignatureEventType.FULLY_SIGNED,
                SignatureStatus.EXPIRED: SignatureEventType.CYCLE_EXPIRED,
                SignatureStatus.CANCELLED: SignatureEventType.CANCELLED,
            }[status]
            AuditService.record_event(
                db,
                document_id=document.id,
                event_type=event_type,
                cycle_id=cycle.id,
                actor_id=cycle.cancelled_by,
                details={
                    "signed_count": cycle.signed_count,
                    "total_signers": cycle.total_signers,
                    "reason": cycle.cancel_reason,
                },
                now=now,
            )
        return status

    def resolve_token(
        self,
        db: Session,
        token: str,
        now: Optional[datetime] = None,
        document_id: Optional[str] = None
    ):
        """Validate a token, reporting a lapsed one as expired even after a sweep retired it.

        A token presented against another document is unknown there, whatever
        its state.
        """
        assignment = self.token_issuer.lookup(db, token)
        if document_id is not None and assignment.cycle.document_id != document_id:
            raise TokenNotFound()
        if assignment.status == SignerStatus.EXPIRED and assignment.is_token_expired(now or datetime.utcnow()):
            raise TokenExpired(expired_at=assignment.token_expires_at.isoformat())
        return self.token_issuer.validate(db, token, now)

    def check_attempt(
        self,
        db: Session,
        token: str,
        document_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> SignerAssignment:
        """Run the token, expiration, open-cycle and turn checks (steps 1-4).

        Leaves the cycle and its assignments locked. A lapsed token is moved
        to Expired and committed before TokenExpired is raised.
        """
        now = now or datetime.utcnow()

        validation = self.resolve_token(db, token, now, document_id=document_id)
        assignment = validation.assignment

        cycle = self.lock_cycle(db, assignment.cycle_id)
        if document_id is not None and cycle.document_id != document_id:
            db.rollback()
            raise TokenNotFound()

        if assignment.status.is_terminal:
            db.rollback()
            raise TokenAlreadyUsed(status=assignment.status.value)

        if assignment.is_token_expired(now):
            document = db.get(Document, cycle.document_id)
            self.expire_assignment(db, cycle, assignment, now)
            self.close_if_terminal(db, cycle, document, now)
            db.commit()
            raise TokenExpired(expired_at=assignment.token_expires_at.isoformat())

        if not self.order_enforcer.cycle_accepts_signatures(cycle, now):
            if cycle.closed_at is None:
                # Past due: close it now so every reader sees Expired
                document = db.get(Document, cycle.document_id)
                self.close_if_terminal(db, cycle, document, now)
                db.commit()
            else:
                db.rollback()
            raise CycleClosed(status=cycle.status.value)

        if not self.order_enforcer.can_sign(cycle, assignment, now):
            blocking = self.order_enforcer.blocking_assignment(cycle, assignment)
            db.rollback()
            raise NotYourTurn(
                f"Waiting for signer {blocking.signing_order} to sign first" if blocking else None,
                waiting_for_signer_id=blocking.signer_id if blocking else None,
                waiting_for_order=blocking.signing_order if blocking else None,
                signed_count=cycle.signed_count,
                total_signers=cycle.total_signers,
            )

        return assignment

    def record_signature(
        self,
        db: Session,
        token: str,
        signature_payload: Optional[str],
        context: Optional[SignerContext] = None,
        document_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> SignDocumentResult:
        now = now or datetime.utcnow()
        context = context or SignerContext()

        assignment = self.check_attempt(db, token, document_id, now)
        cycle = assignment.cycle

        # Step 5: signature must be present (and an image)
        try:
            rendered = SignatureService.render(signature_payload)
        except Exception:
            db.rollback()
            raise

        # Step 6: the only mutation
        try:
            claimed = self.transition(db, assignment, SignerStatus.SIGNED, {
                "signed_at": now,
                "token_used_at": now,
                "signature_data": rendered.data_url,
                "signature_hash": rendered.sha256,
                "signature_metadata": rendered.metadata,
                "ip_address": context.ip_address,
                "user_agent": context.user_agent,
                "device_info": context.device_info,
                "geolocation": context.geolocation,
            })
            if not claimed:
                db.rollback()
                logger.warning(f"Concurrent signature on assignment {assignment.id} lost the race")
                raise TokenAlreadyUsed()

            AuditService.record_event(
                db,
                document_id=cycle.document_id,
                event_type=SignatureEventType.SIGNED,
                cycle_id=cycle.id,
                assignment_id=assignment.id,
                actor_id=assignment.signer_id,
                ip_address=context.ip_address,
                details={
                    "signer_id": assignment.signer_id,
                    "signing_order": assignment.signing_order,
                    "signature_hash": rendered.sha256,
                    "geolocation": context.geolocation,
                },
                now=now,
            )

            # Step 7: recompute aggregate
            document = db.get(Document, cycle.document_id)
            status = self.close_if_terminal(db, cycle, document, now)

            # Step 8: who is next
            next_signer = None
            if not status.is_terminal:
                next_assignment = self.order_enforcer.next_signer(cycle, now)
                next_signer = next_assignment.signer_id if next_assignment else None

            db.commit()
        except TokenAlreadyUsed:
            raise
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to record signature for assignment {assignment.id}: {e}")
            raise

        logger.info(
            f"Signer {assignment.signer_id} signed document {cycle.document_id} "
            f"({cycle.signed_count}/{cycle.total_signers})"
        )
        return SignDocumentResult(
            assignment=assignment,
            cycle=cycle,
            document_status=status,
            next_signer_id=next_signer,
        )

