"""
Signing workflow orchestration: send, sign, decline, cancel, remind and status
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import settings
from app.models.audit import SignatureEventType
from app.models.document import Document
from app.models.signing import (
    SigningCycle, SignerAssignment, SigningMode, SignatureStatus, SignerStatus
)
from app.schemas.signing import (
    AuditTrailResponse, DocumentSignatureStatusResponse, PendingSignatureResponse,
    SignatureDetailResponse, SignatureEventResponse, TokenVerificationResponse
)
from app.services.audit_service import AuditService
from app.services.collaborators import (
    DocumentStore, GroupDirectory, HttpGroupDirectory, SqlDocumentStore
)
from app.services.notification_service import Notifier, SigningNotice, dispatch_notices
from app.services.order_enforcer import OrderEnforcer
from app.services.signature_recorder import SignatureRecorder, SignDocumentResult, SignerContext
from app.services.signing_errors import (
    CycleAlreadyOpen, CycleClosed, CycleNotFound, DocumentNotFound, DuplicateSigner,
    InvalidConfiguration, NoSigners, SignerNotInGroup, TokenAlreadyUsed, TokenExpired,
    TokenNotFound
)
from app.services.status_aggregator import StatusAggregator
from app.services.token_issuer import TokenIssuer

logger = logging.getLogger(__name__)


@dataclass
class SendForSigningResult:
    cycle: SigningCycle
    signing_tokens: Dict[str, str]
    notices: List[SigningNotice] = field(default_factory=list)


@dataclass
class SignOutcome:
    result: SignDocumentResult
    message: str
    notices: List[SigningNotice] = field(default_factory=list)


@dataclass
class DeclineOutcome:
    assignment: SignerAssignment
    cycle: SigningCycle
    document_status: SignatureStatus


class SigningWorkflowService:
    """Entry point for every signing operation.

    Each mutating method runs in one transaction and ends by recomputing the
    cycle's aggregate status. Notifications are never sent from here: the
    methods return the notices to send and the caller dispatches them after
    the transaction has committed.
    """

    def __init__(
        self,
        db: Session,
        document_store: Optional[DocumentStore] = None,
        group_directory: Optional[GroupDirectory] = None,
        notifier: Optional[Notifier] = None,
        token_issuer: Optional[TokenIssuer] = None,
        order_enforcer: Optional[OrderEnforcer] = None,
        status_aggregator: Optional[StatusAggregator] = None,
        recorder: Optional[SignatureRecorder] = None
    ):
        self.db = db
        self.document_store = document_store or SqlDocumentStore(db)
        self.group_directory = group_directory or HttpGroupDirectory()
        self.notifier = notifier
        self.token_issuer = token_issuer or TokenIssuer()
        self.order_enforcer = order_enforcer or OrderEnforcer()
        self.status_aggregator = status_aggregator or StatusAggregator()
        self.recorder = recorder or SignatureRecorder(
            self.token_issuer, self.order_enforcer, self.status_aggregator
        )

    # Lookups

    def _get_document(self, document_id: str, for_update: bool = False) -> Document:
        query = self.db.query(Document).filter(Document.id == document_id)
        if for_update:
            query = query.with_for_update()
        document = query.first()
        if not document:
            raise DocumentNotFound(document_id=document_id)
        return document

    def _open_cycle(self, document_id: str) -> Optional[SigningCycle]:
        return self.db.query(SigningCycle).filter(
            SigningCycle.document_id == document_id,
            SigningCycle.closed_at.is_(None)
        ).first()

    def _latest_cycle(self, document: Document) -> Optional[SigningCycle]:
        if document.latest_cycle_id:
            cycle = self.db.get(SigningCycle, document.latest_cycle_id)
            if cycle:
                return cycle
        return self.db.query(SigningCycle).filter(
            SigningCycle.document_id == document.id
        ).order_by(SigningCycle.created_at.desc()).first()

    def _file_name(self, document_id: str) -> Optional[str]:
        try:
            return self.document_store.get_metadata(document_id).get("fileName")
        except DocumentNotFound:
            return None

    def refresh_cycle(self, cycle: SigningCycle, document: Document, now: Optional[datetime] = None) -> bool:
        """Apply lazy expiration to an open cycle.

        Retires lapsed tokens and closes the cycle when it is past due or has
        no live signer left. Commits and returns True when anything changed.
        """
        now = now or datetime.utcnow()
        if cycle.closed_at is not None:
            return False

        stale = any(
            a.status == SignerStatus.PENDING and a.is_token_expired(now)
            for a in cycle.assignments
        )
        if not stale and self.status_aggregator.recompute(cycle, now) == cycle.status:
            return False

        try:
            cycle = self.recorder.lock_cycle(self.db, cycle.id)
            if cycle.closed_at is not None:
                self.db.rollback()
                return False

            for assignment in cycle.assignments:
                if assignment.status == SignerStatus.PENDING and assignment.is_token_expired(now):
                    self.recorder.expire_assignment(self.db, cycle, assignment, now)

            self.recorder.close_if_terminal(self.db, cycle, document, now)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to refresh signing cycle {cycle.id}: {e}")
            raise

        return True

    # Operator operations

    def send_for_signing(
        self,
        document_id: str,
        signer_ids: List[str],
        signing_mode: SigningMode,
        token_expiration_days: int,
        due_date: Optional[datetime] = None,
        message: Optional[str] = None,
        operator_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> SendForSigningResult:
        """Open a signing cycle with one assignment per signer.

        The signer list order is the signing order. Every validation runs
        before anything is written, so a rejected request leaves no trace.
        """
        now = now or datetime.utcnow()
        signer_ids = [str(s).strip() for s in (signer_ids or [])]

        if not signer_ids:
            raise NoSigners()
        if any(not s for s in signer_ids):
            raise InvalidConfiguration("Signer ids must not be empty", field="signerIds")

        duplicates = sorted(s for s, count in Counter(signer_ids).items() if count > 1)
        if duplicates:
            raise DuplicateSigner(signer_ids=duplicates)

        if len(signer_ids) > settings.MAX_SIGNERS_PER_CYCLE:
            raise InvalidConfiguration(
                f"A signing request can have at most {settings.MAX_SIGNERS_PER_CYCLE} signers",
                field="signerIds",
            )

        try:
            signing_mode = SigningMode(signing_mode)
        except ValueError:
            raise InvalidConfiguration("Unknown signing mode", field="signingMode")

        self.token_issuer.check_expiration_days(token_expiration_days)

        if due_date is not None and due_date <= now:
            raise InvalidConfiguration("The due date must be in the future", field="dueDate")

        metadata = self.document_store.get_metadata(document_id)
        outsiders = [
            s for s in signer_ids
            if not self.group_directory.is_member(metadata["groupId"], s)
        ]
        if outsiders:
            raise SignerNotInGroup(signer_ids=outsiders)

        # Serialise concurrent send-for-signing calls on the same document
        document = self._get_document(document_id, for_update=True)

        open_cycle = self._open_cycle(document_id)
        if open_cycle is not None:
            self.refresh_cycle(open_cycle, document, now)
            if open_cycle.closed_at is None:
                self.db.rollback()
                raise CycleAlreadyOpen(cycle_id=open_cycle.id)
            document = self._get_document(document_id, for_update=True)

        cycle = SigningCycle(
            document_id=document_id,
            signing_mode=signing_mode,
            due_date=due_date,
            token_expiration_days=token_expiration_days,
            message=message,
            created_by=operator_id,
            status=SignatureStatus.SENT_FOR_SIGNING,
            created_at=now,
            updated_at=now,
        )
        signing_tokens = {}
        for index, signer_id in enumerate(signer_ids):
            issued = self.token_issuer.issue(signer_id, token_expiration_days, now)
            cycle.assignments.append(SignerAssignment(
                signer_id=signer_id,
                signing_order=index + 1,
                status=SignerStatus.PENDING,
                signing_token=issued.token,
                token_expires_at=issued.expires_at,
                reminder_count=0,
                created_at=now,
                updated_at=now,
            ))
            signing_tokens[signer_id] = issued.token

        try:
            self.db.add(cycle)
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            logger.warning(f"Concurrent send-for-signing on document {document_id} rejected")
            raise CycleAlreadyOpen()

        try:
            document.latest_cycle_id = cycle.id
            status = self.status_aggregator.apply(cycle, document, now)

            AuditService.record_event(
                self.db,
                document_id=document_id,
                event_type=SignatureEventType.SENT_FOR_SIGNING,
                cycle_id=cycle.id,
                actor_id=operator_id,
                details={
                    "signer_ids": signer_ids,
                    "signing_mode": signing_mode.value,
                    "token_expiration_days": token_expiration_days,
                    "due_date": due_date,
                },
                now=now,
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to open signing cycle for document {document_id}: {e}")
            raise

        self.db.refresh(cycle)
        logger.info(
            f"Document {document_id} sent for {signing_mode.value} signing to "
            f"{len(signer_ids)} signer(s), cycle {cycle.id}, status {status.value}"
        )

        if signing_mode == SigningMode.SEQUENTIAL:
            first = cycle.assignments[:1]
        else:
            first = cycle.assignments
        notices = [
            SigningNotice(a.signer_id, document_id, a.signing_token,
                          message=message, file_name=metadata.get("fileName"))
            for a in first
        ]
        return SendForSigningResult(cycle=cycle, signing_tokens=signing_tokens, notices=notices)

    def cancel(
        self,
        cycle_id: str,
        reason: Optional[str] = None,
        operator_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> SigningCycle:
        """Close an open cycle as Cancelled, retiring every outstanding token"""
        now = now or datetime.utcnow()

        if not self.db.query(SigningCycle.id).filter(SigningCycle.id == cycle_id).first():
            raise CycleNotFound(cycle_id=cycle_id)

        try:
            cycle = self.recorder.lock_cycle(self.db, cycle_id)
            document = self.db.get(Document, cycle.document_id)

            if cycle.is_open and cycle.is_past_due(now):
                self.recorder.close_if_terminal(self.db, cycle, document, now)
                self.db.commit()
                raise CycleClosed(status=cycle.status.value)

            if not cycle.is_open:
                self.db.rollback()
                raise CycleClosed(status=cycle.status.value)

            cycle.cancelled_by = operator_id
            cycle.cancel_reason = reason or "Cancelled by the document owner"
            self.recorder.close_if_terminal(self.db, cycle, document, now)
            self.db.commit()
        except CycleClosed:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to cancel signing cycle {cycle_id}: {e}")
            raise

        logger.info(f"Signing cycle {cycle_id} cancelled by {operator_id}")
        return cycle

    def cancel_for_document(
        self,
        document_id: str,
        reason: Optional[str] = None,
        operator_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> SigningCycle:
        self._get_document(document_id)
        cycle = self._open_cycle(document_id)
        if cycle is None:
            raise CycleNotFound("This document has no open signing request", document_id=document_id)
        return self.cancel(cycle.id, reason=reason, operator_id=operator_id, now=now)

    def remind(
        self,
        document_id: str,
        signer_ids: Optional[Iterable[str]] = None,
        operator_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> List[SigningNotice]:
        """Re-notify the signers whose turn it is"""
        now = now or datetime.utcnow()
        document = self._get_document(document_id)

        cycle = self._open_cycle(document_id)
        if cycle is not None:
            self.refresh_cycle(cycle, document, now)
        if cycle is None or cycle.closed_at is not None:
            raise CycleClosed("This document has no open signing request")

        wanted = set(signer_ids) if signer_ids else None
        targets = [
            a for a in self.order_enforcer.current_signers(cycle, now)
            if wanted is None or a.signer_id in wanted
        ]

        try:
            self.recorder.lock_document(self.db, document_id)
            for assignment in targets:
                assignment.last_notified_at = now
                assignment.reminder_count = (assignment.reminder_count or 0) + 1
                AuditService.record_event(
                    self.db,
                    document_id=document_id,
                    event_type=SignatureEventType.REMINDER_SENT,
                    cycle_id=cycle.id,
                    assignment_id=assignment.id,
                    actor_id=operator_id,
                    details={"signer_id": assignment.signer_id, "reminder_count": assignment.reminder_count},
                    now=now,
                )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to record reminders for document {document_id}: {e}")
            raise

        logger.info(f"Queued {len(targets)} signing reminder(s) for document {document_id}")
        return [
            SigningNotice(a.signer_id, document_id, a.signing_token, message=cycle.message,
                          reminder=True, file_name=document.file_name)
            for a in targets
        ]

    # Signer operations

    def sign(
        self,
        token: str,
        signature_payload: Optional[str],
        context: Optional[SignerContext] = None,
        document_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> SignOutcome:
        now = now or datetime.utcnow()
        result = self.recorder.record_signature(
            self.db, token, signature_payload, context=context, document_id=document_id, now=now
        )
        return SignOutcome(
            result=result,
            message=self.completion_message(result),
            notices=self._notices_after_signature(result, now),
        )

    def _notices_after_signature(self, result: SignDocumentResult, now: Optional[datetime] = None) -> List[SigningNotice]:
        if result.document_status.is_terminal:
            return []

        cycle = result.cycle
        if cycle.signing_mode == SigningMode.SEQUENTIAL:
            recipients = [
                a for a in cycle.assignments if a.signer_id == result.next_signer_id
            ]
        else:
            recipients = self.order_enforcer.current_signers(cycle, now)

        file_name = self._file_name(cycle.document_id)
        return [
            SigningNotice(a.signer_id, cycle.document_id, a.signing_token,
                          message=cycle.message, file_name=file_name)
            for a in recipients
        ]

    @staticmethod
    def completion_message(result: SignDocumentResult) -> str:
        cycle = result.cycle
        if result.is_complete:
            return "All signatures collected. The document is fully signed."
        if result.next_signer_id:
            return (
                f"Signature recorded ({cycle.signed_count} of {cycle.total_signers}). "
                f"The next signer has been notified."
            )
        return f"Signature recorded. {cycle.signed_count} of {cycle.total_signers} signers have signed."

    def decline(
        self,
        token: str,
        reason: Optional[str] = None,
        context: Optional[SignerContext] = None,
        document_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> DeclineOutcome:
        """Refuse to sign. The cycle can no longer complete, so it closes as Cancelled."""
        now = now or datetime.utcnow()
        context = context or SignerContext()

        assignment = self.recorder.check_attempt(self.db, token, document_id, now)
        cycle = assignment.cycle

        try:
            claimed = self.recorder.transition(self.db, assignment, SignerStatus.DECLINED, {
                "declined_at": now,
                "decline_reason": reason,
                "token_used_at": now,
                "ip_address": context.ip_address,
                "user_agent": context.user_agent,
                "device_info": context.device_info,
                "geolocation": context.geolocation,
            })
            if not claimed:
                self.db.rollback()
                raise TokenAlreadyUsed()

            AuditService.record_event(
                self.db,
                document_id=cycle.document_id,
                event_type=SignatureEventType.DECLINED,
                cycle_id=cycle.id,
                assignment_id=assignment.id,
                actor_id=assignment.signer_id,
                ip_address=context.ip_address,
                details={"signer_id": assignment.signer_id, "reason": reason},
                now=now,
            )

            cycle.cancelled_by = assignment.signer_id
            cycle.cancel_reason = f"Declined by signer {assignment.signer_id}" + (f": {reason}" if reason else "")
            document = self.db.get(Document, cycle.document_id)
            status = self.recorder.close_if_terminal(self.db, cycle, document, now)
            self.db.commit()
        except TokenAlreadyUsed:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to record decline for assignment {assignment.id}: {e}")
            raise

        logger.info(f"Signer {assignment.signer_id} declined document {cycle.document_id}")
        return DeclineOutcome(assignment=assignment, cycle=cycle, document_status=status)

    def verify_token(self, document_id: str, token: str, now: Optional[datetime] = None) -> TokenVerificationResponse:
        """Read-only check behind the signing page"""
        now = now or datetime.utcnow()

        validation = self.recorder.resolve_token(self.db, token, now, document_id=document_id)
        assignment = validation.assignment
        cycle = assignment.cycle
        if cycle.document_id != document_id:
            raise TokenNotFound()
        if validation.expired:
            raise TokenExpired(expired_at=assignment.token_expires_at.isoformat())

        accepting = self.order_enforcer.cycle_accepts_signatures(cycle, now)
        return TokenVerificationResponse(
            is_valid=accepting,
            document_id=document_id,
            file_name=cycle.document.file_name,
            signer_id=assignment.signer_id,
            signature_order=assignment.signing_order,
            expires_at=assignment.token_expires_at,
            is_my_turn=self.order_enforcer.can_sign(cycle, assignment, now),
            status=self.status_aggregator.recompute(cycle, now),
        )

    # Reads

    def get_status(self, document_id: str, now: Optional[datetime] = None) -> DocumentSignatureStatusResponse:
        now = now or datetime.utcnow()
        metadata = self.document_store.get_metadata(document_id)
        document = self._get_document(document_id)

        cycle = self._latest_cycle(document)
        if cycle is None:
            return DocumentSignatureStatusResponse(
                document_id=document_id,
                file_name=metadata["fileName"],
                file_size=metadata["size"],
                status=SignatureStatus.DRAFT,
            )

        self.refresh_cycle(cycle, document, now)

        total = cycle.total_signers
        signed = cycle.signed_count
        signatures = [
            SignatureDetailResponse(
                id=a.id,
                document_id=document_id,
                signer_id=a.signer_id,
                status=a.status,
                signature_order=a.signing_order,
                signed_at=a.signed_at,
                token_expires_at=a.token_expires_at,
                ip_address=a.ip_address,
                device_info=a.device_info,
                geolocation=a.geolocation,
                is_current_signer=self.order_enforcer.can_sign(cycle, a, now),
                is_pending=a.status == SignerStatus.PENDING,
            )
            for a in cycle.assignments
        ]

        return DocumentSignatureStatusResponse(
            document_id=document_id,
            file_name=metadata["fileName"],
            file_size=metadata["size"],
            cycle_id=cycle.id,
            status=cycle.status,
            signing_mode=cycle.signing_mode,
            total_signers=total,
            signed_count=signed,
            progress_percentage=round(signed / total * 100, 2) if total else 0.0,
            due_date=cycle.due_date,
            expires_at=max((a.token_expires_at for a in cycle.assignments), default=None),
            sent_at=cycle.created_at,
            closed_at=cycle.closed_at,
            signatures=signatures,
        )

    def list_pending_for_signer(self, signer_id: str, now: Optional[datetime] = None) -> List[PendingSignatureResponse]:
        """Inbox: open-cycle assignments the signer can sign right now"""
        now = now or datetime.utcnow()

        assignments = self.db.query(SignerAssignment).join(SigningCycle).filter(
            SignerAssignment.signer_id == signer_id,
            SignerAssignment.status == SignerStatus.PENDING,
            SigningCycle.closed_at.is_(None)
        ).order_by(SigningCycle.created_at).all()

        pending = []
        for assignment in assignments:
            cycle = assignment.cycle
            if assignment.is_token_expired(now) or not self.order_enforcer.can_sign(cycle, assignment, now):
                continue

            document = cycle.document
            pending.append(PendingSignatureResponse(
                document_id=document.id,
                group_id=document.group_id,
                file_name=document.file_name,
                description=document.description,
                cycle_id=cycle.id,
                signing_token=assignment.signing_token,
                signing_mode=cycle.signing_mode,
                signature_order=assignment.signing_order,
                total_signers=cycle.total_signers,
                message=cycle.message,
                due_date=cycle.due_date,
                token_expires_at=assignment.token_expires_at,
                sent_at=cycle.created_at,
                is_my_turn=True,
            ))
        return pending

    def get_audit_trail(self, document_id: str) -> AuditTrailResponse:
        self._get_document(document_id)
        events = AuditService.get_trail(self.db, document_id)
        verification = AuditService.verify_trail(events)

        return AuditTrailResponse(
            document_id=document_id,
            is_valid=verification["is_valid"],
            broken_at=verification["broken_at"],
            events=[SignatureEventResponse.model_validate(e) for e in events],
        )

    # Maintenance

    def expire_overdue_cycles(self, now: Optional[datetime] = None) -> int:
        """Proactive expiration pass over every open cycle; returns how many closed"""
        now = now or datetime.utcnow()
        open_cycles = self.db.query(SigningCycle).filter(SigningCycle.closed_at.is_(None)).all()

        closed = 0
        for cycle in open_cycles:
            document = self.db.get(Document, cycle.document_id)
            try:
                self.refresh_cycle(cycle, document, now)
            except Exception as e:
                logger.error(f"Expiration sweep skipped cycle {cycle.id}: {e}")
                continue
            if cycle.closed_at is not None:
                closed += 1

        if closed:
            logger.info(f"Expiration sweep closed {closed} signing cycle(s)")
        return closed

    def dispatch_notifications(self, notices: List[SigningNotice]) -> int:
        if self.notifier is None or not notices:
            return 0
        return dispatch_notices(self.notifier, notices)
