"""
Tamper-evident signing audit trail
"""

import hashlib
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from app.models.audit import SignatureEvent, SignatureEventType

logger = logging.getLogger(__name__)


class AuditService:
    """Appends and verifies the per-document signature event hash chain"""

    @staticmethod
    def compute_hash(
        sequence: int,
        document_id: str,
        cycle_id: Optional[str],
        assignment_id: Optional[str],
        event_type: SignatureEventType,
        actor_id: Optional[str],
        ip_address: Optional[str],
        details: Optional[Dict[str, Any]],
        created_at: datetime,
        previous_hash: Optional[str]
    ) -> str:
        """SHA256 over a canonical JSON rendering of the event"""
        payload = {
            "sequence": sequence,
            "document_id": document_id,
            "cycle_id": cycle_id,
            "assignment_id": assignment_id,
            "event_type": event_type.value,
            "actor_id": actor_id,
            "ip_address": ip_address,
            "details": details or {},
            "created_at": created_at.isoformat(),
            "previous_hash": previous_hash or "",
        }
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    @staticmethod
    def record_event(
        db: Session,
        document_id: str,
        event_type: SignatureEventType,
        cycle_id: Optional[str] = None,
        assignment_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None
    ) -> SignatureEvent:
        """Append an event to the document's chain.

        The event joins the caller's transaction; it is committed (or rolled
        back) together with the state change it describes. Callers hold the
        document row lock so concurrent writers cannot claim the same sequence.
        """
        db.flush()
        last = db.query(SignatureEvent).filter(
            SignatureEvent.document_id == document_id
        ).order_by(desc(SignatureEvent.sequence)).first()

        sequence = (last.sequence + 1) if last else 1
        previous_hash = last.event_hash if last else None
        created_at = (now or datetime.utcnow()).replace(microsecond=0)
        details = json.loads(json.dumps(details or {}, default=str))

        event = SignatureEvent(
            document_id=document_id,
            cycle_id=cycle_id,
            assignment_id=assignment_id,
            sequence=sequence,
            event_type=event_type,
            actor_id=actor_id,
            ip_address=ip_address,
            details=details,
            previous_hash=previous_hash,
            created_at=created_at,
            event_hash=AuditService.compute_hash(
                sequence, document_id, cycle_id, assignment_id, event_type,
                actor_id, ip_address, details, created_at, previous_hash
            ),
        )
        db.add(event)

        logger.info(f"Audit event #{sequence} {event_type.value} for document {document_id}")
        return event

    @staticmethod
    def get_trail(db: Session, document_id: str) -> List[SignatureEvent]:
        return db.query(SignatureEvent).filter(
            SignatureEvent.document_id == document_id
        ).order_by(SignatureEvent.sequence).all()

    @staticmethod
    def verify_trail(events: List[SignatureEvent]) -> Dict[str, Any]:
        """Recompute the chain and report the first event that does not match"""
        previous_hash = None
        expected_sequence = 1

        for event in events:
            expected = AuditService.compute_hash(
                event.sequence, event.document_id, event.cycle_id, event.assignment_id,
                event.event_type, event.actor_id, event.ip_address, event.details,
                event.created_at, previous_hash
            )
            if (
                event.sequence != expected_sequence
                or event.previous_hash != previous_hash
                or event.event_hash != expected
            ):
                logger.warning(
                    f"Audit chain broken for document {event.document_id} at sequence {event.sequence}"
                )
                return {"is_valid": False, "broken_at": event.sequence, "event_count": len(events)}

            previous_hash = event.event_hash
            expected_sequence += 1

        return {"is_valid": True, "broken_at": None, "event_count": len(events)}
