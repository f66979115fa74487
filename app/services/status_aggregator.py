"""
Aggregate signature status derivation
"""

import logging
from datetime import datetime
from typing import Optional

from app.models.document import Document
from app.models.signing import SigningCycle, SignatureStatus, SignerStatus

logger = logging.getLogger(__name__)


class StatusAggregator:
    """Derives a cycle's aggregate status from its assignments.

    The status stored on the cycle and on the document is only a cache of
    ``recompute``. Terminal statuses never change once reached.
    """

    @staticmethod
    def recompute(cycle: Optional[SigningCycle], now: Optional[datetime] = None) -> SignatureStatus:
        if cycle is None or not cycle.assignments:
            return SignatureStatus.DRAFT

        now = now or datetime.utcnow()

        if cycle.status is not None and cycle.status.is_terminal:
            return cycle.status
        if cycle.cancelled_by is not None or cycle.cancel_reason is not None:
            return SignatureStatus.CANCELLED

        total = len(cycle.assignments)
        signed = sum(1 for a in cycle.assignments if a.status == SignerStatus.SIGNED)

        if signed == total:
            return SignatureStatus.FULLY_SIGNED

        if cycle.is_past_due(now):
            return SignatureStatus.EXPIRED

        # Every outstanding signer has expired or otherwise left the cycle
        outstanding = [
            a for a in cycle.assignments
            if a.status == SignerStatus.PENDING and not a.is_token_expired(now)
        ]
        if not outstanding:
            return SignatureStatus.EXPIRED

        if signed == 0:
            return SignatureStatus.SENT_FOR_SIGNING
        return SignatureStatus.PARTIALLY_SIGNED

    @classmethod
    def apply(cls, cycle: SigningCycle, document: Document, now: Optional[datetime] = None) -> SignatureStatus:
        """Recompute and write the cached status onto the cycle and document"""
        now = now or datetime.utcnow()
        previous = cycle.status
        status = cls.recompute(cycle, now)

        cycle.status = status
        if status.is_terminal and cycle.closed_at is None:
            cycle.closed_at = now

        if document.latest_cycle_id in (None, cycle.id):
            document.signature_status = status
            document.latest_cycle_id = cycle.id

        if previous != status:
            logger.info(
                f"Signing cycle {cycle.id} for document {document.id}: "
                f"{previous.value if previous else None} -> {status.value}"
            )
        return status
