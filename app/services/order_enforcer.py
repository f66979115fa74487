"""
Turn rules for parallel and sequential signing
"""

from datetime import datetime
from typing import List, Optional

from app.models.signing import SigningCycle, SignerAssignment, SigningMode, SignerStatus


class OrderEnforcer:
    """Decides which signers may sign right now.

    Every answer is recomputed from the cycle's assignment list, there is no
    stored "current signer" pointer.
    """

    @staticmethod
    def cycle_accepts_signatures(cycle: SigningCycle, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        return cycle.is_open and not cycle.is_past_due(now)

    @staticmethod
    def blocking_assignment(cycle: SigningCycle, assignment: SignerAssignment) -> Optional[SignerAssignment]:
        """First earlier assignment that has not signed, for sequential cycles"""
        if cycle.signing_mode != SigningMode.SEQUENTIAL:
            return None

        for other in sorted(cycle.assignments, key=lambda a: a.signing_order):
            if other.signing_order >= assignment.signing_order:
                break
            if other.status != SignerStatus.SIGNED:
                return other
        return None

    @classmethod
    def can_sign(cls, cycle: SigningCycle, assignment: SignerAssignment, now: Optional[datetime] = None) -> bool:
        if assignment.status != SignerStatus.PENDING:
            return False
        if not cls.cycle_accepts_signatures(cycle, now):
            return False
        return cls.blocking_assignment(cycle, assignment) is None

    @classmethod
    def is_my_turn(cls, cycle: SigningCycle, signer_id: str, now: Optional[datetime] = None) -> bool:
        assignment = cls.assignment_for(cycle, signer_id)
        return assignment is not None and cls.can_sign(cycle, assignment, now)

    @staticmethod
    def assignment_for(cycle: SigningCycle, signer_id: str) -> Optional[SignerAssignment]:
        for assignment in cycle.assignments:
            if assignment.signer_id == signer_id:
                return assignment
        return None

    @classmethod
    def current_signers(cls, cycle: SigningCycle, now: Optional[datetime] = None) -> List[SignerAssignment]:
        """Assignments that are permitted to sign at this moment (the turn)"""
        return [
            assignment
            for assignment in sorted(cycle.assignments, key=lambda a: a.signing_order)
            if cls.can_sign(cycle, assignment, now)
        ]

    @classmethod
    def next_signer(cls, cycle: SigningCycle, now: Optional[datetime] = None) -> Optional[SignerAssignment]:
        """The single signer whose turn it is in a sequential cycle"""
        if cycle.signing_mode != SigningMode.SEQUENTIAL:
            return None
        current = cls.current_signers(cycle, now)
        return current[0] if current else None
