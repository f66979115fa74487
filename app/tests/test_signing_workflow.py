"""
Tests for the signing workflow: send, sign, decline, cancel, remind, status and inbox
"""

import pytest
from unittest.mock import patch
from datetime import datetime, timedelta

from app.models.audit import SignatureEventType
from app.models.signing import (
    SigningCycle, SignerAssignment, SigningMode, SignatureStatus, SignerStatus
)
from app.services.audit_service import AuditService
from app.services.signature_recorder import SignatureRecorder, SignerContext
from app.services.signature_service import SignatureService
from app.services.signing_errors import (
    CycleAlreadyOpen, CycleClosed, CycleNotFound, DocumentNotFound, DuplicateSigner,
    InvalidConfiguration, InvalidSignatureData, MissingSignature, NoSigners, NotYourTurn,
    SignerNotInGroup, TokenAlreadyUsed, TokenExpired, TokenNotFound
)
from app.services.signing_workflow_service import SigningWorkflowService

NOW = datetime.utcnow().replace(microsecond=0)


def event_types(db_session, document_id):
    return [e.event_type for e in AuditService.get_trail(db_session, document_id)]


class TestSendForSigning:

    def test_creates_cycle_with_ordered_assignments(self, db_session, workflow, document):
        sent = workflow.send_for_signing(
            document.id, ["carol", "alice", "bob"], SigningMode.SEQUENTIAL, 7,
            message="Please sign the co-ownership agreement", operator_id="owner-1", now=NOW
        )

        cycle = sent.cycle
        assert cycle.status == SignatureStatus.SENT_FOR_SIGNING
        assert cycle.created_by == "owner-1"
        assert [(a.signer_id, a.signing_order) for a in cycle.assignments] == [
            ("carol", 1), ("alice", 2), ("bob", 3)
        ]
        assert all(a.status == SignerStatus.PENDING for a in cycle.assignments)
        assert all(a.token_expires_at == NOW + timedelta(days=7) for a in cycle.assignments)
        assert set(sent.signing_tokens) == {"carol", "alice", "bob"}
        assert len(set(sent.signing_tokens.values())) == 3

        db_session.refresh(document)
        assert document.signature_status == SignatureStatus.SENT_FOR_SIGNING
        assert document.latest_cycle_id == cycle.id
        assert event_types(db_session, document.id) == [SignatureEventType.SENT_FOR_SIGNING]

    def test_sequential_notifies_first_signer_only(self, workflow, document):
        sent = workflow.send_for_signing(document.id, ["alice", "bob"], SigningMode.SEQUENTIAL, 7, now=NOW)

        assert [n.signer_id for n in sent.notices] == ["alice"]
        assert sent.notices[0].token == sent.signing_tokens["alice"]
        assert sent.notices[0].file_name == "co-ownership-agreement.pdf"

    def test_parallel_notifies_everyone(self, workflow, document):
        sent = workflow.send_for_signing(document.id, ["alice", "bob"], SigningMode.PARALLEL, 7, now=NOW)

        assert [n.signer_id for n in sent.notices] == ["alice", "bob"]

    def test_no_signers(self, workflow, document):
        with pytest.raises(NoSigners):
            workflow.send_for_signing(document.id, [], SigningMode.PARALLEL, 7, now=NOW)

    def test_duplicate_signer_creates_nothing(self, db_session, workflow, document):
        with pytest.raises(DuplicateSigner) as exc_info:
            workflow.send_for_signing(document.id, ["alice", "alice"], SigningMode.PARALLEL, 7, now=NOW)

        assert exc_info.value.details["signer_ids"] == ["alice"]
        assert db_session.query(SigningCycle).count() == 0
        assert db_session.query(SignerAssignment).count() == 0

    def test_expiration_outside_allow_list(self, db_session, workflow, document):
        with pytest.raises(InvalidConfiguration):
            workflow.send_for_signing(document.id, ["alice"], SigningMode.PARALLEL, 5, now=NOW)

        assert db_session.query(SigningCycle).count() == 0

    def test_due_date_in_the_past(self, workflow, document):
        with pytest.raises(InvalidConfiguration) as exc_info:
            workflow.send_for_signing(
                document.id, ["alice"], SigningMode.PARALLEL, 7,
                due_date=NOW - timedelta(days=1), now=NOW
            )

        assert exc_info.value.details["field"] == "dueDate"

    def test_signer_outside_group(self, db_session, workflow, document):
        with pytest.raises(SignerNotInGroup) as exc_info:
            workflow.send_for_signing(document.id, ["alice", "mallory"], SigningMode.PARALLEL, 7, now=NOW)

        assert exc_info.value.details["signer_ids"] == ["mallory"]
        assert db_session.query(SigningCycle).count() == 0

    def test_unknown_document(self, workflow):
        with pytest.raises(DocumentNotFound):
            workflow.send_for_signing("missing", ["alice"], SigningMode.PARALLEL, 7, now=NOW)

    def test_second_open_cycle_rejected(self, db_session, workflow, document):
        workflow.send_for_signing(document.id, ["alice"], SigningMode.PARALLEL, 7, now=NOW)

        with pytest.raises(CycleAlreadyOpen):
            workflow.send_for_signing(document.id, ["bob"], SigningMode.PARALLEL, 7, now=NOW)

        assert db_session.query(SigningCycle).count() == 1

    def test_racing_open_cycle_hits_unique_index(self, db_session, workflow, document, monkeypatch):
        workflow.send_for_signing(document.id, ["alice"], SigningMode.PARALLEL, 7, now=NOW)

        # Simulate a writer that checked before the first cycle was committed
        monkeypatch.setattr(workflow, "_open_cycle", lambda document_id: None)

        with pytest.raises(CycleAlreadyOpen):
            workflow.send_for_signing(document.id, ["bob"], SigningMode.PARALLEL, 7, now=NOW)

        assert db_session.query(SigningCycle).count() == 1

    def test_resend_after_close_keeps_history(self, db_session, workflow, document, signature_data):
        first = workflow.send_for_signing(document.id, ["alice"], SigningMode.PARALLEL, 7, now=NOW)
        workflow.sign(first.signing_tokens["alice"], signature_data, now=NOW)

        second = workflow.send_for_signing(document.id, ["alice", "bob"], SigningMode.PARALLEL, 7, now=NOW)

        db_session.refresh(document)
        assert document.latest_cycle_id == second.cycle.id
        assert document.signature_status == SignatureStatus.SENT_FOR_SIGNING
        assert db_session.get(SigningCycle, first.cycle.id).status == SignatureStatus.FULLY_SIGNED
        assert db_session.query(SignerAssignment).count() == 3

    def test_expired_open_cycle_is_closed_before_resend(self, db_session, workflow, document):
        first = workflow.send_for_signing(
            document.id, ["alice"], SigningMode.PARALLEL, 7, due_date=NOW + timedelta(hours=1), now=NOW
        )

        later = NOW + timedelta(hours=2)
        second = workflow.send_for_signing(document.id, ["alice"], SigningMode.PARALLEL, 7, now=later)

        assert db_session.get(SigningCycle, first.cycle.id).status == SignatureStatus.EXPIRED
        assert second.cycle.status == SignatureStatus.SENT_FOR_SIGNING


class TestSign:

    def test_records_signature_and_metadata(self, db_session, workflow, document, signature_data):
        sent = workflow.send_for_signing(document.id, ["alice", "bob"], SigningMode.PARALLEL, 7, now=NOW)
        context = SignerContext(ip_address="203.0.113.5", user_agent="pytest", geolocation="6.52,3.37")

        outcome = workflow.sign(sent.signing_tokens["alice"], signature_data, context=context,
                                document_id=document.id, now=NOW)

        assignment = outcome.result.assignment
        assert assignment.status == SignerStatus.SIGNED
        assert assignment.signed_at == NOW
        assert assignment.token_used_at == NOW
        assert assignment.signature_data.startswith("data:image/png;base64,")
        assert len(assignment.signature_hash) == 64
        assert assignment.ip_address == "203.0.113.5"
        assert assignment.geolocation == "6.52,3.37"
        assert outcome.result.document_status == SignatureStatus.PARTIALLY_SIGNED
        assert outcome.result.is_complete is False
        assert outcome.result.next_signer_id is None
        assert "1 of 2" in outcome.message

    def test_geolocation_is_optional(self, workflow, document, signature_data):
        sent = workflow.send_for_signing(document.id, ["alice"], SigningMode.PARALLEL, 7, now=NOW)

        outcome = workflow.sign(sent.signing_tokens["alice"], signature_data, now=NOW)

        assert outcome.result.assignment.geolocation is None
        assert outcome.result.is_complete is True

    def test_sequential_ordering(self, workflow, document, signature_data):
        sent = workflow.send_for_signing(document.id, ["alice", "bob", "carol"], SigningMode.SEQUENTIAL, 7, now=NOW)
        tokens = sent.signing_tokens

        with pytest.raises(NotYourTurn) as exc_info:
            workflow.sign(tokens["bob"], signature_data, now=NOW)
        assert exc_info.value.details["waiting_for_signer_id"] == "alice"
        assert exc_info.value.details["waiting_for_order"] == 1

        assert workflow.sign(tokens["alice"], signature_data, now=NOW).result.next_signer_id == "bob"

        with pytest.raises(NotYourTurn):
            workflow.sign(tokens["carol"], signature_data, now=NOW)

        assert workflow.sign(tokens["bob"], signature_data, now=NOW).result.next_signer_id == "carol"
        final = workflow.sign(tokens["carol"], signature_data, now=NOW)
        assert final.result.is_complete is True
        assert final.result.next_signer_id is None

    def test_not_your_turn_leaves_assignment_pending(self, db_session, workflow, document, signature_data):
        sent = workflow.send_for_signing(document.id, ["alice", "bob"], SigningMode.SEQUENTIAL, 7, now=NOW)

        with pytest.raises(NotYourTurn):
            workflow.sign(sent.signing_tokens["bob"], signature_data, now=NOW)

        bob = sent.cycle.assignments[1]
        db_session.refresh(bob)
        assert bob.status == SignerStatus.PENDING
        assert bob.signed_at is None

    def test_parallel_signers_in_any_order(self, workflow, document, signature_data):
        sent = workflow.send_for_signing(document.id, ["alice", "bob"], SigningMode.PARALLEL, 7, now=NOW)

        first = workflow.sign(sent.signing_tokens["bob"], signature_data, now=NOW)
        second = workflow.sign(sent.signing_tokens["alice"], signature_data, now=NOW)

        assert first.result.document_status == SignatureStatus.PARTIALLY_SIGNED
        assert second.result.document_status == SignatureStatus.FULLY_SIGNED

    def test_status_progression(self, db_session, workflow, document, signature_data):
        sent = workflow.send_for_signing(document.id, ["alice", "bob", "carol"], SigningMode.PARALLEL, 7, now=NOW)
        seen = []
        for signer in ["alice", "bob", "carol"]:
            seen.append(workflow.sign(sent.signing_tokens[signer], signature_data, now=NOW).result.document_status)

        assert seen == [
            SignatureStatus.PARTIALLY_SIGNED,
            SignatureStatus.PARTIALLY_SIGNED,
            SignatureStatus.FULLY_SIGNED,
        ]
        db_session.refresh(document)
        assert document.signature_status == SignatureStatus.FULLY_SIGNED
        assert event_types(db_session, document.id)[-1] == SignatureEventType.FULLY_SIGNED

    def test_token_reuse_is_rejected(self, workflow, document, signature_data):
        sent = workflow.send_for_signing(document.id, ["alice", "bob"], SigningMode.PARALLEL, 7, now=NOW)
        workflow.sign(sent.signing_tokens["alice"], signature_data, now=NOW)

        with pytest.raises(TokenAlreadyUsed):
            workflow.sign(sent.signing_tokens["alice"], signature_data, now=NOW)

    def test_concurrent_submission_signs_once(self, session_factory, group_directory, document,
                                              signature_data, monkeypatch):
        db_a, db_b = session_factory(), session_factory()
        try:
            service_a = SigningWorkflowService(db_a, group_directory=group_directory)
            service_b = SigningWorkflowService(db_b, group_directory=group_directory)
            sent = service_a.send_for_signing(document.id, ["alice", "bob"], SigningMode.PARALLEL, 7, now=NOW)
            token = sent.signing_tokens["alice"]

            original_render = SignatureService.render
            winners = []

            def racing_render(payload, options=None):
                # The duplicate lands after this call passed its checks but before it writes
                if not winners:
                    winners.append(None)
                    winners[0] = service_b.sign(token, payload, now=NOW)
                return original_render(payload, options)

            monkeypatch.setattr(SignatureService, "render", staticmethod(racing_render))

            with pytest.raises(TokenAlreadyUsed):
                service_a.sign(token, signature_data, now=NOW)

            assert winners[0].result.assignment.status == SignerStatus.SIGNED
            signed = db_a.query(SignerAssignment).filter(SignerAssignment.status == SignerStatus.SIGNED).count()
            assert signed == 1
            assert event_types(db_a, document.id).count(SignatureEventType.SIGNED) == 1
        finally:
            db_a.close()
            db_b.close()

    def test_stale_transition_reports_lost_race(self, db_session, session_factory, workflow, document, signature_data):
        sent = workflow.send_for_signing(document.id, ["alice"], SigningMode.PARALLEL, 7, now=NOW)
        stale_session = session_factory()
        try:
            stale = stale_session.get(SignerAssignment, sent.cycle.assignments[0].id)
            assert stale.status == SignerStatus.PENDING

            workflow.sign(sent.signing_tokens["alice"], signature_data, now=NOW)

            claimed = workflow.recorder.transition(stale_session, stale, SignerStatus.SIGNED, {"signed_at": NOW})
            assert claimed is False
            assert stale.status == SignerStatus.SIGNED
        finally:
            stale_session.close()

    def test_expired_token_takes_precedence(self, db_session, workflow, document, signature_data):
        sent = workflow.send_for_signing(document.id, ["alice", "bob"], SigningMode.PARALLEL, 1, now=NOW)
        later = NOW + timedelta(days=2)

        with pytest.raises(TokenExpired):
            workflow.sign(sent.signing_tokens["alice"], signature_data, now=later)

        alice = sent.cycle.assignments[0]
        db_session.refresh(alice)
        assert alice.status == SignerStatus.EXPIRED
        assert alice.expired_at == later

        # Still reported as expired, not as used, on a retry
        with pytest.raises(TokenExpired):
            workflow.sign(sent.signing_tokens["alice"], signature_data, now=later)

        with pytest.raises(TokenExpired):
            workflow.sign(sent.signing_tokens["bob"], signature_data, now=later)

    def test_unknown_token(self, workflow, document, signature_data):
        with pytest.raises(TokenNotFound):
            workflow.sign("no-such-token", signature_data, now=NOW)

    def test_token_for_other_document(self, workflow, make_document, signature_data):
        first, other = make_document(), make_document(file_name="insurance.pdf")
        sent = workflow.send_for_signing(first.id, ["alice"], SigningMode.PARALLEL, 7, now=NOW)

        with pytest.raises(TokenNotFound):
            workflow.sign(sent.signing_tokens["alice"], signature_data, document_id=other.id, now=NOW)

    @pytest.mark.parametrize("payload", [None, "", "   "])
    def test_missing_signature(self, db_session, workflow, document, payload):
        sent = workflow.send_for_signing(document.id, ["alice"], SigningMode.PARALLEL, 7, now=NOW)

        with pytest.raises(MissingSignature):
            workflow.sign(sent.signing_tokens["alice"], payload, now=NOW)

        alice = sent.cycle.assignments[0]
        db_session.refresh(alice)
        assert alice.status == SignerStatus.PENDING

    def test_blank_canvas_is_missing_signature(self, workflow, document, signature_factory):
        sent = workflow.send_for_signing(document.id, ["alice"], SigningMode.PARALLEL, 7, now=NOW)

        with pytest.raises(MissingSignature):
            workflow.sign(sent.signing_tokens["alice"], signature_factory(blank=True), now=NOW)

    def test_garbage_payload(self, workflow, document):
        sent = workflow.send_for_signing(document.id, ["alice"], SigningMode.PARALLEL, 7, now=NOW)

        with pytest.raises(InvalidSignatureData):
            workflow.sign(sent.signing_tokens["alice"], "data:image/png;base64,bm90IGFuIGltYWdl", now=NOW)

    def test_sequential_notifies_next_signer(self, workflow, document, signature_data):
        sent = workflow.send_for_signing(document.id, ["alice", "bob", "carol"], SigningMode.SEQUENTIAL, 7, now=NOW)

        outcome = workflow.sign(sent.signing_tokens["alice"], signature_data, now=NOW)

        assert [n.signer_id for n in outcome.notices] == ["bob"]
        assert outcome.notices[0].token == sent.signing_tokens["bob"]

    def test_parallel_notifies_remaining_signers(self, workflow, document, signature_data):
        sent = workflow.send_for_signing(document.id, ["alice", "bob", "carol"], SigningMode.PARALLEL, 7, now=NOW)

        outcome = workflow.sign(sent.signing_tokens["bob"], signature_data, now=NOW)

        assert [n.signer_id for n in outcome.notices] == ["alice", "carol"]

    def test_completion_sends_no_notices(self, workflow, document, signature_data):
        sent = workflow.send_for_signing(document.id, ["alice"], SigningMode.SEQUENTIAL, 7, now=NOW)

        outcome = workflow.sign(sent.signing_tokens["alice"], signature_data, now=NOW)

        assert outcome.notices == []
        assert outcome.message == "All signatures collected. The document is fully signed."


class TestStatusAndInbox:

    def test_two_signer_sequential_scenario(self, workflow, document, signature_data):
        sent = workflow.send_for_signing(document.id, ["alice", "bob"], SigningMode.SEQUENTIAL, 7, now=NOW)
        assert set(sent.signing_tokens) == {"alice", "bob"}

        status = workflow.get_status(document.id, now=NOW)
        assert status.status == SignatureStatus.SENT_FOR_SIGNING
        assert [s.is_current_signer for s in status.signatures] == [True, False]

        workflow.sign(sent.signing_tokens["alice"], signature_data, now=NOW)
        status = workflow.get_status(document.id, now=NOW)
        assert status.status == SignatureStatus.PARTIALLY_SIGNED
        assert [s.is_current_signer for s in status.signatures] == [False, True]
        assert [s.is_pending for s in status.signatures] == [False, True]
        assert status.progress_percentage == 50.0

        outcome = workflow.sign(sent.signing_tokens["bob"], signature_data, now=NOW)
        assert outcome.result.document_status == SignatureStatus.FULLY_SIGNED
        assert outcome.result.is_complete is True
        assert outcome.result.next_signer_id is None

        status = workflow.get_status(document.id, now=NOW)
        assert status.status == SignatureStatus.FULLY_SIGNED
        assert status.progress_percentage == 100.0
        assert status.closed_at is not None

    def test_status_of_unsent_document(self, workflow, document):
        status = workflow.get_status(document.id, now=NOW)

        assert status.status == SignatureStatus.DRAFT
        assert status.signatures == []
        assert status.file_name == "co-ownership-agreement.pdf"
        assert status.file_size == 2048

    def test_status_read_expires_lapsed_tokens(self, db_session, workflow, document):
        workflow.send_for_signing(document.id, ["alice", "bob"], SigningMode.PARALLEL, 1, now=NOW)

        status = workflow.get_status(document.id, now=NOW + timedelta(days=2))

        assert status.status == SignatureStatus.EXPIRED
        assert [s.status for s in status.signatures] == [SignerStatus.EXPIRED, SignerStatus.EXPIRED]
        assert event_types(db_session, document.id) == [
            SignatureEventType.SENT_FOR_SIGNING,
            SignatureEventType.TOKEN_EXPIRED,
            SignatureEventType.TOKEN_EXPIRED,
            SignatureEventType.CYCLE_EXPIRED,
        ]

    def test_past_due_cycle_closes_and_rejects_signatures(self, workflow, document, signature_data):
        sent = workflow.send_for_signing(
            document.id, ["alice", "bob"], SigningMode.PARALLEL, 7, due_date=NOW + timedelta(hours=1), now=NOW
        )
        later = NOW + timedelta(hours=2)

        assert workflow.get_status(document.id, now=later).status == SignatureStatus.EXPIRED

        with pytest.raises(CycleClosed):
            workflow.sign(sent.signing_tokens["alice"], signature_data, now=later)

    def test_inbox_shows_only_current_turn(self, workflow, document, signature_data):
        sent = workflow.send_for_signing(document.id, ["alice", "bob"], SigningMode.SEQUENTIAL, 7, now=NOW)

        assert workflow.list_pending_for_signer("bob", now=NOW) == []
        inbox = workflow.list_pending_for_signer("alice", now=NOW)
        assert [(p.document_id, p.signature_order, p.is_my_turn) for p in inbox] == [(document.id, 1, True)]
        assert inbox[0].signing_token == sent.signing_tokens["alice"]

        workflow.sign(sent.signing_tokens["alice"], signature_data, now=NOW)

        assert workflow.list_pending_for_signer("alice", now=NOW) == []
        assert [p.signature_order for p in workflow.list_pending_for_signer("bob", now=NOW)] == [2]

    def test_inbox_skips_closed_and_expired(self, workflow, make_document):
        cancelled_doc, lapsed_doc = make_document(), make_document(file_name="loan.pdf")
        cancelled = workflow.send_for_signing(cancelled_doc.id, ["alice"], SigningMode.PARALLEL, 7, now=NOW)
        workflow.send_for_signing(lapsed_doc.id, ["alice"], SigningMode.PARALLEL, 1, now=NOW)
        workflow.cancel(cancelled.cycle.id, operator_id="owner-1", now=NOW)

        assert len(workflow.list_pending_for_signer("alice", now=NOW)) == 1
        assert workflow.list_pending_for_signer("alice", now=NOW + timedelta(days=2)) == []


class TestCancelDeclineRemind:

    def test_cancel_invalidates_outstanding_tokens(self, db_session, workflow, document, signature_data):
        sent = workflow.send_for_signing(document.id, ["alice", "bob"], SigningMode.PARALLEL, 7, now=NOW)
        workflow.sign(sent.signing_tokens["alice"], signature_data, now=NOW)

        cycle = workflow.cancel(sent.cycle.id, reason="Wrong version", operator_id="owner-1", now=NOW)

        assert cycle.status == SignatureStatus.CANCELLED
        assert cycle.cancelled_by == "owner-1"
        assert cycle.closed_at == NOW
        with pytest.raises(CycleClosed):
            workflow.sign(sent.signing_tokens["bob"], signature_data, now=NOW)
        assert event_types(db_session, document.id)[-1] == SignatureEventType.CANCELLED

    def test_cancel_closed_cycle(self, workflow, document):
        sent = workflow.send_for_signing(document.id, ["alice"], SigningMode.PARALLEL, 7, now=NOW)
        workflow.cancel(sent.cycle.id, now=NOW)

        with pytest.raises(CycleClosed):
            workflow.cancel(sent.cycle.id, now=NOW)

    def test_cancel_unknown_cycle(self, workflow):
        with pytest.raises(CycleNotFound):
            workflow.cancel("missing", now=NOW)

    def test_cancel_for_document_without_open_cycle(self, workflow, document):
        with pytest.raises(CycleNotFound):
            workflow.cancel_for_document(document.id, now=NOW)

    def test_decline_closes_cycle(self, db_session, workflow, document, signature_data):
        sent = workflow.send_for_signing(document.id, ["alice", "bob"], SigningMode.PARALLEL, 7, now=NOW)

        outcome = workflow.decline(sent.signing_tokens["alice"], reason="Terms changed", now=NOW)

        assert outcome.assignment.status == SignerStatus.DECLINED
        assert outcome.assignment.decline_reason == "Terms changed"
        assert outcome.document_status == SignatureStatus.CANCELLED
        assert "Terms changed" in outcome.cycle.cancel_reason
        with pytest.raises(CycleClosed):
            workflow.sign(sent.signing_tokens["bob"], signature_data, now=NOW)
        with pytest.raises(TokenAlreadyUsed):
            workflow.decline(sent.signing_tokens["alice"], now=NOW)
        assert event_types(db_session, document.id)[-2:] == [
            SignatureEventType.DECLINED, SignatureEventType.CANCELLED
        ]

    def test_decline_respects_turn(self, workflow, document):
        sent = workflow.send_for_signing(document.id, ["alice", "bob"], SigningMode.SEQUENTIAL, 7, now=NOW)

        with pytest.raises(NotYourTurn):
            workflow.decline(sent.signing_tokens["bob"], now=NOW)

    def test_remind_current_signers(self, db_session, workflow, document):
        sent = workflow.send_for_signing(document.id, ["alice", "bob"], SigningMode.SEQUENTIAL, 7, now=NOW)

        notices = workflow.remind(document.id, operator_id="owner-1", now=NOW)

        assert [(n.signer_id, n.reminder) for n in notices] == [("alice", True)]
        alice = sent.cycle.assignments[0]
        db_session.refresh(alice)
        assert alice.reminder_count == 1
        assert alice.last_notified_at == NOW
        assert event_types(db_session, document.id)[-1] == SignatureEventType.REMINDER_SENT

    def test_remind_filtered_signers(self, workflow, document):
        workflow.send_for_signing(document.id, ["alice", "bob", "carol"], SigningMode.PARALLEL, 7, now=NOW)

        notices = workflow.remind(document.id, signer_ids=["carol"], now=NOW)

        assert [n.signer_id for n in notices] == ["carol"]

    def test_remind_without_open_cycle(self, workflow, document):
        with pytest.raises(CycleClosed):
            workflow.remind(document.id, now=NOW)


class TestVerifyAndSweep:

    def test_verify_token(self, workflow, document):
        sent = workflow.send_for_signing(document.id, ["alice", "bob"], SigningMode.SEQUENTIAL, 7, now=NOW)

        alice = workflow.verify_token(document.id, sent.signing_tokens["alice"], now=NOW)
        bob = workflow.verify_token(document.id, sent.signing_tokens["bob"], now=NOW)

        assert alice.is_valid and alice.is_my_turn
        assert bob.is_valid and not bob.is_my_turn
        assert bob.signature_order == 2
        assert alice.file_name == "co-ownership-agreement.pdf"

    def test_verify_token_errors(self, workflow, make_document):
        document, other = make_document(), make_document(file_name="other.pdf")
        sent = workflow.send_for_signing(document.id, ["alice"], SigningMode.PARALLEL, 1, now=NOW)

        with pytest.raises(TokenNotFound):
            workflow.verify_token(other.id, sent.signing_tokens["alice"], now=NOW)
        with pytest.raises(TokenExpired):
            workflow.verify_token(document.id, sent.signing_tokens["alice"], now=NOW + timedelta(days=2))

    def test_verify_token_of_cancelled_cycle(self, workflow, document):
        sent = workflow.send_for_signing(document.id, ["alice"], SigningMode.PARALLEL, 7, now=NOW)
        workflow.cancel(sent.cycle.id, now=NOW)

        result = workflow.verify_token(document.id, sent.signing_tokens["alice"], now=NOW)

        assert result.is_valid is False
        assert result.status == SignatureStatus.CANCELLED

    def test_expire_overdue_cycles(self, db_session, workflow, make_document):
        overdue, current = make_document(), make_document(file_name="current.pdf")
        late = workflow.send_for_signing(
            overdue.id, ["alice"], SigningMode.PARALLEL, 7, due_date=NOW + timedelta(hours=1), now=NOW
        )
        fine = workflow.send_for_signing(current.id, ["alice"], SigningMode.PARALLEL, 7, now=NOW)

        closed = workflow.expire_overdue_cycles(now=NOW + timedelta(hours=2))

        assert closed == 1
        assert db_session.get(SigningCycle, late.cycle.id).status == SignatureStatus.EXPIRED
        assert db_session.get(SigningCycle, fine.cycle.id).closed_at is None
        assert workflow.expire_overdue_cycles(now=NOW + timedelta(hours=3)) == 0

    def test_dispatch_notifications_survives_failures(self, workflow, notifier, document):
        notifier.fail_for.add("alice")
        sent = workflow.send_for_signing(document.id, ["alice", "bob"], SigningMode.PARALLEL, 7, now=NOW)

        assert workflow.dispatch_notifications(sent.notices) == 1
        assert notifier.recipients == ["bob"]

    def test_retired_token_is_unknown_to_other_documents(self, workflow, make_document, signature_data):
        document, other = make_document(), make_document(file_name="other.pdf")
        sent = workflow.send_for_signing(document.id, ["alice"], SigningMode.PARALLEL, 1, now=NOW)
        later = NOW + timedelta(days=3)
        workflow.get_status(document.id, now=later)

        with pytest.raises(TokenNotFound):
            workflow.verify_token(other.id, sent.signing_tokens["alice"], now=later)
        with pytest.raises(TokenNotFound):
            workflow.sign(sent.signing_tokens["alice"], signature_data, document_id=other.id, now=later)
        # Its own document still reports the expiry
        with pytest.raises(TokenExpired):
            workflow.verify_token(document.id, sent.signing_tokens["alice"], now=later)


class TestAuditChainLocking:

    def test_old_cycle_retirement_locks_the_document(self, db_session, workflow, document, signature_data):
        old = workflow.send_for_signing(document.id, ["alice"], SigningMode.PARALLEL, 1, now=NOW)
        workflow.cancel(old.cycle.id, now=NOW)
        workflow.send_for_signing(document.id, ["bob"], SigningMode.PARALLEL, 7, now=NOW)

        with patch.object(SignatureRecorder, "lock_document", wraps=SignatureRecorder.lock_document) as lock:
            with pytest.raises(TokenExpired):
                workflow.sign(old.signing_tokens["alice"], signature_data, now=NOW + timedelta(days=2))

        assert lock.call_args.args[1] == document.id
        trail = AuditService.get_trail(db_session, document.id)
        assert trail[-1].event_type == SignatureEventType.TOKEN_EXPIRED
        assert AuditService.verify_trail(trail)["is_valid"] is True

    def test_remind_locks_the_document(self, workflow, document):
        workflow.send_for_signing(document.id, ["alice"], SigningMode.PARALLEL, 7, now=NOW)

        with patch.object(SignatureRecorder, "lock_document", wraps=SignatureRecorder.lock_document) as lock:
            workflow.remind(document.id, now=NOW)

        assert [call.args[1] for call in lock.call_args_list] == [document.id]
