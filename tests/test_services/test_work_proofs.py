"""Tests for work proof submission and review in WorkProofService."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from marketplace_escrow.domain.enums import (
    DisputePriority,
    EventType,
    SubjectType,
    WorkProofStatus,
)
from marketplace_escrow.domain.exceptions import (
    DuplicateResolutionError,
    InputValidationError,
    InsufficientBalanceError,
    InvalidTransitionError,
    NotParticipantError,
    RevisionLimitExceededError,
)
from marketplace_escrow.services.ledger_service import LedgerService
from marketplace_escrow.services.work_proof_service import WorkProofService

WORKER = "worker-1"
EMPLOYER = "employer-1"


@pytest.fixture
def proofs(session, settings, clock) -> WorkProofService:
    return WorkProofService(session, settings=settings, clock=clock)


async def _balances(session, user_id: str) -> tuple[Decimal, Decimal]:
    account = await LedgerService(session).get_account(user_id)
    return account.deposit_balance, account.earnings_balance


async def _submitted(session, proofs: WorkProofService, max_revisions: int | None = None):
    await LedgerService(session).deposit(EMPLOYER, Decimal("100.00"))
    return await proofs.submit_work_proof(
        job_id="job-1",
        worker_id=WORKER,
        employer_id=EMPLOYER,
        payment_amount=Decimal("40.00"),
        submission_text="Survey completed, screenshots attached",
        evidence=[{"kind": "link", "content": "https://example.com/proof.png"}],
        max_revision_requests=max_revisions,
    )


class TestSubmit:
    async def test_submit_holds_payment(self, session, proofs: WorkProofService, clock) -> None:
        proof = await _submitted(session, proofs)

        assert proof.status == WorkProofStatus.SUBMITTED
        assert proof.submission_number == 1
        assert proof.max_revision_requests == 2
        assert proof.review_deadline == clock() + timedelta(days=3)
        assert proof.evidence[0]["kind"] == "link"
        assert await _balances(session, EMPLOYER) == (Decimal("60.00"), Decimal("0.00"))

    async def test_submit_without_funds(self, session, proofs: WorkProofService) -> None:
        with pytest.raises(InsufficientBalanceError):
            await proofs.submit_work_proof("job-1", WORKER, EMPLOYER, Decimal("5.00"), "Done")
        assert await proofs.list_for_job("job-1") == []

    async def test_empty_submission(self, proofs: WorkProofService) -> None:
        with pytest.raises(InputValidationError):
            await proofs.submit_work_proof("job-1", WORKER, EMPLOYER, Decimal("5.00"), "  ")

    async def test_bad_evidence(self, session, proofs: WorkProofService) -> None:
        await LedgerService(session).deposit(EMPLOYER, Decimal("10.00"))
        with pytest.raises(InputValidationError):
            await proofs.submit_work_proof(
                "job-1",
                WORKER,
                EMPLOYER,
                Decimal("5.00"),
                "Done",
                evidence=[{"kind": "link", "content": "not a url"}],
            )


class TestApprove:
    async def test_approve_pays_worker(self, session, proofs: WorkProofService) -> None:
        proof = await _submitted(session, proofs)
        approved = await proofs.approve_work_proof(proof.id, EMPLOYER, "Great work")

        assert approved.status == WorkProofStatus.APPROVED
        assert approved.review_notes == "Great work"
        assert await _balances(session, WORKER) == (Decimal("0.00"), Decimal("40.00"))

    async def test_approve_with_tip(self, session, proofs: WorkProofService) -> None:
        proof = await _submitted(session, proofs)
        approved = await proofs.approve_work_proof(proof.id, EMPLOYER, tip_amount=Decimal("5.00"))

        assert approved.tip_amount == Decimal("5.00")
        assert await _balances(session, EMPLOYER) == (Decimal("55.00"), Decimal("0.00"))
        assert await _balances(session, WORKER) == (Decimal("0.00"), Decimal("45.00"))

    async def test_tip_beyond_balance(self, session, proofs: WorkProofService) -> None:
        proof = await _submitted(session, proofs)
        with pytest.raises(InsufficientBalanceError):
            await proofs.approve_work_proof(proof.id, EMPLOYER, tip_amount=Decimal("60.01"))

    async def test_worker_cannot_approve(self, session, proofs: WorkProofService) -> None:
        proof = await _submitted(session, proofs)
        with pytest.raises(NotParticipantError):
            await proofs.approve_work_proof(proof.id, WORKER)

    async def test_second_approval_is_duplicate(self, session, proofs: WorkProofService) -> None:
        proof = await _submitted(session, proofs)
        await proofs.approve_work_proof(proof.id, EMPLOYER)

        with pytest.raises(DuplicateResolutionError):
            await proofs.approve_work_proof(proof.id, EMPLOYER)
        with pytest.raises(DuplicateResolutionError):
            await proofs.reject_work_proof(proof.id, EMPLOYER, "Changed my mind")
        assert await _balances(session, WORKER) == (Decimal("0.00"), Decimal("40.00"))


class TestReject:
    async def test_reject_keeps_payment_in_escrow(
        self, session, proofs: WorkProofService, clock
    ) -> None:
        proof = await _submitted(session, proofs)
        rejected = await proofs.reject_work_proof(proof.id, EMPLOYER, "Screenshots are blank")

        assert rejected.status == WorkProofStatus.REJECTED
        assert rejected.rejection_reason == "Screenshots are blank"
        assert rejected.rejection_deadline == clock() + timedelta(hours=24)
        assert await _balances(session, EMPLOYER) == (Decimal("60.00"), Decimal("0.00"))

    async def test_reject_needs_reason(self, session, proofs: WorkProofService) -> None:
        proof = await _submitted(session, proofs)
        with pytest.raises(InputValidationError):
            await proofs.reject_work_proof(proof.id, EMPLOYER, "")

    async def test_reject_after_deadline(self, session, proofs: WorkProofService, clock) -> None:
        proof = await _submitted(session, proofs)
        clock.advance(days=3, seconds=1)
        with pytest.raises(InvalidTransitionError):
            await proofs.reject_work_proof(proof.id, EMPLOYER, "Too late")

    async def test_employer_cannot_review_again(self, session, proofs: WorkProofService) -> None:
        proof = await _submitted(session, proofs)
        await proofs.reject_work_proof(proof.id, EMPLOYER, "Screenshots are blank")

        with pytest.raises(DuplicateResolutionError):
            await proofs.reject_work_proof(proof.id, EMPLOYER, "Still blank")
        with pytest.raises(DuplicateResolutionError):
            await proofs.approve_work_proof(proof.id, EMPLOYER)
        with pytest.raises(DuplicateResolutionError):
            await proofs.request_revision(proof.id, EMPLOYER, "Try again")


class TestWorkerResponses:
    async def test_accept_rejection_refunds_employer(
        self, session, proofs: WorkProofService, clock
    ) -> None:
        proof = await _submitted(session, proofs)
        await proofs.reject_work_proof(proof.id, EMPLOYER, "Screenshots are blank")
        clock.advance(hours=1)

        accepted = await proofs.accept_rejection(proof.id, WORKER)

        assert accepted.status == WorkProofStatus.REJECTION_ACCEPTED
        assert accepted.worker_responded_at == clock()
        assert await _balances(session, EMPLOYER) == (Decimal("100.00"), Decimal("0.00"))
        assert await _balances(session, WORKER) == (Decimal("0.00"), Decimal("0.00"))
        events = await proofs.get_events(proof.id)
        assert [e.event_type for e in events] == [
            EventType.PROOF_SUBMITTED,
            EventType.PROOF_REJECTED,
            EventType.PROOF_REJECTION_ACCEPTED,
        ]

    async def test_accepted_rejection_is_final(self, session, proofs: WorkProofService) -> None:
        proof = await _submitted(session, proofs)
        await proofs.reject_work_proof(proof.id, EMPLOYER, "Screenshots are blank")
        await proofs.accept_rejection(proof.id, WORKER)

        with pytest.raises(DuplicateResolutionError):
            await proofs.accept_rejection(proof.id, WORKER)
        with pytest.raises(DuplicateResolutionError):
            await proofs.open_work_proof_dispute(proof.id, WORKER, "Changed my mind")
        assert await _balances(session, EMPLOYER) == (Decimal("100.00"), Decimal("0.00"))

    async def test_only_worker_accepts(self, session, proofs: WorkProofService) -> None:
        proof = await _submitted(session, proofs)
        await proofs.reject_work_proof(proof.id, EMPLOYER, "Screenshots are blank")
        with pytest.raises(NotParticipantError):
            await proofs.accept_rejection(proof.id, EMPLOYER)

    async def test_accept_without_rejection(self, session, proofs: WorkProofService) -> None:
        proof = await _submitted(session, proofs)
        with pytest.raises(InvalidTransitionError):
            await proofs.accept_rejection(proof.id, WORKER)

    async def test_accept_after_response_window(
        self, session, proofs: WorkProofService, clock
    ) -> None:
        proof = await _submitted(session, proofs)
        await proofs.reject_work_proof(proof.id, EMPLOYER, "Screenshots are blank")
        clock.advance(hours=24, seconds=1)
        with pytest.raises(InvalidTransitionError, match="deadline"):
            await proofs.accept_rejection(proof.id, WORKER)

    async def test_worker_disputes_rejection(self, session, proofs: WorkProofService) -> None:
        proof = await _submitted(session, proofs)
        await proofs.reject_work_proof(proof.id, EMPLOYER, "Screenshots are blank")

        dispute = await proofs.open_work_proof_dispute(
            proof.id, WORKER, "The screenshots load fine", requested_action="release payment"
        )

        assert dispute.raised_by == WORKER
        frozen = await proofs.get_work_proof(proof.id)
        assert frozen.status == WorkProofStatus.DISPUTED
        events = await proofs.get_events(proof.id)
        assert events[-1].old_status == "rejected"
        assert await _balances(session, EMPLOYER) == (Decimal("60.00"), Decimal("0.00"))

    async def test_employer_cannot_dispute_own_rejection(
        self, session, proofs: WorkProofService
    ) -> None:
        proof = await _submitted(session, proofs)
        await proofs.reject_work_proof(proof.id, EMPLOYER, "Screenshots are blank")
        with pytest.raises(NotParticipantError):
            await proofs.open_work_proof_dispute(proof.id, EMPLOYER, "Just to be sure")

    async def test_withdraw_during_revision(
        self, session, proofs: WorkProofService, clock
    ) -> None:
        proof = await _submitted(session, proofs)
        await proofs.request_revision(proof.id, EMPLOYER, "Redo the whole survey")

        withdrawn = await proofs.withdraw_work_proof(proof.id, WORKER, "No time to redo it")

        assert withdrawn.status == WorkProofStatus.CANCELLED_BY_WORKER
        assert withdrawn.revision_deadline is None
        assert withdrawn.worker_responded_at == clock()
        assert await _balances(session, EMPLOYER) == (Decimal("100.00"), Decimal("0.00"))
        events = await proofs.get_events(proof.id)
        assert events[-1].event_type == EventType.PROOF_WITHDRAWN
        assert events[-1].metadata_json["reason"] == "No time to redo it"

    async def test_withdraw_needs_revision_request(
        self, session, proofs: WorkProofService
    ) -> None:
        proof = await _submitted(session, proofs)
        with pytest.raises(InvalidTransitionError):
            await proofs.withdraw_work_proof(proof.id, WORKER)
        with pytest.raises(NotParticipantError):
            await proofs.withdraw_work_proof(proof.id, EMPLOYER)

    async def test_withdrawn_proof_is_final(self, session, proofs: WorkProofService) -> None:
        proof = await _submitted(session, proofs)
        await proofs.request_revision(proof.id, EMPLOYER, "Redo the whole survey")
        await proofs.withdraw_work_proof(proof.id, WORKER)
        with pytest.raises(DuplicateResolutionError):
            await proofs.resubmit_work_proof(proof.id, WORKER, "Changed my mind")


class TestRevisions:
    async def test_limit_of_two(self, session, proofs: WorkProofService) -> None:
        proof = await _submitted(session, proofs, max_revisions=2)

        first = await proofs.request_revision(proof.id, EMPLOYER, "Point 1")
        assert first.revision_count == 1
        second = await proofs.request_revision(proof.id, EMPLOYER, "Point 2")
        assert second.revision_count == 2
        assert second.status == WorkProofStatus.REVISION_REQUESTED

        with pytest.raises(RevisionLimitExceededError):
            await proofs.request_revision(proof.id, EMPLOYER, "Point 3")

    async def test_zero_revisions_allowed(self, session, proofs: WorkProofService) -> None:
        proof = await _submitted(session, proofs, max_revisions=0)
        with pytest.raises(RevisionLimitExceededError):
            await proofs.request_revision(proof.id, EMPLOYER, "Please redo")

    async def test_revision_sets_response_deadline(
        self, session, proofs: WorkProofService, clock
    ) -> None:
        proof = await _submitted(session, proofs)
        revised = await proofs.request_revision(proof.id, EMPLOYER, "Crop the image")
        assert revised.revision_deadline == clock() + timedelta(hours=24)
        assert revised.review_notes == "Crop the image"

    async def test_resubmit(self, session, proofs: WorkProofService, clock) -> None:
        proof = await _submitted(session, proofs)
        await proofs.request_revision(proof.id, EMPLOYER, "Crop the image")
        clock.advance(hours=2)

        resubmitted = await proofs.resubmit_work_proof(proof.id, WORKER, "Cropped version")

        assert resubmitted.status == WorkProofStatus.SUBMITTED
        assert resubmitted.submission_number == 2
        assert resubmitted.revision_deadline is None
        assert resubmitted.review_deadline == clock() + timedelta(days=3)
        events = await proofs.get_events(proof.id)
        assert [e.event_type for e in events] == [
            EventType.PROOF_SUBMITTED,
            EventType.PROOF_REVISION_REQUESTED,
            EventType.PROOF_RESUBMITTED,
        ]

    async def test_resubmit_without_request(self, session, proofs: WorkProofService) -> None:
        proof = await _submitted(session, proofs)
        with pytest.raises(InvalidTransitionError):
            await proofs.resubmit_work_proof(proof.id, WORKER, "Again")

    async def test_revision_on_resolved_proof(self, session, proofs: WorkProofService) -> None:
        proof = await _submitted(session, proofs, max_revisions=0)
        await proofs.approve_work_proof(proof.id, EMPLOYER)
        with pytest.raises(DuplicateResolutionError):
            await proofs.request_revision(proof.id, EMPLOYER, "One more thing")


class TestAutoApprove:
    async def test_before_deadline(self, session, proofs: WorkProofService) -> None:
        proof = await _submitted(session, proofs)
        with pytest.raises(InvalidTransitionError):
            await proofs.auto_approve(proof.id)

    async def test_after_review_deadline(self, session, proofs: WorkProofService, clock) -> None:
        proof = await _submitted(session, proofs)
        clock.advance(days=3, seconds=1)
        approved = await proofs.auto_approve(proof.id)
        assert approved.status == WorkProofStatus.AUTO_APPROVED
        assert await _balances(session, WORKER) == (Decimal("0.00"), Decimal("40.00"))

    async def test_after_revision_deadline(
        self, session, proofs: WorkProofService, clock
    ) -> None:
        proof = await _submitted(session, proofs)
        await proofs.request_revision(proof.id, EMPLOYER, "Fix it")
        clock.advance(hours=24, seconds=1)
        approved = await proofs.auto_approve(proof.id)
        assert approved.status == WorkProofStatus.AUTO_APPROVED

    async def test_after_rejection_window(self, session, proofs: WorkProofService, clock) -> None:
        proof = await _submitted(session, proofs)
        await proofs.reject_work_proof(proof.id, EMPLOYER, "Screenshots are blank")
        clock.advance(hours=24, seconds=1)

        approved = await proofs.auto_approve(proof.id)

        assert approved.status == WorkProofStatus.AUTO_APPROVED
        assert approved.review_notes == "auto-approved: rejection was not settled in time"
        assert await _balances(session, WORKER) == (Decimal("0.00"), Decimal("40.00"))
        assert await _balances(session, EMPLOYER) == (Decimal("60.00"), Decimal("0.00"))


class TestDispute:
    async def test_worker_opens_dispute(self, session, proofs: WorkProofService) -> None:
        proof = await _submitted(session, proofs)
        dispute = await proofs.open_work_proof_dispute(
            proof.id,
            WORKER,
            "Employer is stalling",
            requested_action="release payment",
            priority=DisputePriority.HIGH,
        )

        assert dispute.subject_type == SubjectType.WORK_PROOF
        assert dispute.raised_by == WORKER
        assert dispute.priority == DisputePriority.HIGH
        assert dispute.amount == Decimal("40.00")

        frozen = await proofs.get_work_proof(proof.id)
        assert frozen.status == WorkProofStatus.DISPUTED
        with pytest.raises(InvalidTransitionError):
            await proofs.approve_work_proof(proof.id, EMPLOYER)

        events = await proofs.get_events(proof.id)
        assert events[-1].event_type == EventType.DISPUTE_OPENED
        assert events[-1].old_status == "submitted"
        assert events[-1].metadata_json["dispute_id"] == str(dispute.id)

    async def test_outsider_cannot_dispute(self, session, proofs: WorkProofService) -> None:
        proof = await _submitted(session, proofs)
        with pytest.raises(NotParticipantError):
            await proofs.open_work_proof_dispute(proof.id, "mallory", "Spite")
