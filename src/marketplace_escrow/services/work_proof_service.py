"""Work Proof Service — employer review of job submissions.

A worker submits proof against a job and the employer's payment is held
at that moment. The employer then approves (release + optional tip),
rejects, or asks for a revision, up to the proof's revision limit.

A rejection is not final until the worker answers it: accepting refunds
the employer, disputing hands the money to an admin. While a revision is
pending the worker may also withdraw, which refunds the employer. Any
proof whose current deadline (review, revision response or rejection
response) passes is auto-approved by the sweeper through the same
approval path.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from marketplace_escrow.config import Settings, get_settings
from marketplace_escrow.domain.clock import Clock, utcnow
from marketplace_escrow.domain.enums import (
    SYSTEM_ACTOR,
    DisputePriority,
    EventType,
    SubjectType,
    WorkProofStatus,
)
from marketplace_escrow.domain.evidence import normalize_evidence
from marketplace_escrow.domain.exceptions import (
    InputValidationError,
    InvalidTransitionError,
    NotParticipantError,
    RevisionLimitExceededError,
    WorkProofNotFoundError,
)
from marketplace_escrow.domain.money import ZERO, to_amount
from marketplace_escrow.infrastructure.database.orm_models import WorkProof
from marketplace_escrow.infrastructure.database.repositories import (
    EventRepository,
    WorkProofRepository,
)
from marketplace_escrow.logging_config import get_logger
from marketplace_escrow.services.dispute_service import DisputeService
from marketplace_escrow.services.escrow_service import EscrowService
from marketplace_escrow.services.transition_guard import TransitionGuard

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from marketplace_escrow.infrastructure.database.orm_models import Dispute, EscrowEvent

logger = get_logger(__name__)

AUTO_APPROVE_NOTE = "auto-approved: employer did not act"
REJECTION_TIMEOUT_NOTE = "auto-approved: rejection was not settled in time"


class WorkProofService:
    """Manages submission and review of work proofs."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._now = clock or utcnow
        self._proof_repo = WorkProofRepository(session)
        self._event_repo = EventRepository(session)
        self._guard = TransitionGuard(session)
        self._escrow = EscrowService(session)
        self._disputes = DisputeService(session, settings=self._settings, clock=self._now)

    # ------------------------------------------------------------------
    # Worker actions
    # ------------------------------------------------------------------

    async def submit_work_proof(
        self,
        job_id: str,
        worker_id: str,
        employer_id: str,
        payment_amount: Decimal,
        submission_text: str,
        evidence: list[dict[str, Any]] | None = None,
        max_revision_requests: int | None = None,
    ) -> WorkProof:
        """Submit proof of work and hold the payment from the employer.

        Raises:
            InputValidationError: Empty submission, non-positive amount, or
                malformed evidence.
            InsufficientBalanceError: The employer cannot cover the payment.
        """
        amount = to_amount(payment_amount)
        if amount <= ZERO:
            raise InputValidationError("Payment amount must be positive", "payment_amount")
        if not submission_text or not submission_text.strip():
            raise InputValidationError("Submission text must not be empty", "submission_text")
        if worker_id == employer_id:
            raise InputValidationError("Worker and employer must be different users", "worker_id")
        if max_revision_requests is None:
            max_revision_requests = self._settings.max_revision_requests
        if max_revision_requests < 0:
            raise InputValidationError(
                "max_revision_requests must not be negative", "max_revision_requests"
            )
        items = normalize_evidence(evidence)

        await self._escrow.ensure_funds(employer_id, amount)

        now = self._now()
        proof_id = uuid.uuid4()
        await self._escrow.hold(SubjectType.WORK_PROOF, proof_id, amount, employer_id)

        proof = await self._proof_repo.create(
            WorkProof(
                id=proof_id,
                job_id=job_id,
                worker_id=worker_id,
                employer_id=employer_id,
                payment_amount=amount,
                status=WorkProofStatus.SUBMITTED.value,
                submission_text=submission_text.strip(),
                evidence=items,
                submission_number=1,
                revision_count=0,
                max_revision_requests=max_revision_requests,
                submitted_at=now,
                review_deadline=now + self._settings.work_proof_review_period,
            )
        )
        await self._record(
            proof, EventType.PROOF_SUBMITTED, None, worker_id, {"amount": str(amount)}
        )
        logger.info(
            "work_proof.submitted",
            proof_id=str(proof.id),
            job_id=job_id,
            worker_id=worker_id,
            amount=str(amount),
        )
        return proof

    async def resubmit_work_proof(
        self,
        proof_id: uuid.UUID,
        worker_id: str,
        submission_text: str,
        evidence: list[dict[str, Any]] | None = None,
    ) -> WorkProof:
        """Answer a revision request with a new submission."""
        if not submission_text or not submission_text.strip():
            raise InputValidationError("Submission text must not be empty", "submission_text")
        items = normalize_evidence(evidence)

        proof = await self._get_proof_or_raise(proof_id, for_update=True)
        self._require_party(proof, worker_id, "worker")

        now = self._now()
        old, _ = await self._guard.transition(
            proof,
            "resubmit",
            submission_text=submission_text.strip(),
            evidence=items,
            submission_number=proof.submission_number + 1,
            submitted_at=now,
            revision_deadline=None,
            review_deadline=now + self._settings.work_proof_review_period,
        )
        await self._record(
            proof,
            EventType.PROOF_RESUBMITTED,
            old,
            worker_id,
            {"submission_number": proof.submission_number},
        )
        logger.info(
            "work_proof.resubmitted",
            proof_id=str(proof_id),
            submission_number=proof.submission_number,
        )
        return proof

    # ------------------------------------------------------------------
    # Employer review
    # ------------------------------------------------------------------

    async def approve_work_proof(
        self,
        proof_id: uuid.UUID,
        employer_id: str,
        notes: str | None = None,
        tip_amount: Decimal | None = None,
    ) -> WorkProof:
        """Approve a proof: release the payment, plus an optional tip."""
        tip = to_amount(tip_amount) if tip_amount is not None else ZERO
        if tip < ZERO:
            raise InputValidationError("Tip amount must not be negative", "tip_amount")

        proof = await self._get_proof_or_raise(proof_id, for_update=True)
        self._require_party(proof, employer_id, "employer")
        if tip > ZERO:
            self._guard.check(proof, "approve")
            await self._escrow.ensure_funds(employer_id, tip)

        return await self._approve(
            proof,
            event_name="approve",
            event_type=EventType.PROOF_APPROVED,
            actor=employer_id,
            notes=notes,
            tip=tip,
        )

    async def auto_approve(self, proof_id: uuid.UUID) -> WorkProof:
        """Forced approval once the applicable review deadline has passed."""
        proof = await self._get_proof_or_raise(proof_id, for_update=True)
        deadline = self._active_deadline(proof)
        if deadline is None or not self._now() > deadline:
            self._guard.check(proof, "auto_approve")
            raise InvalidTransitionError(
                proof.status, "auto_approve", detail="review deadline not reached"
            )
        return await self._approve(
            proof,
            event_name="auto_approve",
            event_type=EventType.PROOF_AUTO_APPROVED,
            actor=SYSTEM_ACTOR,
            notes=(
                REJECTION_TIMEOUT_NOTE
                if proof.status == WorkProofStatus.REJECTED
                else AUTO_APPROVE_NOTE
            ),
            tip=ZERO,
        )

    async def reject_work_proof(
        self,
        proof_id: uuid.UUID,
        employer_id: str,
        reason: str,
    ) -> WorkProof:
        """Reject a proof and open the worker's response window.

        The payment stays in escrow until the worker accepts the rejection
        (refund) or disputes it. If the worker does neither before
        rejection_deadline, the sweeper auto-approves the proof.
        """
        if not reason or not reason.strip():
            raise InputValidationError("Rejection reason must not be empty", "reason")

        proof = await self._get_proof_or_raise(proof_id, for_update=True)
        self._require_party(proof, employer_id, "employer")
        self._guard.check(proof, "reject")
        self._require_before_deadline(proof, "reject")

        now = self._now()
        old, _ = await self._guard.transition(
            proof,
            "reject",
            rejection_reason=reason.strip(),
            reviewed_at=now,
            revision_deadline=None,
            rejection_deadline=now + self._settings.rejection_response_timeout,
        )
        await self._record(proof, EventType.PROOF_REJECTED, old, employer_id, {"reason": reason})
        logger.info(
            "work_proof.rejected",
            proof_id=str(proof_id),
            respond_by=proof.rejection_deadline.isoformat(),
        )
        return proof

    async def request_revision(
        self,
        proof_id: uuid.UUID,
        employer_id: str,
        notes: str,
    ) -> WorkProof:
        """Ask the worker to revise, while the revision limit allows it.

        Raises:
            RevisionLimitExceededError: revision_count already equals
                max_revision_requests.
        """
        if not notes or not notes.strip():
            raise InputValidationError("Revision notes must not be empty", "notes")

        proof = await self._get_proof_or_raise(proof_id, for_update=True)
        self._require_party(proof, employer_id, "employer")
        self._guard.check(proof, "request_revision")
        if proof.revision_count >= proof.max_revision_requests:
            raise RevisionLimitExceededError(proof.status, proof.max_revision_requests)
        self._require_before_deadline(proof, "request_revision")

        now = self._now()
        old, _ = await self._guard.transition(
            proof,
            "request_revision",
            revision_count=proof.revision_count + 1,
            review_notes=notes.strip(),
            reviewed_at=now,
            revision_deadline=now + self._settings.revision_response_timeout,
        )
        await self._record(
            proof,
            EventType.PROOF_REVISION_REQUESTED,
            old,
            employer_id,
            {"revision_count": proof.revision_count, "notes": notes.strip()},
        )
        logger.info(
            "work_proof.revision_requested",
            proof_id=str(proof_id),
            revision_count=proof.revision_count,
            max_revisions=proof.max_revision_requests,
        )
        return proof

    # ------------------------------------------------------------------
    # Worker responses
    # ------------------------------------------------------------------

    async def accept_rejection(self, proof_id: uuid.UUID, worker_id: str) -> WorkProof:
        """Worker accepts a rejection; the held payment goes back to the employer."""
        proof = await self._get_proof_or_raise(proof_id, for_update=True)
        self._require_party(proof, worker_id, "worker")
        self._guard.check(proof, "accept_rejection")
        self._require_before_deadline(proof, "accept_rejection")

        old, _ = await self._guard.transition(
            proof, "accept_rejection", worker_responded_at=self._now()
        )
        await self._escrow.refund(
            SubjectType.WORK_PROOF, proof.id, proof.payment_amount, proof.employer_id
        )
        await self._record(proof, EventType.PROOF_REJECTION_ACCEPTED, old, worker_id)
        logger.info("work_proof.rejection_accepted", proof_id=str(proof_id))
        return proof

    async def withdraw_work_proof(
        self,
        proof_id: uuid.UUID,
        worker_id: str,
        reason: str | None = None,
    ) -> WorkProof:
        """Worker gives up instead of revising; the employer is refunded."""
        proof = await self._get_proof_or_raise(proof_id, for_update=True)
        self._require_party(proof, worker_id, "worker")
        self._guard.check(proof, "withdraw")
        self._require_before_deadline(proof, "withdraw")

        old, _ = await self._guard.transition(
            proof, "withdraw", worker_responded_at=self._now(), revision_deadline=None
        )
        await self._escrow.refund(
            SubjectType.WORK_PROOF, proof.id, proof.payment_amount, proof.employer_id
        )
        await self._record(proof, EventType.PROOF_WITHDRAWN, old, worker_id, {"reason": reason})
        logger.info("work_proof.withdrawn", proof_id=str(proof_id))
        return proof

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    async def open_work_proof_dispute(
        self,
        proof_id: uuid.UUID,
        actor_id: str,
        reason: str,
        details: str | None = None,
        requested_action: str | None = None,
        priority: DisputePriority = DisputePriority.MEDIUM,
    ) -> Dispute:
        """Either party contests the review; the proof is frozen until resolved."""
        if not reason or not reason.strip():
            raise InputValidationError("Dispute reason must not be empty", "reason")

        proof = await self._get_proof_or_raise(proof_id, for_update=True)
        if proof.status == WorkProofStatus.REJECTED:
            # Only the worker can contest a rejection, and only while it is open
            self._require_party(proof, actor_id, "worker")
            self._require_before_deadline(proof, "open_dispute")
        elif actor_id not in (proof.worker_id, proof.employer_id):
            raise NotParticipantError(actor_id, "worker or employer", str(proof.id))

        old, _ = await self._guard.transition(proof, "open_dispute")
        return await self._disputes.open_dispute(
            subject_type=SubjectType.WORK_PROOF,
            subject_id=proof.id,
            payer_id=proof.employer_id,
            payee_id=proof.worker_id,
            raised_by=actor_id,
            amount=proof.payment_amount,
            reason=reason.strip(),
            details=details,
            requested_action=requested_action,
            priority=priority,
            previous_status=old,
        )

    async def resolve_work_proof_dispute(
        self,
        dispute_id: uuid.UUID,
        admin_id: str,
        decision: str,
        notes: str | None = None,
    ) -> Dispute:
        return await self._disputes.resolve_work_proof_dispute(
            dispute_id, admin_id, decision, notes
        )

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_work_proof(self, proof_id: uuid.UUID) -> WorkProof:
        return await self._get_proof_or_raise(proof_id)

    async def list_for_job(self, job_id: str) -> list[WorkProof]:
        return await self._proof_repo.get_by_job(job_id)

    async def get_events(self, proof_id: uuid.UUID) -> list[EscrowEvent]:
        await self._get_proof_or_raise(proof_id)
        return await self._event_repo.get_by_subject(SubjectType.WORK_PROOF, proof_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _approve(
        self,
        proof: WorkProof,
        event_name: str,
        event_type: EventType,
        actor: str,
        notes: str | None,
        tip: Decimal,
    ) -> WorkProof:
        changes: dict[str, Any] = {"reviewed_at": self._now(), "review_notes": notes}
        if tip > ZERO:
            changes["tip_amount"] = tip
        old, _ = await self._guard.transition(proof, event_name, **changes)

        await self._escrow.release(
            SubjectType.WORK_PROOF, proof.id, proof.payment_amount, proof.worker_id
        )
        if tip > ZERO:
            await self._escrow.tip(
                SubjectType.WORK_PROOF, proof.id, tip, proof.employer_id, proof.worker_id
            )
        await self._record(
            proof,
            event_type,
            old,
            actor,
            {"amount": str(proof.payment_amount), "tip": str(tip)},
        )
        logger.info(
            "work_proof.approved",
            proof_id=str(proof.id),
            by=actor,
            tip=str(tip),
        )
        return proof

    def _active_deadline(self, proof: WorkProof) -> datetime | None:
        if proof.status == WorkProofStatus.SUBMITTED:
            return proof.review_deadline
        if proof.status == WorkProofStatus.REVISION_REQUESTED:
            return proof.revision_deadline
        if proof.status == WorkProofStatus.REJECTED:
            return proof.rejection_deadline
        return None

    def _require_before_deadline(self, proof: WorkProof, attempted: str) -> None:
        deadline = self._active_deadline(proof)
        if deadline is not None and self._now() > deadline:
            raise InvalidTransitionError(
                proof.status, attempted, detail="response deadline has passed"
            )

    async def _record(
        self,
        proof: WorkProof,
        event_type: EventType,
        old_status: str | None,
        actor: str,
        metadata: dict | None = None,
    ) -> None:
        await self._event_repo.record(
            subject_type=SubjectType.WORK_PROOF,
            subject_id=proof.id,
            event_type=event_type,
            old_status=old_status,
            new_status=proof.status,
            actor=actor,
            metadata=metadata,
            created_at=self._now(),
        )

    async def _get_proof_or_raise(
        self, proof_id: uuid.UUID, for_update: bool = False
    ) -> WorkProof:
        proof = await self._proof_repo.get_by_id(proof_id, for_update=for_update)
        if proof is None:
            raise WorkProofNotFoundError(str(proof_id))
        return proof

    @staticmethod
    def _require_party(proof: WorkProof, user_id: str, role: str) -> None:
        expected = proof.worker_id if role == "worker" else proof.employer_id
        if user_id != expected:
            raise NotParticipantError(user_id, role, str(proof.id))
