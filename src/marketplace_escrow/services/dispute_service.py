"""Dispute Service — admin resolution of disputed orders and work proofs.

A dispute is opened by the order or work proof services when a party
contests the outcome; the subject is frozen in ``disputed`` until an admin
resolves it here. Resolution is write-once: the first resolve wins and
every later or concurrent attempt fails with DuplicateResolutionError.

Decisions:
    approve_worker    -> full release to the seller/worker
    approve_employer  -> full refund to the buyer/employer
    partial_refund    -> split by DISPUTE_PARTIAL_PAYEE_RATIO (default 50/50)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from marketplace_escrow.config import Settings, get_settings
from marketplace_escrow.domain.clock import Clock, utcnow
from marketplace_escrow.domain.enums import (
    DisputeDecision,
    DisputePriority,
    DisputeStatus,
    EventType,
    SubjectType,
)
from marketplace_escrow.domain.exceptions import (
    DisputeNotFoundError,
    DuplicateResolutionError,
    InputValidationError,
    InvalidTransitionError,
    OrderNotFoundError,
    WorkProofNotFoundError,
)
from marketplace_escrow.infrastructure.database.orm_models import Dispute
from marketplace_escrow.infrastructure.database.repositories import (
    DisputeRepository,
    EventRepository,
    OrderRepository,
    WorkProofRepository,
)
from marketplace_escrow.logging_config import get_logger
from marketplace_escrow.services.escrow_service import EscrowService
from marketplace_escrow.services.transition_guard import TransitionGuard

if TYPE_CHECKING:
    import uuid
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession

    from marketplace_escrow.infrastructure.database.orm_models import Order, WorkProof

logger = get_logger(__name__)


def parse_decision(decision: str | DisputeDecision) -> DisputeDecision:
    """Validate an admin decision value."""
    try:
        return DisputeDecision(decision)
    except ValueError as err:
        valid = ", ".join(d.value for d in DisputeDecision)
        raise InputValidationError(
            f"Invalid decision '{decision}'. Must be one of: {valid}", "decision"
        ) from err


class DisputeService:
    """Manages the dispute workflow and its fund movements."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._now = clock or utcnow
        self._dispute_repo = DisputeRepository(session)
        self._order_repo = OrderRepository(session)
        self._proof_repo = WorkProofRepository(session)
        self._event_repo = EventRepository(session)
        self._guard = TransitionGuard(session)
        self._escrow = EscrowService(session)

    # ------------------------------------------------------------------
    # Opening (called by OrderService / WorkProofService)
    # ------------------------------------------------------------------

    async def open_dispute(
        self,
        subject_type: SubjectType,
        subject_id: uuid.UUID,
        payer_id: str,
        payee_id: str,
        raised_by: str,
        amount: Decimal,
        reason: str,
        details: str | None = None,
        requested_action: str | None = None,
        priority: DisputePriority = DisputePriority.MEDIUM,
        previous_status: str | None = None,
    ) -> Dispute:
        """Create a pending dispute record for a subject that just moved to disputed.

        The DISPUTE_OPENED event is recorded against the subject, from
        ``previous_status`` to ``disputed``.
        """
        existing = await self._dispute_repo.get_open_for_subject(subject_type, subject_id)
        if existing is not None:
            raise InvalidTransitionError(
                existing.status, "open_dispute", detail=f"dispute {existing.id} already open"
            )

        now = self._now()
        dispute = await self._dispute_repo.create(
            Dispute(
                subject_type=subject_type.value,
                subject_id=subject_id,
                payer_id=payer_id,
                payee_id=payee_id,
                raised_by=raised_by,
                amount=amount,
                reason=reason,
                details=details,
                requested_action=requested_action,
                priority=priority.value,
                status=DisputeStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            )
        )
        await self._event_repo.record(
            subject_type=subject_type,
            subject_id=subject_id,
            event_type=EventType.DISPUTE_OPENED,
            old_status=previous_status,
            new_status="disputed",
            actor=raised_by,
            metadata={"dispute_id": str(dispute.id), "reason": reason},
            created_at=now,
        )
        logger.info(
            "dispute.opened",
            dispute_id=str(dispute.id),
            subject_type=subject_type.value,
            subject_id=str(subject_id),
            raised_by=raised_by,
        )
        return dispute

    # ------------------------------------------------------------------
    # Admin workflow
    # ------------------------------------------------------------------

    async def start_review(self, dispute_id: uuid.UUID, admin_id: str) -> Dispute:
        """An admin picks up a pending dispute."""
        dispute = await self._get_dispute_or_raise(dispute_id, for_update=True)
        old, _ = await self._guard.transition(
            dispute, "start_review", admin_id=admin_id, updated_at=self._now()
        )
        await self._record_dispute_event(dispute, EventType.DISPUTE_REVIEW_STARTED, old, admin_id)
        logger.info("dispute.review_started", dispute_id=str(dispute_id), admin_id=admin_id)
        return dispute

    async def escalate(
        self,
        dispute_id: uuid.UUID,
        actor: str,
        reason: str | None = None,
    ) -> Dispute:
        """Escalate a dispute; escalated disputes are always urgent."""
        dispute = await self._get_dispute_or_raise(dispute_id, for_update=True)
        notes = dispute.admin_notes
        if reason:
            notes = f"{notes}\n[escalated] {reason}" if notes else f"[escalated] {reason}"
        old, _ = await self._guard.transition(
            dispute,
            "escalate",
            priority=DisputePriority.URGENT.value,
            admin_notes=notes,
            updated_at=self._now(),
        )
        await self._record_dispute_event(
            dispute, EventType.DISPUTE_ESCALATED, old, actor, {"reason": reason}
        )
        logger.info("dispute.escalated", dispute_id=str(dispute_id), by=actor)
        return dispute

    async def resolve(
        self,
        dispute_id: uuid.UUID,
        admin_id: str,
        decision: str | DisputeDecision,
        notes: str | None = None,
    ) -> Dispute:
        """Resolve a dispute and settle the escrowed funds exactly once.

        Raises:
            InputValidationError: Unknown decision value.
            DisputeNotFoundError: No such dispute.
            DuplicateResolutionError: Already resolved, or another admin won
                a concurrent resolve.
        """
        decision = parse_decision(decision)
        dispute = await self._get_dispute_or_raise(dispute_id, for_update=True)
        if dispute.resolution is not None:
            raise DuplicateResolutionError("dispute", str(dispute.id), dispute.status)

        now = self._now()
        old_status, _ = await self._guard.transition(
            dispute,
            "resolve",
            resolution=decision.value,
            admin_id=admin_id,
            admin_notes=notes,
            resolved_at=now,
            updated_at=now,
        )

        subject_type = SubjectType(dispute.subject_type)
        subject = await self._get_subject_or_raise(subject_type, dispute.subject_id)
        if subject_type is SubjectType.ORDER:
            # A resolved order carries exactly one of completed_at / cancelled_at
            closed_at = (
                {"cancelled_at": now}
                if decision is DisputeDecision.APPROVE_EMPLOYER
                else {"completed_at": now}
            )
            subject_old, subject_new = await self._guard.transition(
                subject,
                "resolve_dispute",
                admin_decision=decision.value,
                admin_notes=notes,
                **closed_at,
            )
        else:
            subject_old, subject_new = await self._guard.transition(
                subject,
                "resolve_dispute",
                reviewed_at=now,
                review_notes=notes,
            )

        await self._settle(dispute, subject_type, decision)

        await self._record_dispute_event(
            dispute,
            EventType.DISPUTE_RESOLVED,
            old_status,
            admin_id,
            {"decision": decision.value, "notes": notes},
        )
        await self._event_repo.record(
            subject_type=subject_type,
            subject_id=dispute.subject_id,
            event_type=EventType.DISPUTE_RESOLVED,
            old_status=subject_old,
            new_status=subject_new,
            actor=admin_id,
            metadata={"dispute_id": str(dispute.id), "decision": decision.value},
            created_at=now,
        )
        logger.info(
            "dispute.resolved",
            dispute_id=str(dispute_id),
            decision=decision.value,
            admin_id=admin_id,
        )
        return dispute

    async def resolve_work_proof_dispute(
        self,
        dispute_id: uuid.UUID,
        admin_id: str,
        decision: str | DisputeDecision,
        notes: str | None = None,
    ) -> Dispute:
        """Resolve a dispute that must concern a work proof."""
        dispute = await self._get_dispute_or_raise(dispute_id)
        if dispute.subject_type != SubjectType.WORK_PROOF.value:
            raise InputValidationError(
                f"Dispute {dispute_id} concerns an {dispute.subject_type}, not a work proof",
                "dispute_id",
            )
        return await self.resolve(dispute_id, admin_id, decision, notes)

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_dispute(self, dispute_id: uuid.UUID) -> Dispute:
        return await self._get_dispute_or_raise(dispute_id)

    async def list_disputes(
        self,
        status: DisputeStatus | None = None,
        priority: DisputePriority | None = None,
        search: str | None = None,
        limit: int = 50,
    ) -> list[Dispute]:
        """List disputes for the admin queue, most urgent first."""
        return await self._dispute_repo.search(
            status=status, priority=priority, search=search, limit=limit
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _settle(
        self,
        dispute: Dispute,
        subject_type: SubjectType,
        decision: DisputeDecision,
    ) -> None:
        if decision is DisputeDecision.APPROVE_WORKER:
            await self._escrow.release(
                subject_type, dispute.subject_id, dispute.amount, dispute.payee_id
            )
        elif decision is DisputeDecision.APPROVE_EMPLOYER:
            await self._escrow.refund(
                subject_type, dispute.subject_id, dispute.amount, dispute.payer_id
            )
        else:
            await self._escrow.split(
                subject_type,
                dispute.subject_id,
                dispute.amount,
                payer_id=dispute.payer_id,
                payee_id=dispute.payee_id,
                payee_ratio=self._settings.dispute_partial_payee_ratio,
            )

    async def _get_dispute_or_raise(
        self, dispute_id: uuid.UUID, for_update: bool = False
    ) -> Dispute:
        dispute = await self._dispute_repo.get_by_id(dispute_id, for_update=for_update)
        if dispute is None:
            raise DisputeNotFoundError(str(dispute_id))
        return dispute

    async def _get_subject_or_raise(
        self, subject_type: SubjectType, subject_id: uuid.UUID
    ) -> Order | WorkProof:
        if subject_type is SubjectType.ORDER:
            order = await self._order_repo.get_by_id(subject_id, for_update=True)
            if order is None:
                raise OrderNotFoundError(str(subject_id))
            return order
        proof = await self._proof_repo.get_by_id(subject_id, for_update=True)
        if proof is None:
            raise WorkProofNotFoundError(str(subject_id))
        return proof

    async def _record_dispute_event(
        self,
        dispute: Dispute,
        event_type: EventType,
        old_status: str,
        actor: str,
        metadata: dict | None = None,
    ) -> None:
        await self._event_repo.record(
            subject_type=SubjectType(dispute.subject_type),
            subject_id=dispute.subject_id,
            event_type=event_type,
            old_status=old_status,
            new_status=dispute.status,
            actor=actor,
            metadata={"dispute_id": str(dispute.id), **(metadata or {})},
            created_at=self._now(),
        )
