"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility), with one
exception: ledger writes open a SAVEPOINT so a duplicate reference id
can be absorbed without aborting the caller's transaction.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.exc import IntegrityError

from marketplace_escrow.domain.enums import (
    BalanceType,
    DisputePriority,
    DisputeStatus,
    OrderStatus,
    WorkProofStatus,
)
from marketplace_escrow.domain.money import CENT
from marketplace_escrow.infrastructure.database.orm_models import (
    Dispute,
    EscrowEvent,
    LedgerAccount,
    LedgerTransaction,
    Order,
    WorkProof,
)

if TYPE_CHECKING:
    import uuid
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from marketplace_escrow.domain.enums import EventType, SubjectType


class _BalanceWouldGoNegative(Exception):
    """Rolls back the ledger SAVEPOINT when a guarded update matches no row."""


class OrderRepository:
    """Data access for orders."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, order: Order) -> Order:
        """Insert a new order."""
        self._session.add(order)
        await self._session.flush()
        return order

    async def get_by_id(self, order_id: uuid.UUID, for_update: bool = False) -> Order | None:
        """Fetch an order by its UUID, optionally row-locked and refreshed."""
        stmt = select(Order).where(Order.id == order_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_user(
        self,
        user_id: str,
        role: str | None = None,
        status: OrderStatus | None = None,
        limit: int = 100,
    ) -> list[Order]:
        """Fetch a user's orders as buyer, seller, or either, newest first."""
        if role == "buyer":
            party = Order.buyer_id == user_id
        elif role == "seller":
            party = Order.seller_id == user_id
        else:
            party = or_(Order.buyer_id == user_id, Order.seller_id == user_id)
        stmt = select(Order).where(party)
        if status is not None:
            stmt = stmt.where(Order.status == status.value)
        result = await self._session.execute(
            stmt.order_by(Order.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def ids_past_acceptance_deadline(self, now: datetime, limit: int) -> list[uuid.UUID]:
        """Orders still awaiting the seller after their acceptance deadline."""
        result = await self._session.execute(
            select(Order.id)
            .where(
                Order.status == OrderStatus.AWAITING_ACCEPTANCE.value,
                Order.acceptance_deadline < now,
            )
            .order_by(Order.acceptance_deadline.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def ids_past_review_deadline(self, now: datetime, limit: int) -> list[uuid.UUID]:
        """Delivered orders whose buyer review period has elapsed."""
        result = await self._session.execute(
            select(Order.id)
            .where(
                Order.status == OrderStatus.DELIVERED.value,
                Order.review_deadline < now,
            )
            .order_by(Order.review_deadline.asc())
            .limit(limit)
        )
        return list(result.scalars().all())


class WorkProofRepository:
    """Data access for work proofs."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, proof: WorkProof) -> WorkProof:
        """Insert a new work proof."""
        self._session.add(proof)
        await self._session.flush()
        return proof

    async def get_by_id(self, proof_id: uuid.UUID, for_update: bool = False) -> WorkProof | None:
        """Fetch a work proof by its UUID, optionally row-locked and refreshed."""
        stmt = select(WorkProof).where(WorkProof.id == proof_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_job(self, job_id: str) -> list[WorkProof]:
        """Fetch all proofs for a job, newest first."""
        result = await self._session.execute(
            select(WorkProof)
            .where(WorkProof.job_id == job_id)
            .order_by(WorkProof.submitted_at.desc())
        )
        return list(result.scalars().all())

    async def ids_past_deadline(self, now: datetime, limit: int) -> list[uuid.UUID]:
        """Proofs whose deadline for their current status has elapsed."""
        result = await self._session.execute(
            select(WorkProof.id)
            .where(
                or_(
                    (WorkProof.status == WorkProofStatus.SUBMITTED.value)
                    & (WorkProof.review_deadline < now),
                    (WorkProof.status == WorkProofStatus.REVISION_REQUESTED.value)
                    & (WorkProof.revision_deadline < now),
                    (WorkProof.status == WorkProofStatus.REJECTED.value)
                    & (WorkProof.rejection_deadline < now),
                )
            )
            .order_by(WorkProof.submitted_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())


class DisputeRepository:
    """Data access for disputes."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, dispute: Dispute) -> Dispute:
        """Insert a new dispute."""
        self._session.add(dispute)
        await self._session.flush()
        return dispute

    async def get_by_id(self, dispute_id: uuid.UUID, for_update: bool = False) -> Dispute | None:
        """Fetch a dispute by its UUID, optionally row-locked and refreshed."""
        stmt = select(Dispute).where(Dispute.id == dispute_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_open_for_subject(
        self,
        subject_type: SubjectType,
        subject_id: uuid.UUID,
    ) -> Dispute | None:
        """Fetch the unresolved dispute on a subject, if any."""
        result = await self._session.execute(
            select(Dispute).where(
                Dispute.subject_type == subject_type.value,
                Dispute.subject_id == subject_id,
                Dispute.status != DisputeStatus.RESOLVED.value,
            )
        )
        return result.scalars().first()

    async def search(
        self,
        status: DisputeStatus | None = None,
        priority: DisputePriority | None = None,
        search: str | None = None,
        limit: int = 50,
    ) -> list[Dispute]:
        """List disputes, most urgent first, then newest first."""
        rank = case(
            {p.value: p.rank for p in DisputePriority},
            value=Dispute.priority,
            else_=0,
        )
        stmt = select(Dispute)
        if status is not None:
            stmt = stmt.where(Dispute.status == status.value)
        if priority is not None:
            stmt = stmt.where(Dispute.priority == priority.value)
        if search:
            pattern = f"%{search.lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(Dispute.reason).like(pattern),
                    func.lower(func.coalesce(Dispute.details, "")).like(pattern),
                    func.lower(Dispute.payer_id).like(pattern),
                    func.lower(Dispute.payee_id).like(pattern),
                )
            )
        result = await self._session.execute(
            stmt.order_by(rank.desc(), Dispute.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())


class LedgerRepository:
    """Data access for ledger accounts and transactions."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_account(self, user_id: str) -> LedgerAccount | None:
        """Fetch an account with freshly read balances."""
        result = await self._session.execute(
            select(LedgerAccount)
            .where(LedgerAccount.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_or_create_account(self, user_id: str) -> LedgerAccount:
        """Fetch an account, creating an empty one on first use."""
        account = await self.get_account(user_id)
        if account is not None:
            return account
        try:
            async with self._session.begin_nested():
                self._session.add(LedgerAccount(user_id=user_id))
        except IntegrityError:
            # Created concurrently by another transaction
            pass
        account = await self.get_account(user_id)
        if account is None:
            raise RuntimeError(f"Ledger account for {user_id} could not be created")
        return account

    async def get_by_reference(self, reference_id: str) -> LedgerTransaction | None:
        result = await self._session.execute(
            select(LedgerTransaction).where(LedgerTransaction.reference_id == reference_id)
        )
        return result.scalar_one_or_none()

    async def insert_and_apply(self, txn: LedgerTransaction) -> bool:
        """Insert a transaction and move the balance in one SAVEPOINT.

        Returns:
            False if the balance change would go negative (nothing written),
            True otherwise.

        Raises:
            IntegrityError: If the reference id already exists.
        """
        column = (
            LedgerAccount.deposit_balance
            if txn.balance_type == BalanceType.DEPOSIT.value
            else LedgerAccount.earnings_balance
        )
        try:
            async with self._session.begin_nested():
                self._session.add(txn)
                await self._session.flush()
                result = await self._session.execute(
                    update(LedgerAccount)
                    .where(
                        LedgerAccount.user_id == txn.user_id,
                        column + txn.amount >= 0,
                    )
                    .values({column: column + txn.amount})
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    raise _BalanceWouldGoNegative
        except _BalanceWouldGoNegative:
            return False
        return True

    async def list_transactions(
        self,
        user_id: str | None = None,
        subject_id: uuid.UUID | None = None,
        limit: int = 100,
    ) -> list[LedgerTransaction]:
        """List transactions for a user or a subject, oldest first."""
        stmt = select(LedgerTransaction)
        if user_id is not None:
            stmt = stmt.where(LedgerTransaction.user_id == user_id)
        if subject_id is not None:
            stmt = stmt.where(LedgerTransaction.subject_id == subject_id)
        result = await self._session.execute(
            stmt.order_by(LedgerTransaction.created_at.asc()).limit(limit)
        )
        return list(result.scalars().all())

    async def net_for_subject(self, subject_id: uuid.UUID) -> Decimal:
        """Sum of every signed amount booked against a subject."""
        result = await self._session.execute(
            select(func.coalesce(func.sum(LedgerTransaction.amount), 0)).where(
                LedgerTransaction.subject_id == subject_id
            )
        )
        return Decimal(str(result.scalar_one())).quantize(CENT)


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        subject_type: SubjectType,
        subject_id: uuid.UUID,
        event_type: EventType,
        old_status: str | None,
        new_status: str,
        actor: str,
        metadata: dict | None = None,
        created_at: datetime | None = None,
    ) -> EscrowEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = EscrowEvent(
            subject_type=subject_type.value,
            subject_id=subject_id,
            event_type=event_type.value,
            old_status=old_status,
            new_status=new_status,
            actor=actor,
            metadata_json=metadata,
        )
        if created_at is not None:
            evt.created_at = created_at
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_by_subject(
        self,
        subject_type: SubjectType,
        subject_id: uuid.UUID,
    ) -> list[EscrowEvent]:
        """Fetch all events for a subject in chronological order."""
        result = await self._session.execute(
            select(EscrowEvent)
            .where(
                EscrowEvent.subject_type == subject_type.value,
                EscrowEvent.subject_id == subject_id,
            )
            .order_by(EscrowEvent.created_at.asc(), EscrowEvent.id.asc())
        )
        return list(result.scalars().all())
