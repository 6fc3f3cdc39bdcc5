"""SQLAlchemy 2.0 ORM models for the marketplace escrow engine.

Tables:
    1. orders               — Service orders between a buyer and a seller.
    2. work_proofs          — Job submissions reviewed by an employer.
    3. disputes             — Admin-resolved disagreements on orders or proofs.
    4. ledger_accounts      — Per-user deposit and earnings balances.
    5. ledger_transactions  — Every balance movement, keyed by a unique reference id.
    6. escrow_events        — Append-only audit log of every state transition.

Design decisions:
    - UUIDs as primary keys.
    - Decimal for money (no floating point rounding errors).
    - Orders, work proofs and disputes carry a version counter used as an
      optimistic lock, so a stale read can never commit a transition.
    - CHECK constraints on status and balances mirror the domain rules.
    - Deadlines are stored columns so the sweeper survives restarts.
    - escrow_events is append-only: no UPDATE or DELETE at the application level.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from marketplace_escrow.domain.enums import (
    DisputePriority,
    DisputeStatus,
    OrderStatus,
    WorkProofStatus,
)

JSONType = JSON().with_variant(JSONB(), "postgresql")
# SQLite only autoincrements an INTEGER PRIMARY KEY.
EventIdType = BigInteger().with_variant(Integer(), "sqlite")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _in_clause(values: list[str]) -> str:
    return ", ".join(f"'{v}'" for v in values)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime stored as UTC on every backend.

    SQLite has no timezone support; values are written as naive UTC and
    come back with tzinfo re-attached.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):  # noqa: ANN001
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):  # noqa: ANN001
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# 1. orders
# ---------------------------------------------------------------------------
class Order(Base):
    """A buyer's paid order for a seller's service."""

    __tablename__ = "orders"

    # --- Primary Key ---
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Participants ---
    service_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Catalog service this order was placed for",
    )
    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # --- Financials ---
    price: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
        comment="Amount held from the buyer at creation; never changes",
    )

    # --- Status (guarded by OrderStateMachine) ---
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=OrderStatus.AWAITING_ACCEPTANCE.value,
    )

    # --- Content ---
    requirements: Mapped[str | None] = mapped_column(Text, nullable=True)
    deliverables: Mapped[dict | None] = mapped_column(
        JSONType,
        nullable=True,
        default=None,
        comment='{"message": str, "evidence": [{kind, content, filename}]}',
    )
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Dispute ---
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    dispute_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    admin_decision: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
        comment="Dispute resolution; written once",
    )
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    accepted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    disputed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # --- Deadlines ---
    acceptance_deadline: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        comment="created_at + acceptance window",
    )
    review_deadline: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
        comment="delivered_at + review period; set on delivery",
    )

    # --- Optimistic lock ---
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_in_clause([s.value for s in OrderStatus])})",
            name="ck_order_valid_status",
        ),
        CheckConstraint("price > 0", name="ck_order_positive_price"),
        Index("idx_order_status", "status"),
        Index("idx_order_buyer", "buyer_id"),
        Index("idx_order_seller", "seller_id"),
        Index("idx_order_acceptance_deadline", "status", "acceptance_deadline"),
        Index("idx_order_review_deadline", "status", "review_deadline"),
    )

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status} price={self.price}>"


# ---------------------------------------------------------------------------
# 2. work_proofs
# ---------------------------------------------------------------------------
class WorkProof(Base):
    """Proof of work a worker submitted against a job."""

    __tablename__ = "work_proofs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Participants ---
    job_id: Mapped[str] = mapped_column(String(64), nullable=False)
    worker_id: Mapped[str] = mapped_column(String(64), nullable=False)
    employer_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # --- Financials ---
    payment_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
        comment="Amount held from the employer for this submission",
    )
    tip_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)

    # --- Status (guarded by WorkProofStateMachine) ---
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=WorkProofStatus.SUBMITTED.value,
    )

    # --- Submission ---
    submission_text: Mapped[str] = mapped_column(Text, nullable=False)
    evidence: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    submission_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # --- Review ---
    revision_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_revision_requests: Mapped[int] = mapped_column(Integer, nullable=False)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Timestamps & deadlines ---
    submitted_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    reviewed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    review_deadline: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
        comment="Auto-approval deadline while submitted",
    )
    revision_deadline: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
        comment="Auto-approval deadline after a revision request",
    )
    rejection_deadline: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
        comment="Worker must accept or dispute a rejection before this",
    )
    worker_responded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_in_clause([s.value for s in WorkProofStatus])})",
            name="ck_proof_valid_status",
        ),
        CheckConstraint("payment_amount > 0", name="ck_proof_positive_amount"),
        CheckConstraint(
            "revision_count >= 0 AND revision_count <= max_revision_requests",
            name="ck_proof_revision_bounds",
        ),
        Index("idx_proof_status", "status"),
        Index("idx_proof_job", "job_id"),
        Index("idx_proof_worker", "worker_id"),
        Index("idx_proof_employer", "employer_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<WorkProof id={self.id} status={self.status} "
            f"revisions={self.revision_count}/{self.max_revision_requests}>"
        )


# ---------------------------------------------------------------------------
# 3. disputes
# ---------------------------------------------------------------------------
class Dispute(Base):
    """A disagreement on an order or work proof awaiting an admin decision."""

    __tablename__ = "disputes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Subject ---
    subject_type: Mapped[str] = mapped_column(String(20), nullable=False)
    subject_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    payer_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Buyer or employer; receives refunds",
    )
    payee_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Seller or worker; receives releases",
    )
    raised_by: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    # --- Workflow ---
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DisputeStatus.PENDING.value,
    )
    priority: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=DisputePriority.MEDIUM.value,
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    requested_action: Mapped[str | None] = mapped_column(String(32), nullable=True)

    # --- Resolution (write-once) ---
    resolution: Mapped[str | None] = mapped_column(String(32), nullable=True)
    admin_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_in_clause([s.value for s in DisputeStatus])})",
            name="ck_dispute_valid_status",
        ),
        CheckConstraint(
            f"priority IN ({_in_clause([p.value for p in DisputePriority])})",
            name="ck_dispute_valid_priority",
        ),
        CheckConstraint(
            "(status = 'resolved') = (resolution IS NOT NULL)",
            name="ck_dispute_resolution_matches_status",
        ),
        Index("idx_dispute_status", "status"),
        Index("idx_dispute_subject", "subject_type", "subject_id"),
        Index("idx_dispute_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Dispute id={self.id} {self.subject_type}={self.subject_id} "
            f"status={self.status} resolution={self.resolution}>"
        )


# ---------------------------------------------------------------------------
# 4. ledger_accounts
# ---------------------------------------------------------------------------
class LedgerAccount(Base):
    """A user's wallet: spendable deposit balance and withdrawable earnings."""

    __tablename__ = "ledger_accounts"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    deposit_balance: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
        default=Decimal("0.00"),
    )
    earnings_balance: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
        default=Decimal("0.00"),
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint("deposit_balance >= 0", name="ck_account_deposit_non_negative"),
        CheckConstraint("earnings_balance >= 0", name="ck_account_earnings_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerAccount user={self.user_id} deposit={self.deposit_balance} "
            f"earnings={self.earnings_balance}>"
        )


# ---------------------------------------------------------------------------
# 5. ledger_transactions
# ---------------------------------------------------------------------------
class LedgerTransaction(Base):
    """One signed movement on one balance. Replays of a reference id are no-ops."""

    __tablename__ = "ledger_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
        comment="Signed: negative for debits",
    )
    balance_type: Mapped[str] = mapped_column(String(16), nullable=False)
    reference_id: Mapped[str] = mapped_column(
        String(160),
        nullable=False,
        unique=True,
        comment='"{kind}:{subject_id}:{transition}"',
    )
    subject_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint(
            "type IN ('payment', 'refund', 'release', 'deposit')",
            name="ck_txn_valid_type",
        ),
        CheckConstraint(
            "balance_type IN ('deposit', 'earnings')",
            name="ck_txn_valid_balance_type",
        ),
        Index("idx_txn_user", "user_id", "created_at"),
        Index("idx_txn_subject", "subject_id"),
    )

    def __repr__(self) -> str:
        return f"<LedgerTransaction ref={self.reference_id} {self.user_id} {self.amount}>"


# ---------------------------------------------------------------------------
# 6. escrow_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class EscrowEvent(Base):
    """Immutable audit record of a transition on an order, work proof or dispute."""

    __tablename__ = "escrow_events"

    id: Mapped[int] = mapped_column(EventIdType, primary_key=True, autoincrement=True)
    subject_type: Mapped[str] = mapped_column(String(20), nullable=False)
    subject_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    old_status: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
        comment="Status before this event (null for creation)",
    )
    new_status: Mapped[str] = mapped_column(String(32), nullable=False)
    actor: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="User id, admin id, or system/deadline",
    )
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        default=None,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_event_subject", "subject_type", "subject_id"),
        Index("idx_event_type", "event_type"),
        Index("idx_event_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<EscrowEvent {self.subject_type}={self.subject_id} type={self.event_type} "
            f"{self.old_status}->{self.new_status}>"
        )
