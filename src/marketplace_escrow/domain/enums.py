"""Domain enumerations for the marketplace escrow engine.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum

# Actor recorded on every transition forced by an elapsed deadline.
SYSTEM_ACTOR = "system/deadline"


class OrderStatus(enum.StrEnum):
    """Lifecycle states of a marketplace order.

    State transitions are enforced by OrderStateMachine.
    See domain/state_machine.py for the transition table.
    """

    AWAITING_ACCEPTANCE = "awaiting_acceptance"
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"
    DISPUTE_RESOLVED = "dispute_resolved"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_ORDER_STATUSES


_TERMINAL_ORDER_STATUSES = frozenset(
    {OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.DISPUTE_RESOLVED}
)


class WorkProofStatus(enum.StrEnum):
    """Review states of a work proof submitted against a job."""

    SUBMITTED = "submitted"
    APPROVED = "approved"
    AUTO_APPROVED = "auto_approved"
    REJECTED = "rejected"
    REJECTION_ACCEPTED = "rejection_accepted"
    REVISION_REQUESTED = "revision_requested"
    CANCELLED_BY_WORKER = "cancelled_by_worker"
    DISPUTED = "disputed"
    DISPUTE_RESOLVED = "dispute_resolved"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_PROOF_STATUSES


_TERMINAL_PROOF_STATUSES = frozenset(
    {
        WorkProofStatus.APPROVED,
        WorkProofStatus.AUTO_APPROVED,
        WorkProofStatus.REJECTION_ACCEPTED,
        WorkProofStatus.CANCELLED_BY_WORKER,
        WorkProofStatus.DISPUTE_RESOLVED,
    }
)


class DisputeStatus(enum.StrEnum):
    """Admin workflow states of a dispute."""

    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


class DisputePriority(enum.StrEnum):
    """Triage priority of a dispute, lowest to highest."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    DisputePriority.LOW: 1,
    DisputePriority.MEDIUM: 2,
    DisputePriority.HIGH: 3,
    DisputePriority.URGENT: 4,
}


class DisputeDecision(enum.StrEnum):
    """Admin resolution of a dispute.

    The payee is the seller (orders) or worker (work proofs); the payer is
    the buyer or employer.
    """

    APPROVE_WORKER = "approve_worker"
    APPROVE_EMPLOYER = "approve_employer"
    PARTIAL_REFUND = "partial_refund"


class SubjectType(enum.StrEnum):
    """What an escrow event or dispute is attached to."""

    ORDER = "order"
    WORK_PROOF = "work_proof"


class TransactionType(enum.StrEnum):
    """Kind of a ledger transaction."""

    PAYMENT = "payment"
    REFUND = "refund"
    RELEASE = "release"
    DEPOSIT = "deposit"


class BalanceType(enum.StrEnum):
    """Which of an account's two balances a transaction touches."""

    DEPOSIT = "deposit"
    EARNINGS = "earnings"


class EvidenceKind(enum.StrEnum):
    """Tag of an evidence item attached to a delivery or work proof."""

    IMAGE = "image"
    FILE = "file"
    LINK = "link"


class EventType(enum.StrEnum):
    """Types of audit events recorded in the escrow_events table.

    Every state transition produces exactly one event.
    """

    # Orders
    ORDER_CREATED = "ORDER_CREATED"
    ORDER_ACCEPTED = "ORDER_ACCEPTED"
    ORDER_DECLINED = "ORDER_DECLINED"
    ORDER_STARTED = "ORDER_STARTED"
    ORDER_DELIVERED = "ORDER_DELIVERED"
    ORDER_COMPLETED = "ORDER_COMPLETED"
    ORDER_AUTO_RELEASED = "ORDER_AUTO_RELEASED"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    ORDER_ACCEPTANCE_EXPIRED = "ORDER_ACCEPTANCE_EXPIRED"
    ORDER_REQUIREMENTS_UPDATED = "ORDER_REQUIREMENTS_UPDATED"

    # Work proofs
    PROOF_SUBMITTED = "PROOF_SUBMITTED"
    PROOF_RESUBMITTED = "PROOF_RESUBMITTED"
    PROOF_APPROVED = "PROOF_APPROVED"
    PROOF_AUTO_APPROVED = "PROOF_AUTO_APPROVED"
    PROOF_REJECTED = "PROOF_REJECTED"
    PROOF_REJECTION_ACCEPTED = "PROOF_REJECTION_ACCEPTED"
    PROOF_WITHDRAWN = "PROOF_WITHDRAWN"
    PROOF_REVISION_REQUESTED = "PROOF_REVISION_REQUESTED"

    # Disputes
    DISPUTE_OPENED = "DISPUTE_OPENED"
    DISPUTE_REVIEW_STARTED = "DISPUTE_REVIEW_STARTED"
    DISPUTE_ESCALATED = "DISPUTE_ESCALATED"
    DISPUTE_RESOLVED = "DISPUTE_RESOLVED"
