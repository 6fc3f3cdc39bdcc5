"""Domain layer — pure business logic with zero framework dependencies."""

from marketplace_escrow.domain.enums import (
    SYSTEM_ACTOR,
    BalanceType,
    DisputeDecision,
    DisputePriority,
    DisputeStatus,
    EventType,
    EvidenceKind,
    OrderStatus,
    SubjectType,
    TransactionType,
    WorkProofStatus,
)
from marketplace_escrow.domain.exceptions import (
    DisputeNotFoundError,
    DuplicateResolutionError,
    EscrowError,
    InputValidationError,
    InsufficientBalanceError,
    InvalidTransitionError,
    NotFoundError,
    NotParticipantError,
    OrderNotFoundError,
    RevisionLimitExceededError,
    WorkProofNotFoundError,
)
from marketplace_escrow.domain.state_machine import (
    DisputeStateMachine,
    OrderStateMachine,
    WorkProofStateMachine,
    validate_transition,
)

__all__ = [
    "SYSTEM_ACTOR",
    "BalanceType",
    "DisputeDecision",
    "DisputePriority",
    "DisputeStatus",
    "EventType",
    "EvidenceKind",
    "OrderStatus",
    "SubjectType",
    "TransactionType",
    "WorkProofStatus",
    "DisputeNotFoundError",
    "DuplicateResolutionError",
    "EscrowError",
    "InputValidationError",
    "InsufficientBalanceError",
    "InvalidTransitionError",
    "NotFoundError",
    "NotParticipantError",
    "OrderNotFoundError",
    "RevisionLimitExceededError",
    "WorkProofNotFoundError",
    "DisputeStateMachine",
    "OrderStateMachine",
    "WorkProofStateMachine",
    "validate_transition",
]
