"""Domain exceptions for the marketplace escrow engine.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.
"""


class EscrowError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "ESCROW_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Lookup Errors ---


class NotFoundError(EscrowError):
    """Raised when a referenced record does not exist."""

    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(
            message=f"{kind.replace('_', ' ').capitalize()} not found: {record_id}",
            code=f"{kind.upper()}_NOT_FOUND",
        )
        self.kind = kind
        self.record_id = record_id


class OrderNotFoundError(NotFoundError):
    def __init__(self, order_id: str) -> None:
        super().__init__("order", order_id)


class WorkProofNotFoundError(NotFoundError):
    def __init__(self, proof_id: str) -> None:
        super().__init__("work_proof", proof_id)


class DisputeNotFoundError(NotFoundError):
    def __init__(self, dispute_id: str) -> None:
        super().__init__("dispute", dispute_id)


# --- State Machine Errors ---


class InvalidTransitionError(EscrowError):
    """Raised when an action is not legal from the record's current state.

    Example: releasing payment on an order that is still in_progress.
    """

    def __init__(self, current_state: str, attempted: str, detail: str = "") -> None:
        message = f"Invalid transition: cannot {attempted} from {current_state}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message=message, code="INVALID_TRANSITION")
        self.current_state = current_state
        self.attempted = attempted


class RevisionLimitExceededError(InvalidTransitionError):
    """Raised when an employer asks for more revisions than the proof allows."""

    def __init__(self, current_state: str, max_revisions: int) -> None:
        super().__init__(
            current_state,
            "request_revision",
            detail=f"revision limit of {max_revisions} reached",
        )
        self.code = "REVISION_LIMIT_EXCEEDED"
        self.max_revisions = max_revisions


class DuplicateResolutionError(EscrowError):
    """Raised when a work proof or dispute has already been resolved."""

    def __init__(self, subject: str, subject_id: str, current_state: str) -> None:
        super().__init__(
            message=f"{subject.replace('_', ' ').capitalize()} {subject_id} "
            f"is already resolved ({current_state})",
            code="DUPLICATE_RESOLUTION",
        )
        self.subject = subject
        self.subject_id = subject_id
        self.current_state = current_state


# --- Ledger Errors ---


class InsufficientBalanceError(EscrowError):
    """Raised when a debit would take a balance below zero."""

    def __init__(self, user_id: str, required: str, available: str) -> None:
        super().__init__(
            message=(
                f"Insufficient balance for {user_id}: "
                f"required {required}, available {available}"
            ),
            code="INSUFFICIENT_BALANCE",
        )
        self.user_id = user_id
        self.required = required
        self.available = available


# --- Input Errors ---


class InputValidationError(EscrowError):
    """Raised when caller-supplied input breaks a business rule."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message=message, code="VALIDATION_ERROR")
        self.field = field


class NotParticipantError(InputValidationError):
    """Raised when the acting user is not the party allowed to act."""

    def __init__(self, user_id: str, role: str, subject_id: str) -> None:
        super().__init__(message=f"User {user_id} is not the {role} of {subject_id}")
        self.code = "NOT_PARTICIPANT"
        self.user_id = user_id
        self.role = role
