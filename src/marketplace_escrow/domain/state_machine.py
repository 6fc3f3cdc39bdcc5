"""Transition guards for orders, work proofs and disputes.

Uses python-statemachine to enforce legal state transitions at the domain
level. Whether the action comes from a buyer, an admin or the deadline
sweeper, an illegal transition (e.g. completed -> cancelled) raises
TransitionNotAllowed before any field on the ORM model is touched.

A machine is instantiated per record from the record's stored status,
fired once, and thrown away.

Order transition table:
    awaiting_acceptance -> pending           (accept)
    awaiting_acceptance -> cancelled         (decline, expire_acceptance)
    pending             -> in_progress       (start_work)
    in_progress         -> delivered         (deliver)
    delivered           -> completed         (release, auto_release)
    delivered           -> disputed          (open_dispute)
    awaiting_acceptance|pending|in_progress|delivered -> cancelled   (cancel)
    disputed            -> dispute_resolved  (resolve_dispute)

Work proof transition table:
    submitted|revision_requested -> approved            (approve)
    submitted|revision_requested|rejected -> auto_approved  (auto_approve)
    submitted|revision_requested -> rejected            (reject)
    submitted|revision_requested -> revision_requested  (request_revision)
    submitted|revision_requested|rejected -> disputed   (open_dispute)
    revision_requested           -> submitted           (resubmit)
    revision_requested           -> cancelled_by_worker (withdraw)
    rejected                     -> rejection_accepted  (accept_rejection)
    disputed                     -> dispute_resolved    (resolve_dispute)

A rejected proof waits for the worker to accept or dispute; the
employer's review is over, so review events from there count as
already handled.

Dispute transition table:
    pending                     -> under_review  (start_review)
    pending|under_review        -> escalated     (escalate)
    pending|under_review|escalated -> resolved   (resolve)
"""

from __future__ import annotations

from statemachine import State, StateMachine


class _StatusGuard:
    """Shared construction and introspection for the guard machines."""

    # Acting on a final state is "already handled" rather than "not allowed".
    duplicate_on_final: bool = False
    # Non-final states where some events are already handled as well
    handled_events: dict[str, frozenset[str]] = {}

    def __init__(self, current_status: str) -> None:
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string."""
        return str(self.current_state.value)

    @property
    def in_final_state(self) -> bool:
        return bool(self.current_state.final)

    def get_allowed_events(self) -> list[str]:
        """Return the event ids that can fire from the current state."""
        return [event.id for event in self.allowed_events]


class OrderStateMachine(_StatusGuard, StateMachine):
    """Guards the order lifecycle.

    Usage:
        sm = OrderStateMachine(current_status="delivered")
        sm.release()   # transitions to completed
        sm.status      # "completed"
    """

    # --- States ---
    AWAITING_ACCEPTANCE = State(
        "Awaiting acceptance", value="awaiting_acceptance", initial=True
    )
    PENDING = State("Pending", value="pending")
    IN_PROGRESS = State("In progress", value="in_progress")
    DELIVERED = State("Delivered", value="delivered")
    DISPUTED = State("Disputed", value="disputed")
    COMPLETED = State("Completed", value="completed", final=True)
    CANCELLED = State("Cancelled", value="cancelled", final=True)
    DISPUTE_RESOLVED = State("Dispute resolved", value="dispute_resolved", final=True)

    # --- Events / Transitions ---

    # Seller response
    accept = AWAITING_ACCEPTANCE.to(PENDING)
    decline = AWAITING_ACCEPTANCE.to(CANCELLED)
    expire_acceptance = AWAITING_ACCEPTANCE.to(CANCELLED)

    # Work
    start_work = PENDING.to(IN_PROGRESS)
    deliver = IN_PROGRESS.to(DELIVERED)

    # Settlement
    release = DELIVERED.to(COMPLETED)
    auto_release = DELIVERED.to(COMPLETED)
    cancel = (
        AWAITING_ACCEPTANCE.to(CANCELLED)
        | PENDING.to(CANCELLED)
        | IN_PROGRESS.to(CANCELLED)
        | DELIVERED.to(CANCELLED)
    )

    # Disputes
    open_dispute = DELIVERED.to(DISPUTED)
    resolve_dispute = DISPUTED.to(DISPUTE_RESOLVED)


class WorkProofStateMachine(_StatusGuard, StateMachine):
    """Guards the review of a work proof."""

    duplicate_on_final = True

    # --- States ---
    SUBMITTED = State("Submitted", value="submitted", initial=True)
    REVISION_REQUESTED = State("Revision requested", value="revision_requested")
    DISPUTED = State("Disputed", value="disputed")
    APPROVED = State("Approved", value="approved", final=True)
    AUTO_APPROVED = State("Auto-approved", value="auto_approved", final=True)
    REJECTED = State("Rejected", value="rejected")
    REJECTION_ACCEPTED = State("Rejection accepted", value="rejection_accepted", final=True)
    CANCELLED_BY_WORKER = State("Cancelled by worker", value="cancelled_by_worker", final=True)
    DISPUTE_RESOLVED = State("Dispute resolved", value="dispute_resolved", final=True)

    handled_events = {
        "rejected": frozenset({"approve", "reject", "request_revision"}),
    }

    # --- Events / Transitions ---
    approve = SUBMITTED.to(APPROVED) | REVISION_REQUESTED.to(APPROVED)
    auto_approve = (
        SUBMITTED.to(AUTO_APPROVED)
        | REVISION_REQUESTED.to(AUTO_APPROVED)
        | REJECTED.to(AUTO_APPROVED)
    )
    reject = SUBMITTED.to(REJECTED) | REVISION_REQUESTED.to(REJECTED)
    request_revision = SUBMITTED.to(REVISION_REQUESTED) | REVISION_REQUESTED.to.itself()
    resubmit = REVISION_REQUESTED.to(SUBMITTED)

    # Worker responses
    accept_rejection = REJECTED.to(REJECTION_ACCEPTED)
    withdraw = REVISION_REQUESTED.to(CANCELLED_BY_WORKER)

    open_dispute = (
        SUBMITTED.to(DISPUTED) | REVISION_REQUESTED.to(DISPUTED) | REJECTED.to(DISPUTED)
    )
    resolve_dispute = DISPUTED.to(DISPUTE_RESOLVED)


class DisputeStateMachine(_StatusGuard, StateMachine):
    """Guards the admin workflow of a dispute."""

    duplicate_on_final = True

    # --- States ---
    PENDING = State("Pending", value="pending", initial=True)
    UNDER_REVIEW = State("Under review", value="under_review")
    ESCALATED = State("Escalated", value="escalated")
    RESOLVED = State("Resolved", value="resolved", final=True)

    # --- Events / Transitions ---
    start_review = PENDING.to(UNDER_REVIEW)
    escalate = PENDING.to(ESCALATED) | UNDER_REVIEW.to(ESCALATED)
    resolve = PENDING.to(RESOLVED) | UNDER_REVIEW.to(RESOLVED) | ESCALATED.to(RESOLVED)


def validate_transition(
    machine_cls: type[_StatusGuard],
    current_status: str,
    event_name: str,
) -> str:
    """Validate a state transition and return the new status.

    Creates a temporary state machine, fires the named event, and returns
    the resulting status string.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = machine_cls(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status
