"""Application services — use case orchestration."""

from marketplace_escrow.services.dispute_service import DisputeService
from marketplace_escrow.services.escrow_service import EscrowService
from marketplace_escrow.services.ledger_service import LedgerService
from marketplace_escrow.services.order_service import OrderService
from marketplace_escrow.services.sweeper_service import DeadlineSweeper, SweepReport
from marketplace_escrow.services.transition_guard import TransitionGuard
from marketplace_escrow.services.work_proof_service import WorkProofService

__all__ = [
    "DeadlineSweeper",
    "DisputeService",
    "EscrowService",
    "LedgerService",
    "OrderService",
    "SweepReport",
    "TransitionGuard",
    "WorkProofService",
]
