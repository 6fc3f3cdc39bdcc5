"""Pydantic API schemas."""

from marketplace_escrow.schemas.common import (
    EscrowEventResponse,
    EvidenceItemIn,
    HealthResponse,
    SweepReportResponse,
)
from marketplace_escrow.schemas.disputes import (
    DisputeResponse,
    EscalateDisputeRequest,
    ResolveDisputeRequest,
    StartReviewRequest,
)
from marketplace_escrow.schemas.orders import (
    CancelOrderRequest,
    CreateOrderRequest,
    DeclineOrderRequest,
    OpenOrderDisputeRequest,
    OrderResponse,
    OrderStatusResponse,
    ReleasePaymentRequest,
    SellerActionRequest,
    SubmitDeliveryRequest,
    UpdateOrderStatusRequest,
    UpdateRequirementsRequest,
)
from marketplace_escrow.schemas.wallets import (
    DepositRequest,
    LedgerTransactionResponse,
    WalletResponse,
)
from marketplace_escrow.schemas.work_proofs import (
    ApproveWorkProofRequest,
    OpenWorkProofDisputeRequest,
    RejectWorkProofRequest,
    RequestRevisionRequest,
    ResubmitWorkProofRequest,
    SubmitWorkProofRequest,
    WorkerResponseRequest,
    WorkProofResponse,
)

__all__ = [
    "ApproveWorkProofRequest",
    "CancelOrderRequest",
    "CreateOrderRequest",
    "DeclineOrderRequest",
    "DepositRequest",
    "DisputeResponse",
    "EscalateDisputeRequest",
    "EscrowEventResponse",
    "EvidenceItemIn",
    "HealthResponse",
    "LedgerTransactionResponse",
    "OpenOrderDisputeRequest",
    "OpenWorkProofDisputeRequest",
    "OrderResponse",
    "OrderStatusResponse",
    "RejectWorkProofRequest",
    "ReleasePaymentRequest",
    "RequestRevisionRequest",
    "ResolveDisputeRequest",
    "ResubmitWorkProofRequest",
    "SellerActionRequest",
    "StartReviewRequest",
    "SubmitDeliveryRequest",
    "SubmitWorkProofRequest",
    "SweepReportResponse",
    "UpdateOrderStatusRequest",
    "UpdateRequirementsRequest",
    "WalletResponse",
    "WorkerResponseRequest",
    "WorkProofResponse",
]
