"""Order REST API routes.

Routes:
    POST   /api/v1/orders                      — Place an order (holds the price)
    GET    /api/v1/orders                      — List a user's orders
    POST   /api/v1/orders/cleanup-expired      — Run the order half of a sweep now
    GET    /api/v1/orders/{id}                 — Get order details
    GET    /api/v1/orders/{id}/status          — Status, allowed events, deadlines
    GET    /api/v1/orders/{id}/events          — Audit trail
    POST   /api/v1/orders/{id}/accept          — Seller accepts
    POST   /api/v1/orders/{id}/decline         — Seller declines (refund)
    POST   /api/v1/orders/{id}/status          — Seller moves the order forward
    POST   /api/v1/orders/{id}/deliver         — Seller delivers with evidence
    POST   /api/v1/orders/{id}/release         — Buyer releases payment
    POST   /api/v1/orders/{id}/dispute         — Buyer opens a dispute
    POST   /api/v1/orders/{id}/cancel          — Buyer or seller cancels
    POST   /api/v1/orders/{id}/requirements    — Buyer edits requirements
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by FastAPI

from fastapi import APIRouter, Depends, Query

from marketplace_escrow.api.deps import get_order_service, get_sweeper
from marketplace_escrow.domain.enums import OrderStatus
from marketplace_escrow.logging_config import get_logger
from marketplace_escrow.schemas.common import EscrowEventResponse, SweepReportResponse
from marketplace_escrow.schemas.disputes import DisputeResponse
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
from marketplace_escrow.services.order_service import OrderService  # noqa: TC001
from marketplace_escrow.services.sweeper_service import DeadlineSweeper  # noqa: TC001

router = APIRouter(prefix="/api/v1/orders", tags=["Orders"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Create / list
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=OrderResponse,
    status_code=201,
    summary="Place an order",
)
async def create_order(
    request: CreateOrderRequest,
    svc: OrderService = Depends(get_order_service),
) -> OrderResponse:
    """Hold the price from the buyer's deposit and open the order."""
    order = await svc.create_order(
        service_id=request.service_id,
        buyer_id=request.buyer_id,
        seller_id=request.seller_id,
        price=request.price,
        requirements=request.requirements,
    )
    return OrderResponse.model_validate(order)


@router.get(
    "",
    response_model=list[OrderResponse],
    summary="List a user's orders",
)
async def list_orders(
    user_id: str = Query(..., min_length=1),
    role: str | None = Query(default=None, pattern="^(buyer|seller)$"),
    status: OrderStatus | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    svc: OrderService = Depends(get_order_service),
) -> list[OrderResponse]:
    orders = await svc.list_orders(user_id, role=role, status=status, limit=limit)
    return [OrderResponse.model_validate(o) for o in orders]


@router.post(
    "/cleanup-expired",
    response_model=SweepReportResponse,
    summary="Cancel expired orders and auto-release reviewed ones now",
)
async def cleanup_expired_orders(
    sweeper: DeadlineSweeper = Depends(get_sweeper),
) -> SweepReportResponse:
    report = await sweeper.cleanup_expired_orders()
    return SweepReportResponse.model_validate(report)


# ---------------------------------------------------------------------------
# Seller response
# ---------------------------------------------------------------------------


@router.post(
    "/{order_id}/accept",
    response_model=OrderResponse,
    summary="Seller accepts the order",
)
async def accept_order(
    order_id: uuid.UUID,
    request: SellerActionRequest,
    svc: OrderService = Depends(get_order_service),
) -> OrderResponse:
    """Transitions awaiting_acceptance -> pending, before the acceptance deadline."""
    order = await svc.accept_order(order_id, request.seller_id)
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/decline",
    response_model=OrderResponse,
    summary="Seller declines the order",
)
async def decline_order(
    order_id: uuid.UUID,
    request: DeclineOrderRequest,
    svc: OrderService = Depends(get_order_service),
) -> OrderResponse:
    """Transitions awaiting_acceptance -> cancelled and refunds the buyer."""
    order = await svc.decline_order(order_id, request.seller_id, request.reason)
    return OrderResponse.model_validate(order)


# ---------------------------------------------------------------------------
# Work
# ---------------------------------------------------------------------------


@router.post(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Move the order one step forward",
)
async def update_order_status(
    order_id: uuid.UUID,
    request: UpdateOrderStatusRequest,
    svc: OrderService = Depends(get_order_service),
) -> OrderResponse:
    order = await svc.update_order_status(order_id, request.seller_id, request.status)
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/deliver",
    response_model=OrderResponse,
    summary="Deliver the work",
)
async def submit_delivery(
    order_id: uuid.UUID,
    request: SubmitDeliveryRequest,
    svc: OrderService = Depends(get_order_service),
) -> OrderResponse:
    """Transitions in_progress -> delivered and starts the buyer's review period."""
    order = await svc.submit_delivery(
        order_id,
        request.seller_id,
        request.message,
        [item.model_dump(mode="json") for item in request.evidence],
    )
    return OrderResponse.model_validate(order)


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------


@router.post(
    "/{order_id}/release",
    response_model=OrderResponse,
    summary="Buyer releases payment",
)
async def release_payment(
    order_id: uuid.UUID,
    request: ReleasePaymentRequest,
    svc: OrderService = Depends(get_order_service),
) -> OrderResponse:
    """Transitions delivered -> completed and pays the seller."""
    order = await svc.release_payment(order_id, request.buyer_id)
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/dispute",
    response_model=DisputeResponse,
    status_code=201,
    summary="Buyer opens a dispute",
)
async def open_dispute(
    order_id: uuid.UUID,
    request: OpenOrderDisputeRequest,
    svc: OrderService = Depends(get_order_service),
) -> DisputeResponse:
    dispute = await svc.open_dispute(order_id, request.buyer_id, request.reason, request.details)
    return DisputeResponse.model_validate(dispute)


@router.post(
    "/{order_id}/cancel",
    response_model=OrderResponse,
    summary="Cancel the order",
)
async def cancel_order(
    order_id: uuid.UUID,
    request: CancelOrderRequest,
    svc: OrderService = Depends(get_order_service),
) -> OrderResponse:
    order = await svc.cancel_order(
        order_id,
        request.actor_id,
        reason=request.reason,
        refund_ratio=request.refund_ratio,
    )
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/requirements",
    response_model=OrderResponse,
    summary="Edit order requirements",
)
async def update_requirements(
    order_id: uuid.UUID,
    request: UpdateRequirementsRequest,
    svc: OrderService = Depends(get_order_service),
) -> OrderResponse:
    order = await svc.update_requirements(order_id, request.buyer_id, request.requirements)
    return OrderResponse.model_validate(order)


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order details",
)
async def get_order(
    order_id: uuid.UUID,
    svc: OrderService = Depends(get_order_service),
) -> OrderResponse:
    order = await svc.get_order(order_id)
    return OrderResponse.model_validate(order)


@router.get(
    "/{order_id}/status",
    response_model=OrderStatusResponse,
    summary="Get order status and deadlines",
)
async def get_order_status(
    order_id: uuid.UUID,
    svc: OrderService = Depends(get_order_service),
) -> OrderStatusResponse:
    return OrderStatusResponse(**await svc.get_order_status(order_id))


@router.get(
    "/{order_id}/events",
    response_model=list[EscrowEventResponse],
    summary="Get order audit trail",
)
async def get_order_events(
    order_id: uuid.UUID,
    svc: OrderService = Depends(get_order_service),
) -> list[EscrowEventResponse]:
    events = await svc.get_events(order_id)
    return [EscrowEventResponse.model_validate(e) for e in events]
