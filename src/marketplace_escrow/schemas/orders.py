"""Pydantic schemas for the Orders API.

Request bodies carry the acting user's id explicitly; authentication is
handled in front of this service.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by pydantic
from datetime import datetime  # noqa: TC003 - resolved at runtime by pydantic
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from marketplace_escrow.schemas.common import EvidenceItemIn

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateOrderRequest(BaseModel):
    """Request body for placing an order."""

    service_id: str = Field(..., min_length=1, max_length=64)
    buyer_id: str = Field(..., min_length=1, max_length=64)
    seller_id: str = Field(..., min_length=1, max_length=64)
    price: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Total price including platform fees, held from the buyer's deposit",
        examples=["100.00"],
    )
    requirements: str | None = Field(default=None, max_length=10_000)


class SellerActionRequest(BaseModel):
    """Seller accepting an order."""

    seller_id: str = Field(..., min_length=1)


class DeclineOrderRequest(BaseModel):
    seller_id: str = Field(..., min_length=1)
    reason: str | None = Field(default=None, max_length=2000)


class UpdateOrderStatusRequest(BaseModel):
    """Seller moving an accepted order forward one step."""

    seller_id: str = Field(..., min_length=1)
    status: Literal["in_progress", "delivered"]


class SubmitDeliveryRequest(BaseModel):
    seller_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1, max_length=20_000)
    evidence: list[EvidenceItemIn] = Field(default_factory=list)


class ReleasePaymentRequest(BaseModel):
    buyer_id: str = Field(..., min_length=1)


class OpenOrderDisputeRequest(BaseModel):
    """Buyer contesting a delivery."""

    buyer_id: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1, max_length=2000)
    details: str | None = Field(default=None, max_length=10_000)


class CancelOrderRequest(BaseModel):
    actor_id: str = Field(..., min_length=1)
    reason: str | None = Field(default=None, max_length=2000)
    refund_ratio: Decimal = Field(
        default=Decimal(1),
        ge=0,
        le=1,
        description="Share of the price returned to the buyer; the seller gets the rest",
    )


class UpdateRequirementsRequest(BaseModel):
    buyer_id: str = Field(..., min_length=1)
    requirements: str = Field(..., max_length=10_000)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class OrderResponse(BaseModel):
    """Response schema for an order."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    service_id: str
    buyer_id: str
    seller_id: str
    price: Decimal
    status: str
    requirements: str | None
    deliverables: dict | None
    cancel_reason: str | None
    dispute_reason: str | None
    admin_decision: str | None
    admin_notes: str | None
    created_at: datetime
    accepted_at: datetime | None
    delivered_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    acceptance_deadline: datetime
    review_deadline: datetime | None


class OrderStatusResponse(BaseModel):
    """Lightweight status check response."""

    order_id: uuid.UUID
    status: str
    allowed_events: list[str] = Field(
        description="State machine events that can fire from the current status"
    )
    acceptance_deadline: datetime
    review_deadline: datetime | None
    active_deadline: datetime | None
    seconds_remaining: int | None
    is_expired: bool
