"""Pydantic schemas for the admin Disputes API."""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by pydantic
from datetime import datetime  # noqa: TC003 - resolved at runtime by pydantic
from decimal import Decimal  # noqa: TC003 - resolved at runtime by pydantic

from pydantic import BaseModel, ConfigDict, Field

from marketplace_escrow.domain.enums import DisputeDecision


class StartReviewRequest(BaseModel):
    admin_id: str = Field(..., min_length=1)


class EscalateDisputeRequest(BaseModel):
    actor_id: str = Field(..., min_length=1)
    reason: str | None = Field(default=None, max_length=2000)


class ResolveDisputeRequest(BaseModel):
    """Admin decision on a dispute."""

    admin_id: str = Field(..., min_length=1)
    decision: DisputeDecision = Field(
        ...,
        description="approve_worker releases, approve_employer refunds, partial_refund splits",
    )
    notes: str | None = Field(default=None, max_length=10_000)


class DisputeResponse(BaseModel):
    """Response schema for a dispute."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    subject_type: str
    subject_id: uuid.UUID
    payer_id: str
    payee_id: str
    raised_by: str
    amount: Decimal
    status: str
    priority: str
    reason: str
    details: str | None
    requested_action: str | None
    resolution: str | None
    admin_id: str | None
    admin_notes: str | None
    resolved_at: datetime | None
    created_at: datetime
    updated_at: datetime
