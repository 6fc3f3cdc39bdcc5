"""Pydantic schemas for the Work Proofs API."""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by pydantic
from datetime import datetime  # noqa: TC003 - resolved at runtime by pydantic
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from marketplace_escrow.domain.enums import DisputePriority
from marketplace_escrow.schemas.common import EvidenceItemIn


class SubmitWorkProofRequest(BaseModel):
    """Request body for a worker submitting proof against a job."""

    job_id: str = Field(..., min_length=1, max_length=64)
    worker_id: str = Field(..., min_length=1, max_length=64)
    employer_id: str = Field(..., min_length=1, max_length=64)
    payment_amount: Decimal = Field(..., gt=0, decimal_places=2, examples=["25.00"])
    submission_text: str = Field(..., min_length=1, max_length=20_000)
    evidence: list[EvidenceItemIn] = Field(default_factory=list)
    max_revision_requests: int | None = Field(
        default=None,
        ge=0,
        le=10,
        description="Defaults to MAX_REVISION_REQUESTS",
    )


class ResubmitWorkProofRequest(BaseModel):
    worker_id: str = Field(..., min_length=1)
    submission_text: str = Field(..., min_length=1, max_length=20_000)
    evidence: list[EvidenceItemIn] = Field(default_factory=list)


class ApproveWorkProofRequest(BaseModel):
    employer_id: str = Field(..., min_length=1)
    notes: str | None = Field(default=None, max_length=5000)
    tip_amount: Decimal | None = Field(default=None, ge=0, decimal_places=2)


class RejectWorkProofRequest(BaseModel):
    employer_id: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1, max_length=5000)


class RequestRevisionRequest(BaseModel):
    employer_id: str = Field(..., min_length=1)
    notes: str = Field(..., min_length=1, max_length=5000)


class WorkerResponseRequest(BaseModel):
    """Worker answering a rejection or withdrawing during a revision."""

    worker_id: str = Field(..., min_length=1)
    reason: str | None = Field(default=None, max_length=2000)


class OpenWorkProofDisputeRequest(BaseModel):
    """Worker or employer contesting a review."""

    actor_id: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1, max_length=2000)
    details: str | None = Field(default=None, max_length=10_000)
    requested_action: str | None = Field(default=None, max_length=32)
    priority: DisputePriority = DisputePriority.MEDIUM


class WorkProofResponse(BaseModel):
    """Response schema for a work proof."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    job_id: str
    worker_id: str
    employer_id: str
    payment_amount: Decimal
    tip_amount: Decimal | None
    status: str
    submission_text: str
    evidence: list[dict]
    submission_number: int
    revision_count: int
    max_revision_requests: int
    review_notes: str | None
    rejection_reason: str | None
    submitted_at: datetime
    reviewed_at: datetime | None
    review_deadline: datetime | None
    revision_deadline: datetime | None
    rejection_deadline: datetime | None
    worker_responded_at: datetime | None
