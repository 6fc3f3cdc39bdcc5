"""Schemas shared by several routers."""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by pydantic
from datetime import datetime  # noqa: TC003 - resolved at runtime by pydantic

from pydantic import BaseModel, ConfigDict, Field

from marketplace_escrow.domain.enums import EvidenceKind


class EvidenceItemIn(BaseModel):
    """One piece of evidence as sent by a client."""

    kind: EvidenceKind = Field(..., description="image, file or link")
    content: str = Field(
        ...,
        min_length=1,
        description="URL for links and hosted images, base64 or data URI otherwise",
    )
    filename: str | None = Field(default=None, max_length=255)


class EscrowEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    subject_type: str
    subject_id: uuid.UUID
    event_type: str
    old_status: str | None
    new_status: str
    actor: str
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"


class SweepReportResponse(BaseModel):
    """Counts from one deadline sweep."""

    model_config = ConfigDict(from_attributes=True)

    expired_orders: int
    auto_released_orders: int
    auto_approved_proofs: int
    skipped: int
    failed: int
    failed_ids: list[str]
