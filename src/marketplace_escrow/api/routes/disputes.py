"""Admin dispute REST API routes.

Routes:
    GET    /api/v1/admin/disputes                 — Dispute queue, most urgent first
    GET    /api/v1/admin/disputes/{id}            — Get dispute details
    POST   /api/v1/admin/disputes/{id}/review     — Start reviewing
    POST   /api/v1/admin/disputes/{id}/escalate   — Escalate (priority -> urgent)
    POST   /api/v1/admin/disputes/{id}/resolve    — Decide and settle funds, once
    POST   /api/v1/admin/sweeps                   — Run a full deadline sweep now
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by FastAPI

from fastapi import APIRouter, Depends, Query

from marketplace_escrow.api.deps import get_dispute_service, get_sweeper
from marketplace_escrow.domain.enums import DisputePriority, DisputeStatus
from marketplace_escrow.schemas.common import SweepReportResponse
from marketplace_escrow.schemas.disputes import (
    DisputeResponse,
    EscalateDisputeRequest,
    ResolveDisputeRequest,
    StartReviewRequest,
)
from marketplace_escrow.services.dispute_service import DisputeService  # noqa: TC001
from marketplace_escrow.services.sweeper_service import DeadlineSweeper  # noqa: TC001

router = APIRouter(prefix="/api/v1/admin", tags=["Admin"])


@router.get("/disputes", response_model=list[DisputeResponse], summary="List disputes")
async def list_disputes(
    status: DisputeStatus | None = Query(default=None),
    priority: DisputePriority | None = Query(default=None),
    search: str | None = Query(default=None, max_length=200),
    limit: int = Query(default=50, ge=1, le=500),
    svc: DisputeService = Depends(get_dispute_service),
) -> list[DisputeResponse]:
    disputes = await svc.list_disputes(status=status, priority=priority, search=search, limit=limit)
    return [DisputeResponse.model_validate(d) for d in disputes]


@router.get("/disputes/{dispute_id}", response_model=DisputeResponse, summary="Get a dispute")
async def get_dispute(
    dispute_id: uuid.UUID,
    svc: DisputeService = Depends(get_dispute_service),
) -> DisputeResponse:
    dispute = await svc.get_dispute(dispute_id)
    return DisputeResponse.model_validate(dispute)


@router.post(
    "/disputes/{dispute_id}/review",
    response_model=DisputeResponse,
    summary="Start reviewing a dispute",
)
async def start_review(
    dispute_id: uuid.UUID,
    request: StartReviewRequest,
    svc: DisputeService = Depends(get_dispute_service),
) -> DisputeResponse:
    dispute = await svc.start_review(dispute_id, request.admin_id)
    return DisputeResponse.model_validate(dispute)


@router.post(
    "/disputes/{dispute_id}/escalate",
    response_model=DisputeResponse,
    summary="Escalate a dispute",
)
async def escalate_dispute(
    dispute_id: uuid.UUID,
    request: EscalateDisputeRequest,
    svc: DisputeService = Depends(get_dispute_service),
) -> DisputeResponse:
    dispute = await svc.escalate(dispute_id, request.actor_id, request.reason)
    return DisputeResponse.model_validate(dispute)


@router.post(
    "/disputes/{dispute_id}/resolve",
    response_model=DisputeResponse,
    summary="Resolve a dispute",
)
async def resolve_dispute(
    dispute_id: uuid.UUID,
    request: ResolveDisputeRequest,
    svc: DisputeService = Depends(get_dispute_service),
) -> DisputeResponse:
    """Settle the escrowed funds. A second resolve returns 409 DUPLICATE_RESOLUTION."""
    dispute = await svc.resolve(dispute_id, request.admin_id, request.decision, request.notes)
    return DisputeResponse.model_validate(dispute)


@router.post("/sweeps", response_model=SweepReportResponse, summary="Run a deadline sweep")
async def run_sweep(sweeper: DeadlineSweeper = Depends(get_sweeper)) -> SweepReportResponse:
    report = await sweeper.sweep()
    return SweepReportResponse.model_validate(report)
