"""Work proof REST API routes.

Routes:
    POST   /api/v1/work-proofs                        — Submit proof (holds payment)
    GET    /api/v1/work-proofs?job_id=                — List proofs for a job
    GET    /api/v1/work-proofs/{id}                   — Get proof details
    GET    /api/v1/work-proofs/{id}/events            — Audit trail
    POST   /api/v1/work-proofs/{id}/approve           — Employer approves (+ tip)
    POST   /api/v1/work-proofs/{id}/reject            — Employer rejects (worker may respond)
    POST   /api/v1/work-proofs/{id}/accept-rejection  — Worker accepts a rejection (refund)
    POST   /api/v1/work-proofs/{id}/withdraw          — Worker withdraws during a revision (refund)
    POST   /api/v1/work-proofs/{id}/request-revision  — Employer asks for a revision
    POST   /api/v1/work-proofs/{id}/resubmit          — Worker answers a revision
    POST   /api/v1/work-proofs/{id}/dispute           — Either party opens a dispute
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by FastAPI

from fastapi import APIRouter, Depends, Query

from marketplace_escrow.api.deps import get_work_proof_service
from marketplace_escrow.schemas.common import EscrowEventResponse
from marketplace_escrow.schemas.disputes import DisputeResponse
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
from marketplace_escrow.services.work_proof_service import WorkProofService  # noqa: TC001

router = APIRouter(prefix="/api/v1/work-proofs", tags=["Work Proofs"])


@router.post(
    "",
    response_model=WorkProofResponse,
    status_code=201,
    summary="Submit proof of work",
)
async def submit_work_proof(
    request: SubmitWorkProofRequest,
    svc: WorkProofService = Depends(get_work_proof_service),
) -> WorkProofResponse:
    """Hold the payment from the employer's deposit and open the proof for review."""
    proof = await svc.submit_work_proof(
        job_id=request.job_id,
        worker_id=request.worker_id,
        employer_id=request.employer_id,
        payment_amount=request.payment_amount,
        submission_text=request.submission_text,
        evidence=[item.model_dump(mode="json") for item in request.evidence],
        max_revision_requests=request.max_revision_requests,
    )
    return WorkProofResponse.model_validate(proof)


@router.get("", response_model=list[WorkProofResponse], summary="List proofs for a job")
async def list_work_proofs(
    job_id: str = Query(..., min_length=1),
    svc: WorkProofService = Depends(get_work_proof_service),
) -> list[WorkProofResponse]:
    proofs = await svc.list_for_job(job_id)
    return [WorkProofResponse.model_validate(p) for p in proofs]


@router.get("/{proof_id}", response_model=WorkProofResponse, summary="Get proof details")
async def get_work_proof(
    proof_id: uuid.UUID,
    svc: WorkProofService = Depends(get_work_proof_service),
) -> WorkProofResponse:
    proof = await svc.get_work_proof(proof_id)
    return WorkProofResponse.model_validate(proof)


@router.get(
    "/{proof_id}/events",
    response_model=list[EscrowEventResponse],
    summary="Get proof audit trail",
)
async def get_work_proof_events(
    proof_id: uuid.UUID,
    svc: WorkProofService = Depends(get_work_proof_service),
) -> list[EscrowEventResponse]:
    events = await svc.get_events(proof_id)
    return [EscrowEventResponse.model_validate(e) for e in events]


@router.post("/{proof_id}/approve", response_model=WorkProofResponse, summary="Approve a proof")
async def approve_work_proof(
    proof_id: uuid.UUID,
    request: ApproveWorkProofRequest,
    svc: WorkProofService = Depends(get_work_proof_service),
) -> WorkProofResponse:
    """Release the payment to the worker, plus an optional tip."""
    proof = await svc.approve_work_proof(
        proof_id,
        request.employer_id,
        notes=request.notes,
        tip_amount=request.tip_amount,
    )
    return WorkProofResponse.model_validate(proof)


@router.post("/{proof_id}/reject", response_model=WorkProofResponse, summary="Reject a proof")
async def reject_work_proof(
    proof_id: uuid.UUID,
    request: RejectWorkProofRequest,
    svc: WorkProofService = Depends(get_work_proof_service),
) -> WorkProofResponse:
    """Start the worker's window to accept or dispute the rejection."""
    proof = await svc.reject_work_proof(proof_id, request.employer_id, request.reason)
    return WorkProofResponse.model_validate(proof)


@router.post(
    "/{proof_id}/request-revision",
    response_model=WorkProofResponse,
    summary="Ask the worker for a revision",
)
async def request_revision(
    proof_id: uuid.UUID,
    request: RequestRevisionRequest,
    svc: WorkProofService = Depends(get_work_proof_service),
) -> WorkProofResponse:
    proof = await svc.request_revision(proof_id, request.employer_id, request.notes)
    return WorkProofResponse.model_validate(proof)


@router.post(
    "/{proof_id}/resubmit",
    response_model=WorkProofResponse,
    summary="Resubmit after a revision request",
)
async def resubmit_work_proof(
    proof_id: uuid.UUID,
    request: ResubmitWorkProofRequest,
    svc: WorkProofService = Depends(get_work_proof_service),
) -> WorkProofResponse:
    proof = await svc.resubmit_work_proof(
        proof_id,
        request.worker_id,
        request.submission_text,
        [item.model_dump(mode="json") for item in request.evidence],
    )
    return WorkProofResponse.model_validate(proof)


@router.post(
    "/{proof_id}/dispute",
    response_model=DisputeResponse,
    status_code=201,
    summary="Open a dispute on a proof",
)
async def open_work_proof_dispute(
    proof_id: uuid.UUID,
    request: OpenWorkProofDisputeRequest,
    svc: WorkProofService = Depends(get_work_proof_service),
) -> DisputeResponse:
    dispute = await svc.open_work_proof_dispute(
        proof_id,
        request.actor_id,
        request.reason,
        details=request.details,
        requested_action=request.requested_action,
        priority=request.priority,
    )
    return DisputeResponse.model_validate(dispute)


@router.post(
    "/{proof_id}/accept-rejection",
    response_model=WorkProofResponse,
    summary="Accept a rejection",
)
async def accept_rejection(
    proof_id: uuid.UUID,
    request: WorkerResponseRequest,
    svc: WorkProofService = Depends(get_work_proof_service),
) -> WorkProofResponse:
    """Refund the payment to the employer. Final."""
    proof = await svc.accept_rejection(proof_id, request.worker_id)
    return WorkProofResponse.model_validate(proof)


@router.post(
    "/{proof_id}/withdraw",
    response_model=WorkProofResponse,
    summary="Withdraw instead of revising",
)
async def withdraw_work_proof(
    proof_id: uuid.UUID,
    request: WorkerResponseRequest,
    svc: WorkProofService = Depends(get_work_proof_service),
) -> WorkProofResponse:
    proof = await svc.withdraw_work_proof(proof_id, request.worker_id, request.reason)
    return WorkProofResponse.model_validate(proof)
