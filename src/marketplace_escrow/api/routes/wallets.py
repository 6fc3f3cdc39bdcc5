"""Wallet REST API routes.

Routes:
    GET    /api/v1/wallets/{user_id}               — Balances
    GET    /api/v1/wallets/{user_id}/transactions  — Ledger history
    POST   /api/v1/wallets/{user_id}/deposits      — Credit external funds
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from marketplace_escrow.api.deps import get_ledger_service
from marketplace_escrow.schemas.wallets import (
    DepositRequest,
    LedgerTransactionResponse,
    WalletResponse,
)
from marketplace_escrow.services.ledger_service import LedgerService  # noqa: TC001

router = APIRouter(prefix="/api/v1/wallets", tags=["Wallets"])


@router.get("/{user_id}", response_model=WalletResponse, summary="Get wallet balances")
async def get_wallet(
    user_id: str,
    svc: LedgerService = Depends(get_ledger_service),
) -> WalletResponse:
    account = await svc.get_account(user_id)
    return WalletResponse.model_validate(account)


@router.get(
    "/{user_id}/transactions",
    response_model=list[LedgerTransactionResponse],
    summary="List ledger transactions",
)
async def list_transactions(
    user_id: str,
    limit: int = Query(default=100, ge=1, le=1000),
    svc: LedgerService = Depends(get_ledger_service),
) -> list[LedgerTransactionResponse]:
    txns = await svc.list_transactions(user_id, limit=limit)
    return [LedgerTransactionResponse.model_validate(t) for t in txns]


@router.post(
    "/{user_id}/deposits",
    response_model=WalletResponse,
    status_code=201,
    summary="Deposit funds",
)
async def create_deposit(
    user_id: str,
    request: DepositRequest,
    svc: LedgerService = Depends(get_ledger_service),
) -> WalletResponse:
    """Credit the deposit balance. Replaying a reference_id changes nothing."""
    await svc.deposit(
        user_id,
        request.amount,
        reference_id=request.reference_id,
        description=request.description,
    )
    account = await svc.get_account(user_id)
    return WalletResponse.model_validate(account)
