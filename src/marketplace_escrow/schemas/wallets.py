"""Pydantic schemas for the Wallets API."""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by pydantic
from datetime import datetime  # noqa: TC003 - resolved at runtime by pydantic
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class DepositRequest(BaseModel):
    """External funds credited to a user's deposit balance."""

    amount: Decimal = Field(..., gt=0, decimal_places=2, examples=["150.00"])
    reference_id: str | None = Field(
        default=None,
        max_length=120,
        description="Payment provider reference; replays with the same id are ignored",
    )
    description: str | None = Field(default=None, max_length=500)


class WalletResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    deposit_balance: Decimal
    earnings_balance: Decimal


class LedgerTransactionResponse(BaseModel):
    """Response schema for a ledger transaction."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: str
    type: str
    amount: Decimal
    balance_type: str
    reference_id: str
    subject_id: uuid.UUID | None
    description: str | None
    created_at: datetime
