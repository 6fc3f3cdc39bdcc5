"""Ledger Service — the only path that changes a balance.

Every movement is a LedgerTransaction with a unique reference id. Applying
a reference id that already exists returns the stored transaction and
changes nothing, so callers can retry freely.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from marketplace_escrow.domain.enums import BalanceType, TransactionType
from marketplace_escrow.domain.exceptions import (
    InputValidationError,
    InsufficientBalanceError,
)
from marketplace_escrow.domain.money import ZERO, to_amount
from marketplace_escrow.infrastructure.database.orm_models import (
    LedgerAccount,
    LedgerTransaction,
)
from marketplace_escrow.infrastructure.database.repositories import LedgerRepository
from marketplace_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


class LedgerService:
    """Applies signed, idempotent transactions to user balances."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._repo = LedgerRepository(session)

    async def apply(
        self,
        user_id: str,
        txn_type: TransactionType,
        amount: Decimal,
        balance_type: BalanceType,
        reference_id: str,
        subject_id: uuid.UUID | None = None,
        description: str | None = None,
    ) -> LedgerTransaction:
        """Apply a signed amount to one balance of a user.

        Args:
            amount: Negative for debits, positive for credits.
            reference_id: Idempotency key; replays are no-ops.

        Raises:
            InsufficientBalanceError: If a debit would make the balance negative.
        """
        amount = to_amount(amount)
        if amount == ZERO:
            raise InputValidationError("Ledger amount must not be zero", "amount")

        existing = await self._repo.get_by_reference(reference_id)
        if existing is not None:
            logger.info("ledger.replay_ignored", reference_id=reference_id)
            return existing

        await self._repo.get_or_create_account(user_id)
        txn = LedgerTransaction(
            user_id=user_id,
            type=txn_type.value,
            amount=amount,
            balance_type=balance_type.value,
            reference_id=reference_id,
            subject_id=subject_id,
            description=description,
        )
        try:
            applied = await self._repo.insert_and_apply(txn)
        except IntegrityError:
            existing = await self._repo.get_by_reference(reference_id)
            if existing is None:
                raise
            logger.info("ledger.replay_ignored", reference_id=reference_id, concurrent=True)
            return existing

        if not applied:
            account = await self._repo.get_account(user_id)
            available = self._balance_of(account, balance_type)
            raise InsufficientBalanceError(user_id, str(-amount), str(available))

        logger.info(
            "ledger.applied",
            user_id=user_id,
            type=txn_type.value,
            amount=str(amount),
            balance=balance_type.value,
            reference_id=reference_id,
        )
        return txn

    async def deposit(
        self,
        user_id: str,
        amount: Decimal,
        reference_id: str | None = None,
        description: str | None = None,
    ) -> LedgerTransaction:
        """Credit a user's deposit balance with external funds."""
        if to_amount(amount) <= ZERO:
            raise InputValidationError("Deposit amount must be positive", "amount")
        return await self.apply(
            user_id=user_id,
            txn_type=TransactionType.DEPOSIT,
            amount=amount,
            balance_type=BalanceType.DEPOSIT,
            reference_id=reference_id or f"deposit:{uuid.uuid4()}",
            description=description or "Wallet deposit",
        )

    async def get_account(self, user_id: str) -> LedgerAccount:
        """Return the user's account, creating an empty one if needed."""
        return await self._repo.get_or_create_account(user_id)

    async def ensure_funds(self, user_id: str, amount: Decimal) -> None:
        """Fail early if the user's deposit balance cannot cover ``amount``."""
        account = await self._repo.get_account(user_id)
        available = self._balance_of(account, BalanceType.DEPOSIT)
        if available < to_amount(amount):
            raise InsufficientBalanceError(user_id, str(to_amount(amount)), str(available))

    async def list_transactions(self, user_id: str, limit: int = 100) -> list[LedgerTransaction]:
        return await self._repo.list_transactions(user_id=user_id, limit=limit)

    async def transactions_for_subject(self, subject_id: uuid.UUID) -> list[LedgerTransaction]:
        return await self._repo.list_transactions(subject_id=subject_id)

    async def net_for_subject(self, subject_id: uuid.UUID) -> Decimal:
        """Signed sum of every transaction booked against an order or proof."""
        return await self._repo.net_for_subject(subject_id)

    @staticmethod
    def _balance_of(account: LedgerAccount | None, balance_type: BalanceType) -> Decimal:
        if account is None:
            return ZERO
        if balance_type is BalanceType.DEPOSIT:
            return to_amount(account.deposit_balance)
        return to_amount(account.earnings_balance)
