"""Escrow Service — turns accepted transitions into ledger movements.

Each subject (order or work proof) has a fixed set of reference ids:

    {kind}:{subject_id}:hold           buyer/employer deposit debited
    {kind}:{subject_id}:release        seller/worker earnings credited
    {kind}:{subject_id}:refund         buyer/employer deposit credited
    {kind}:{subject_id}:split:payer    payer share of a split
    {kind}:{subject_id}:split:payee    payee share of a split
    {kind}:{subject_id}:tip:debit      tip taken from the payer
    {kind}:{subject_id}:tip:credit     tip paid to the payee

Because the reference ids do not depend on which path settled the subject
(buyer action, sweeper or admin), a subject can be released or refunded at
most once even if two paths race past the state guard.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from marketplace_escrow.domain.enums import BalanceType, TransactionType
from marketplace_escrow.domain.exceptions import InputValidationError
from marketplace_escrow.domain.money import ZERO, split_amount, to_amount
from marketplace_escrow.logging_config import get_logger
from marketplace_escrow.services.ledger_service import LedgerService

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from marketplace_escrow.domain.enums import SubjectType
    from marketplace_escrow.infrastructure.database.orm_models import LedgerTransaction

logger = get_logger(__name__)


def reference_id(kind: SubjectType, subject_id: uuid.UUID, transition: str) -> str:
    """Build the idempotency key of a subject's fund movement."""
    return f"{kind.value}:{subject_id}:{transition}"


class EscrowService:
    """Holds, releases, refunds and splits escrowed funds."""

    def __init__(self, session: AsyncSession) -> None:
        self._ledger = LedgerService(session)

    @property
    def ledger(self) -> LedgerService:
        return self._ledger

    async def ensure_funds(self, payer_id: str, amount: Decimal) -> None:
        """Precheck that the payer can cover a hold, before anything is written."""
        await self._ledger.ensure_funds(payer_id, amount)

    async def hold(
        self,
        kind: SubjectType,
        subject_id: uuid.UUID,
        amount: Decimal,
        payer_id: str,
    ) -> LedgerTransaction:
        """Debit the payer's deposit balance for a new order or proof."""
        self._require_positive(amount)
        txn = await self._ledger.apply(
            user_id=payer_id,
            txn_type=TransactionType.PAYMENT,
            amount=-to_amount(amount),
            balance_type=BalanceType.DEPOSIT,
            reference_id=reference_id(kind, subject_id, "hold"),
            subject_id=subject_id,
            description=f"Escrow hold for {kind.value} {subject_id}",
        )
        logger.info("escrow.held", kind=kind.value, subject_id=str(subject_id), amount=str(amount))
        return txn

    async def release(
        self,
        kind: SubjectType,
        subject_id: uuid.UUID,
        amount: Decimal,
        payee_id: str,
    ) -> LedgerTransaction:
        """Credit the payee's earnings balance with the escrowed amount."""
        self._require_positive(amount)
        txn = await self._ledger.apply(
            user_id=payee_id,
            txn_type=TransactionType.RELEASE,
            amount=to_amount(amount),
            balance_type=BalanceType.EARNINGS,
            reference_id=reference_id(kind, subject_id, "release"),
            subject_id=subject_id,
            description=f"Escrow release for {kind.value} {subject_id}",
        )
        logger.info(
            "escrow.released", kind=kind.value, subject_id=str(subject_id), amount=str(amount)
        )
        return txn

    async def refund(
        self,
        kind: SubjectType,
        subject_id: uuid.UUID,
        amount: Decimal,
        payer_id: str,
    ) -> LedgerTransaction:
        """Return the escrowed amount to the payer's deposit balance."""
        self._require_positive(amount)
        txn = await self._ledger.apply(
            user_id=payer_id,
            txn_type=TransactionType.REFUND,
            amount=to_amount(amount),
            balance_type=BalanceType.DEPOSIT,
            reference_id=reference_id(kind, subject_id, "refund"),
            subject_id=subject_id,
            description=f"Escrow refund for {kind.value} {subject_id}",
        )
        logger.info(
            "escrow.refunded", kind=kind.value, subject_id=str(subject_id), amount=str(amount)
        )
        return txn

    async def split(
        self,
        kind: SubjectType,
        subject_id: uuid.UUID,
        amount: Decimal,
        payer_id: str,
        payee_id: str,
        payee_ratio: Decimal,
    ) -> list[LedgerTransaction]:
        """Divide the escrowed amount between payer and payee.

        The payer share is rounded down to the cent and the payee receives
        the remainder, so the shares always sum to ``amount``. A zero share
        produces no transaction.
        """
        self._require_positive(amount)
        payer_share, payee_share = split_amount(amount, Decimal(payee_ratio))
        txns: list[LedgerTransaction] = []
        if payer_share > ZERO:
            txns.append(
                await self._ledger.apply(
                    user_id=payer_id,
                    txn_type=TransactionType.REFUND,
                    amount=payer_share,
                    balance_type=BalanceType.DEPOSIT,
                    reference_id=reference_id(kind, subject_id, "split:payer"),
                    subject_id=subject_id,
                    description=f"Partial refund for {kind.value} {subject_id}",
                )
            )
        if payee_share > ZERO:
            txns.append(
                await self._ledger.apply(
                    user_id=payee_id,
                    txn_type=TransactionType.RELEASE,
                    amount=payee_share,
                    balance_type=BalanceType.EARNINGS,
                    reference_id=reference_id(kind, subject_id, "split:payee"),
                    subject_id=subject_id,
                    description=f"Partial release for {kind.value} {subject_id}",
                )
            )
        logger.info(
            "escrow.split",
            kind=kind.value,
            subject_id=str(subject_id),
            payer_share=str(payer_share),
            payee_share=str(payee_share),
        )
        return txns

    async def tip(
        self,
        kind: SubjectType,
        subject_id: uuid.UUID,
        amount: Decimal,
        payer_id: str,
        payee_id: str,
    ) -> list[LedgerTransaction]:
        """Move a tip from the payer's deposit to the payee's earnings."""
        self._require_positive(amount)
        debit = await self._ledger.apply(
            user_id=payer_id,
            txn_type=TransactionType.PAYMENT,
            amount=-to_amount(amount),
            balance_type=BalanceType.DEPOSIT,
            reference_id=reference_id(kind, subject_id, "tip:debit"),
            subject_id=subject_id,
            description=f"Tip for {kind.value} {subject_id}",
        )
        credit = await self._ledger.apply(
            user_id=payee_id,
            txn_type=TransactionType.RELEASE,
            amount=to_amount(amount),
            balance_type=BalanceType.EARNINGS,
            reference_id=reference_id(kind, subject_id, "tip:credit"),
            subject_id=subject_id,
            description=f"Tip for {kind.value} {subject_id}",
        )
        return [debit, credit]

    @staticmethod
    def _require_positive(amount: Decimal) -> None:
        if to_amount(amount) <= ZERO:
            raise InputValidationError("Escrow amount must be positive", "amount")
