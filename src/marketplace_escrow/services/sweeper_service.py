"""Deadline Sweeper — forces the transitions nobody took in time.

A sweep selects expired record ids in one short read, then drives each
record through the normal service method (auto_release, expire_acceptance,
auto_approve) in its own session and transaction. One bad record never
blocks the rest: failures are logged and the sweep moves on. Because every
forced transition goes through the state guard and the ledger's fixed
reference ids, running the same sweep twice, or on two instances at once,
moves money at most once.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog
from sqlalchemy.exc import OperationalError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from marketplace_escrow.config import Settings, get_settings
from marketplace_escrow.domain.clock import Clock, utcnow
from marketplace_escrow.domain.exceptions import EscrowError
from marketplace_escrow.infrastructure.database.repositories import (
    OrderRepository,
    WorkProofRepository,
)
from marketplace_escrow.logging_config import get_logger
from marketplace_escrow.services.order_service import OrderService
from marketplace_escrow.services.work_proof_service import WorkProofService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)

RecordAction = Callable[["AsyncSession", uuid.UUID], Awaitable[object]]


@dataclass
class SweepReport:
    """Outcome counts of one sweep."""

    expired_orders: int = 0
    auto_released_orders: int = 0
    auto_approved_proofs: int = 0
    skipped: int = 0
    failed: int = 0
    failed_ids: list[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.expired_orders + self.auto_released_orders + self.auto_approved_proofs

    def merge(self, other: SweepReport) -> SweepReport:
        return SweepReport(
            expired_orders=self.expired_orders + other.expired_orders,
            auto_released_orders=self.auto_released_orders + other.auto_released_orders,
            auto_approved_proofs=self.auto_approved_proofs + other.auto_approved_proofs,
            skipped=self.skipped + other.skipped,
            failed=self.failed + other.failed,
            failed_ids=[*self.failed_ids, *other.failed_ids],
        )


class DeadlineSweeper:
    """Scans stored deadlines and applies the forced transitions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._now = clock or utcnow

    async def sweep(self) -> SweepReport:
        """Run the order half and the work proof half of a sweep."""
        structlog.contextvars.bind_contextvars(sweep_id=str(uuid.uuid4()))
        try:
            report = (await self.sweep_orders()).merge(await self.sweep_work_proofs())
            logger.info(
                "sweeper.completed",
                processed=report.processed,
                skipped=report.skipped,
                failed=report.failed,
            )
            return report
        finally:
            structlog.contextvars.unbind_contextvars("sweep_id")

    async def cleanup_expired_orders(self) -> SweepReport:
        """Manual trigger for the order half of the sweep."""
        return await self.sweep_orders()

    async def sweep_orders(self) -> SweepReport:
        report = SweepReport()
        now = self._now()
        limit = self._settings.sweeper_batch_size

        async with self._session_factory() as session:
            repo = OrderRepository(session)
            expired_ids = await repo.ids_past_acceptance_deadline(now, limit)
            review_ids = (
                await repo.ids_past_review_deadline(now, limit)
                if self._settings.auto_release_payment
                else []
            )

        for order_id in expired_ids:
            if await self._process(order_id, "expire_acceptance", self._expire_order, report):
                report.expired_orders += 1
        for order_id in review_ids:
            if await self._process(order_id, "auto_release", self._release_order, report):
                report.auto_released_orders += 1
        return report

    async def sweep_work_proofs(self) -> SweepReport:
        report = SweepReport()
        async with self._session_factory() as session:
            proof_ids = await WorkProofRepository(session).ids_past_deadline(
                self._now(), self._settings.sweeper_batch_size
            )

        for proof_id in proof_ids:
            if await self._process(proof_id, "auto_approve", self._approve_proof, report):
                report.auto_approved_proofs += 1
        return report

    # ------------------------------------------------------------------
    # Per-record actions
    # ------------------------------------------------------------------

    async def _expire_order(self, session: AsyncSession, order_id: uuid.UUID) -> object:
        return await OrderService(session, self._settings, self._now).expire_acceptance(order_id)

    async def _release_order(self, session: AsyncSession, order_id: uuid.UUID) -> object:
        return await OrderService(session, self._settings, self._now).auto_release(order_id)

    async def _approve_proof(self, session: AsyncSession, proof_id: uuid.UUID) -> object:
        return await WorkProofService(session, self._settings, self._now).auto_approve(proof_id)

    async def _process(
        self,
        record_id: uuid.UUID,
        action_name: str,
        action: RecordAction,
        report: SweepReport,
    ) -> bool:
        """Apply one forced transition; never raises."""
        try:
            await self._run_in_transaction(record_id, action)
        except EscrowError as err:
            # Someone acted on the record between the scan and the lock.
            report.skipped += 1
            logger.info(
                "sweeper.record_skipped",
                record_id=str(record_id),
                action=action_name,
                code=err.code,
                reason=err.message,
            )
            return False
        except Exception:
            report.failed += 1
            report.failed_ids.append(str(record_id))
            logger.exception(
                "sweeper.record_failed",
                record_id=str(record_id),
                action=action_name,
            )
            return False
        logger.info("sweeper.record_processed", record_id=str(record_id), action=action_name)
        return True

    @retry(
        retry=retry_if_exception_type(OperationalError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def _run_in_transaction(self, record_id: uuid.UUID, action: RecordAction) -> None:
        """One record, one transaction. Transient database errors are retried."""
        async with self._session_factory() as session, session.begin():
            await action(session, record_id)
