#!/usr/bin/env python3
"""Marketplace Escrow — End-to-End Simulation.

Walks through six scenarios with a simulated clock, so deadlines that are
days long elapse instantly:

    Scenario 1: Order creation holds funds
        - Buyer deposits $150, orders a $100 service -> deposit balance $50

    Scenario 2: Seller never accepts
        - 24h pass, the sweeper runs -> order cancelled, buyer back at $150

    Scenario 3: Buyer never reviews
        - Order delivered at T, sweeper runs at T+3d+1s -> completed,
          seller earnings +$100

    Scenario 4: Double release
        - Buyer releases twice -> second call fails, balance moves once

    Scenario 5: Partial-refund dispute
        - Admin resolves a $100 work proof dispute with partial_refund ->
          worker +$50, employer +$50; a second resolve is rejected

    Scenario 6: Revision limit
        - max_revision_requests=2: request, request, request -> ok, ok, rejected

Usage:
    # Option A: PostgreSQL (DATABASE_URL from .env):
    python simulation.py

    # Option B: SQLite in-memory (no Docker needed):
    python simulation.py --sqlite

    # Run a specific scenario:
    python simulation.py --sqlite --scenario 3
"""

from __future__ import annotations

import argparse
import asyncio
import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from marketplace_escrow.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from marketplace_escrow.config import Settings, get_settings  # noqa: E402
from marketplace_escrow.domain.exceptions import EscrowError  # noqa: E402
from marketplace_escrow.infrastructure.database.engine import (  # noqa: E402
    build_engine,
    build_session_factory,
)
from marketplace_escrow.infrastructure.database.orm_models import Base  # noqa: E402
from marketplace_escrow.services.dispute_service import DisputeService  # noqa: E402
from marketplace_escrow.services.ledger_service import LedgerService  # noqa: E402
from marketplace_escrow.services.order_service import OrderService  # noqa: E402
from marketplace_escrow.services.sweeper_service import DeadlineSweeper  # noqa: E402
from marketplace_escrow.services.work_proof_service import WorkProofService  # noqa: E402


class SimulatedClock:
    """A clock that only moves when told to."""

    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta
        print(f"  ⏩ Clock advanced by {delta} -> {self.now.isoformat()}")


class Simulation:
    """Holds the engine, session factory and clock shared by all scenarios."""

    def __init__(self, use_sqlite: bool) -> None:
        self.settings: Settings = get_settings()
        url = "sqlite+aiosqlite:///:memory:" if use_sqlite else self.settings.database_url
        self.engine = build_engine(url)
        self.session_factory = build_session_factory(self.engine)
        self.clock = SimulatedClock()

    async def start(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database.initialized", dialect=self.engine.dialect.name)

    async def stop(self) -> None:
        await self.engine.dispose()

    # --- helpers ----------------------------------------------------------

    async def deposit(self, user_id: str, amount: str) -> None:
        async with self.session_factory() as session, session.begin():
            await LedgerService(session).deposit(user_id, Decimal(amount))
        print(f"  💰 {user_id} deposited ${amount}")

    async def balances(self, user_id: str) -> tuple[Decimal, Decimal]:
        async with self.session_factory() as session:
            account = await LedgerService(session).get_account(user_id)
            await session.commit()
            return account.deposit_balance, account.earnings_balance

    async def print_balances(self, *user_ids: str) -> None:
        for user_id in user_ids:
            deposit, earnings = await self.balances(user_id)
            print(f"  📒 {user_id:<14} deposit=${deposit:<8} earnings=${earnings}")

    def orders(self, session) -> OrderService:  # noqa: ANN001
        return OrderService(session, settings=self.settings, clock=self.clock)

    def proofs(self, session) -> WorkProofService:  # noqa: ANN001
        return WorkProofService(session, settings=self.settings, clock=self.clock)

    def sweeper(self) -> DeadlineSweeper:
        return DeadlineSweeper(self.session_factory, settings=self.settings, clock=self.clock)

    async def new_order(self, buyer: str, seller: str, price: str) -> uuid.UUID:
        async with self.session_factory() as session, session.begin():
            order = await self.orders(session).create_order(
                service_id="svc-logo-design",
                buyer_id=buyer,
                seller_id=seller,
                price=Decimal(price),
                requirements="Vector logo, two colour variants",
            )
        print(f"  🛒 Order {order.id} created for ${price} ({order.status})")
        return order.id

    async def deliver(self, order_id: uuid.UUID, seller: str) -> None:
        async with self.session_factory() as session, session.begin():
            svc = self.orders(session)
            await svc.accept_order(order_id, seller)
            await svc.update_order_status(order_id, seller, "in_progress")
            order = await svc.submit_delivery(
                order_id,
                seller,
                "Logo files attached",
                [{"kind": "link", "content": "https://files.example.com/logo.zip"}],
            )
        print(f"  📦 Delivered; review deadline {order.review_deadline.isoformat()}")


def section(title: str) -> None:
    print(f"\n  --- {title} ---")


def banner(title: str) -> None:
    print("\n" + "=" * 70)
    print(f"  {title}")
    print("=" * 70)


# ===========================================================================
# Scenarios
# ===========================================================================
async def scenario_1_hold_on_create(sim: Simulation) -> None:
    banner("SCENARIO 1: Order creation holds the price")
    await sim.deposit("buyer-1", "150.00")
    await sim.new_order("buyer-1", "seller-1", "100.00")
    await sim.print_balances("buyer-1")


async def scenario_2_acceptance_timeout(sim: Simulation) -> None:
    banner("SCENARIO 2: Seller never accepts")
    await sim.deposit("buyer-2", "150.00")
    order_id = await sim.new_order("buyer-2", "seller-2", "100.00")
    await sim.print_balances("buyer-2")

    section("24 hours pass, the sweeper runs")
    sim.clock.advance(timedelta(hours=24, seconds=1))
    report = await sim.sweeper().sweep()
    print(f"  🧹 Sweep: {report}")

    async with sim.session_factory() as session:
        order = await sim.orders(session).get_order(order_id)
        print(f"  📄 Order status: {order.status} ({order.cancel_reason})")
    await sim.print_balances("buyer-2")


async def scenario_3_auto_release(sim: Simulation) -> None:
    banner("SCENARIO 3: Buyer never reviews the delivery")
    await sim.deposit("buyer-3", "100.00")
    order_id = await sim.new_order("buyer-3", "seller-3", "100.00")
    await sim.deliver(order_id, "seller-3")

    section("3 days and 1 second pass, the sweeper runs")
    sim.clock.advance(timedelta(days=3, seconds=1))
    report = await sim.sweeper().sweep()
    print(f"  🧹 Sweep: {report}")

    async with sim.session_factory() as session:
        order = await sim.orders(session).get_order(order_id)
        print(f"  📄 Order status: {order.status}")
    await sim.print_balances("buyer-3", "seller-3")


async def scenario_4_double_release(sim: Simulation) -> None:
    banner("SCENARIO 4: Buyer releases payment twice")
    await sim.deposit("buyer-4", "100.00")
    order_id = await sim.new_order("buyer-4", "seller-4", "100.00")
    await sim.deliver(order_id, "seller-4")

    for attempt in (1, 2):
        section(f"Release attempt {attempt}")
        try:
            async with sim.session_factory() as session, session.begin():
                order = await sim.orders(session).release_payment(order_id, "buyer-4")
            print(f"  ✅ Released; order {order.status}")
        except EscrowError as exc:
            print(f"  ⛔ {exc.code}: {exc.message}")
    await sim.print_balances("seller-4")


async def scenario_5_partial_refund(sim: Simulation) -> None:
    banner("SCENARIO 5: Admin splits a $100 work proof dispute")
    await sim.deposit("employer-5", "100.00")
    async with sim.session_factory() as session, session.begin():
        proof = await sim.proofs(session).submit_work_proof(
            job_id="job-5",
            worker_id="worker-5",
            employer_id="employer-5",
            payment_amount=Decimal("100.00"),
            submission_text="Screenshots of the completed survey",
        )
        dispute = await sim.proofs(session).open_work_proof_dispute(
            proof.id, "worker-5", "Employer ignored my submission"
        )
    print(f"  ⚖️  Dispute {dispute.id} opened on proof {proof.id}")

    for attempt in (1, 2):
        section(f"Resolve attempt {attempt}")
        try:
            async with sim.session_factory() as session, session.begin():
                svc = DisputeService(session, settings=sim.settings, clock=sim.clock)
                resolved = await svc.resolve_work_proof_dispute(
                    dispute.id, "admin-1", "partial_refund", "Both parties partly right"
                )
            print(f"  ✅ Resolved: {resolved.resolution}")
        except EscrowError as exc:
            print(f"  ⛔ {exc.code}: {exc.message}")
    await sim.print_balances("employer-5", "worker-5")


async def scenario_6_revision_limit(sim: Simulation) -> None:
    banner("SCENARIO 6: Revision limit of 2")
    await sim.deposit("employer-6", "40.00")
    async with sim.session_factory() as session, session.begin():
        proof = await sim.proofs(session).submit_work_proof(
            job_id="job-6",
            worker_id="worker-6",
            employer_id="employer-6",
            payment_amount=Decimal("40.00"),
            submission_text="First draft of the article",
            max_revision_requests=2,
        )

    for attempt in (1, 2, 3):
        section(f"Revision request {attempt}")
        try:
            async with sim.session_factory() as session, session.begin():
                updated = await sim.proofs(session).request_revision(
                    proof.id, "employer-6", f"Please address point {attempt}"
                )
            print(
                f"  ✅ {updated.status}, revisions "
                f"{updated.revision_count}/{updated.max_revision_requests}"
            )
        except EscrowError as exc:
            print(f"  ⛔ {exc.code}: {exc.message}")


SCENARIOS = {
    1: scenario_1_hold_on_create,
    2: scenario_2_acceptance_timeout,
    3: scenario_3_auto_release,
    4: scenario_4_double_release,
    5: scenario_5_partial_refund,
    6: scenario_6_revision_limit,
}


# ===========================================================================
# Main
# ===========================================================================
async def run(scenario: int = 0, use_sqlite: bool = False) -> None:
    sim = Simulation(use_sqlite=use_sqlite)
    await sim.start()
    try:
        if scenario == 0:
            for fn in SCENARIOS.values():
                await fn(sim)
        elif scenario in SCENARIOS:
            await SCENARIOS[scenario](sim)
        else:
            print(f"Unknown scenario {scenario}. Available: {', '.join(map(str, SCENARIOS))}")
            return
        print("\n" + "=" * 70)
        print("  ✅ SIMULATION FINISHED")
        print("=" * 70 + "\n")
    finally:
        await sim.stop()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Marketplace Escrow Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1-6). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use SQLite in-memory instead of PostgreSQL (no Docker needed).",
    )
    args = parser.parse_args()
    asyncio.run(run(scenario=args.scenario, use_sqlite=args.sqlite))
