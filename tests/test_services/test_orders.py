"""Tests for the order lifecycle in OrderService."""

from __future__ import annotations

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from marketplace_escrow.domain.enums import (
    SYSTEM_ACTOR,
    DisputeStatus,
    EventType,
    OrderStatus,
)
from marketplace_escrow.domain.exceptions import (
    InputValidationError,
    InsufficientBalanceError,
    InvalidTransitionError,
    NotParticipantError,
    OrderNotFoundError,
)
from marketplace_escrow.services.ledger_service import LedgerService
from marketplace_escrow.services.order_service import OrderService

BUYER = "buyer-1"
SELLER = "seller-1"


@pytest.fixture
def orders(session, settings, clock) -> OrderService:
    return OrderService(session, settings=settings, clock=clock)


async def _balances(session, user_id: str) -> tuple[Decimal, Decimal]:
    account = await LedgerService(session).get_account(user_id)
    return account.deposit_balance, account.earnings_balance


async def _funded_order(session, orders: OrderService, price: str = "100.00"):
    await LedgerService(session).deposit(BUYER, Decimal("150.00"))
    return await orders.create_order("svc-1", BUYER, SELLER, Decimal(price), "A logo")


async def _delivered_order(session, orders: OrderService):
    order = await _funded_order(session, orders)
    await orders.accept_order(order.id, SELLER)
    await orders.update_order_status(order.id, SELLER, "in_progress")
    return await orders.submit_delivery(order.id, SELLER, "Here you go")


class TestCreateOrder:
    async def test_create_holds_price(self, session, orders: OrderService, clock) -> None:
        order = await _funded_order(session, orders)

        assert order.status == OrderStatus.AWAITING_ACCEPTANCE
        assert order.acceptance_deadline == clock() + timedelta(hours=24)
        assert await _balances(session, BUYER) == (Decimal("50.00"), Decimal("0.00"))

    async def test_insufficient_funds_writes_nothing(self, session, orders: OrderService) -> None:
        await LedgerService(session).deposit(BUYER, Decimal("99.99"))

        with pytest.raises(InsufficientBalanceError):
            await orders.create_order("svc-1", BUYER, SELLER, Decimal("100.00"))

        assert await orders.list_orders(BUYER) == []
        assert await _balances(session, BUYER) == (Decimal("99.99"), Decimal("0.00"))

    async def test_price_must_be_positive(self, orders: OrderService) -> None:
        with pytest.raises(InputValidationError):
            await orders.create_order("svc-1", BUYER, SELLER, Decimal("0"))

    async def test_buyer_cannot_be_seller(self, orders: OrderService) -> None:
        with pytest.raises(InputValidationError):
            await orders.create_order("svc-1", BUYER, BUYER, Decimal("10.00"))

    async def test_creation_is_audited(self, session, orders: OrderService) -> None:
        order = await _funded_order(session, orders)
        events = await orders.get_events(order.id)
        assert [e.event_type for e in events] == [EventType.ORDER_CREATED]
        assert events[0].actor == BUYER


class TestSellerResponse:
    async def test_accept(self, session, orders: OrderService, clock) -> None:
        order = await _funded_order(session, orders)
        accepted = await orders.accept_order(order.id, SELLER)
        assert accepted.status == OrderStatus.PENDING
        assert accepted.accepted_at == clock()

    async def test_accept_after_deadline(self, session, orders: OrderService, clock) -> None:
        order = await _funded_order(session, orders)
        clock.advance(hours=24, seconds=1)
        with pytest.raises(InvalidTransitionError, match="deadline"):
            await orders.accept_order(order.id, SELLER)

    async def test_only_the_seller_accepts(self, session, orders: OrderService) -> None:
        order = await _funded_order(session, orders)
        with pytest.raises(NotParticipantError):
            await orders.accept_order(order.id, "someone-else")

    async def test_decline_refunds_buyer(self, session, orders: OrderService) -> None:
        order = await _funded_order(session, orders)
        declined = await orders.decline_order(order.id, SELLER, "Too busy")
        assert declined.status == OrderStatus.CANCELLED
        assert declined.cancel_reason == "Too busy"
        assert await _balances(session, BUYER) == (Decimal("150.00"), Decimal("0.00"))

    async def test_decline_after_accept(self, session, orders: OrderService) -> None:
        order = await _funded_order(session, orders)
        await orders.accept_order(order.id, SELLER)
        with pytest.raises(InvalidTransitionError):
            await orders.decline_order(order.id, SELLER)

    async def test_expire_before_deadline(self, session, orders: OrderService) -> None:
        order = await _funded_order(session, orders)
        with pytest.raises(InvalidTransitionError):
            await orders.expire_acceptance(order.id)


class TestWork:
    async def test_status_steps_forward_only(self, session, orders: OrderService) -> None:
        order = await _funded_order(session, orders)
        with pytest.raises(InvalidTransitionError):
            await orders.update_order_status(order.id, SELLER, "in_progress")

        await orders.accept_order(order.id, SELLER)
        started = await orders.update_order_status(order.id, SELLER, "in_progress")
        assert started.status == OrderStatus.IN_PROGRESS

    async def test_unknown_target_status(self, session, orders: OrderService) -> None:
        order = await _funded_order(session, orders)
        with pytest.raises(InputValidationError):
            await orders.update_order_status(order.id, SELLER, "completed")

    async def test_delivery_sets_review_deadline(
        self, session, orders: OrderService, clock
    ) -> None:
        order = await _delivered_order(session, orders)
        assert order.status == OrderStatus.DELIVERED
        assert order.delivered_at == clock()
        assert order.review_deadline == clock() + timedelta(days=3)
        assert order.deliverables == {"message": "Here you go", "evidence": []}

    async def test_delivery_needs_a_message(self, session, orders: OrderService) -> None:
        order = await _funded_order(session, orders)
        with pytest.raises(InputValidationError):
            await orders.submit_delivery(order.id, SELLER, "   ")

    async def test_delivery_normalizes_evidence(self, session, orders: OrderService) -> None:
        order = await _funded_order(session, orders)
        await orders.accept_order(order.id, SELLER)
        await orders.update_order_status(order.id, SELLER, "in_progress")
        delivered = await orders.submit_delivery(
            order.id, SELLER, "Final files", [{"kind": "image", "content": "aGVsbG8="}]
        )
        assert delivered.deliverables["evidence"][0]["content"].startswith("data:image/png")


class TestRelease:
    async def test_release_pays_seller(self, session, orders: OrderService) -> None:
        order = await _delivered_order(session, orders)
        completed = await orders.release_payment(order.id, BUYER)
        assert completed.status == OrderStatus.COMPLETED
        assert completed.completed_at is not None
        assert await _balances(session, SELLER) == (Decimal("0.00"), Decimal("100.00"))

    async def test_second_release_fails_and_pays_once(
        self, session, orders: OrderService
    ) -> None:
        order = await _delivered_order(session, orders)
        await orders.release_payment(order.id, BUYER)

        with pytest.raises(InvalidTransitionError):
            await orders.release_payment(order.id, BUYER)

        assert await _balances(session, SELLER) == (Decimal("0.00"), Decimal("100.00"))

    async def test_seller_cannot_release(self, session, orders: OrderService) -> None:
        order = await _delivered_order(session, orders)
        with pytest.raises(NotParticipantError):
            await orders.release_payment(order.id, SELLER)

    async def test_auto_release_needs_elapsed_deadline(
        self, session, orders: OrderService, clock
    ) -> None:
        order = await _delivered_order(session, orders)
        with pytest.raises(InvalidTransitionError):
            await orders.auto_release(order.id)

        clock.advance(days=3, seconds=1)
        released = await orders.auto_release(order.id)
        assert released.status == OrderStatus.COMPLETED
        events = await orders.get_events(order.id)
        assert events[-1].event_type == EventType.ORDER_AUTO_RELEASED
        assert events[-1].actor == SYSTEM_ACTOR


class TestCancel:
    async def test_full_refund(self, session, orders: OrderService) -> None:
        order = await _funded_order(session, orders)
        cancelled = await orders.cancel_order(order.id, BUYER, "Changed my mind")
        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.cancelled_at is not None
        assert cancelled.completed_at is None
        assert await _balances(session, BUYER) == (Decimal("150.00"), Decimal("0.00"))

    async def test_partial_refund_splits(self, session, orders: OrderService) -> None:
        order = await _delivered_order(session, orders)
        await orders.cancel_order(order.id, SELLER, "Partial work", refund_ratio=Decimal("0.25"))
        assert await _balances(session, BUYER) == (Decimal("75.00"), Decimal("0.00"))
        assert await _balances(session, SELLER) == (Decimal("0.00"), Decimal("75.00"))

    async def test_outsider_cannot_cancel(self, session, orders: OrderService) -> None:
        order = await _funded_order(session, orders)
        with pytest.raises(NotParticipantError):
            await orders.cancel_order(order.id, "mallory")

    async def test_cannot_cancel_completed(self, session, orders: OrderService) -> None:
        order = await _delivered_order(session, orders)
        await orders.release_payment(order.id, BUYER)
        with pytest.raises(InvalidTransitionError):
            await orders.cancel_order(order.id, BUYER)

    async def test_ratio_bounds(self, session, orders: OrderService) -> None:
        order = await _funded_order(session, orders)
        with pytest.raises(InputValidationError):
            await orders.cancel_order(order.id, BUYER, refund_ratio=Decimal("1.1"))


class TestDispute:
    async def test_open_dispute_freezes_order(self, session, orders: OrderService) -> None:
        order = await _delivered_order(session, orders)
        dispute = await orders.open_dispute(order.id, BUYER, "Wrong colours", "Asked for blue")

        assert dispute.status == DisputeStatus.PENDING
        assert dispute.amount == Decimal("100.00")
        assert dispute.payer_id == BUYER
        assert dispute.payee_id == SELLER

        frozen = await orders.get_order(order.id)
        assert frozen.status == OrderStatus.DISPUTED
        with pytest.raises(InvalidTransitionError):
            await orders.release_payment(order.id, BUYER)
        with pytest.raises(InvalidTransitionError):
            await orders.cancel_order(order.id, BUYER)

    async def test_dispute_needs_reason(self, session, orders: OrderService) -> None:
        order = await _delivered_order(session, orders)
        with pytest.raises(InputValidationError):
            await orders.open_dispute(order.id, BUYER, "")

    async def test_dispute_before_delivery(self, session, orders: OrderService) -> None:
        order = await _funded_order(session, orders)
        with pytest.raises(InvalidTransitionError):
            await orders.open_dispute(order.id, BUYER, "Too slow")

    async def test_dispute_after_review_period(
        self, session, orders: OrderService, clock
    ) -> None:
        order = await _delivered_order(session, orders)
        clock.advance(days=3, seconds=1)
        with pytest.raises(InvalidTransitionError, match="review period"):
            await orders.open_dispute(order.id, BUYER, "Too late")

    async def test_resolve_dispute_for_seller(self, session, orders: OrderService) -> None:
        order = await _delivered_order(session, orders)
        dispute = await orders.open_dispute(order.id, BUYER, "Not what I asked for")

        await orders.resolve_dispute(dispute.id, "admin-1", "approve_worker", "Matches brief")

        resolved = await orders.get_order(order.id)
        assert resolved.status == OrderStatus.DISPUTE_RESOLVED
        assert resolved.admin_decision == "approve_worker"
        assert resolved.admin_notes == "Matches brief"
        assert resolved.completed_at is not None
        assert resolved.cancelled_at is None
        assert await _balances(session, SELLER) == (Decimal("0.00"), Decimal("100.00"))

    @pytest.mark.parametrize(
        ("decision", "closed_field"),
        [
            ("approve_worker", "completed_at"),
            ("partial_refund", "completed_at"),
            ("approve_employer", "cancelled_at"),
        ],
    )
    async def test_resolved_order_has_one_closing_timestamp(
        self, session, orders: OrderService, clock, decision: str, closed_field: str
    ) -> None:
        order = await _delivered_order(session, orders)
        dispute = await orders.open_dispute(order.id, BUYER, "Not what I asked for")
        clock.advance(hours=2)

        await orders.resolve_dispute(dispute.id, "admin-1", decision)

        resolved = await orders.get_order(order.id)
        assert resolved.status == OrderStatus.DISPUTE_RESOLVED
        assert (resolved.completed_at is None) != (resolved.cancelled_at is None)
        assert getattr(resolved, closed_field) == clock()


class TestRequirementsAndReads:
    async def test_update_requirements_before_work(self, session, orders: OrderService) -> None:
        order = await _funded_order(session, orders)
        updated = await orders.update_requirements(order.id, BUYER, "A bigger logo")
        assert updated.requirements == "A bigger logo"

    async def test_update_requirements_after_start(self, session, orders: OrderService) -> None:
        order = await _funded_order(session, orders)
        await orders.accept_order(order.id, SELLER)
        await orders.update_order_status(order.id, SELLER, "in_progress")
        with pytest.raises(InvalidTransitionError):
            await orders.update_requirements(order.id, BUYER, "Too late")

    async def test_status_reports_active_deadline(
        self, session, orders: OrderService, clock
    ) -> None:
        order = await _funded_order(session, orders)
        clock.advance(hours=23)
        status = await orders.get_order_status(order.id)
        assert status["status"] == "awaiting_acceptance"
        assert status["active_deadline"] == order.acceptance_deadline
        assert status["seconds_remaining"] == 3600
        assert not status["is_expired"]
        assert "accept" in status["allowed_events"]

    async def test_list_orders_by_role(self, session, orders: OrderService) -> None:
        order = await _funded_order(session, orders)
        assert [o.id for o in await orders.list_orders(SELLER, role="seller")] == [order.id]
        assert await orders.list_orders(SELLER, role="buyer") == []
        assert len(await orders.list_orders(BUYER, status=OrderStatus.AWAITING_ACCEPTANCE)) == 1

    async def test_missing_order(self, orders: OrderService) -> None:
        with pytest.raises(OrderNotFoundError):
            await orders.get_order(uuid.uuid4())
