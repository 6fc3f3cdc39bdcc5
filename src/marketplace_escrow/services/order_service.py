"""Order Service — core business logic for the order lifecycle.

This is the application layer that coordinates between:
    - Transition guard (state machine + compare-and-swap)
    - Escrow service (ledger movements)
    - Repositories (data access)
    - Event log (audit trail)

Both REST routes and the deadline sweeper call into this service, so a
manual release and an auto-release go through exactly the same checks.

Every public method runs inside the caller's transaction; nothing here
commits.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from marketplace_escrow.config import Settings, get_settings
from marketplace_escrow.domain.clock import Clock, utcnow
from marketplace_escrow.domain.enums import (
    SYSTEM_ACTOR,
    EventType,
    OrderStatus,
    SubjectType,
)
from marketplace_escrow.domain.evidence import normalize_evidence
from marketplace_escrow.domain.exceptions import (
    InputValidationError,
    InvalidTransitionError,
    NotParticipantError,
    OrderNotFoundError,
)
from marketplace_escrow.domain.money import ZERO, to_amount
from marketplace_escrow.domain.state_machine import OrderStateMachine
from marketplace_escrow.infrastructure.database.orm_models import Order
from marketplace_escrow.infrastructure.database.repositories import (
    EventRepository,
    OrderRepository,
)
from marketplace_escrow.logging_config import get_logger
from marketplace_escrow.services.dispute_service import DisputeService
from marketplace_escrow.services.escrow_service import EscrowService
from marketplace_escrow.services.transition_guard import TransitionGuard

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from marketplace_escrow.infrastructure.database.orm_models import Dispute, EscrowEvent

logger = get_logger(__name__)

ACCEPTANCE_TIMEOUT_REASON = "acceptance timeout"
AUTO_RELEASE_NOTE = "auto-release: buyer did not act"

# Seller-driven forward steps accepted by update_order_status.
_STATUS_STEPS = {
    OrderStatus.IN_PROGRESS.value: "start_work",
    OrderStatus.DELIVERED.value: "deliver",
}


class OrderService:
    """Manages the marketplace order lifecycle."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._now = clock or utcnow
        self._order_repo = OrderRepository(session)
        self._event_repo = EventRepository(session)
        self._guard = TransitionGuard(session)
        self._escrow = EscrowService(session)
        self._disputes = DisputeService(session, settings=self._settings, clock=self._now)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_order(
        self,
        service_id: str,
        buyer_id: str,
        seller_id: str,
        price: Decimal,
        requirements: str | None = None,
    ) -> Order:
        """Hold the price from the buyer and open an order awaiting the seller.

        The balance check happens before anything is written; if the hold
        fails, no order exists.
        """
        price = to_amount(price)
        if price <= ZERO:
            raise InputValidationError("Order price must be positive", "price")
        if buyer_id == seller_id:
            raise InputValidationError("Buyer and seller must be different users", "seller_id")

        await self._escrow.ensure_funds(buyer_id, price)

        now = self._now()
        order_id = uuid.uuid4()
        await self._escrow.hold(SubjectType.ORDER, order_id, price, buyer_id)

        order = await self._order_repo.create(
            Order(
                id=order_id,
                service_id=service_id,
                buyer_id=buyer_id,
                seller_id=seller_id,
                price=price,
                requirements=requirements,
                status=OrderStatus.AWAITING_ACCEPTANCE.value,
                created_at=now,
                acceptance_deadline=now + self._settings.acceptance_window,
            )
        )
        await self._record(order, EventType.ORDER_CREATED, None, buyer_id, {"price": str(price)})

        logger.info(
            "order.created",
            order_id=str(order.id),
            buyer_id=buyer_id,
            seller_id=seller_id,
            price=str(price),
        )
        return order

    # ------------------------------------------------------------------
    # Seller response
    # ------------------------------------------------------------------

    async def accept_order(self, order_id: uuid.UUID, seller_id: str) -> Order:
        """Seller accepts within the acceptance window."""
        order = await self._get_order_or_raise(order_id, for_update=True)
        self._require_party(order, seller_id, "seller")

        now = self._now()
        if order.status == OrderStatus.AWAITING_ACCEPTANCE and now > order.acceptance_deadline:
            raise InvalidTransitionError(
                order.status, "accept", detail="acceptance deadline has passed"
            )

        old, _ = await self._guard.transition(order, "accept", accepted_at=now)
        await self._record(order, EventType.ORDER_ACCEPTED, old, seller_id)
        logger.info("order.accepted", order_id=str(order_id), seller_id=seller_id)
        return order

    async def decline_order(
        self,
        order_id: uuid.UUID,
        seller_id: str,
        reason: str | None = None,
    ) -> Order:
        """Seller declines; the buyer is refunded in full."""
        order = await self._get_order_or_raise(order_id, for_update=True)
        self._require_party(order, seller_id, "seller")
        return await self._cancel_with_refund(
            order,
            event_name="decline",
            event_type=EventType.ORDER_DECLINED,
            actor=seller_id,
            reason=reason or "declined by seller",
        )

    async def expire_acceptance(self, order_id: uuid.UUID) -> Order:
        """Forced decline once the acceptance deadline has passed."""
        order = await self._get_order_or_raise(order_id, for_update=True)
        now = self._now()
        if not now > order.acceptance_deadline:
            raise InvalidTransitionError(
                order.status, "expire_acceptance", detail="acceptance deadline not reached"
            )
        return await self._cancel_with_refund(
            order,
            event_name="expire_acceptance",
            event_type=EventType.ORDER_ACCEPTANCE_EXPIRED,
            actor=SYSTEM_ACTOR,
            reason=ACCEPTANCE_TIMEOUT_REASON,
        )

    # ------------------------------------------------------------------
    # Work
    # ------------------------------------------------------------------

    async def update_order_status(
        self,
        order_id: uuid.UUID,
        seller_id: str,
        new_status: str | OrderStatus,
    ) -> Order:
        """Move an accepted order one step forward (in_progress, then delivered)."""
        target = str(new_status)
        event_name = _STATUS_STEPS.get(target)
        if event_name is None:
            valid = ", ".join(_STATUS_STEPS)
            raise InputValidationError(
                f"Status can only be updated to: {valid}", "status"
            )

        order = await self._get_order_or_raise(order_id, for_update=True)
        self._require_party(order, seller_id, "seller")

        if event_name == "deliver":
            return await self._deliver(order, seller_id, deliverables=None)

        old, _ = await self._guard.transition(order, event_name)
        await self._record(order, EventType.ORDER_STARTED, old, seller_id)
        logger.info("order.started", order_id=str(order_id))
        return order

    async def submit_delivery(
        self,
        order_id: uuid.UUID,
        seller_id: str,
        message: str,
        evidence: list[dict[str, Any]] | None = None,
    ) -> Order:
        """Seller delivers the work with a message and optional evidence."""
        if not message or not message.strip():
            raise InputValidationError("Delivery message must not be empty", "message")
        items = normalize_evidence(evidence)

        order = await self._get_order_or_raise(order_id, for_update=True)
        self._require_party(order, seller_id, "seller")
        return await self._deliver(
            order,
            seller_id,
            deliverables={"message": message.strip(), "evidence": items},
        )

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    async def release_payment(self, order_id: uuid.UUID, buyer_id: str) -> Order:
        """Buyer accepts the delivery; the seller is paid."""
        order = await self._get_order_or_raise(order_id, for_update=True)
        self._require_party(order, buyer_id, "buyer")
        return await self._complete(order, "release", EventType.ORDER_COMPLETED, buyer_id)

    async def auto_release(self, order_id: uuid.UUID) -> Order:
        """Forced release once the buyer's review period has passed."""
        order = await self._get_order_or_raise(order_id, for_update=True)
        now = self._now()
        if order.review_deadline is None or not now > order.review_deadline:
            raise InvalidTransitionError(
                order.status, "auto_release", detail="review deadline not reached"
            )
        return await self._complete(
            order,
            "auto_release",
            EventType.ORDER_AUTO_RELEASED,
            SYSTEM_ACTOR,
            {"note": AUTO_RELEASE_NOTE},
        )

    async def cancel_order(
        self,
        order_id: uuid.UUID,
        actor_id: str,
        reason: str | None = None,
        refund_ratio: Decimal = Decimal(1),
    ) -> Order:
        """Cancel a live order.

        Args:
            refund_ratio: Share of the price returned to the buyer. 1 is a
                full refund; anything less splits the price and pays the
                remainder to the seller.
        """
        refund_ratio = Decimal(refund_ratio)
        if not Decimal(0) <= refund_ratio <= Decimal(1):
            raise InputValidationError("refund_ratio must be between 0 and 1", "refund_ratio")

        order = await self._get_order_or_raise(order_id, for_update=True)
        if actor_id not in (order.buyer_id, order.seller_id):
            raise NotParticipantError(actor_id, "buyer or seller", str(order.id))

        if refund_ratio == Decimal(1):
            return await self._cancel_with_refund(
                order,
                event_name="cancel",
                event_type=EventType.ORDER_CANCELLED,
                actor=actor_id,
                reason=reason or "cancelled",
            )

        now = self._now()
        old, _ = await self._guard.transition(
            order, "cancel", cancelled_at=now, cancel_reason=reason or "cancelled"
        )
        await self._escrow.split(
            SubjectType.ORDER,
            order.id,
            order.price,
            payer_id=order.buyer_id,
            payee_id=order.seller_id,
            payee_ratio=Decimal(1) - refund_ratio,
        )
        await self._record(
            order,
            EventType.ORDER_CANCELLED,
            old,
            actor_id,
            {"reason": reason, "refund_ratio": str(refund_ratio)},
        )
        logger.info(
            "order.cancelled",
            order_id=str(order.id),
            by=actor_id,
            refund_ratio=str(refund_ratio),
        )
        return order

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    async def open_dispute(
        self,
        order_id: uuid.UUID,
        buyer_id: str,
        reason: str,
        details: str | None = None,
    ) -> Dispute:
        """Buyer contests a delivery; the order is frozen until an admin rules."""
        if not reason or not reason.strip():
            raise InputValidationError("Dispute reason must not be empty", "reason")

        order = await self._get_order_or_raise(order_id, for_update=True)
        self._require_party(order, buyer_id, "buyer")

        now = self._now()
        if (
            self._settings.auto_release_payment
            and order.status == OrderStatus.DELIVERED
            and order.review_deadline is not None
            and now > order.review_deadline
        ):
            raise InvalidTransitionError(
                order.status, "open_dispute", detail="review period has ended"
            )

        old, _ = await self._guard.transition(
            order,
            "open_dispute",
            disputed_at=now,
            dispute_reason=reason.strip(),
            dispute_details=details,
        )
        dispute = await self._disputes.open_dispute(
            subject_type=SubjectType.ORDER,
            subject_id=order.id,
            payer_id=order.buyer_id,
            payee_id=order.seller_id,
            raised_by=buyer_id,
            amount=order.price,
            reason=reason.strip(),
            details=details,
            previous_status=old,
        )
        return dispute

    async def resolve_dispute(
        self,
        dispute_id: uuid.UUID,
        admin_id: str,
        decision: str,
        notes: str | None = None,
    ) -> Dispute:
        """Admin resolution of an order dispute."""
        return await self._disputes.resolve(dispute_id, admin_id, decision, notes)

    # ------------------------------------------------------------------
    # Buyer edits
    # ------------------------------------------------------------------

    async def update_requirements(
        self,
        order_id: uuid.UUID,
        buyer_id: str,
        requirements: str,
    ) -> Order:
        """Buyer edits requirements before work has started."""
        order = await self._get_order_or_raise(order_id, for_update=True)
        self._require_party(order, buyer_id, "buyer")
        if order.status not in (OrderStatus.AWAITING_ACCEPTANCE, OrderStatus.PENDING):
            raise InvalidTransitionError(order.status, "update_requirements")

        order.requirements = requirements
        await self._session.flush()
        await self._record(order, EventType.ORDER_REQUIREMENTS_UPDATED, order.status, buyer_id)
        return order

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_order(self, order_id: uuid.UUID) -> Order:
        """Get an order or raise."""
        return await self._get_order_or_raise(order_id)

    async def list_orders(
        self,
        user_id: str,
        role: str | None = None,
        status: OrderStatus | None = None,
        limit: int = 100,
    ) -> list[Order]:
        if role not in (None, "buyer", "seller"):
            raise InputValidationError("role must be 'buyer' or 'seller'", "role")
        return await self._order_repo.list_for_user(user_id, role=role, status=status, limit=limit)

    async def get_order_status(self, order_id: uuid.UUID) -> dict:
        """Get order status with allowed events and the active deadline."""
        order = await self._get_order_or_raise(order_id)
        sm = OrderStateMachine(current_status=order.status)
        deadline = self._active_deadline(order)
        remaining = None
        if deadline is not None:
            remaining = max(0, int((deadline - self._now()).total_seconds()))
        return {
            "order_id": order.id,
            "status": order.status,
            "allowed_events": sm.get_allowed_events(),
            "acceptance_deadline": order.acceptance_deadline,
            "review_deadline": order.review_deadline,
            "active_deadline": deadline,
            "seconds_remaining": remaining,
            "is_expired": remaining == 0 if remaining is not None else False,
        }

    async def get_events(self, order_id: uuid.UUID) -> list[EscrowEvent]:
        """Get the audit trail of an order."""
        await self._get_order_or_raise(order_id)
        return await self._event_repo.get_by_subject(SubjectType.ORDER, order_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _deliver(
        self,
        order: Order,
        seller_id: str,
        deliverables: dict | None,
    ) -> Order:
        now = self._now()
        changes: dict[str, Any] = {
            "delivered_at": now,
            "review_deadline": now + self._settings.review_period,
        }
        if deliverables is not None:
            changes["deliverables"] = deliverables
        old, _ = await self._guard.transition(order, "deliver", **changes)
        await self._record(
            order,
            EventType.ORDER_DELIVERED,
            old,
            seller_id,
            {"evidence_items": len(deliverables["evidence"]) if deliverables else 0},
        )
        logger.info(
            "order.delivered",
            order_id=str(order.id),
            review_deadline=order.review_deadline.isoformat(),
        )
        return order

    async def _complete(
        self,
        order: Order,
        event_name: str,
        event_type: EventType,
        actor: str,
        metadata: dict | None = None,
    ) -> Order:
        old, _ = await self._guard.transition(order, event_name, completed_at=self._now())
        await self._escrow.release(SubjectType.ORDER, order.id, order.price, order.seller_id)
        await self._record(order, event_type, old, actor, metadata)
        logger.info("order.completed", order_id=str(order.id), by=actor)
        return order

    async def _cancel_with_refund(
        self,
        order: Order,
        event_name: str,
        event_type: EventType,
        actor: str,
        reason: str,
    ) -> Order:
        old, _ = await self._guard.transition(
            order, event_name, cancelled_at=self._now(), cancel_reason=reason
        )
        await self._escrow.refund(SubjectType.ORDER, order.id, order.price, order.buyer_id)
        await self._record(order, event_type, old, actor, {"reason": reason})
        logger.info("order.cancelled", order_id=str(order.id), by=actor, reason=reason)
        return order

    def _active_deadline(self, order: Order) -> datetime | None:
        if order.status == OrderStatus.AWAITING_ACCEPTANCE:
            return order.acceptance_deadline
        if order.status == OrderStatus.DELIVERED:
            return order.review_deadline
        return None

    async def _record(
        self,
        order: Order,
        event_type: EventType,
        old_status: str | None,
        actor: str,
        metadata: dict | None = None,
    ) -> None:
        await self._event_repo.record(
            subject_type=SubjectType.ORDER,
            subject_id=order.id,
            event_type=event_type,
            old_status=old_status,
            new_status=order.status,
            actor=actor,
            metadata=metadata,
            created_at=self._now(),
        )

    async def _get_order_or_raise(self, order_id: uuid.UUID, for_update: bool = False) -> Order:
        order = await self._order_repo.get_by_id(order_id, for_update=for_update)
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order

    @staticmethod
    def _require_party(order: Order, user_id: str, role: str) -> None:
        expected = order.buyer_id if role == "buyer" else order.seller_id
        if user_id != expected:
            raise NotParticipantError(user_id, role, str(order.id))
