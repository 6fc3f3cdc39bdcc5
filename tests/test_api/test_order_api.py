"""End-to-end tests for the order and wallet REST endpoints."""

from __future__ import annotations

import uuid
from decimal import Decimal

import httpx

ORDERS = "/api/v1/orders"


async def _deposit(client: httpx.AsyncClient, user_id: str, amount: str) -> dict:
    resp = await client.post(f"/api/v1/wallets/{user_id}/deposits", json={"amount": amount})
    assert resp.status_code == 201
    return resp.json()


async def _place_order(client: httpx.AsyncClient, price: str = "100.00") -> dict:
    resp = await client.post(
        ORDERS,
        json={
            "service_id": "svc-logo",
            "buyer_id": "buyer-1",
            "seller_id": "seller-1",
            "price": price,
            "requirements": "Two colour variants",
        },
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _deliver(client: httpx.AsyncClient, order_id: str) -> dict:
    await client.post(f"{ORDERS}/{order_id}/accept", json={"seller_id": "seller-1"})
    await client.post(
        f"{ORDERS}/{order_id}/status", json={"seller_id": "seller-1", "status": "in_progress"}
    )
    resp = await client.post(
        f"{ORDERS}/{order_id}/deliver",
        json={
            "seller_id": "seller-1",
            "message": "Files attached",
            "evidence": [{"kind": "link", "content": "https://files.example.com/logo.zip"}],
        },
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


class TestOrderFlow:
    async def test_happy_path(self, client: httpx.AsyncClient) -> None:
        wallet = await _deposit(client, "buyer-1", "150.00")
        assert Decimal(wallet["deposit_balance"]) == Decimal("150.00")

        order = await _place_order(client)
        assert order["status"] == "awaiting_acceptance"
        wallet = (await client.get("/api/v1/wallets/buyer-1")).json()
        assert Decimal(wallet["deposit_balance"]) == Decimal("50.00")

        delivered = await _deliver(client, order["id"])
        assert delivered["status"] == "delivered"
        assert delivered["deliverables"]["evidence"][0]["kind"] == "link"

        resp = await client.post(f"{ORDERS}/{order['id']}/release", json={"buyer_id": "buyer-1"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "completed"

        seller = (await client.get("/api/v1/wallets/seller-1")).json()
        assert Decimal(seller["earnings_balance"]) == Decimal("100.00")

        events = (await client.get(f"{ORDERS}/{order['id']}/events")).json()
        assert [e["event_type"] for e in events] == [
            "ORDER_CREATED",
            "ORDER_ACCEPTED",
            "ORDER_STARTED",
            "ORDER_DELIVERED",
            "ORDER_COMPLETED",
        ]

    async def test_status_endpoint(self, client: httpx.AsyncClient) -> None:
        await _deposit(client, "buyer-1", "100.00")
        order = await _place_order(client)

        resp = await client.get(f"{ORDERS}/{order['id']}/status")

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "awaiting_acceptance"
        assert body["seconds_remaining"] == 24 * 3600
        assert set(body["allowed_events"]) >= {"accept", "decline", "cancel"}

    async def test_list_by_role(self, client: httpx.AsyncClient) -> None:
        await _deposit(client, "buyer-1", "100.00")
        order = await _place_order(client)

        resp = await client.get(ORDERS, params={"user_id": "seller-1", "role": "seller"})
        assert [o["id"] for o in resp.json()] == [order["id"]]

    async def test_dispute_and_admin_resolution(self, client: httpx.AsyncClient) -> None:
        await _deposit(client, "buyer-1", "100.00")
        order = await _place_order(client)
        await _deliver(client, order["id"])

        resp = await client.post(
            f"{ORDERS}/{order['id']}/dispute",
            json={"buyer_id": "buyer-1", "reason": "Wrong colours"},
        )
        assert resp.status_code == 201
        dispute = resp.json()

        resp = await client.post(
            f"/api/v1/admin/disputes/{dispute['id']}/resolve",
            json={"admin_id": "admin-1", "decision": "approve_employer"},
        )
        assert resp.status_code == 200
        assert resp.json()["resolution"] == "approve_employer"

        order = (await client.get(f"{ORDERS}/{order['id']}")).json()
        assert order["status"] == "dispute_resolved"
        buyer = (await client.get("/api/v1/wallets/buyer-1")).json()
        assert Decimal(buyer["deposit_balance"]) == Decimal("100.00")

        resp = await client.post(
            f"/api/v1/admin/disputes/{dispute['id']}/resolve",
            json={"admin_id": "admin-2", "decision": "approve_worker"},
        )
        assert resp.status_code == 409
        assert resp.json()["error"] == "DUPLICATE_RESOLUTION"


class TestErrorMapping:
    async def test_insufficient_balance_is_402(self, client: httpx.AsyncClient) -> None:
        await _deposit(client, "buyer-1", "10.00")
        resp = await client.post(
            ORDERS,
            json={
                "service_id": "svc-logo",
                "buyer_id": "buyer-1",
                "seller_id": "seller-1",
                "price": "100.00",
            },
        )
        assert resp.status_code == 402
        assert resp.json()["error"] == "INSUFFICIENT_BALANCE"

    async def test_not_participant_is_403(self, client: httpx.AsyncClient) -> None:
        await _deposit(client, "buyer-1", "100.00")
        order = await _place_order(client)
        resp = await client.post(f"{ORDERS}/{order['id']}/accept", json={"seller_id": "mallory"})
        assert resp.status_code == 403

    async def test_unknown_order_is_404(self, client: httpx.AsyncClient) -> None:
        resp = await client.get(f"{ORDERS}/{uuid.uuid4()}")
        assert resp.status_code == 404
        assert resp.json()["error"] == "ORDER_NOT_FOUND"

    async def test_double_release_is_409(self, client: httpx.AsyncClient) -> None:
        await _deposit(client, "buyer-1", "100.00")
        order = await _place_order(client)
        await _deliver(client, order["id"])

        first = await client.post(f"{ORDERS}/{order['id']}/release", json={"buyer_id": "buyer-1"})
        second = await client.post(f"{ORDERS}/{order['id']}/release", json={"buyer_id": "buyer-1"})

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["error"] == "INVALID_TRANSITION"
        seller = (await client.get("/api/v1/wallets/seller-1")).json()
        assert Decimal(seller["earnings_balance"]) == Decimal("100.00")

    async def test_self_order_is_422(self, client: httpx.AsyncClient) -> None:
        await _deposit(client, "buyer-1", "100.00")
        resp = await client.post(
            ORDERS,
            json={
                "service_id": "svc-logo",
                "buyer_id": "buyer-1",
                "seller_id": "buyer-1",
                "price": "10.00",
            },
        )
        assert resp.status_code == 422
        assert resp.json()["field"] == "seller_id"

    async def test_failed_request_rolls_back(self, client: httpx.AsyncClient) -> None:
        await _deposit(client, "buyer-1", "100.00")
        order = await _place_order(client)
        await client.post(f"{ORDERS}/{order['id']}/decline", json={"seller_id": "seller-1"})

        resp = await client.post(f"{ORDERS}/{order['id']}/accept", json={"seller_id": "seller-1"})

        assert resp.status_code == 409
        order = (await client.get(f"{ORDERS}/{order['id']}")).json()
        assert order["status"] == "cancelled"


class TestWallets:
    async def test_deposit_replay_is_ignored(self, client: httpx.AsyncClient) -> None:
        body = {"amount": "25.00", "reference_id": "psp:abc"}
        await client.post("/api/v1/wallets/buyer-1/deposits", json=body)
        resp = await client.post("/api/v1/wallets/buyer-1/deposits", json=body)

        assert Decimal(resp.json()["deposit_balance"]) == Decimal("25.00")
        txns = (await client.get("/api/v1/wallets/buyer-1/transactions")).json()
        assert len(txns) == 1
        assert txns[0]["type"] == "deposit"
