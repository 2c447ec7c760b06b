from decimal import Decimal

import httpx
import pytest

from checkout.container import Container
from checkout.infrastructure.rate_limiter import SlidingWindowRateLimiter
from checkout.main import create_app

from conftest import KEY_SECRET, WEBHOOK_SECRET, sign, webhook_body

COD_ORDER = {
    "user_id": "user-1",
    "payment_method": "cod",
    "items": [{"product_id": "product-a", "quantity": 2}, {"product_id": "product-b", "quantity": 1}],
}

ONLINE_ORDER = {
    "user_id": "user-1",
    "payment_method": "online",
    "items": [{"product_id": "product-a", "quantity": 2}],
}


@pytest.fixture
async def client(settings, container):
    app = create_app(settings, container)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client


class TestOrdersApi:
    async def test_create_and_get(self, client, products):
        response = await client.post("/api/orders", json=COD_ORDER)

        assert response.status_code == 201
        body = response.json()
        assert Decimal(body["order"]["total_amount"]) == Decimal("345")
        assert body["order"]["status"] == "pending"
        assert body["payment_intent"]["method"] == "cod"
        assert body["payment_intent"]["amount"] == 36500

        fetched = await client.get(f"/api/orders/{body['order']['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["order_number"] == body["order"]["order_number"]
        assert len(fetched.json()["items"]) == 2

    async def test_insufficient_stock(self, client, products):
        payload = dict(COD_ORDER, items=[{"product_id": "product-a", "quantity": 6}])
        response = await client.post("/api/orders", json=payload)
        assert response.status_code == 400

    async def test_empty_cart(self, client, products):
        response = await client.post("/api/orders", json=dict(COD_ORDER, items=[]))
        assert response.status_code == 400

    async def test_unknown_order(self, client):
        assert (await client.get("/api/orders/missing")).status_code == 404

    async def test_cancel_twice(self, client, products):
        order_id = (await client.post("/api/orders", json=COD_ORDER)).json()["order"]["id"]

        first = await client.post(f"/api/orders/{order_id}/cancel", json={"reason": "передумал"})
        second = await client.post(f"/api/orders/{order_id}/cancel")

        assert first.status_code == 200
        assert first.json()["status"] == "cancelled"
        assert second.status_code == 409

    async def test_status_update(self, client, products):
        order_id = (await client.post("/api/orders", json=COD_ORDER)).json()["order"]["id"]

        invalid = await client.patch(f"/api/orders/{order_id}/status", json={"status": "shipped"})
        valid = await client.patch(f"/api/orders/{order_id}/status", json={"status": "confirmed"})
        repeated = await client.patch(f"/api/orders/{order_id}/status", json={"status": "confirmed"})

        assert invalid.status_code == 409
        assert valid.status_code == 200
        assert repeated.status_code == 200
        assert len(repeated.json()["status_history"]) == 2

    async def test_get_by_number(self, client, products):
        order = (await client.post("/api/orders", json=COD_ORDER)).json()["order"]

        found = await client.get(f"/api/orders/by-number/{order['order_number']}")
        missing = await client.get("/api/orders/by-number/ORD-MISSING")

        assert found.status_code == 200
        assert found.json()["id"] == order["id"]
        assert missing.status_code == 404

    async def test_user_orders(self, client, products):
        payload = dict(COD_ORDER, items=[{"product_id": "product-b", "quantity": 1}])
        first_id = (await client.post("/api/orders", json=payload)).json()["order"]["id"]
        await client.post("/api/orders", json=payload)
        await client.post(f"/api/orders/{first_id}/cancel")

        page = await client.get("/api/users/user-1/orders", params={"per_page": 1})
        cancelled = await client.get("/api/users/user-1/orders", params={"status": "cancelled"})
        clamped = await client.get("/api/users/user-1/orders", params={"page": 0, "per_page": 500})

        assert page.status_code == 200
        assert page.json()["total"] == 2
        assert len(page.json()["orders"]) == 1
        assert [o["id"] for o in cancelled.json()["orders"]] == [first_id]
        assert clamped.json()["page"] == 1
        assert clamped.json()["per_page"] == 100

    async def test_gateway_outage_and_retry(self, client, gateway_client, products):
        gateway_client.fail = True
        body = (await client.post("/api/orders", json=ONLINE_ORDER)).json()
        assert body["payment_intent"] is None
        assert body["payment_error"]

        retry = await client.post(f"/api/orders/{body['order']['id']}/payment-intent")
        assert retry.status_code == 503

        gateway_client.fail = False
        retry = await client.post(f"/api/orders/{body['order']['id']}/payment-intent")
        assert retry.status_code == 200
        assert retry.json()["gateway_order_id"] == "order_gw_1"

    async def test_rate_limit(self, settings, session_factory, gateway_client, products):
        container = Container(
            settings, session_factory, gateway_client=gateway_client,
            rate_limiter=SlidingWindowRateLimiter(max_requests=2, window=60)
        )
        app = create_app(settings, container)
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
            codes = [(await client.post("/api/orders", json=COD_ORDER)).status_code for _ in range(3)]
        assert codes == [201, 201, 429]

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.json() == {"status": "healthy"}


class TestPaymentsApi:
    async def test_webhook_applied_once(self, client, products):
        body = (await client.post("/api/orders", json=ONLINE_ORDER)).json()
        payload = webhook_body("payment.captured", body["payment_intent"]["gateway_order_id"], event_id="evt_1")
        headers = {"X-Razorpay-Signature": sign(WEBHOOK_SECRET, payload), "Content-Type": "application/json"}

        first = await client.post("/api/payments/webhook", content=payload, headers=headers)
        second = await client.post("/api/payments/webhook", content=payload, headers=headers)

        assert first.status_code == 200
        assert first.json() == {"status": "ok", "applied": True, "event_id": "evt_1"}
        assert second.status_code == 200
        assert second.json()["applied"] is False

        order = (await client.get(f"/api/orders/{body['order']['id']}")).json()
        assert order["status"] == "confirmed"
        assert order["payment_status"] == "completed"

    async def test_webhook_bad_signature(self, client, products):
        body = (await client.post("/api/orders", json=ONLINE_ORDER)).json()
        payload = webhook_body("payment.captured", body["payment_intent"]["gateway_order_id"])

        response = await client.post(
            "/api/payments/webhook", content=payload, headers={"X-Razorpay-Signature": "0" * 64}
        )
        assert response.status_code == 400

        order = (await client.get(f"/api/orders/{body['order']['id']}")).json()
        assert order["status"] == "pending"

    async def test_verify(self, client, products):
        body = (await client.post("/api/orders", json=ONLINE_ORDER)).json()
        gateway_order_id = body["payment_intent"]["gateway_order_id"]

        bad = await client.post("/api/payments/verify", json={
            "gateway_order_id": gateway_order_id, "gateway_payment_id": "pay_1", "signature": "bad"
        })
        good = await client.post("/api/payments/verify", json={
            "gateway_order_id": gateway_order_id,
            "gateway_payment_id": "pay_1",
            "signature": sign(KEY_SECRET, f"{gateway_order_id}|pay_1"),
        })

        assert bad.status_code == 400
        assert good.status_code == 200
        assert good.json()["status"] == "completed"
        assert "gateway_signature" not in good.json()

    async def test_cod_confirm_and_review_queue(self, client, products):
        order_id = (await client.post("/api/orders", json=COD_ORDER)).json()["order"]["id"]

        confirmed = await client.post(f"/api/orders/{order_id}/cod-confirm")
        again = await client.post(f"/api/orders/{order_id}/cod-confirm")

        assert confirmed.status_code == 200
        assert confirmed.json()["status"] == "completed"
        assert again.status_code == 400
        assert (await client.get("/api/payments/review")).json() == []
