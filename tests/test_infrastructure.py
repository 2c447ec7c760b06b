import json

import httpx
import pytest

from checkout.config import Settings
from checkout.domain.exceptions import GatewayError
from checkout.application.process_outbox import ProcessOutboxEventsUseCase
from checkout.infrastructure.http_clients import HTTPGatewayClient
from checkout.infrastructure.rate_limiter import SlidingWindowRateLimiter

from conftest import order_dto


class FakeKafkaProducer:
    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.published = []

    async def publish(self, event: dict, key: str) -> bool:
        if self.succeed:
            self.published.append((key, event))
        return self.succeed


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestRateLimiter:
    def test_blocks_after_limit_within_window(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(max_requests=2, window=60, clock=clock)

        assert limiter.allow("user-1")
        assert limiter.allow("user-1")
        assert not limiter.allow("user-1")
        assert limiter.allow("user-2")

    def test_window_slides(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(max_requests=1, window=60, clock=clock)

        assert limiter.allow("user-1")
        clock.now = 59
        assert not limiter.allow("user-1")
        clock.now = 60
        assert limiter.allow("user-1")

    def test_expired_keys_are_dropped(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(max_requests=5, window=60, clock=clock)

        for n in range(100):
            limiter.allow(f"user-{n}")
        assert limiter.tracked_keys() == 100

        clock.now = 30
        limiter.allow("user-0")
        assert limiter.tracked_keys() == 100

        clock.now = 120
        limiter.allow("user-new")
        assert limiter.tracked_keys() == 1


class TestOutbox:
    async def test_publishes_pending_events_once(self, container, products):
        order = await container.order_service.create_order(order_dto())
        await container.order_service.cancel_order(order.id)
        producer = FakeKafkaProducer()
        use_case = ProcessOutboxEventsUseCase(container.uow, producer)

        assert await use_case(limit=10) == 2
        assert await use_case(limit=10) == 0

        assert [event["event_type"] for _, event in producer.published] == ["order.created", "order.cancelled"]
        key, event = producer.published[0]
        assert key == order.id
        assert event["order_number"] == order.order_number
        assert event["total_amount"] == "345.00"

    async def test_failed_publish_stays_pending(self, container, products):
        await container.order_service.create_order(order_dto())

        assert await ProcessOutboxEventsUseCase(container.uow, FakeKafkaProducer(succeed=False))() == 0
        assert await ProcessOutboxEventsUseCase(container.uow, FakeKafkaProducer())() == 1


class TestHTTPGatewayClient:
    async def test_creates_gateway_order(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "order_gw_1", "amount": 34500, "currency": "INR"})

        client = HTTPGatewayClient("https://gateway.test/v1/", "key", "secret", transport=httpx.MockTransport(handler))
        response = await client.create_order(34500, "INR", "rcpt_ORD1", {"order_id": "o-1"})

        assert response["id"] == "order_gw_1"
        assert seen["url"] == "https://gateway.test/v1/orders"
        assert seen["auth"].startswith("Basic ")
        assert seen["body"] == {"amount": 34500, "currency": "INR", "receipt": "rcpt_ORD1", "notes": {"order_id": "o-1"}}

    async def test_error_status(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(400, json={"error": "bad amount"}))
        client = HTTPGatewayClient("https://gateway.test/v1", "key", "secret", transport=transport)
        with pytest.raises(GatewayError):
            await client.create_order(1, "INR", "rcpt", {})

    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = HTTPGatewayClient("https://gateway.test/v1", "key", "secret", transport=httpx.MockTransport(handler))
        with pytest.raises(GatewayError) as exc:
            await client.create_order(1, "INR", "rcpt", {})
        assert exc.value.retryable


class TestSettings:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("POSTGRES_CONNECTION_STRING", "postgres://u:p@db:5432/shop")
        monkeypatch.setenv("TAX_RATE", "0.05")
        monkeypatch.setenv("RATE_LIMIT_REQUESTS", "3")

        settings = Settings.from_env()

        assert settings.DATABASE_URL == "postgresql+asyncpg://u:p@db:5432/shop"
        assert str(settings.TAX_RATE) == "0.05"
        assert settings.RATE_LIMIT_REQUESTS == 3

    def test_sqlite_url_is_kept(self):
        settings = Settings(POSTGRES_CONNECTION_STRING="sqlite+aiosqlite:///checkout.db")
        assert settings.DATABASE_URL == "sqlite+aiosqlite:///checkout.db"
