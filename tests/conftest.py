import hashlib
import hmac
import json
from decimal import Decimal
from typing import Optional

import pytest
from sqlalchemy import insert, select, func

from checkout.config import Settings
from checkout.container import Container
from checkout.database import create_database, create_tables
from checkout.domain.exceptions import GatewayError
from checkout.domain.models import ItemRequest, PaymentMethod
from checkout.application.interfaces import GatewayClient
from checkout.application.order_service import CreateOrderDTO
from checkout.infrastructure.db_schema import products_tbl, outbox_events_tbl, processed_events_tbl

KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"


class FakeGatewayClient(GatewayClient):
    """Шлюз в памяти: выдает order_gw_N и запоминает запросы"""

    def __init__(self):
        self.calls = []
        self.fail = False

    async def create_order(self, amount: int, currency: str, receipt: str, notes: dict) -> dict:
        if self.fail:
            raise GatewayError("Payment gateway timeout")
        self.calls.append({"amount": amount, "currency": currency, "receipt": receipt, "notes": notes})
        return {"id": f"order_gw_{len(self.calls)}", "amount": amount, "currency": currency, "status": "created"}


@pytest.fixture
def settings():
    return Settings(
        GATEWAY_KEY_ID="rzp_test",
        GATEWAY_KEY_SECRET=KEY_SECRET,
        GATEWAY_WEBHOOK_SECRET=WEBHOOK_SECRET
    )


@pytest.fixture
async def session_factory(tmp_path):
    factory, engine = create_database(f"sqlite+aiosqlite:///{tmp_path / 'checkout.db'}")
    await create_tables(engine)
    yield factory
    await engine.dispose()


@pytest.fixture
def gateway_client():
    return FakeGatewayClient()


@pytest.fixture
def container(settings, session_factory, gateway_client):
    return Container(settings, session_factory, gateway_client=gateway_client)


@pytest.fixture
async def products(session_factory):
    """ProductA: 100 за штуку, остаток 5. ProductB: 50, остаток 10."""
    await seed_products(session_factory, ("product-a", "100", 5), ("product-b", "50", 10))


async def seed_products(session_factory, *rows):
    async with session_factory() as session:
        await session.execute(
            insert(products_tbl),
            [
                {"id": pid, "name": pid, "price": Decimal(price), "stock_quantity": stock}
                for pid, price, stock in rows
            ]
        )
        await session.commit()


async def stock_of(session_factory, product_id: str) -> int:
    async with session_factory() as session:
        result = await session.execute(
            select(products_tbl.c.stock_quantity).where(products_tbl.c.id == product_id)
        )
        return result.scalar_one()


async def outbox_count(session_factory, event_type: str, order_id: Optional[str] = None) -> int:
    query = select(func.count()).select_from(outbox_events_tbl).where(outbox_events_tbl.c.event_type == event_type)
    if order_id:
        query = query.where(outbox_events_tbl.c.order_id == order_id)
    async with session_factory() as session:
        return (await session.execute(query)).scalar_one()


async def processed_count(session_factory) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(processed_events_tbl))).scalar_one()


def order_dto(method=PaymentMethod.COD, items=(("product-a", 2), ("product-b", 1)), **kwargs) -> CreateOrderDTO:
    return CreateOrderDTO(
        user_id=kwargs.pop("user_id", "user-1"),
        payment_method=method,
        items=[ItemRequest(product_id=pid, quantity=qty) for pid, qty in items],
        **kwargs
    )


def sign(secret: str, message) -> str:
    if isinstance(message, str):
        message = message.encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def webhook_body(event: str, gateway_order_id: str, gateway_payment_id: str = "pay_1",
                 event_id: Optional[str] = None, **entity) -> bytes:
    body = {"event": event}
    if event_id:
        body["id"] = event_id
    if event.startswith("refund."):
        body["payload"] = {"refund": {"entity": {"id": "rfnd_1", "payment_id": gateway_payment_id, **entity}}}
    else:
        body["payload"] = {
            "payment": {"entity": {"id": gateway_payment_id, "order_id": gateway_order_id, **entity}}
        }
    return json.dumps(body).encode()
