import uuid
from typing import Optional, List
from datetime import datetime, timezone
from sqlalchemy import select, insert, update, or_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from checkout.domain.models import (
    Order, OrderItem, OrderStatus, Payment, PaymentStatus, Product, StatusHistoryEntry
)
from checkout.domain.exceptions import DuplicateEventError
from checkout.infrastructure.db_schema import (
    products_tbl, orders_tbl, order_items_tbl, order_status_history_tbl,
    payments_tbl, processed_events_tbl, outbox_events_tbl
)
from checkout.application.interfaces import (
    ProductRepository, OrderRepository, PaymentRepository, ProcessedEventRepository, OutboxRepository
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SQLAlchemyProductRepository(ProductRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def lock_many(self, product_ids: List[str]) -> List[Product]:
        # Блокируем в порядке id, чтобы параллельные заказы не ловили deadlock
        result = await self._session.execute(
            select(products_tbl)
            .where(products_tbl.c.id.in_(product_ids))
            .order_by(products_tbl.c.id)
            .with_for_update()
        )
        return [self._to_domain(row) for row in result.fetchall()]

    async def get_by_id(self, product_id: str) -> Optional[Product]:
        result = await self._session.execute(
            select(products_tbl).where(products_tbl.c.id == product_id)
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def decrement_stock(self, product_id: str, quantity: int) -> bool:
        stmt = (
            update(products_tbl)
            .where(
                products_tbl.c.id == product_id,
                products_tbl.c.stock_quantity >= quantity
            )
            .values(
                stock_quantity=products_tbl.c.stock_quantity - quantity,
                updated_at=_now()
            )
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def increment_stock(self, product_id: str, quantity: int) -> None:
        stmt = (
            update(products_tbl)
            .where(products_tbl.c.id == product_id)
            .values(
                stock_quantity=products_tbl.c.stock_quantity + quantity,
                updated_at=_now()
            )
        )
        await self._session.execute(stmt)

    def _to_domain(self, row) -> Product:
        return Product(
            id=row.id,
            name=row.name,
            price=row.price,
            stock_quantity=row.stock_quantity
        )


class SQLAlchemyOrderRepository(OrderRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, order_id: str, for_update: bool = False) -> Optional[Order]:
        query = select(orders_tbl).where(orders_tbl.c.id == order_id)
        if for_update:
            query = query.with_for_update()
        result = await self._session.execute(query)
        row = result.fetchone()
        if not row:
            return None
        order = self._to_domain(row)
        order.items = await self.get_items(order_id)
        order.history = await self.get_history(order_id)
        return order

    async def order_number_exists(self, order_number: str) -> bool:
        result = await self._session.execute(
            select(orders_tbl.c.id).where(orders_tbl.c.order_number == order_number)
        )
        return result.fetchone() is not None

    async def get_by_number(self, order_number: str) -> Optional[Order]:
        result = await self._session.execute(
            select(orders_tbl.c.id).where(orders_tbl.c.order_number == order_number)
        )
        order_id = result.scalar_one_or_none()
        return await self.get_by_id(order_id) if order_id else None

    async def list_by_user(
        self, user_id: str, status: Optional[OrderStatus], limit: int, offset: int
    ) -> List[Order]:
        query = select(orders_tbl).where(orders_tbl.c.user_id == user_id)
        if status:
            query = query.where(orders_tbl.c.status == status)
        result = await self._session.execute(
            query.order_by(orders_tbl.c.created_at.desc()).limit(limit).offset(offset)
        )
        orders = [self._to_domain(row) for row in result.fetchall()]
        for order in orders:
            order.items = await self.get_items(order.id)
        return orders

    async def count_by_user(self, user_id: str, status: Optional[OrderStatus]) -> int:
        query = select(func.count()).select_from(orders_tbl).where(orders_tbl.c.user_id == user_id)
        if status:
            query = query.where(orders_tbl.c.status == status)
        return (await self._session.execute(query)).scalar_one()

    async def create(self, order: Order) -> bool:
        stmt = insert(orders_tbl).values(
            id=order.id,
            user_id=order.user_id,
            order_number=order.order_number,
            status=order.status,
            payment_method=order.payment_method,
            payment_status=order.payment_status,
            subtotal=order.subtotal,
            tax_amount=order.tax_amount,
            shipping_amount=order.shipping_amount,
            discount_amount=order.discount_amount,
            total_amount=order.total_amount,
            currency=order.currency,
            shipping_address_id=order.shipping_address_id,
            notes=order.notes,
            created_at=order.created_at,
            updated_at=order.updated_at
        )
        try:
            # savepoint: конфликт номера не должен откатить списание остатков
            async with self._session.begin_nested():
                await self._session.execute(stmt)
        except IntegrityError:
            return False
        return True

    async def add_items(self, items: List[OrderItem]) -> None:
        if not items:
            return
        await self._session.execute(
            insert(order_items_tbl),
            [item.model_dump() for item in items]
        )

    async def get_items(self, order_id: str) -> List[OrderItem]:
        result = await self._session.execute(
            select(order_items_tbl)
            .where(order_items_tbl.c.order_id == order_id)
            .order_by(order_items_tbl.c.id.asc())
        )
        return [
            OrderItem(
                order_id=row.order_id,
                product_id=row.product_id,
                quantity=row.quantity,
                unit_price=row.unit_price,
                total_price=row.total_price
            )
            for row in result.fetchall()
        ]

    async def update_status(self, order_id: str, status: OrderStatus) -> None:
        stmt = (
            update(orders_tbl)
            .where(orders_tbl.c.id == order_id)
            .values(
                status=status,
                updated_at=_now()
            )
        )
        await self._session.execute(stmt)

    async def update_payment_status(self, order_id: str, payment_status: PaymentStatus) -> None:
        stmt = (
            update(orders_tbl)
            .where(orders_tbl.c.id == order_id)
            .values(
                payment_status=payment_status,
                updated_at=_now()
            )
        )
        await self._session.execute(stmt)

    async def add_history(self, order_id: str, status: OrderStatus, notes: Optional[str] = None) -> None:
        stmt = insert(order_status_history_tbl).values(
            order_id=order_id,
            status=status,
            notes=notes,
            created_at=_now()
        )
        await self._session.execute(stmt)

    async def get_history(self, order_id: str) -> List[StatusHistoryEntry]:
        result = await self._session.execute(
            select(order_status_history_tbl)
            .where(order_status_history_tbl.c.order_id == order_id)
            .order_by(order_status_history_tbl.c.id.asc())
        )
        return [
            StatusHistoryEntry(
                order_id=row.order_id,
                status=OrderStatus(row.status),
                notes=row.notes,
                created_at=row.created_at
            )
            for row in result.fetchall()
        ]

    def _to_domain(self, row) -> Order:
        """Трансформация DB → Domain"""
        return Order(
            id=row.id,
            user_id=row.user_id,
            order_number=row.order_number,
            status=OrderStatus(row.status),
            payment_method=row.payment_method,
            payment_status=row.payment_status,
            subtotal=row.subtotal,
            tax_amount=row.tax_amount,
            shipping_amount=row.shipping_amount,
            discount_amount=row.discount_amount,
            total_amount=row.total_amount,
            currency=row.currency,
            shipping_address_id=row.shipping_address_id,
            notes=row.notes,
            created_at=row.created_at,
            updated_at=row.updated_at
        )


class SQLAlchemyPaymentRepository(PaymentRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, payment: Payment) -> None:
        await self._session.execute(insert(payments_tbl).values(**payment.model_dump()))

    async def get_by_id(self, payment_id: str, for_update: bool = False) -> Optional[Payment]:
        query = select(payments_tbl).where(payments_tbl.c.id == payment_id)
        return await self._fetch_one(query, for_update)

    async def get_latest_for_order(self, order_id: str, for_update: bool = False) -> Optional[Payment]:
        query = (
            select(payments_tbl)
            .where(payments_tbl.c.order_id == order_id)
            .order_by(payments_tbl.c.created_at.desc())
            .limit(1)
        )
        return await self._fetch_one(query, for_update)

    async def get_by_gateway_ids(
        self, gateway_order_id: Optional[str], gateway_payment_id: Optional[str], for_update: bool = False
    ) -> Optional[Payment]:
        conditions = []
        if gateway_order_id:
            conditions.append(payments_tbl.c.gateway_order_id == gateway_order_id)
        if gateway_payment_id:
            conditions.append(payments_tbl.c.gateway_payment_id == gateway_payment_id)
        if not conditions:
            return None
        query = (
            select(payments_tbl)
            .where(or_(*conditions))
            .order_by(payments_tbl.c.created_at.desc())
            .limit(1)
        )
        return await self._fetch_one(query, for_update)

    async def update(self, payment_id: str, **values) -> None:
        values["updated_at"] = _now()
        stmt = update(payments_tbl).where(payments_tbl.c.id == payment_id).values(**values)
        await self._session.execute(stmt)

    async def list_requiring_review(self) -> List[Payment]:
        result = await self._session.execute(
            select(payments_tbl)
            .where(payments_tbl.c.requires_review.is_(True))
            .order_by(payments_tbl.c.updated_at.asc())
        )
        return [self._to_domain(row) for row in result.fetchall()]

    async def _fetch_one(self, query, for_update: bool) -> Optional[Payment]:
        if for_update:
            query = query.with_for_update()
        result = await self._session.execute(query)
        row = result.fetchone()
        return self._to_domain(row) if row else None

    def _to_domain(self, row) -> Payment:
        return Payment(
            id=row.id,
            order_id=row.order_id,
            method=row.method,
            status=PaymentStatus(row.status),
            amount=row.amount,
            surcharge_amount=row.surcharge_amount,
            currency=row.currency,
            gateway_order_id=row.gateway_order_id,
            gateway_payment_id=row.gateway_payment_id,
            gateway_signature=row.gateway_signature,
            failure_reason=row.failure_reason,
            requires_review=row.requires_review,
            created_at=row.created_at,
            updated_at=row.updated_at
        )


class SQLAlchemyProcessedEventRepository(ProcessedEventRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def is_processed(self, event_id: str) -> bool:
        result = await self._session.execute(
            select(processed_events_tbl.c.event_id).where(processed_events_tbl.c.event_id == event_id)
        )
        return result.fetchone() is not None

    async def record(self, event_id: str, payment_id: str, event_type: str) -> None:
        if await self.is_processed(event_id):
            raise DuplicateEventError(event_id, event_type)
        try:
            # параллельная доставка того же события упирается в первичный ключ
            await self._session.execute(
                insert(processed_events_tbl).values(
                    event_id=event_id,
                    payment_id=payment_id,
                    event_type=event_type,
                    processed_at=_now()
                )
            )
        except IntegrityError as e:
            raise DuplicateEventError(event_id, event_type) from e


class SQLAlchemyOutboxRepository(OutboxRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, event_type: str, event_data: dict, order_id: str) -> str:
        event_id = str(uuid.uuid4())
        stmt = insert(outbox_events_tbl).values(
            id=event_id,
            event_type=event_type,
            event_data=event_data,  # SQLAlchemy JSON column сериализует автоматически
            order_id=order_id,
            status="pending",
            created_at=_now()
        )
        await self._session.execute(stmt)
        return event_id

    async def get_pending(self, limit: int = 10) -> List[dict]:
        result = await self._session.execute(
            select(outbox_events_tbl)
            .where(outbox_events_tbl.c.status == "pending")
            .order_by(outbox_events_tbl.c.created_at.asc())
            .limit(limit)
        )
        rows = result.fetchall()

        return [
            {
                "id": row.id,
                "event_type": row.event_type,
                "event_data": row.event_data,
                "order_id": row.order_id
            }
            for row in rows
        ]

    async def mark_as_published(self, event_id: str) -> None:
        stmt = (
            update(outbox_events_tbl)
            .where(outbox_events_tbl.c.id == event_id)
            .values(status="published")
        )
        await self._session.execute(stmt)
