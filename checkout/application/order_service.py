import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional
from pydantic import BaseModel

from checkout.domain.models import (
    ItemRequest, Order, OrderItem, OrderStatus, PaymentIntent, PaymentMethod, PaymentStatus
)
from checkout.domain.exceptions import (
    DomainException, GenerationError, InvalidTransitionError, NotFoundError, ValidationError
)
from checkout.domain.pricing import PricingPolicy, round_money
from checkout.domain.state_machine import OrderStateMachine
from checkout.application.interfaces import CouponService, NotificationDispatcher
from checkout.application.payment_gateway import PaymentGateway
from checkout.application.stock_ledger import StockLedger


logger = logging.getLogger(__name__)


class CreateOrderDTO(BaseModel):
    user_id: str
    payment_method: PaymentMethod
    items: List[ItemRequest]
    notes: Optional[str] = None
    coupon_code: Optional[str] = None
    shipping_address_id: Optional[str] = None


class CheckoutResult(BaseModel):
    order: Order
    payment_intent: Optional[PaymentIntent] = None
    payment_error: Optional[str] = None


class OrderPage(BaseModel):
    orders: List[Order]
    total: int
    page: int
    per_page: int


MAX_PER_PAGE = 100


def generate_order_number(prefix: str) -> str:
    """Префикс + дата + случайный хвост, например ORD20261018A1B2C3"""
    return f"{prefix}{datetime.now(timezone.utc):%Y%m%d}{uuid.uuid4().hex[:6].upper()}"


class OrderService:
    def __init__(
        self,
        unit_of_work,
        stock_ledger: StockLedger,
        state_machine: OrderStateMachine,
        pricing: PricingPolicy,
        coupons: CouponService,
        notifications: NotificationDispatcher,
        gateways: Dict[PaymentMethod, PaymentGateway],
        currency: str,
        order_number_prefix: str = "ORD",
        order_number_attempts: int = 10,
        number_generator: Callable[[str], str] = generate_order_number
    ):
        self._uow = unit_of_work
        self._stock = stock_ledger
        self._state_machine = state_machine
        self._pricing = pricing
        self._coupons = coupons
        self._notifications = notifications
        self._gateways = gateways
        self._currency = currency
        self._prefix = order_number_prefix
        self._attempts = order_number_attempts
        self._generate_number = number_generator

    async def checkout(self, dto: CreateOrderDTO) -> CheckoutResult:
        """Создание заказа и, после коммита, запрос платежного намерения"""
        order = await self.create_order(dto)

        # Ошибка шлюза не откатывает заказ: клиент повторит через payment-intent
        try:
            intent = await self._gateways[order.payment_method].create_intent(order)
            return CheckoutResult(order=order, payment_intent=intent)
        except DomainException as e:
            logger.error(f"Не удалось создать платеж для заказа {order.id}: {e}")
            return CheckoutResult(order=order, payment_error=str(e))

    async def create_order(self, dto: CreateOrderDTO) -> Order:
        items = self._normalize_items(dto)
        gateway = self._gateways.get(dto.payment_method)
        if gateway is None:
            raise ValidationError(f"Способ оплаты {dto.payment_method.value} не поддерживается")

        logger.info(f"Создание заказа для пользователя {dto.user_id}, позиций: {len(items)}")

        async with self._uow() as uow:
            # 1. Блокировка строк товаров и проверка остатков
            products = await self._stock.check_and_lock(uow, items)

            # 2. Снимок цены
            order_id = str(uuid.uuid4())
            order_items = [
                OrderItem(
                    order_id=order_id,
                    product_id=item.product_id,
                    quantity=item.quantity,
                    unit_price=round_money(products[item.product_id].price),
                    total_price=round_money(products[item.product_id].price * item.quantity)
                )
                for item in items
            ]

            # 3. Расчет суммы
            subtotal = self._pricing.subtotal(order_items)
            discount = self._coupons.discount_for(subtotal, dto.coupon_code)
            totals = self._pricing.totals(order_items, discount)

            now = datetime.now(timezone.utc)
            order = Order(
                id=order_id,
                user_id=dto.user_id,
                order_number="",
                status=OrderStatus.PENDING,
                payment_method=dto.payment_method,
                payment_status=PaymentStatus.PENDING,
                currency=self._currency,
                shipping_address_id=dto.shipping_address_id,
                notes=dto.notes,
                created_at=now,
                updated_at=now,
                items=order_items,
                **totals.model_dump()
            )
            gateway.validate_order(order)

            # 4. Списание остатков
            await self._stock.decrement(uow, order_items)

            # 5. Номер заказа и сохранение
            order = await self._insert_numbered(uow, order)
            await uow.orders.add_items(order_items)
            await uow.orders.add_history(order.id, OrderStatus.PENDING, dto.notes)
            await gateway.register_order(uow, order)
            await self._notifications.dispatch(uow, order, "order.created")
            await uow.commit()

        logger.info(f"Заказ создан: {order.id} ({order.order_number}), сумма {order.total_amount}")
        return order

    async def get_order(self, order_id: str) -> Order:
        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id)
            if not order:
                raise NotFoundError(f"Заказ {order_id} не найден")
            return order

    async def create_payment_intent(self, order_id: str) -> PaymentIntent:
        """Повторный запрос платежного намерения, если checkout не смог его получить"""
        order = await self.get_order(order_id)
        return await self._gateways[order.payment_method].create_intent(order)

    async def get_order_by_number(self, order_number: str) -> Order:
        async with self._uow() as uow:
            order = await uow.orders.get_by_number(order_number)
            if not order:
                raise NotFoundError(f"Заказ {order_number} не найден")
            return order

    async def list_user_orders(
        self, user_id: str, status: Optional[OrderStatus] = None, page: int = 1, per_page: int = 20
    ) -> OrderPage:
        """История заказов пользователя, новые первыми"""
        page = max(page, 1)
        per_page = min(max(per_page, 1), MAX_PER_PAGE)
        status = OrderStatus(status) if status else None

        async with self._uow() as uow:
            orders = await uow.orders.list_by_user(user_id, status, limit=per_page, offset=(page - 1) * per_page)
            total = await uow.orders.count_by_user(user_id, status)
        return OrderPage(orders=orders, total=total, page=page, per_page=per_page)

    async def cancel_order(self, order_id: str, reason: Optional[str] = None) -> Order:
        """Отмена клиентом: только pending и confirmed"""
        return await self._cancel(order_id, reason, by_customer=True)

    async def _cancel(self, order_id: str, reason: Optional[str], by_customer: bool) -> Order:
        logger.info(f"Отмена заказа {order_id}, причина: {reason}")

        async with self._uow() as uow:
            # Порядок блокировок как у сверки платежей: платеж, затем заказ
            payment = await uow.payments.get_latest_for_order(order_id, for_update=True)
            order = await uow.orders.get_by_id(order_id, for_update=True)
            if not order:
                raise NotFoundError(f"Заказ {order_id} не найден")

            if by_customer:
                if not order.can_be_cancelled():
                    raise InvalidTransitionError(order.status, OrderStatus.CANCELLED)
            elif order.status == OrderStatus.CANCELLED:
                logger.info(f"Заказ {order_id} уже отменен")
                return order
            else:
                # администратор может отменить и заказ в обработке
                self._state_machine.validate(order.status, OrderStatus.CANCELLED)

            await self._stock.restore(uow, order.items)

            # Наложенный платеж отменяем сразу, онлайн-платеж ждет webhook
            if payment and payment.method == PaymentMethod.COD and payment.status == PaymentStatus.PENDING:
                await uow.payments.update(
                    payment.id, status=PaymentStatus.FAILED, failure_reason="Заказ отменен"
                )

            order = await self._write_status(uow, order, OrderStatus.CANCELLED, reason)
            await uow.commit()

        logger.info(f"Заказ {order_id} отмечен CANCELLED")
        return order

    async def update_status(self, order_id: str, new_status: OrderStatus, notes: Optional[str] = None) -> Order:
        new_status = OrderStatus(new_status)
        if new_status == OrderStatus.CANCELLED:
            return await self._cancel(order_id, notes, by_customer=False)

        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id, for_update=True)
            if not order:
                raise NotFoundError(f"Заказ {order_id} не найден")
            if order.status == new_status:
                logger.info(f"Заказ {order_id} уже в статусе {new_status.value}")
                return order

            order = await self.transition(uow, order, new_status, notes)
            await uow.commit()

        logger.info(f"Заказ {order_id} переведен в {new_status.value}")
        return order

    async def transition(self, uow, order: Order, new_status: OrderStatus, notes: Optional[str] = None) -> Order:
        """Переход статуса внутри чужой транзакции (используется и сверкой платежей)"""
        self._state_machine.validate(order.status, new_status)
        return await self._write_status(uow, order, new_status, notes)

    async def _write_status(self, uow, order: Order, new_status: OrderStatus, notes: Optional[str]) -> Order:
        await uow.orders.update_status(order.id, new_status)
        await uow.orders.add_history(order.id, new_status, notes)
        order = order.model_copy(update={"status": new_status, "updated_at": datetime.now(timezone.utc)})
        await self._notifications.dispatch(uow, order, f"order.{new_status.value}")
        return order

    async def _insert_numbered(self, uow, order: Order) -> Order:
        """Вставка заказа с новым номером; номер, занятый параллельным заказом, генерируется заново"""
        for attempt in range(self._attempts):
            order_number = self._generate_number(self._prefix)
            if not await uow.orders.order_number_exists(order_number):
                numbered = order.model_copy(update={"order_number": order_number})
                if await uow.orders.create(numbered):
                    return numbered
            logger.warning(f"Номер заказа {order_number} занят (попытка {attempt + 1})")
        raise GenerationError(f"Не удалось сгенерировать номер заказа за {self._attempts} попыток")

    def _normalize_items(self, dto: CreateOrderDTO) -> List[ItemRequest]:
        if not dto.user_id:
            raise ValidationError("Не указан пользователь")
        if not dto.items:
            raise ValidationError("Заказ должен содержать хотя бы одну позицию")

        merged: Dict[str, int] = {}
        for item in dto.items:
            if not item.product_id:
                raise ValidationError("Не указан товар")
            if item.quantity <= 0:
                raise ValidationError(f"Количество товара {item.product_id} должно быть больше нуля")
            merged[item.product_id] = merged.get(item.product_id, 0) + item.quantity
        return [ItemRequest(product_id=pid, quantity=qty) for pid, qty in merged.items()]
