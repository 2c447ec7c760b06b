import logging
from typing import Dict, List, Optional, Union

from checkout.domain.models import (
    OrderStatus, Payment, PaymentMethod, PaymentStatus, WebhookOutcome
)
from checkout.domain.exceptions import (
    DuplicateEventError, NotFoundError, SignatureError, ValidationError
)
from checkout.domain.state_machine import PaymentStateMachine
from checkout.application.order_service import OrderService
from checkout.application.payment_gateway import PaymentGateway

logger = logging.getLogger(__name__)


class PaymentReconciler:
    """Переносит события платежа (capture, webhook, подтверждение COD) на заказ"""

    def __init__(
        self,
        unit_of_work,
        gateways: Dict[PaymentMethod, PaymentGateway],
        order_service: OrderService,
        payment_states: PaymentStateMachine
    ):
        self._uow = unit_of_work
        self._gateways = gateways
        self._orders = order_service
        self._payment_states = payment_states

    async def handle_webhook(
        self, raw_payload: Union[bytes, str], signature: Optional[str], event_id: Optional[str] = None
    ) -> WebhookOutcome:
        gateway = self._gateways[PaymentMethod.ONLINE]
        try:
            async with self._uow() as uow:
                outcome = await gateway.reconcile_webhook(uow, raw_payload, signature, event_id)
                if outcome.applied:
                    await self._propagate(uow, outcome.payment_id, outcome.payment_status)
                await uow.commit()
        except DuplicateEventError as e:
            # параллельная доставка того же события успела раньше
            logger.info(f"Дубликат webhook {e.event_id}, пропускаем")
            return WebhookOutcome(applied=False, event_id=e.event_id, event_type=e.event_type)

        logger.info(f"Webhook {outcome.event_type} ({outcome.event_id}) обработан, applied={outcome.applied}")
        return outcome

    async def capture(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> Payment:
        """Прямое подтверждение оплаты от клиента после checkout"""
        gateway = self._gateways[PaymentMethod.ONLINE]
        if not gateway.verify(gateway_order_id, gateway_payment_id, signature):
            logger.warning(f"Неверная подпись платежа {gateway_payment_id} для {gateway_order_id}")
            raise SignatureError("Неверная подпись платежа")

        async with self._uow() as uow:
            payment = await uow.payments.get_by_gateway_ids(gateway_order_id, None, for_update=True)
            if not payment:
                raise NotFoundError(f"Платеж для {gateway_order_id} не найден")

            if payment.status == PaymentStatus.COMPLETED:
                logger.info(
                    f"Повторное подтверждение платежа {payment.id} ({gateway_payment_id}), уже completed, пропускаем"
                )
            elif self._payment_states.accept(payment.id, payment.status, PaymentStatus.COMPLETED):
                await uow.payments.update(
                    payment.id,
                    status=PaymentStatus.COMPLETED,
                    gateway_payment_id=gateway_payment_id,
                    gateway_signature=signature
                )
                await self._propagate(uow, payment.id, PaymentStatus.COMPLETED)
                await uow.commit()
                logger.info(f"Платеж {payment.id} подтвержден подписью")

        return await self._reload(payment.id)

    async def confirm_cod(self, order_id: str) -> Payment:
        """Администратор подтверждает получение наличных"""
        async with self._uow() as uow:
            payment = await uow.payments.get_latest_for_order(order_id, for_update=True)
            if not payment:
                raise NotFoundError(f"Платеж для заказа {order_id} не найден")
            if payment.method != PaymentMethod.COD:
                raise ValidationError("Подтверждать вручную можно только наложенный платеж")
            if payment.status != PaymentStatus.PENDING:
                raise ValidationError(f"Платеж {payment.id} не в статусе pending")

            await uow.payments.update(payment.id, status=PaymentStatus.COMPLETED)
            await self._propagate(uow, payment.id, PaymentStatus.COMPLETED)
            await uow.commit()

        logger.info(f"COD платеж {payment.id} для заказа {order_id} подтвержден")
        return await self._reload(payment.id)

    async def list_review_queue(self) -> List[Payment]:
        async with self._uow() as uow:
            return await uow.payments.list_requiring_review()

    async def _propagate(self, uow, payment_id: str, new_status: PaymentStatus) -> None:
        payment = await uow.payments.get_by_id(payment_id)
        order = await uow.orders.get_by_id(payment.order_id, for_update=True)
        if not order:
            raise NotFoundError(f"Заказ {payment.order_id} не найден")

        if new_status != PaymentStatus.COMPLETED:
            # неуспешный платеж заказ не меняет: checkout предложит повторить оплату
            await uow.orders.update_payment_status(order.id, new_status)
            logger.info(f"Заказ {order.id}: payment_status={new_status.value}")
            return

        if order.status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
            logger.warning(
                f"Оплата {payment.id} пришла для заказа {order.id} в статусе {order.status.value}, "
                f"требуется ручная сверка"
            )
            await uow.payments.update(payment.id, requires_review=True)
            return

        await uow.orders.update_payment_status(order.id, PaymentStatus.COMPLETED)
        if order.status == OrderStatus.PENDING:
            await self._orders.transition(uow, order, OrderStatus.CONFIRMED, "Оплата подтверждена")
            logger.info(f"Заказ {order.id} подтвержден после оплаты")

    async def _reload(self, payment_id: str) -> Payment:
        async with self._uow() as uow:
            return await uow.payments.get_by_id(payment_id)
