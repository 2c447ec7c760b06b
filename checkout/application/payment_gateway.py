import hashlib
import hmac
import json
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Union

from checkout.domain.models import (
    Order, OrderStatus, Payment, PaymentIntent, PaymentMethod, PaymentStatus, WebhookEvent, WebhookOutcome
)
from checkout.domain.exceptions import NotFoundError, SignatureError, ValidationError
from checkout.domain.pricing import cod_surcharge, to_minor_units
from checkout.domain.state_machine import PaymentStateMachine
from checkout.application.interfaces import GatewayClient

logger = logging.getLogger(__name__)


WEBHOOK_STATUSES = {
    "payment.authorized": PaymentStatus.PROCESSING,
    "payment.captured": PaymentStatus.COMPLETED,
    "payment.failed": PaymentStatus.FAILED,
    "refund.processed": PaymentStatus.REFUNDED,
}

OPEN_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PROCESSING)


class PaymentGateway(ABC):
    method: PaymentMethod

    @abstractmethod
    async def create_intent(self, order: Order) -> PaymentIntent:
        pass

    @abstractmethod
    def verify(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool:
        pass

    @abstractmethod
    async def reconcile_webhook(
        self, uow, raw_payload: Union[bytes, str], signature: Optional[str], event_id: Optional[str] = None
    ) -> WebhookOutcome:
        pass

    def validate_order(self, order: Order) -> None:
        """Проверка заказа до сохранения, внутри транзакции создания"""

    async def register_order(self, uow, order: Order) -> None:
        """Записи, которые должны появиться вместе с заказом"""

    def _intent_from(self, payment: Payment, amount: Decimal) -> PaymentIntent:
        return PaymentIntent(
            payment_id=payment.id,
            method=payment.method,
            gateway_order_id=payment.gateway_order_id,
            amount=to_minor_units(amount),
            currency=payment.currency,
            status=payment.status
        )


def _new_payment(order: Order, method: PaymentMethod, **values) -> Payment:
    now = datetime.now(timezone.utc)
    return Payment(
        id=str(uuid.uuid4()),
        order_id=order.id,
        method=method,
        status=PaymentStatus.PENDING,
        amount=order.total_amount,
        currency=order.currency,
        created_at=now,
        updated_at=now,
        **values
    )


class OnlineGateway(PaymentGateway):
    """Онлайн-оплата через внешний шлюз с подписанными callback и webhook"""

    method = PaymentMethod.ONLINE

    def __init__(
        self,
        unit_of_work,
        client: GatewayClient,
        key_secret: str,
        webhook_secret: str,
        currency: str,
        payment_states: PaymentStateMachine
    ):
        self._uow = unit_of_work
        self._client = client
        self._key_secret = key_secret
        self._webhook_secret = webhook_secret
        self._currency = currency
        self._payment_states = payment_states

    async def create_intent(self, order: Order) -> PaymentIntent:
        if order.payment_method != PaymentMethod.ONLINE:
            raise ValidationError(f"Заказ {order.id} оплачивается не онлайн")

        async with self._uow() as uow:
            current = await uow.orders.get_by_id(order.id)
            if not current:
                raise NotFoundError(f"Заказ {order.id} не найден")
            if current.status != OrderStatus.PENDING:
                raise ValidationError(f"Заказ {order.id} не ожидает оплаты (status: {current.status.value})")

            existing = await uow.payments.get_latest_for_order(order.id)
            if existing and existing.status in OPEN_STATUSES and existing.gateway_order_id:
                logger.info(f"Платеж для заказа {order.id} уже создан: {existing.gateway_order_id}")
                return self._intent_from(existing, existing.amount)

        amount = to_minor_units(current.total_amount)
        # При ошибке шлюза локально ничего не создаем
        response = await self._client.create_order(
            amount=amount,
            currency=self._currency,
            receipt=f"rcpt_{current.order_number}",
            notes={"order_id": current.id, "order_number": current.order_number}
        )
        logger.info(f"Шлюз создал заказ {response.get('id')} для {current.order_number}")

        payment = _new_payment(current, PaymentMethod.ONLINE, gateway_order_id=response["id"])
        async with self._uow() as uow:
            await uow.payments.create(payment)
            await uow.commit()

        return PaymentIntent(
            payment_id=payment.id,
            method=PaymentMethod.ONLINE,
            gateway_order_id=payment.gateway_order_id,
            amount=int(response.get("amount", amount)),
            currency=response.get("currency", self._currency),
            status=PaymentStatus.PENDING
        )

    def verify(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool:
        for name, value in (
            ("gateway_order_id", gateway_order_id),
            ("gateway_payment_id", gateway_payment_id),
            ("signature", signature),
        ):
            if not isinstance(value, str) or not value:
                raise ValidationError(f"Некорректное поле {name}")

        expected = self._sign(self._key_secret, f"{gateway_order_id}|{gateway_payment_id}".encode())
        is_valid = hmac.compare_digest(expected.encode(), signature.encode())
        logger.info(f"Проверка подписи платежа {gateway_payment_id}: {is_valid}")
        return is_valid

    def verify_webhook_signature(self, raw_payload: bytes, signature: Optional[str]) -> bool:
        if not self._webhook_secret:
            logger.error("Webhook secret не настроен, webhook отклонен")
            return False
        if not signature:
            return False
        expected = self._sign(self._webhook_secret, raw_payload)
        return hmac.compare_digest(expected.encode(), signature.encode())

    async def reconcile_webhook(
        self, uow, raw_payload: Union[bytes, str], signature: Optional[str], event_id: Optional[str] = None
    ) -> WebhookOutcome:
        if isinstance(raw_payload, str):
            raw_payload = raw_payload.encode()

        if not self.verify_webhook_signature(raw_payload, signature):
            logger.warning(f"Неверная подпись webhook, длина payload {len(raw_payload)}")
            raise SignatureError("Неверная подпись webhook")

        event = self.parse_event(raw_payload, event_id)
        logger.info(f"Webhook {event.event} ({event.id}) для {event.gateway_order_id}/{event.gateway_payment_id}")

        payment = await uow.payments.get_by_gateway_ids(
            event.gateway_order_id, event.gateway_payment_id, for_update=True
        )
        if not payment:
            raise NotFoundError(f"Платеж для события {event.id} не найден")

        outcome = WebhookOutcome(applied=False, event_id=event.id, event_type=event.event, payment_id=payment.id)

        # Идемпотентность
        if await uow.events.is_processed(event.id):
            logger.info(f"Событие {event.id} уже обработано")
            return outcome

        target = WEBHOOK_STATUSES.get(event.event)
        if target is None:
            logger.info(f"Необработанный тип события: {event.event}")
            return outcome

        await uow.events.record(event.id, payment.id, event.event)

        if not self._payment_states.accept(payment.id, payment.status, target):
            return outcome

        values = {"status": target}
        if event.gateway_payment_id and target != PaymentStatus.REFUNDED:
            values["gateway_payment_id"] = event.gateway_payment_id
        if target == PaymentStatus.FAILED:
            values["failure_reason"] = event.error_description or "Платеж не прошел"
        await uow.payments.update(payment.id, **values)

        outcome.applied = True
        outcome.payment_status = target
        return outcome

    def parse_event(self, raw_payload: bytes, event_id: Optional[str] = None) -> WebhookEvent:
        try:
            body = json.loads(raw_payload)
        except ValueError as e:
            raise ValidationError(f"Некорректный JSON webhook: {e}") from e
        if not isinstance(body, dict) or not body.get("event"):
            raise ValidationError("В webhook нет поля event")

        payload = body.get("payload") or {}
        payment_entity = (payload.get("payment") or {}).get("entity") or {}
        refund_entity = (payload.get("refund") or {}).get("entity") or {}
        if not payment_entity and not refund_entity:
            raise ValidationError("В webhook нет сущности платежа")

        gateway_payment_id = payment_entity.get("id") or refund_entity.get("payment_id")
        gateway_order_id = payment_entity.get("order_id")
        # Без id события ключом служит пара (тип, платеж)
        resolved_id = event_id or body.get("id") or f"{body['event']}:{gateway_payment_id or gateway_order_id}"

        return WebhookEvent(
            id=resolved_id,
            event=body["event"],
            gateway_order_id=gateway_order_id,
            gateway_payment_id=gateway_payment_id,
            amount=payment_entity.get("amount") or refund_entity.get("amount"),
            error_description=payment_entity.get("error_description")
        )

    @staticmethod
    def _sign(secret: str, message: bytes) -> str:
        return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


class CashOnDelivery(PaymentGateway):
    """Наложенный платеж: без внешних вызовов, подтверждает администратор"""

    method = PaymentMethod.COD

    def __init__(
        self,
        unit_of_work,
        min_amount: Decimal,
        max_amount: Decimal,
        charge_percent: Decimal,
        charge_min: Decimal,
        charge_max: Decimal
    ):
        self._uow = unit_of_work
        self._min_amount = Decimal(min_amount)
        self._max_amount = Decimal(max_amount)
        self._charge_percent = Decimal(charge_percent)
        self._charge_min = Decimal(charge_min)
        self._charge_max = Decimal(charge_max)

    def surcharge_for(self, order: Order) -> Decimal:
        return cod_surcharge(order.subtotal, self._charge_percent, self._charge_min, self._charge_max)

    def validate_order(self, order: Order) -> None:
        if order.total_amount < self._min_amount:
            raise ValidationError(f"Наложенный платеж недоступен для заказов меньше {self._min_amount}")
        if order.total_amount > self._max_amount:
            raise ValidationError(f"Наложенный платеж недоступен для заказов больше {self._max_amount}")

    def build_payment(self, order: Order) -> Payment:
        return _new_payment(order, PaymentMethod.COD, surcharge_amount=self.surcharge_for(order))

    async def register_order(self, uow, order: Order) -> None:
        payment = self.build_payment(order)
        await uow.payments.create(payment)
        logger.info(f"Создан COD платеж {payment.id} для заказа {order.id}, сбор {payment.surcharge_amount}")

    async def create_intent(self, order: Order) -> PaymentIntent:
        if order.payment_method != PaymentMethod.COD:
            raise ValidationError(f"Заказ {order.id} оплачивается не наложенным платежом")

        async with self._uow() as uow:
            existing = await uow.payments.get_latest_for_order(order.id)
            if existing and existing.status in OPEN_STATUSES:
                return self._intent_from(existing, existing.amount + existing.surcharge_amount)

            current = await uow.orders.get_by_id(order.id)
            if not current:
                raise NotFoundError(f"Заказ {order.id} не найден")
            if current.status == OrderStatus.CANCELLED:
                raise ValidationError(f"Заказ {order.id} отменен")

            payment = self.build_payment(current)
            await uow.payments.create(payment)
            await uow.commit()
        return self._intent_from(payment, payment.amount + payment.surcharge_amount)

    def verify(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool:
        return False

    async def reconcile_webhook(
        self, uow, raw_payload: Union[bytes, str], signature: Optional[str], event_id: Optional[str] = None
    ) -> WebhookOutcome:
        raise ValidationError("Наложенный платеж не принимает webhook")
