import logging
from typing import Dict, FrozenSet

from checkout.domain.models import OrderStatus, PaymentStatus
from checkout.domain.exceptions import InvalidTransitionError

logger = logging.getLogger(__name__)


ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset(
        {PaymentStatus.PROCESSING, PaymentStatus.COMPLETED, PaymentStatus.FAILED}
    ),
    PaymentStatus.PROCESSING: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}


class OrderStateMachine:
    """Проверка переходов статуса заказа. Состояния не хранит."""

    def __init__(self, transitions: Dict[OrderStatus, FrozenSet[OrderStatus]] = ORDER_TRANSITIONS):
        self._transitions = transitions

    def allowed_targets(self, current: OrderStatus) -> FrozenSet[OrderStatus]:
        return self._transitions.get(OrderStatus(current), frozenset())

    def can_transition(self, current: OrderStatus, requested: OrderStatus) -> bool:
        return OrderStatus(requested) in self.allowed_targets(current)

    def validate(self, current: OrderStatus, requested: OrderStatus) -> None:
        if not self.can_transition(current, requested):
            raise InvalidTransitionError(current, requested)

    def is_terminal(self, status: OrderStatus) -> bool:
        return not self.allowed_targets(status)


class PaymentStateMachine:
    """В отличие от заказа, недопустимый переход платежа не ошибка:
    дубли и опоздавшие webhook просто игнорируются."""

    def __init__(self, transitions: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = PAYMENT_TRANSITIONS):
        self._transitions = transitions

    def can_transition(self, current: PaymentStatus, requested: PaymentStatus) -> bool:
        return PaymentStatus(requested) in self._transitions.get(PaymentStatus(current), frozenset())

    def accept(self, payment_id: str, current: PaymentStatus, requested: PaymentStatus) -> bool:
        if self.can_transition(current, requested):
            return True
        logger.warning(
            f"Игнорируем переход платежа {payment_id}: {PaymentStatus(current).value} -> {PaymentStatus(requested).value}"
        )
        return False
