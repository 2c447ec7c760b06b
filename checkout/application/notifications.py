import logging

from checkout.domain.models import Order
from checkout.application.interfaces import NotificationDispatcher

logger = logging.getLogger(__name__)


class OutboxNotificationDispatcher(NotificationDispatcher):
    """Кладет уведомление в outbox в той же транзакции.

    Доставку делает outbox worker, ядро на отправку не ждет.
    """

    async def dispatch(self, uow, order: Order, event_type: str) -> None:
        await uow.outbox.create(
            event_type=event_type,
            event_data={
                "event_type": event_type,
                "order_id": order.id,
                "order_number": order.order_number,
                "user_id": order.user_id,
                "status": order.status.value,
                "total_amount": str(order.total_amount),
                "idempotency_key": f"{event_type}_{order.id}"
            },
            order_id=order.id
        )
        logger.info(f"Уведомление {event_type} для заказа {order.id} добавлено в outbox")
