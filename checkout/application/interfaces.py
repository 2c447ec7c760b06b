from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional, List

from checkout.domain.models import (
    Order, OrderItem, OrderStatus, Payment, PaymentStatus, Product, StatusHistoryEntry
)


class ProductRepository(ABC):
    @abstractmethod
    async def lock_many(self, product_ids: List[str]) -> List[Product]:
        """SELECT ... FOR UPDATE по строкам товаров"""
        pass

    @abstractmethod
    async def decrement_stock(self, product_id: str, quantity: int) -> bool:
        pass

    @abstractmethod
    async def increment_stock(self, product_id: str, quantity: int) -> None:
        pass

    @abstractmethod
    async def get_by_id(self, product_id: str) -> Optional[Product]:
        pass


class OrderRepository(ABC):
    @abstractmethod
    async def get_by_id(self, order_id: str, for_update: bool = False) -> Optional[Order]:
        pass

    @abstractmethod
    async def order_number_exists(self, order_number: str) -> bool:
        pass

    @abstractmethod
    async def create(self, order: Order) -> bool:
        """False, если order_number уже занят"""
        pass

    @abstractmethod
    async def get_by_number(self, order_number: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def list_by_user(
        self, user_id: str, status: Optional[OrderStatus], limit: int, offset: int
    ) -> List[Order]:
        pass

    @abstractmethod
    async def count_by_user(self, user_id: str, status: Optional[OrderStatus]) -> int:
        pass

    @abstractmethod
    async def add_items(self, items: List[OrderItem]) -> None:
        pass

    @abstractmethod
    async def get_items(self, order_id: str) -> List[OrderItem]:
        pass

    @abstractmethod
    async def update_status(self, order_id: str, status: OrderStatus) -> None:
        pass

    @abstractmethod
    async def update_payment_status(self, order_id: str, payment_status: PaymentStatus) -> None:
        pass

    @abstractmethod
    async def add_history(self, order_id: str, status: OrderStatus, notes: Optional[str] = None) -> None:
        pass

    @abstractmethod
    async def get_history(self, order_id: str) -> List[StatusHistoryEntry]:
        pass


class PaymentRepository(ABC):
    @abstractmethod
    async def create(self, payment: Payment) -> None:
        pass

    @abstractmethod
    async def get_by_id(self, payment_id: str, for_update: bool = False) -> Optional[Payment]:
        pass

    @abstractmethod
    async def get_latest_for_order(self, order_id: str, for_update: bool = False) -> Optional[Payment]:
        pass

    @abstractmethod
    async def get_by_gateway_ids(
        self, gateway_order_id: Optional[str], gateway_payment_id: Optional[str], for_update: bool = False
    ) -> Optional[Payment]:
        pass

    @abstractmethod
    async def update(self, payment_id: str, **values) -> None:
        pass

    @abstractmethod
    async def list_requiring_review(self) -> List[Payment]:
        pass


class ProcessedEventRepository(ABC):
    @abstractmethod
    async def is_processed(self, event_id: str) -> bool:
        pass

    @abstractmethod
    async def record(self, event_id: str, payment_id: str, event_type: str) -> None:
        """Бросает DuplicateEventError, если событие уже записано"""
        pass


class OutboxRepository(ABC):
    @abstractmethod
    async def create(self, event_type: str, event_data: dict, order_id: str) -> str:
        pass

    @abstractmethod
    async def get_pending(self, limit: int = 10) -> List[dict]:
        pass

    @abstractmethod
    async def mark_as_published(self, event_id: str) -> None:
        pass


class UnitOfWork(ABC):
    @property
    @abstractmethod
    def products(self) -> ProductRepository:
        pass

    @property
    @abstractmethod
    def orders(self) -> OrderRepository:
        pass

    @property
    @abstractmethod
    def payments(self) -> PaymentRepository:
        pass

    @property
    @abstractmethod
    def events(self) -> ProcessedEventRepository:
        pass

    @property
    @abstractmethod
    def outbox(self) -> OutboxRepository:
        pass

    @abstractmethod
    async def __call__(self):
        pass

    @abstractmethod
    async def commit(self):
        pass

    @abstractmethod
    async def rollback(self):
        pass


class GatewayClient(ABC):
    @abstractmethod
    async def create_order(self, amount: int, currency: str, receipt: str, notes: dict) -> dict:
        """POST /orders -> {id, amount, currency, receipt, status}"""
        pass


class CouponService(ABC):
    @abstractmethod
    def discount_for(self, subtotal: Decimal, code: Optional[str]) -> Decimal:
        pass


class NotificationDispatcher(ABC):
    @abstractmethod
    async def dispatch(self, uow, order: Order, event_type: str) -> None:
        pass


class KafkaProducer(ABC):
    @abstractmethod
    async def publish(self, event: dict, key: str) -> bool:
        pass


class RateLimiter(ABC):
    @abstractmethod
    def allow(self, key: str) -> bool:
        pass
