from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, Field


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    ONLINE = "online"
    COD = "cod"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class Product(BaseModel):
    """Строка товара из каталога: нужны только цена и остаток"""
    id: str
    name: str = ""
    price: Decimal
    stock_quantity: int


class ItemRequest(BaseModel):
    product_id: str
    quantity: int


class OrderItem(BaseModel):
    """Позиция заказа со снимком цены на момент покупки"""
    order_id: str
    product_id: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class StatusHistoryEntry(BaseModel):
    order_id: str
    status: OrderStatus
    notes: Optional[str] = None
    created_at: datetime


class OrderTotals(BaseModel):
    subtotal: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal


class Order(BaseModel):
    """Domain Entity: заказ"""
    id: str
    user_id: str
    order_number: str
    status: OrderStatus
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    subtotal: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    currency: str
    shipping_address_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    items: List[OrderItem] = Field(default_factory=list)
    history: List[StatusHistoryEntry] = Field(default_factory=list)

    def can_be_cancelled(self) -> bool:
        """Бизнес-правило: отменить можно только pending или confirmed"""
        return self.status in (OrderStatus.PENDING, OrderStatus.CONFIRMED)

    def is_awaiting_payment(self) -> bool:
        return self.status == OrderStatus.PENDING


class Payment(BaseModel):
    """Domain Entity: попытка оплаты заказа"""
    id: str
    order_id: str
    method: PaymentMethod
    status: PaymentStatus
    amount: Decimal
    surcharge_amount: Decimal = Decimal("0")
    currency: str
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    gateway_signature: Optional[str] = None
    failure_reason: Optional[str] = None
    requires_review: bool = False
    created_at: datetime
    updated_at: datetime


class PaymentIntent(BaseModel):
    """Ответ create_intent: что нужно клиенту для оплаты"""
    payment_id: str
    method: PaymentMethod
    gateway_order_id: Optional[str] = None
    amount: int
    currency: str
    status: PaymentStatus


class WebhookEvent(BaseModel):
    """Разобранное событие webhook от платежного шлюза"""
    id: str
    event: str
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    amount: Optional[int] = None
    error_description: Optional[str] = None


class WebhookOutcome(BaseModel):
    applied: bool
    event_id: str
    event_type: str
    payment_id: Optional[str] = None
    payment_status: Optional[PaymentStatus] = None
