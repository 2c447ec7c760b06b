from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from checkout.domain.models import OrderStatus, PaymentMethod, PaymentStatus


class OrderItemRequest(BaseModel):
    product_id: str
    quantity: int


class CreateOrderRequest(BaseModel):
    user_id: str
    payment_method: PaymentMethod
    items: List[OrderItemRequest] = Field(default_factory=list)
    notes: Optional[str] = None
    coupon_code: Optional[str] = None
    shipping_address_id: Optional[str] = None


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = None


class UpdateStatusRequest(BaseModel):
    status: OrderStatus
    notes: Optional[str] = None


class VerifyPaymentRequest(BaseModel):
    gateway_order_id: str
    gateway_payment_id: str
    signature: str


class OrderItemResponse(BaseModel):
    product_id: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class StatusHistoryResponse(BaseModel):
    status: OrderStatus
    notes: Optional[str] = None
    created_at: datetime


class OrderResponse(BaseModel):
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
    items: List[OrderItemResponse] = Field(default_factory=list)
    status_history: List[StatusHistoryResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, order):
        return cls(
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
            updated_at=order.updated_at,
            items=[OrderItemResponse(**item.model_dump(exclude={"order_id"})) for item in order.items],
            status_history=[
                StatusHistoryResponse(status=entry.status, notes=entry.notes, created_at=entry.created_at)
                for entry in order.history
            ]
        )


class OrderListResponse(BaseModel):
    orders: List[OrderResponse]
    total: int
    page: int
    per_page: int

    @classmethod
    def from_page(cls, page):
        return cls(
            orders=[OrderResponse.from_domain(order) for order in page.orders],
            total=page.total,
            page=page.page,
            per_page=page.per_page
        )


class PaymentIntentResponse(BaseModel):
    payment_id: str
    method: PaymentMethod
    gateway_order_id: Optional[str] = None
    amount: int
    currency: str
    status: PaymentStatus


class CheckoutResponse(BaseModel):
    order: OrderResponse
    payment_intent: Optional[PaymentIntentResponse] = None
    payment_error: Optional[str] = None


class PaymentResponse(BaseModel):
    id: str
    order_id: str
    method: PaymentMethod
    status: PaymentStatus
    amount: Decimal
    surcharge_amount: Decimal
    currency: str
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    failure_reason: Optional[str] = None
    requires_review: bool = False

    @classmethod
    def from_domain(cls, payment):
        return cls(**payment.model_dump(exclude={"gateway_signature", "created_at", "updated_at"}))


class WebhookResponse(BaseModel):
    status: str = "ok"
    applied: bool
    event_id: str


class ErrorResponse(BaseModel):
    detail: str
