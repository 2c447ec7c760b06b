from sqlalchemy import (
    Table, Column, String, Integer, Numeric, Enum, DateTime, JSON, Boolean, Text, MetaData, ForeignKey
)
from sqlalchemy.sql import func

from checkout.domain.models import OrderStatus, PaymentMethod, PaymentStatus

metadata = MetaData()

Money = Numeric(12, 2)


products_tbl = Table(
    "products",
    metadata,
    Column("id", String, primary_key=True),
    Column("name", String, nullable=False, default=""),
    Column("price", Money, nullable=False),
    Column("stock_quantity", Integer, nullable=False, default=0),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
)


orders_tbl = Table(
    "orders",
    metadata,
    Column("id", String, primary_key=True),
    Column("user_id", String, nullable=False, index=True),
    Column("order_number", String, unique=True, nullable=False),
    Column("status", Enum(OrderStatus), nullable=False, default=OrderStatus.PENDING),
    Column("payment_method", Enum(PaymentMethod), nullable=False),
    Column("payment_status", Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING),
    Column("subtotal", Money, nullable=False),
    Column("tax_amount", Money, nullable=False),
    Column("shipping_amount", Money, nullable=False),
    Column("discount_amount", Money, nullable=False),
    Column("total_amount", Money, nullable=False),
    Column("currency", String(3), nullable=False),
    Column("shipping_address_id", String, nullable=True),
    Column("notes", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
)


order_items_tbl = Table(
    "order_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", String, ForeignKey("orders.id"), nullable=False, index=True),
    Column("product_id", String, ForeignKey("products.id"), nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("unit_price", Money, nullable=False),
    Column("total_price", Money, nullable=False)
)


order_status_history_tbl = Table(
    "order_status_history",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", String, ForeignKey("orders.id"), nullable=False, index=True),
    Column("status", Enum(OrderStatus), nullable=False),
    Column("notes", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now())
)


payments_tbl = Table(
    "payments",
    metadata,
    Column("id", String, primary_key=True),
    Column("order_id", String, ForeignKey("orders.id"), nullable=False, index=True),
    Column("method", Enum(PaymentMethod), nullable=False),
    Column("status", Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING),
    Column("amount", Money, nullable=False),
    Column("surcharge_amount", Money, nullable=False, default=0),
    Column("currency", String(3), nullable=False),
    Column("gateway_order_id", String, nullable=True, index=True),
    Column("gateway_payment_id", String, nullable=True, index=True),
    Column("gateway_signature", String, nullable=True),
    Column("failure_reason", Text, nullable=True),
    Column("requires_review", Boolean, nullable=False, default=False),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
)


# Журнал идемпотентности: первичный ключ по id внешнего события
processed_events_tbl = Table(
    "processed_events",
    metadata,
    Column("event_id", String, primary_key=True),
    Column("payment_id", String, ForeignKey("payments.id"), nullable=False, index=True),
    Column("event_type", String, nullable=False),
    Column("processed_at", DateTime(timezone=True), server_default=func.now())
)


outbox_events_tbl = Table(
    "outbox_events",
    metadata,
    Column("id", String, primary_key=True),
    Column("event_type", String, nullable=False),
    Column("event_data", JSON, nullable=False),
    Column("order_id", String, nullable=False),
    Column("status", String, default="pending"),
    Column("created_at", DateTime(timezone=True), server_default=func.now())
)
