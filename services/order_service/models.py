from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Float, String, Text, Uuid, func
from sqlalchemy.orm import declarative_base

from shared.events import now_ist

Base = declarative_base()


class OrderStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    OUT_FOR_DELIVERY = "Out for Delivery"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    RETURNED = "Returned"
    REFUNDED = "Refunded"


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"
    REFUNDED = "Refunded"


CANCELLABLE_STATUSES = (OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PROCESSING)


class Order(Base):
    """Order model. `order_id` is the customer-facing order number (VDyymmddNNNN)."""

    __tablename__ = "orders"

    id = Column(Uuid, primary_key=True, default=uuid4)
    order_id = Column(String(32), unique=True, nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    items = Column(JSON, nullable=False)
    shipping_address = Column(JSON, nullable=False)
    payment_method = Column(String(20), nullable=False)
    payment_status = Column(String(20), default=PaymentStatus.PENDING.value, nullable=False)
    transaction_id = Column(String(255), nullable=True)
    status = Column(String(50), default=OrderStatus.PENDING.value, nullable=False, index=True)
    subtotal = Column(Float, nullable=False)
    gst = Column(Float, nullable=False)
    shipping = Column(Float, nullable=False)
    discount = Column(Float, default=0, nullable=False)
    total = Column(Float, nullable=False)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_by = Column(String(20), nullable=True)  # customer, admin, system
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class OutboxEvent(Base):
    """Outbox pattern for reliable Kafka publishing."""

    __tablename__ = "outbox_events"

    id = Column(Uuid, primary_key=True, default=uuid4)
    order_id = Column(String(32), nullable=False, index=True)
    event_type = Column(String(100), nullable=False)
    event_data = Column(Text, nullable=False)  # JSON string
    published = Column(String(1), default="N", nullable=False)  # Y or N
    created_at = Column(DateTime(timezone=True), default=now_ist, nullable=False)
    published_at = Column(DateTime(timezone=True), nullable=True)


class ProcessedEvent(Base):
    """Track processed events for idempotency."""

    __tablename__ = "processed_events"

    id = Column(Uuid, primary_key=True, default=uuid4)
    event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False)
    processed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
