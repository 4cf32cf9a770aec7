"""
events.py - Kafka Event Schema Definitions

PURPOSE:
    Defines all event schemas exchanged between the ViralDeals services.
    Uses Pydantic for data validation and serialization.

EVENT CATEGORIES:
    1. Cart Events: Shopping cart operations
       - cart.item_added
       - cart.item_removed
       - cart.cleared
       - cart.checked_out

    2. Order Events: Order lifecycle
       - order.created
       - order.status_changed
       - order.cancelled

    3. Payment Events: PhonePe payment outcomes
       - payment.processed
       - payment.failed

    4. System Events: Dead Letter Queue
       - dlq.events (failed message processing)

COMMON FIELDS (BaseEvent):
    - event_id: Unique identifier (UUID)
    - event_type: Event category and action
    - timestamp: India Standard Time timestamp of event creation
    - correlation_id: Links related events (cart session -> order -> payment)

USAGE:
    event = OrderCreatedEvent(
        correlation_id="VD2610180001",
        order_id="VD2610180001",
        user_id="user-42",
        items=[...],
        total_amount=1416,
        payment_method="UPI",
    )
    json_data = event.model_dump_json()
    same_event = OrderCreatedEvent.model_validate_json(json_data)
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field

EVENT_TIMEZONE = ZoneInfo("Asia/Kolkata")


def now_ist() -> datetime:
    """Current time in India Standard Time."""
    return datetime.now(EVENT_TIMEZONE)


class BaseEvent(BaseModel):
    """
    Base event model for all Kafka events.

    All events inherit from this class and include:
    - Unique event ID
    - Event type identifier
    - IST timezone-aware timestamp
    - Correlation ID for tracing one purchase across services
    """

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: str
    timestamp: datetime = Field(default_factory=now_ist)
    correlation_id: str


# ============================================================================
# CART EVENTS - Shopping cart operations
# ============================================================================

class CartItemAddedEvent(BaseEvent):
    """
    Published when a product is added to a cart (new line or increment).
    Consumers: Analytics (cart funnel)
    """

    event_type: str = "cart.item_added"
    session_id: str
    product_id: str
    quantity: int  # Units requested by this add
    price: float


class CartItemRemovedEvent(BaseEvent):
    """Published when a line item leaves the cart (explicit removal or quantity 0)."""

    event_type: str = "cart.item_removed"
    session_id: str
    product_id: str


class CartClearedEvent(BaseEvent):
    """Published when a customer empties their cart."""

    event_type: str = "cart.cleared"
    session_id: str


class CartCheckedOutEvent(BaseEvent):
    """
    Published after the order service accepted an order placed from a cart.
    Consumers: Analytics (conversion tracking)
    """

    event_type: str = "cart.checked_out"
    session_id: str
    order_id: str
    items: List[Dict[str, Any]]
    total_amount: float


# ============================================================================
# ORDER EVENTS - Order lifecycle
# ============================================================================

class OrderCreatedEvent(BaseEvent):
    """
    Published (via the outbox) when an order is stored.
    Consumers: Payment Service (expects a payment for non-COD orders)
    """

    event_type: str = "order.created"
    order_id: str
    user_id: str
    items: List[Dict[str, Any]]
    total_amount: float
    payment_method: str


class OrderStatusChangedEvent(BaseEvent):
    """Published when an administrator moves an order to a new status."""

    event_type: str = "order.status_changed"
    order_id: str
    user_id: str
    status: str


class OrderCancelledEvent(BaseEvent):
    """Published when an order is cancelled by the customer, an admin or the system."""

    event_type: str = "order.cancelled"
    order_id: str
    user_id: str
    reason: str
    cancelled_by: str = "customer"


# ============================================================================
# PAYMENT EVENTS - PhonePe payment outcomes
# ============================================================================

class PaymentProcessedEvent(BaseEvent):
    """
    Published when PhonePe reports a completed payment.
    Consumers: Order Service (payment Completed, order Confirmed)
    """

    event_type: str = "payment.processed"
    payment_id: str
    order_id: str
    user_id: str
    amount: float
    currency: str = "INR"
    method: str = "PhonePe"
    transaction_id: Optional[str] = None


class PaymentFailedEvent(BaseEvent):
    """
    Published when a payment fails, times out or is abandoned by the customer.
    Consumers: Order Service (payment Failed)
    """

    event_type: str = "payment.failed"
    payment_id: Optional[str] = None
    order_id: str
    user_id: str
    reason: str


# ============================================================================
# DLQ EVENTS - Dead Letter Queue (failed message processing)
# ============================================================================

class DLQEvent(BaseEvent):
    """
    Published when message processing fails after retries.
    Preserves the failed message for investigation and replay.
    """

    event_type: str = "dlq.events"
    original_topic: str
    original_event_type: str
    error_reason: str
    retry_count: int
    payload: Dict[str, Any]


# Event mapping for deserialization
EVENT_TYPE_MAP = {
    "cart.item_added": CartItemAddedEvent,
    "cart.item_removed": CartItemRemovedEvent,
    "cart.cleared": CartClearedEvent,
    "cart.checked_out": CartCheckedOutEvent,
    "order.created": OrderCreatedEvent,
    "order.status_changed": OrderStatusChangedEvent,
    "order.cancelled": OrderCancelledEvent,
    "payment.processed": PaymentProcessedEvent,
    "payment.failed": PaymentFailedEvent,
    "dlq.events": DLQEvent,
}

ALL_TOPICS = list(EVENT_TYPE_MAP)
