import logging
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from services.order_service.models import (
    Order,
    OrderStatus,
    OutboxEvent,
    PaymentStatus,
    ProcessedEvent,
)
from shared.events import BaseEvent, now_ist
from shared.pricing import price_summary

logger = logging.getLogger(__name__)

ORDER_NUMBER_PREFIX = "VD"


def order_number(day: date, sequence: int) -> str:
    """VD + yymmdd + four-digit daily sequence, e.g. VD2610180001."""
    return f"{ORDER_NUMBER_PREFIX}{day:%y%m%d}{sequence:04d}"


class OrderRepository:
    """Repository for order operations."""

    def __init__(self, db: Session):
        """Initialize with database session."""
        self.db = db

    def next_order_number(self, day: Optional[date] = None) -> str:
        """Next free order number for `day` (today in IST by default)."""
        day = day or now_ist().date()
        prefix = order_number(day, 0)[:-4]
        last = (
            self.db.query(Order)
            .filter(Order.order_id.like(f"{prefix}%"))
            .order_by(Order.order_id.desc())
            .first()
        )
        sequence = int(last.order_id[-4:]) + 1 if last else 1
        return order_number(day, sequence)

    def create_order(
        self,
        user_id: str,
        items: List[Dict[str, Any]],
        shipping_address: Dict[str, Any],
        payment_method: str,
        discount: float = 0,
        weight: float = 0,
        distance: float = 0,
        pricing_options: Optional[Dict[str, Any]] = None,
    ) -> Order:
        """Create a new order, pricing it from the item lines."""
        subtotal = sum(item["price"] * item["quantity"] for item in items)
        summary = price_summary(
            subtotal, discount=discount, weight=weight, distance=distance, **(pricing_options or {})
        )

        order = Order(
            order_id=self.next_order_number(),
            user_id=user_id,
            items=items,
            shipping_address=shipping_address,
            payment_method=payment_method,
            payment_status=PaymentStatus.PENDING.value,
            status=OrderStatus.PENDING.value,
            subtotal=summary.subtotal,
            gst=summary.gst,
            shipping=summary.shipping,
            discount=summary.discount,
            total=summary.total,
        )
        self.db.add(order)
        self.db.flush()
        logger.info(f"Created order {order.order_id} for user {user_id}", extra={"order_id": order.order_id})
        return order

    def get_order(self, order_id: str) -> Optional[Order]:
        """Get order by order_id."""
        return self.db.query(Order).filter(Order.order_id == order_id).first()

    def get_orders_by_user(self, user_id: str) -> List[Order]:
        """User's orders, newest first."""
        return (
            self.db.query(Order)
            .filter(Order.user_id == user_id)
            .order_by(Order.order_id.desc())
            .all()
        )

    def update_order_status(self, order_id: str, status: OrderStatus) -> Optional[Order]:
        """Update order status."""
        order = self.get_order(order_id)
        if order:
            order.status = OrderStatus(status).value
            order.updated_at = now_ist()
            self.db.flush()
            logger.info(f"Updated order {order_id} status to {order.status}", extra={"order_id": order_id})
        return order

    def update_payment_status(
        self,
        order_id: str,
        payment_status: PaymentStatus,
        transaction_id: Optional[str] = None,
    ) -> Optional[Order]:
        order = self.get_order(order_id)
        if order:
            order.payment_status = PaymentStatus(payment_status).value
            if transaction_id:
                order.transaction_id = transaction_id
            order.updated_at = now_ist()
            self.db.flush()
            logger.info(
                f"Updated order {order_id} payment status to {order.payment_status}",
                extra={"order_id": order_id},
            )
        return order

    def cancel_order(self, order: Order, reason: str, cancelled_by: str = "customer") -> Order:
        """Mark an order cancelled. Callers check the status allows it."""
        order.status = OrderStatus.CANCELLED.value
        order.cancellation_reason = reason
        order.cancelled_by = cancelled_by
        order.cancelled_at = now_ist()
        order.updated_at = order.cancelled_at
        self.db.flush()
        logger.info(f"Cancelled order {order.order_id} ({cancelled_by})", extra={"order_id": order.order_id})
        return order

    def add_outbox_event(self, order_id: str, event: BaseEvent) -> OutboxEvent:
        """Add event to outbox."""
        outbox_event = OutboxEvent(
            order_id=order_id,
            event_type=event.event_type,
            event_data=event.model_dump_json(),
            published="N",
        )
        self.db.add(outbox_event)
        self.db.flush()
        logger.info(f"Added outbox event {event.event_type} for order {order_id}", extra={"order_id": order_id})
        return outbox_event

    def get_unpublished_events(self, limit: int = 100) -> List[OutboxEvent]:
        """Oldest unpublished outbox events first."""
        return (
            self.db.query(OutboxEvent)
            .filter(OutboxEvent.published == "N")
            .order_by(OutboxEvent.created_at)
            .limit(limit)
            .all()
        )

    def mark_event_published(self, event_id) -> None:
        """Mark outbox event as published."""
        event = self.db.query(OutboxEvent).filter(OutboxEvent.id == event_id).first()
        if event:
            event.published = "Y"
            event.published_at = now_ist()
            self.db.flush()

    def is_event_processed(self, event_id: str) -> bool:
        """Check if event has been processed."""
        return self.db.query(ProcessedEvent).filter(ProcessedEvent.event_id == event_id).first() is not None

    def mark_event_processed(self, event_id: str, event_type: str) -> ProcessedEvent:
        """Mark event as processed."""
        processed_event = ProcessedEvent(event_id=event_id, event_type=event_type)
        self.db.add(processed_event)
        self.db.flush()
        logger.info(f"Marked event {event_id} as processed")
        return processed_event
