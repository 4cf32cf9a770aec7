"""
saga_handler.py - Payment Outcome Handling for Orders

PURPOSE:
    Applies the payment service's outcome events to orders. The order
    service owns the order record; the payment service only reports what
    PhonePe said.

ORDER FLOW:
    ┌─────────────────────────────────────────────────────────────────┐
    │  Step 1: Checkout posts the cart to POST /orders                 │
    │  - Order stored as Pending / payment Pending                     │
    │  - order.created written to the outbox                           │
    └─────────────────────────────────────────────────────────────────┘
                            ↓
    ┌─────────────────────────────────────────────────────────────────┐
    │  Step 2: Payment Service starts a PhonePe payment and polls it   │
    │  - Publishes payment.processed or payment.failed                 │
    └─────────────────────────────────────────────────────────────────┘
                            ↓
    ┌─────────────────────────────────────────────────────────────────┐
    │  Step 3a: payment.processed                                      │
    │  - payment Completed, transaction id recorded                    │
    │  - Pending order becomes Confirmed, order.status_changed queued  │
    │  Method: handle_payment_processed()                              │
    │                                                                   │
    │  Step 3b: payment.failed                                         │
    │  - payment Failed; the order stays Pending so the customer can   │
    │    retry the payment or cancel                                   │
    │  Method: handle_payment_failed()                                 │
    └─────────────────────────────────────────────────────────────────┘

IDEMPOTENCY:
    Every handler checks ProcessedEvent first, so Kafka redelivery of the
    same event id changes nothing.
"""

import logging

from sqlalchemy.orm import Session

from services.order_service.models import OrderStatus, PaymentStatus
from services.order_service.repository import OrderRepository
from shared.events import OrderStatusChangedEvent, PaymentFailedEvent, PaymentProcessedEvent

logger = logging.getLogger(__name__)


class SagaHandler:
    """Handles payment events for orders."""

    def __init__(self, db_session: Session):
        """Initialize saga handler."""
        self.db = db_session
        self.repo = OrderRepository(db_session)

    def handle(self, event) -> None:
        """Dispatch on event type; other events are ignored."""
        if event.event_type == "payment.processed":
            self.handle_payment_processed(event)
        elif event.event_type == "payment.failed":
            self.handle_payment_failed(event)
        else:
            logger.debug(f"Ignoring event type {event.event_type}")

    def handle_payment_processed(self, event: PaymentProcessedEvent) -> None:
        """Handle payment.processed event - confirms order."""
        if self.repo.is_event_processed(event.event_id):
            logger.info(f"Event {event.event_id} already processed")
            return

        order = self.repo.get_order(event.order_id)
        if not order:
            logger.error(f"Order {event.order_id} not found", extra={"order_id": event.order_id})
            return

        self.repo.update_payment_status(event.order_id, PaymentStatus.COMPLETED, event.transaction_id)

        if order.status == OrderStatus.PENDING.value:
            self.repo.update_order_status(event.order_id, OrderStatus.CONFIRMED)
            self.repo.add_outbox_event(
                event.order_id,
                OrderStatusChangedEvent(
                    correlation_id=event.correlation_id,
                    order_id=event.order_id,
                    user_id=order.user_id,
                    status=OrderStatus.CONFIRMED.value,
                ),
            )

        self.repo.mark_event_processed(event.event_id, event.event_type)
        self.db.commit()
        logger.info(f"Order {event.order_id} paid", extra={"order_id": event.order_id})

    def handle_payment_failed(self, event: PaymentFailedEvent) -> None:
        """Handle payment.failed event - marks the order's payment failed."""
        if self.repo.is_event_processed(event.event_id):
            logger.info(f"Event {event.event_id} already processed")
            return

        order = self.repo.get_order(event.order_id)
        if not order:
            logger.error(f"Order {event.order_id} not found", extra={"order_id": event.order_id})
            return

        if order.payment_status == PaymentStatus.COMPLETED.value:
            logger.warning(
                f"Ignoring payment failure for already paid order {event.order_id}",
                extra={"order_id": event.order_id},
            )
        else:
            self.repo.update_payment_status(event.order_id, PaymentStatus.FAILED)

        self.repo.mark_event_processed(event.event_id, event.event_type)
        self.db.commit()
        logger.info(f"Payment failed for order {event.order_id}: {event.reason}", extra={"order_id": event.order_id})
