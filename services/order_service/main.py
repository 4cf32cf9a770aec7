"""
order_service/main.py - Order Management Microservice

PURPOSE:
    Owns orders placed from the storefront checkout. Prices every order
    server-side, allocates daily order numbers and tracks order and payment
    status. Payment outcomes arrive as Kafka events from the Payment Service.

RESPONSIBILITIES:
    - Create orders (subtotal, 18% GST, shipping, discount, total)
    - Order numbers VDyymmddNNNN, the sequence restarting every day (IST)
    - Order queries, admin status updates, customer cancellation
    - Reliable event publishing via Outbox Pattern
    - Apply payment.processed / payment.failed to orders (idempotent)

ORDER STATUS:
    Pending → Confirmed → Processing → Shipped → Out for Delivery → Delivered
    Cancellation is allowed while Pending, Confirmed or Processing.

API ENDPOINTS:
    GET  /health                      - Health check
    POST /orders                      - Create order
    GET  /orders/{order_id}           - Get order details
    GET  /orders/user/{user_id}       - Get user's orders (newest first)
    PUT  /orders/{order_id}/status    - Update order status
    PUT  /orders/{order_id}/cancel    - Cancel order

KAFKA EVENTS:
    CONSUMED:
        - payment.processed: payment Completed, order Confirmed
        - payment.failed: payment Failed

    PUBLISHED (via Outbox Pattern):
        - order.created, order.status_changed, order.cancelled

DATABASE:
    - PostgreSQL tables: orders, outbox_events, processed_events

USAGE:
    Runs on port 8002 (ORDER_SERVICE_PORT)
    Access: http://localhost:8002/orders/...
"""

import logging
import threading
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, status
from pydantic_settings import BaseSettings
from sqlalchemy.orm import Session

from services.order_service.models import CANCELLABLE_STATUSES, Base
from services.order_service.outbox import OutboxPublisher
from services.order_service.repository import OrderRepository
from services.order_service.saga_handler import SagaHandler
from services.order_service.schemas import (
    CancelOrderRequest,
    CreateOrderRequest,
    HealthResponse,
    OrderResponse,
    UpdateStatusRequest,
    UserOrdersResponse,
)
from shared.database import build_database_url, make_session_factory, session_dependency
from shared.events import OrderCancelledEvent, OrderCreatedEvent, OrderStatusChangedEvent
from shared.kafka_client import BaseKafkaConsumer, BaseKafkaProducer
from shared.logging_config import setup_logging
from shared.topic_initializer import create_topics

setup_logging("order-service")
logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings."""

    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_replication_factor: int = 1
    database_url: Optional[str] = None
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    postgres_host: str = "localhost"
    postgres_port: str = "5432"
    postgres_db: str = "viraldeals"
    gst_rate: float = 18
    free_shipping_threshold: float = 499
    base_shipping_cost: float = 49
    outbox_poll_interval_seconds: float = 2
    order_service_port: int = 8002


settings = Settings()

DATABASE_URL = settings.database_url or build_database_url(
    settings.postgres_user,
    settings.postgres_password,
    settings.postgres_host,
    settings.postgres_port,
    settings.postgres_db,
)

engine, SessionLocal = make_session_factory(DATABASE_URL)
get_db = session_dependency(SessionLocal)

# Global instances
producer: Optional[BaseKafkaProducer] = None
outbox_publisher: Optional[OutboxPublisher] = None
consumer: Optional[BaseKafkaConsumer] = None


def init_db():
    """Initialize database tables."""
    logger.info("Initializing database...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database initialized")


def get_pricing_options() -> dict:
    return {
        "gst_rate": settings.gst_rate,
        "free_threshold": settings.free_shipping_threshold,
        "base_shipping": settings.base_shipping_cost,
    }


def handle_payment_event(event) -> None:
    """Apply one payment event in its own session."""
    db_session = SessionLocal()
    try:
        SagaHandler(db_session).handle(event)
    except Exception:
        db_session.rollback()
        raise
    finally:
        db_session.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage app lifecycle."""
    global producer, outbox_publisher, consumer

    logger.info("Starting Order Service...")

    try:
        init_db()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    try:
        create_topics(settings.kafka_bootstrap_servers, replication_factor=settings.kafka_replication_factor)
        logger.info("Kafka topics initialized")
    except Exception as e:
        logger.error(f"Failed to initialize Kafka topics: {e}")
        raise

    try:
        producer = BaseKafkaProducer(settings.kafka_bootstrap_servers, client_id="order-producer")
        logger.info("Kafka producer initialized")
    except Exception as e:
        logger.error(f"Failed to initialize Kafka producer: {e}")
        raise

    outbox_publisher = OutboxPublisher(SessionLocal, producer, poll_interval=settings.outbox_poll_interval_seconds)
    outbox_publisher.start()

    consumer = BaseKafkaConsumer(
        bootstrap_servers=settings.kafka_bootstrap_servers,
        group_id="order-service-group",
        topics=["payment.processed", "payment.failed"],
        dlq_producer=producer,
    )

    def order_event_consumer():
        """Consume payment outcome events."""
        try:
            consumer.consume(handle_payment_event)
        except Exception as e:
            logger.error(f"Error in order consumer: {e}")

    consumer_thread = threading.Thread(target=order_event_consumer, name="order-consumer", daemon=True)
    consumer_thread.start()
    logger.info("Order consumer thread started")

    yield

    logger.info("Shutting down Order Service...")
    if consumer:
        consumer.stop()
        consumer_thread.join(timeout=5)
        consumer.close()
    if outbox_publisher:
        outbox_publisher.stop()
    if producer:
        producer.flush()


app = FastAPI(title="Order Service", version="1.0.0", lifespan=lifespan)


def _get_order_or_404(repo: OrderRepository, order_id: str):
    order = repo.get_order(order_id)
    if not order:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Order {order_id} not found")
    return order


@app.get("/health", response_model=HealthResponse)
async def health():
    """Health check endpoint."""
    return HealthResponse(status="ok", service="order-service", version="1.0.0")


@app.post("/orders", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
def create_order(
    request: CreateOrderRequest,
    db: Session = Depends(get_db),
    pricing_options: dict = Depends(get_pricing_options),
):
    """Create an order and queue order.created."""
    repo = OrderRepository(db)
    try:
        order = repo.create_order(
            user_id=request.user_id,
            items=[item.model_dump() for item in request.items],
            shipping_address=request.shipping_address.model_dump(),
            payment_method=request.payment_method.value,
            discount=request.discount,
            weight=request.weight,
            distance=request.distance,
            pricing_options=pricing_options,
        )
        repo.add_outbox_event(
            order.order_id,
            OrderCreatedEvent(
                correlation_id=order.order_id,
                order_id=order.order_id,
                user_id=order.user_id,
                items=order.items,
                total_amount=order.total,
                payment_method=order.payment_method,
            ),
        )
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Error creating order: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    db.refresh(order)
    return OrderResponse.model_validate(order)


@app.get("/orders/user/{user_id}", response_model=UserOrdersResponse)
def get_user_orders(user_id: str, db: Session = Depends(get_db)):
    """Get all orders for a specific user."""
    orders = OrderRepository(db).get_orders_by_user(user_id)
    return UserOrdersResponse(
        user_id=user_id,
        orders=[OrderResponse.model_validate(order) for order in orders],
        total_orders=len(orders),
    )


@app.get("/orders/{order_id}", response_model=OrderResponse)
def get_order(order_id: str, db: Session = Depends(get_db)):
    """Get order details."""
    order = _get_order_or_404(OrderRepository(db), order_id)
    return OrderResponse.model_validate(order)


@app.put("/orders/{order_id}/status", response_model=OrderResponse)
def update_order_status(order_id: str, request: UpdateStatusRequest, db: Session = Depends(get_db)):
    """Move an order to a new status and queue order.status_changed."""
    repo = OrderRepository(db)
    order = _get_order_or_404(repo, order_id)

    try:
        repo.update_order_status(order_id, request.status)
        repo.add_outbox_event(
            order_id,
            OrderStatusChangedEvent(
                correlation_id=order_id,
                order_id=order_id,
                user_id=order.user_id,
                status=request.status.value,
            ),
        )
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Error updating order status: {e}", extra={"order_id": order_id})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    db.refresh(order)
    return OrderResponse.model_validate(order)


@app.put("/orders/{order_id}/cancel", response_model=OrderResponse)
def cancel_order(order_id: str, request: CancelOrderRequest, db: Session = Depends(get_db)):
    """Cancel an order that has not shipped yet."""
    repo = OrderRepository(db)
    order = _get_order_or_404(repo, order_id)

    if order.status not in {s.value for s in CANCELLABLE_STATUSES}:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Order cannot be cancelled while {order.status}",
        )

    try:
        repo.cancel_order(order, request.reason, request.cancelled_by)
        repo.add_outbox_event(
            order_id,
            OrderCancelledEvent(
                correlation_id=order_id,
                order_id=order_id,
                user_id=order.user_id,
                reason=request.reason,
                cancelled_by=request.cancelled_by,
            ),
        )
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Error cancelling order: {e}", extra={"order_id": order_id})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    db.refresh(order)
    return OrderResponse.model_validate(order)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.order_service_port)
