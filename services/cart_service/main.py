"""
cart_service/main.py - Shopping Cart Microservice

PURPOSE:
    Serves the storefront's shopping cart. Each request rebuilds the
    session's CartStore from Redis, applies one operation, writes the cart
    back and returns it together with the toast messages the storefront
    should show.

RESPONSIBILITIES:
    - Add, update, remove and clear cart items (stock-aware)
    - Price preview (GST, shipping, discount, INR formatting)
    - Run the checkout flow and hand the order to the order service
    - Publish cart events to Kafka for analytics

API ENDPOINTS:
    GET    /health                                   - Health check
    GET    /cart/{session_id}                        - View cart
    POST   /cart/{session_id}/items                  - Add product to cart
    PUT    /cart/{session_id}/items/{product_id}     - Update quantity (<= 0 removes)
    DELETE /cart/{session_id}/items/{product_id}     - Remove item
    DELETE /cart/{session_id}                        - Clear cart
    GET    /cart/{session_id}/summary                - Price summary
    POST   /cart/{session_id}/checkout               - Place order from cart

KAFKA EVENTS PUBLISHED:
    - cart.item_added, cart.item_removed, cart.cleared, cart.checked_out

DATA STORAGE:
    - Redis key "cart:{session_id}" holding the JSON list of cart items

TESTING COMMANDS:
    curl -X POST http://localhost:8001/cart/sess-42/items \
      -H "Content-Type: application/json" \
      -d '{"product": {"_id": "1", "name": "Laptop", "price": 1000, "stock": 10}, "quantity": 2}'

    curl -X GET http://localhost:8001/cart/sess-42/summary

USAGE:
    Runs on port 8001 (CART_SERVICE_PORT)
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import redis
from fastapi import Depends, FastAPI, HTTPException, Response, status
from pydantic_settings import BaseSettings

from services.cart_service.cart_repository import CartRepository
from services.cart_service.cart_store import CartStore
from services.cart_service.checkout import CheckoutSession, OrderClient
from services.cart_service.notifications import CollectingNotifier
from services.cart_service.order_client import HttpOrderClient
from services.cart_service.schemas import (
    AddItemRequest,
    CartItemResponse,
    CartResponse,
    CheckoutRequest,
    CheckoutResponse,
    HealthResponse,
    PriceSummaryResponse,
    UpdateQuantityRequest,
)
from shared.events import (
    BaseEvent,
    CartCheckedOutEvent,
    CartClearedEvent,
    CartItemAddedEvent,
    CartItemRemovedEvent,
)
from shared.exceptions import CheckoutStepError, OrderSubmissionFailure
from shared.kafka_client import BaseKafkaProducer
from shared.logging_config import setup_logging
from shared.pricing import PriceSummary, format_inr, price_summary
from shared.topic_initializer import create_topics

setup_logging("cart-service")
logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings, read from the environment."""

    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_replication_factor: int = 1
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    cart_ttl_seconds: int = CartRepository.CART_TTL
    order_service_url: str = "http://localhost:8002"
    order_service_timeout: float = 10.0
    gst_rate: float = 18
    free_shipping_threshold: float = 499
    base_shipping_cost: float = 49
    cart_service_port: int = 8001


settings = Settings()

# Global instances, created in lifespan
redis_client: Optional[redis.Redis] = None
producer: Optional[BaseKafkaProducer] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage app lifecycle."""
    global redis_client, producer

    logger.info("Starting Cart Service...")

    try:
        create_topics(settings.kafka_bootstrap_servers, replication_factor=settings.kafka_replication_factor)
        logger.info("Kafka topics initialized")
    except Exception as e:
        logger.error(f"Failed to initialize Kafka topics: {e}")
        raise

    try:
        redis_client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            db=settings.redis_db,
            decode_responses=True,
        )
        redis_client.ping()
        logger.info("Redis connected")
    except Exception as e:
        logger.error(f"Failed to connect to Redis: {e}")
        raise

    try:
        producer = BaseKafkaProducer(settings.kafka_bootstrap_servers, client_id="cart-producer")
        logger.info("Kafka producer initialized")
    except Exception as e:
        logger.error(f"Failed to initialize Kafka producer: {e}")
        raise

    yield

    logger.info("Shutting down Cart Service...")
    if redis_client:
        redis_client.close()
    if producer:
        producer.close()


app = FastAPI(title="Cart Service", version="1.0.0", lifespan=lifespan)


# Dependencies ---------------------------------------------------------------

def get_redis() -> redis.Redis:
    return redis_client


def get_producer() -> Optional[BaseKafkaProducer]:
    return producer


def get_order_client() -> OrderClient:
    return HttpOrderClient(settings.order_service_url, timeout=settings.order_service_timeout)


def get_pricing_options() -> dict:
    return {
        "gst_rate": settings.gst_rate,
        "free_threshold": settings.free_shipping_threshold,
        "base_shipping": settings.base_shipping_cost,
    }


# Helpers --------------------------------------------------------------------

def _open_store(session_id: str, redis_conn: redis.Redis, notifier: CollectingNotifier) -> CartStore:
    store = CartStore(CartRepository(redis_conn, session_id, ttl=settings.cart_ttl_seconds), notifier=notifier)
    store.hydrate()
    return store


def _summary_response(summary: PriceSummary) -> PriceSummaryResponse:
    return PriceSummaryResponse(**summary.to_dict(), formatted_total=format_inr(summary.total))


def _cart_response(
    session_id: str,
    store: CartStore,
    notifier: CollectingNotifier,
    pricing_options: dict,
) -> CartResponse:
    return CartResponse(
        session_id=session_id,
        items=[
            CartItemResponse(**item.model_dump(), item_total=item.line_total)
            for item in store.items
        ],
        total=store.total,
        item_count=store.item_count,
        summary=_summary_response(price_summary(store.total, **pricing_options)),
        notifications=notifier.messages,
    )


def _publish(producer: Optional[BaseKafkaProducer], topic: str, event: BaseEvent) -> None:
    """Cart events feed analytics only; a broker outage must not fail the request."""
    if producer is None:
        logger.warning(f"Kafka producer not initialized, dropping {topic} event")
        return
    try:
        producer.publish(topic, event)
    except Exception as e:
        logger.error(f"Error publishing {topic} event: {e}")


# Endpoints ------------------------------------------------------------------

@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="ok", service="cart-service", version="1.0.0")


@app.get("/cart/{session_id}", response_model=CartResponse)
def get_cart(
    session_id: str,
    redis_conn: redis.Redis = Depends(get_redis),
    pricing_options: dict = Depends(get_pricing_options),
) -> CartResponse:
    """Get the session's cart."""
    notifier = CollectingNotifier()
    try:
        store = _open_store(session_id, redis_conn, notifier)
        return _cart_response(session_id, store, notifier, pricing_options)
    except Exception as e:
        logger.error(f"Error getting cart: {e}", extra={"session_id": session_id})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@app.post("/cart/{session_id}/items", response_model=CartResponse, status_code=status.HTTP_201_CREATED)
def add_item(
    session_id: str,
    request: AddItemRequest,
    response: Response,
    redis_conn: redis.Redis = Depends(get_redis),
    producer: Optional[BaseKafkaProducer] = Depends(get_producer),
    pricing_options: dict = Depends(get_pricing_options),
) -> CartResponse:
    """Add a product to the cart. Insufficient stock leaves the cart unchanged and returns a warning."""
    notifier = CollectingNotifier()
    try:
        store = _open_store(session_id, redis_conn, notifier)
        added = store.add_item(request.product, request.quantity)
    except Exception as e:
        logger.error(f"Error adding item to cart: {e}", extra={"session_id": session_id})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if added:
        _publish(
            producer,
            "cart.item_added",
            CartItemAddedEvent(
                correlation_id=session_id,
                session_id=session_id,
                product_id=request.product.id,
                quantity=request.quantity,
                price=request.product.price,
            ),
        )
    else:
        response.status_code = status.HTTP_200_OK

    return _cart_response(session_id, store, notifier, pricing_options)


@app.put("/cart/{session_id}/items/{product_id}", response_model=CartResponse)
def update_item_quantity(
    session_id: str,
    product_id: str,
    request: UpdateQuantityRequest,
    redis_conn: redis.Redis = Depends(get_redis),
    producer: Optional[BaseKafkaProducer] = Depends(get_producer),
    pricing_options: dict = Depends(get_pricing_options),
) -> CartResponse:
    """Update item quantity. Quantity <= 0 removes the item; larger than stock is clamped."""
    notifier = CollectingNotifier()
    try:
        store = _open_store(session_id, redis_conn, notifier)
        if not store.is_in_cart(product_id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Item {product_id} not found in cart",
            )
        store.update_quantity(product_id, request.quantity)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating item quantity: {e}", extra={"session_id": session_id})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if not store.is_in_cart(product_id):
        _publish(
            producer,
            "cart.item_removed",
            CartItemRemovedEvent(correlation_id=session_id, session_id=session_id, product_id=product_id),
        )
    return _cart_response(session_id, store, notifier, pricing_options)


@app.delete("/cart/{session_id}/items/{product_id}", response_model=CartResponse)
def remove_item(
    session_id: str,
    product_id: str,
    redis_conn: redis.Redis = Depends(get_redis),
    producer: Optional[BaseKafkaProducer] = Depends(get_producer),
    pricing_options: dict = Depends(get_pricing_options),
) -> CartResponse:
    """Remove an item. Removing a product that is not in the cart is a no-op."""
    notifier = CollectingNotifier()
    try:
        store = _open_store(session_id, redis_conn, notifier)
        was_in_cart = store.is_in_cart(product_id)
        store.remove_item(product_id)
    except Exception as e:
        logger.error(f"Error removing item from cart: {e}", extra={"session_id": session_id})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if was_in_cart:
        _publish(
            producer,
            "cart.item_removed",
            CartItemRemovedEvent(correlation_id=session_id, session_id=session_id, product_id=product_id),
        )
    return _cart_response(session_id, store, notifier, pricing_options)


@app.delete("/cart/{session_id}", response_model=CartResponse)
def clear_cart(
    session_id: str,
    redis_conn: redis.Redis = Depends(get_redis),
    producer: Optional[BaseKafkaProducer] = Depends(get_producer),
    pricing_options: dict = Depends(get_pricing_options),
) -> CartResponse:
    """Empty the cart."""
    notifier = CollectingNotifier()
    try:
        store = _open_store(session_id, redis_conn, notifier)
        store.clear()
    except Exception as e:
        logger.error(f"Error clearing cart: {e}", extra={"session_id": session_id})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    _publish(producer, "cart.cleared", CartClearedEvent(correlation_id=session_id, session_id=session_id))
    return _cart_response(session_id, store, notifier, pricing_options)


@app.get("/cart/{session_id}/summary", response_model=PriceSummaryResponse)
def get_summary(
    session_id: str,
    discount: float = 0,
    weight: float = 0,
    distance: float = 0,
    redis_conn: redis.Redis = Depends(get_redis),
    pricing_options: dict = Depends(get_pricing_options),
) -> PriceSummaryResponse:
    """Price summary for the current cart. `weight` in kg, `distance` in km."""
    if discount < 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Discount must be >= 0")

    store = _open_store(session_id, redis_conn, CollectingNotifier())
    summary = price_summary(store.total, discount=discount, weight=weight, distance=distance, **pricing_options)
    return _summary_response(summary)


@app.post("/cart/{session_id}/checkout", response_model=CheckoutResponse)
def checkout(
    session_id: str,
    request: CheckoutRequest,
    redis_conn: redis.Redis = Depends(get_redis),
    producer: Optional[BaseKafkaProducer] = Depends(get_producer),
    order_client: OrderClient = Depends(get_order_client),
    pricing_options: dict = Depends(get_pricing_options),
) -> CheckoutResponse:
    """Run checkout (address, payment method, review) and place the order.

    The cart is cleared only if the order service accepted the order.
    """
    notifier = CollectingNotifier()
    store = _open_store(session_id, redis_conn, notifier)

    try:
        session = CheckoutSession(
            store,
            order_client,
            user_id=request.user_id,
            addresses=request.addresses,
            notifier=notifier,
            discount=request.discount,
            pricing_options=pricing_options,
            weight=request.weight,
            distance=request.distance,
        )

        if request.address is not None:
            session.add_address(request.address)
            session.select_address(request.address)
        elif request.address_id is not None:
            chosen = next((a for a in request.addresses if a.id == request.address_id), None)
            if chosen is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail=f"Address {request.address_id} not found",
                )
            session.select_address(chosen)

        session.proceed()
        session.select_payment_method(request.payment_method)
        session.proceed()

        summary = session.summary()
        snapshot = store.snapshot()
        order_id = session.place_order()
    except HTTPException:
        raise
    except CheckoutStepError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except OrderSubmissionFailure as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Failed to place order: {e}")

    _publish(
        producer,
        "cart.checked_out",
        CartCheckedOutEvent(
            correlation_id=order_id,
            session_id=session_id,
            order_id=order_id,
            items=snapshot,
            total_amount=summary.total,
        ),
    )

    return CheckoutResponse(
        order_id=order_id,
        step=session.step.value,
        summary=_summary_response(summary),
        notifications=notifier.messages,
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.cart_service_port)
