"""
Cart Repository Module

Redis-based durable storage for the cart of one customer session.

Key Features:
    - One Redis key per session: "cart:{session_id}"
    - Value is the JSON list of cart items, in cart order, using the
      storefront's field names (_id, name, price, image, stock, quantity, sku)
    - Sliding expiration: the TTL resets on every write
    - Malformed stored data is discarded: logged, deleted, treated as empty
    - Writes are fire-and-forget: Redis errors are logged, never retried

Data Format (Redis):
    Key: "cart:sess-42"
    Value: '[{"_id": "1", "name": "Laptop", "price": 1000.0, "image": "/placeholder-image.jpg",
              "stock": 10, "quantity": 2, "sku": "LAP-1"}]'

Example Usage:
    ```python
    redis_client = redis.Redis(host="redis", port=6379, decode_responses=True)
    repo = CartRepository(redis_client, "sess-42")
    items = repo.load()
    repo.save(items)
    ```
"""

import json
import logging
from typing import List

import redis
from pydantic import TypeAdapter, ValidationError

from services.cart_service.cart_store import CartItem
from shared.exceptions import MalformedPersistedState

logger = logging.getLogger(__name__)

_items_adapter = TypeAdapter(List[CartItem])


def parse_cart_items(raw: str) -> List[CartItem]:
    """Decode a stored cart. Raises MalformedPersistedState on any defect."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedPersistedState(f"Stored cart is not valid JSON: {e}") from e

    if not isinstance(data, list):
        raise MalformedPersistedState("Stored cart must be a JSON list")

    try:
        items = _items_adapter.validate_python(data)
    except ValidationError as e:
        raise MalformedPersistedState(f"Stored cart items are invalid: {e.error_count()} errors") from e

    ids = [item.id for item in items]
    if len(ids) != len(set(ids)):
        raise MalformedPersistedState("Stored cart contains duplicate products")
    return items


def dump_cart_items(items: List[CartItem]) -> str:
    return json.dumps([item.to_storage() for item in items])


class CartRepository:
    """Durable cart slot for one session, backed by Redis."""

    CART_KEY_PREFIX = "cart:"
    CART_TTL = 7 * 24 * 3600  # 7 days

    def __init__(self, redis_client: redis.Redis, session_id: str, ttl: int = CART_TTL):
        self.redis = redis_client
        self.session_id = session_id
        self.ttl = ttl

    @property
    def key(self) -> str:
        return f"{self.CART_KEY_PREFIX}{self.session_id}"

    def load(self) -> List[CartItem]:
        """Stored items, or an empty list when nothing usable is stored."""
        raw = self.redis.get(self.key)
        if raw is None:
            return []

        try:
            items = parse_cart_items(raw)
        except MalformedPersistedState as e:
            logger.warning(f"Discarding stored cart: {e}", extra={"session_id": self.session_id})
            self.redis.delete(self.key)
            return []

        logger.info(f"Loaded {len(items)} cart items", extra={"session_id": self.session_id})
        return items

    def save(self, items: List[CartItem]) -> None:
        """Write the items back. An empty cart is stored as an empty list."""
        try:
            self.redis.set(self.key, dump_cart_items(items), ex=self.ttl)
        except redis.RedisError as e:
            logger.error(f"Failed to persist cart: {e}", extra={"session_id": self.session_id})
            return
        logger.info(f"Saved {len(items)} cart items", extra={"session_id": self.session_id})

    def ttl_remaining(self) -> int:
        return self.redis.ttl(self.key)
