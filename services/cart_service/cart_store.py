"""
Cart Store Module

Holds the authoritative shopping cart of one customer session and keeps a
durable copy in sync.

Architecture:
    - Product: validated product payload entering the cart (boundary schema)
    - CartItem / CartState: immutable cart data; total and item_count are
      derived from the items on every access
    - Commands: AddItem, UpdateQuantity, RemoveItem, ClearCart,
      ToggleVisibility, LoadCart
    - reduce(state, command): pure transition function
    - CartStore: owns the current state, persists after every mutation and
      reports short user-facing messages to a Notifier

Example Usage:
    ```python
    store = CartStore(CartRepository(redis_client, "sess-42"), notifier=LogNotifier())
    store.hydrate()

    laptop = Product.model_validate({"_id": "1", "name": "Laptop", "price": 1000, "stock": 10})
    store.add_item(laptop, 2)
    store.add_item(laptop, 2)
    store.total       # 4000
    store.item_count  # 4
    ```
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from shared.exceptions import InsufficientStock

logger = logging.getLogger(__name__)

PLACEHOLDER_IMAGE = "/placeholder-image.jpg"


class ProductImage(BaseModel):
    url: str
    alt: Optional[str] = None


class Product(BaseModel):
    """Product payload as served by the catalogue API."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id", min_length=1)
    name: str
    price: float = Field(ge=0)
    stock: int = Field(ge=0)
    images: List[ProductImage] = Field(default_factory=list)
    sku: Optional[str] = None

    @property
    def primary_image(self) -> str:
        return self.images[0].url if self.images else PLACEHOLDER_IMAGE


class CartItem(BaseModel):
    """One line of the cart. Serialized with the storefront's field names."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(alias="_id", min_length=1)
    name: str
    price: float = Field(ge=0)
    image: str = PLACEHOLDER_IMAGE
    stock: int = Field(ge=0)
    quantity: int = Field(ge=1)
    sku: Optional[str] = None

    @model_validator(mode="after")
    def _quantity_within_stock(self) -> "CartItem":
        if self.quantity > self.stock:
            raise ValueError(f"quantity {self.quantity} exceeds stock {self.stock}")
        return self

    @property
    def line_total(self) -> float:
        return self.price * self.quantity

    @classmethod
    def from_product(cls, product: Product, quantity: int) -> "CartItem":
        return cls(
            id=product.id,
            name=product.name,
            price=product.price,
            image=product.primary_image,
            stock=product.stock,
            quantity=quantity,
            sku=product.sku,
        )

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class CartState(BaseModel):
    """Immutable cart snapshot."""

    model_config = ConfigDict(frozen=True)

    items: Tuple[CartItem, ...] = ()
    is_open: bool = False

    @property
    def total(self) -> float:
        return sum(item.line_total for item in self.items)

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def find(self, product_id: str) -> Optional[CartItem]:
        for item in self.items:
            if item.id == product_id:
                return item
        return None


# Commands -------------------------------------------------------------------

@dataclass(frozen=True)
class AddItem:
    product: Product
    quantity: int = 1


@dataclass(frozen=True)
class UpdateQuantity:
    product_id: str
    quantity: int


@dataclass(frozen=True)
class RemoveItem:
    product_id: str


@dataclass(frozen=True)
class ClearCart:
    pass


@dataclass(frozen=True)
class ToggleVisibility:
    pass


@dataclass(frozen=True)
class LoadCart:
    items: Tuple[CartItem, ...]


CartCommand = Union[AddItem, UpdateQuantity, RemoveItem, ClearCart, ToggleVisibility, LoadCart]

# Commands whose result must be written back to storage
PERSISTED_COMMANDS = (AddItem, UpdateQuantity, RemoveItem, ClearCart)


def reduce(state: CartState, command: CartCommand) -> CartState:
    """Apply one command to a cart state and return the new state.

    Raises InsufficientStock when AddItem asks for more units than the
    product has in stock. Every other command always succeeds; commands
    naming a product that is not in the cart leave the state unchanged.
    """
    if isinstance(command, AddItem):
        product, quantity = command.product, command.quantity
        if quantity < 1:
            raise ValueError(f"Quantity must be at least 1, got {quantity}")
        if quantity > product.stock:
            raise InsufficientStock(product.id, quantity, product.stock)

        existing = state.find(product.id)
        if existing is None:
            items = state.items + (CartItem.from_product(product, quantity),)
        else:
            merged = existing.model_copy(
                update={
                    "quantity": min(existing.quantity + quantity, product.stock),
                    "stock": product.stock,
                }
            )
            items = tuple(merged if item.id == product.id else item for item in state.items)
        return state.model_copy(update={"items": items})

    if isinstance(command, UpdateQuantity):
        if command.quantity <= 0:
            return reduce(state, RemoveItem(command.product_id))
        items = tuple(
            item.model_copy(update={"quantity": min(command.quantity, item.stock)})
            if item.id == command.product_id
            else item
            for item in state.items
        )
        return state.model_copy(update={"items": items})

    if isinstance(command, RemoveItem):
        items = tuple(item for item in state.items if item.id != command.product_id)
        return state.model_copy(update={"items": items})

    if isinstance(command, ClearCart):
        return state.model_copy(update={"items": ()})

    if isinstance(command, ToggleVisibility):
        return state.model_copy(update={"is_open": not state.is_open})

    if isinstance(command, LoadCart):
        return state.model_copy(update={"items": tuple(command.items)})

    raise TypeError(f"Unknown cart command: {command!r}")


# Store ----------------------------------------------------------------------

class CartStorage(Protocol):
    """Durable slot holding the cart items of one session."""

    def load(self) -> List[CartItem]:
        ...

    def save(self, items: List[CartItem]) -> None:
        ...


class Notifier(Protocol):
    def notify(self, level: str, message: str) -> None:
        ...


class CartStore:
    """Single-session cart with write-through persistence.

    Construct one per session, call hydrate() once, then mutate only through
    the methods below.
    """

    def __init__(self, storage: CartStorage, notifier: Optional[Notifier] = None):
        self.storage = storage
        self.notifier = notifier
        self._state = CartState()
        self._hydrated = False

    # Read access ------------------------------------------------------------

    @property
    def state(self) -> CartState:
        return self._state

    @property
    def items(self) -> Tuple[CartItem, ...]:
        return self._state.items

    @property
    def total(self) -> float:
        return self._state.total

    @property
    def item_count(self) -> int:
        return self._state.item_count

    @property
    def is_open(self) -> bool:
        return self._state.is_open

    def get_item_quantity(self, product_id: str) -> int:
        item = self._state.find(product_id)
        return item.quantity if item else 0

    def is_in_cart(self, product_id: str) -> bool:
        return self._state.find(product_id) is not None

    def snapshot(self) -> List[Dict[str, Any]]:
        """JSON-ready copy of the items, in cart order."""
        return [item.to_storage() for item in self._state.items]

    # Lifecycle --------------------------------------------------------------

    def hydrate(self) -> CartState:
        """Load the persisted cart. Only the first call reads storage."""
        if not self._hydrated:
            self._state = reduce(self._state, LoadCart(tuple(self.storage.load())))
            self._hydrated = True
        return self._state

    def dispatch(self, command: CartCommand) -> CartState:
        self._state = reduce(self._state, command)
        if isinstance(command, PERSISTED_COMMANDS):
            self._persist()
        return self._state

    # Mutations --------------------------------------------------------------

    def add_item(self, product: Product, quantity: int = 1) -> bool:
        """Add `quantity` units of `product`. Returns False when stock is insufficient."""
        try:
            self.dispatch(AddItem(product, quantity))
        except InsufficientStock as e:
            logger.info(str(e))
            self._notify("warning", "Not enough stock available")
            return False
        self._notify("success", f"{product.name} added to cart")
        return True

    def update_quantity(self, product_id: str, quantity: int) -> None:
        item = self._state.find(product_id)
        if item is None:
            return
        if quantity <= 0:
            self.remove_item(product_id)
            return
        if quantity > item.stock:
            self._notify("warning", f"Only {item.stock} left in stock")
        self.dispatch(UpdateQuantity(product_id, quantity))

    def remove_item(self, product_id: str) -> None:
        if not self.is_in_cart(product_id):
            return
        self.dispatch(RemoveItem(product_id))
        self._notify("success", "Item removed from cart")

    def clear(self) -> None:
        self.dispatch(ClearCart())
        self._notify("success", "Cart cleared")

    def toggle_visibility(self) -> bool:
        self.dispatch(ToggleVisibility())
        return self._state.is_open

    # Internals --------------------------------------------------------------

    def _persist(self) -> None:
        self.storage.save(list(self._state.items))

    def _notify(self, level: str, message: str) -> None:
        if self.notifier is not None:
            self.notifier.notify(level, message)
