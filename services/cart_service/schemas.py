from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from services.cart_service.cart_store import Product
from shared.schemas import Address, PaymentMethod


class AddItemRequest(BaseModel):
    """Request model for adding a product to the cart."""

    product: Product
    quantity: int = Field(default=1, ge=1)


class UpdateQuantityRequest(BaseModel):
    """Request model for updating item quantity. Zero or less removes the item."""

    quantity: int


class NotificationSchema(BaseModel):
    level: str
    message: str


class CartItemResponse(BaseModel):
    """Response model for a cart line."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    name: str
    price: float
    image: str
    stock: int
    quantity: int
    sku: Optional[str] = None
    item_total: float


class PriceSummaryResponse(BaseModel):
    subtotal: float
    gst: int
    shipping: float
    discount: float
    total: float
    formatted_total: str


class CartResponse(BaseModel):
    """Response model for cart."""

    session_id: str
    items: List[CartItemResponse]
    total: float
    item_count: int
    summary: PriceSummaryResponse
    notifications: List[NotificationSchema] = Field(default_factory=list)


class CheckoutRequest(BaseModel):
    """Request model for placing an order from the cart.

    The delivery address is either a new `address`, one of the saved
    `addresses` picked by `address_id`, or the saved default address.
    `weight` and `distance` price shipping the same way as the cart summary.
    """

    user_id: str
    addresses: List[Address] = Field(default_factory=list)
    address_id: Optional[str] = None
    address: Optional[Address] = None
    payment_method: PaymentMethod
    discount: float = Field(default=0, ge=0)
    weight: float = Field(default=0, ge=0)  # kg
    distance: float = Field(default=0, ge=0)  # km


class CheckoutResponse(BaseModel):
    order_id: str
    step: str
    summary: PriceSummaryResponse
    notifications: List[NotificationSchema] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str
    service: str
    version: str
