from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from services.order_service.models import OrderStatus
from shared.schemas import Address, PaymentMethod


class OrderItemSchema(BaseModel):
    """Order item schema. Accepts cart lines as stored (`_id`) or `product_id`."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    product_id: str = Field(alias="_id")
    name: str
    price: float = Field(ge=0)
    quantity: int = Field(ge=1)
    image: Optional[str] = None
    sku: Optional[str] = None


class CreateOrderRequest(BaseModel):
    """Request to create an order. Prices are recomputed server-side."""

    user_id: str
    items: List[OrderItemSchema] = Field(min_length=1)
    shipping_address: Address
    payment_method: PaymentMethod
    discount: float = Field(default=0, ge=0)
    weight: float = Field(default=0, ge=0)  # kg, for shipping surcharges
    distance: float = Field(default=0, ge=0)  # km


class UpdateStatusRequest(BaseModel):
    status: OrderStatus


class CancelOrderRequest(BaseModel):
    reason: str = Field(default="Cancelled by customer", min_length=1)
    cancelled_by: Literal["customer", "admin", "system"] = "customer"


class OrderResponse(BaseModel):
    """Response model for order."""

    model_config = ConfigDict(from_attributes=True)

    order_id: str
    user_id: str
    status: str
    payment_status: str
    payment_method: str
    transaction_id: Optional[str] = None
    items: List[Dict[str, Any]]
    shipping_address: Dict[str, Any]
    subtotal: float
    gst: float
    shipping: float
    discount: float
    total: float
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserOrdersResponse(BaseModel):
    user_id: str
    orders: List[OrderResponse]
    total_orders: int


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str
    service: str
    version: str
