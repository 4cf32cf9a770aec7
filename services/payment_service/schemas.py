from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.schemas import INDIAN_MOBILE_PATTERN


class CreatePaymentRequest(BaseModel):
    """Request to start a PhonePe payment for an order."""

    order_id: str
    user_id: str
    amount: float = Field(gt=0)
    user_phone: Optional[str] = Field(default=None, pattern=INDIAN_MOBILE_PATTERN)


class CreatePaymentResponse(BaseModel):
    payment_id: str
    order_id: str
    payment_url: str
    merchant_transaction_id: str


class PhonePeCallbackRequest(BaseModel):
    """Server-to-server callback body; `response` is base64 JSON."""

    response: str


class PaymentStatusResponse(BaseModel):
    merchant_transaction_id: str
    state: Optional[str] = None
    payment_status: str
    transaction_id: Optional[str] = None
    message: Optional[str] = None


class PaymentSchema(BaseModel):
    """Payment schema."""

    model_config = ConfigDict(from_attributes=True)

    payment_id: str
    order_id: str
    user_id: str
    amount: float
    currency: str
    method: str
    merchant_transaction_id: str
    transaction_id: Optional[str] = None
    status: str
    reason: Optional[str] = None
    abandoned: bool = False
    created_at: Optional[datetime] = None


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str
    service: str
    version: str
