"""Commerce types shared by the cart, order and payment services."""

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field

INDIAN_MOBILE_PATTERN = r"^[6-9]\d{9}$"
PINCODE_PATTERN = r"^[1-9][0-9]{5}$"


class PaymentMethod(str, Enum):
    UPI = "UPI"
    CARD = "Card"
    NET_BANKING = "NetBanking"
    WALLET = "Wallet"
    COD = "COD"


class Address(BaseModel):
    """Indian delivery address."""

    id: Optional[str] = None
    type: Literal["home", "work", "other"] = "home"
    name: str = Field(min_length=1)
    phone: str = Field(pattern=INDIAN_MOBILE_PATTERN)
    address_line1: str = Field(min_length=1)
    address_line2: Optional[str] = None
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    pincode: str = Field(pattern=PINCODE_PATTERN)
    is_default: bool = False
