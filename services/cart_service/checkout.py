"""
Checkout Orchestrator

Walks a customer from a filled cart to a placed order:

    SELECTING_ADDRESS --proceed()--> SELECTING_PAYMENT --proceed()--> REVIEWING_ORDER
            ^                            |      ^                         |
            +-----------back()-----------+      +---------back()----------+

    REVIEWING_ORDER --place_order()--> ORDER_PLACED (terminal)

Leaving a step requires its selection (an address, then a payment method).
place_order() hands the cart snapshot to an OrderClient; the cart is cleared
only when the order was accepted. A rejected order leaves both the cart and
the checkout step untouched so the customer can retry.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

from pydantic import BaseModel

from services.cart_service.cart_store import CartStore, Notifier
from shared.exceptions import CheckoutStepError, OrderSubmissionFailure
from shared.pricing import PriceSummary, price_summary
from shared.schemas import Address, PaymentMethod

logger = logging.getLogger(__name__)


class CheckoutStep(str, Enum):
    SELECTING_ADDRESS = "selecting_address"
    SELECTING_PAYMENT = "selecting_payment"
    REVIEWING_ORDER = "reviewing_order"
    ORDER_PLACED = "order_placed"


_NEXT_STEP = {
    CheckoutStep.SELECTING_ADDRESS: CheckoutStep.SELECTING_PAYMENT,
    CheckoutStep.SELECTING_PAYMENT: CheckoutStep.REVIEWING_ORDER,
}

_PREVIOUS_STEP = {
    CheckoutStep.SELECTING_PAYMENT: CheckoutStep.SELECTING_ADDRESS,
    CheckoutStep.REVIEWING_ORDER: CheckoutStep.SELECTING_PAYMENT,
}


class OrderRequest(BaseModel):
    """Everything the order API needs to create an order."""

    user_id: str
    items: List[Dict[str, Any]]
    shipping_address: Address
    payment_method: PaymentMethod
    discount: float = 0
    weight: float = 0
    distance: float = 0


class OrderClient(Protocol):
    def create_order(self, request: OrderRequest) -> str:
        """Create the order and return its id. Raises OrderSubmissionFailure."""
        ...


class CheckoutSession:
    """One checkout attempt over a hydrated CartStore."""

    def __init__(
        self,
        store: CartStore,
        order_client: OrderClient,
        user_id: str,
        addresses: Sequence[Address] = (),
        notifier: Optional[Notifier] = None,
        discount: float = 0,
        pricing_options: Optional[Dict[str, Any]] = None,
        weight: float = 0,
        distance: float = 0,
    ):
        if not store.items:
            raise CheckoutStepError("Cart is empty")

        self.store = store
        self.order_client = order_client
        self.user_id = user_id
        self.notifier = notifier
        self.discount = discount
        self.weight = weight
        self.distance = distance
        self.pricing_options = pricing_options or {}

        self.step = CheckoutStep.SELECTING_ADDRESS
        self.addresses: List[Address] = list(addresses)
        self.selected_address: Optional[Address] = next((a for a in self.addresses if a.is_default), None)
        self.payment_method: Optional[PaymentMethod] = None
        self.order_id: Optional[str] = None

    # Selections -------------------------------------------------------------

    def add_address(self, address: Address) -> None:
        """Save a new address; it becomes the selection if it is the default or the first one."""
        self._require_step(CheckoutStep.SELECTING_ADDRESS)
        is_first = not self.addresses
        self.addresses.append(address)
        if address.is_default or is_first:
            self.selected_address = address
        self._notify("success", "Address added successfully")

    def select_address(self, address: Address) -> None:
        self._require_step(CheckoutStep.SELECTING_ADDRESS)
        self.selected_address = address

    def select_payment_method(self, method: Union[PaymentMethod, str]) -> None:
        self._require_step(CheckoutStep.SELECTING_PAYMENT)
        self.payment_method = PaymentMethod(method)

    # Navigation -------------------------------------------------------------

    def proceed(self) -> CheckoutStep:
        if self.step == CheckoutStep.SELECTING_ADDRESS and self.selected_address is None:
            raise CheckoutStepError("Please select a delivery address")
        if self.step == CheckoutStep.SELECTING_PAYMENT and self.payment_method is None:
            raise CheckoutStepError("Please select a payment method")
        if self.step not in _NEXT_STEP:
            raise CheckoutStepError(f"Cannot move forward from {self.step.value}")

        self.step = _NEXT_STEP[self.step]
        return self.step

    def back(self) -> CheckoutStep:
        if self.step not in _PREVIOUS_STEP:
            raise CheckoutStepError(f"Cannot go back from {self.step.value}")
        self.step = _PREVIOUS_STEP[self.step]
        return self.step

    # Review -----------------------------------------------------------------

    @property
    def can_place_order(self) -> bool:
        return (
            self.step == CheckoutStep.REVIEWING_ORDER
            and self.selected_address is not None
            and self.payment_method is not None
        )

    def summary(self) -> PriceSummary:
        return price_summary(
            self.store.total,
            discount=self.discount,
            weight=self.weight,
            distance=self.distance,
            **self.pricing_options,
        )

    def place_order(self) -> str:
        """Submit the order. Returns the new order id."""
        if not self.can_place_order:
            raise CheckoutStepError("Order can only be placed from the review step with an address and payment method")

        request = OrderRequest(
            user_id=self.user_id,
            items=self.store.snapshot(),
            shipping_address=self.selected_address,
            payment_method=self.payment_method,
            discount=self.discount,
            weight=self.weight,
            distance=self.distance,
        )

        try:
            order_id = self.order_client.create_order(request)
        except OrderSubmissionFailure as e:
            logger.error(f"Error placing order for user {self.user_id}: {e}")
            self._notify("error", "Failed to place order")
            raise

        self.order_id = order_id
        self.store.clear()
        self.step = CheckoutStep.ORDER_PLACED
        self._notify("success", "Order placed successfully!")
        logger.info(f"Order {order_id} placed for user {self.user_id}", extra={"order_id": order_id})
        return order_id

    def _require_step(self, step: CheckoutStep) -> None:
        if self.step != step:
            raise CheckoutStepError(f"Not allowed while {self.step.value}")

    def _notify(self, level: str, message: str) -> None:
        if self.notifier is not None:
            self.notifier.notify(level, message)
