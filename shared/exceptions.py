"""Error taxonomy shared by the cart, order and payment services.

None of these are fatal: each is recovered where it is raised or translated
into an HTTP error by the owning service.
"""

from typing import Optional


class ViralDealsError(Exception):
    """Base class for all domain errors."""


class InsufficientStock(ViralDealsError):
    """Requested quantity exceeds the available stock of a product."""

    def __init__(self, product_id: str, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Not enough stock for product {product_id}: requested {requested}, available {available}"
        )


class MalformedPersistedState(ViralDealsError):
    """Stored cart data could not be parsed or validated."""


class OrderSubmissionFailure(ViralDealsError):
    """The order API rejected the order or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class CheckoutStepError(ViralDealsError):
    """An operation was attempted in the wrong checkout step or with missing selections."""


class PaymentGatewayError(ViralDealsError):
    """The payment gateway returned an error or an unusable response."""
