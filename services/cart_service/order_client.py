import logging
from typing import Optional

import httpx

from services.cart_service.checkout import OrderRequest
from shared.exceptions import OrderSubmissionFailure

logger = logging.getLogger(__name__)


class HttpOrderClient:
    """Creates orders through the order service's HTTP API."""

    def __init__(self, base_url: str, timeout: float = 10.0, transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def create_order(self, request: OrderRequest) -> str:
        """POST /orders and return the created order id."""
        try:
            with httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
                response = client.post("/orders", json=request.model_dump(mode="json"))
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            detail = _error_detail(e.response)
            logger.error(f"Order API rejected order: {e.response.status_code} {detail}")
            raise OrderSubmissionFailure(detail, status_code=e.response.status_code) from e
        except httpx.HTTPError as e:
            logger.error(f"Order API unreachable: {e}")
            raise OrderSubmissionFailure(f"Order service unavailable: {e}") from e
        except ValueError as e:
            raise OrderSubmissionFailure("Order service returned invalid JSON") from e

        order_id = data.get("order_id") if isinstance(data, dict) else None
        if not order_id:
            raise OrderSubmissionFailure("Order service response has no order_id")
        return order_id


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict) and "detail" in data:
        return str(data["detail"])
    return response.text
