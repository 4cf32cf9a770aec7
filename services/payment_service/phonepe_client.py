"""
phonepe_client.py - PhonePe Payment Gateway Client

PURPOSE:
    Talks to the PhonePe PG v1 API: starts pay-page payments, checks their
    status and verifies server-to-server callbacks.

SIGNATURES (X-VERIFY header):
    pay:      sha256(base64(payload) + "/pg/v1/pay" + salt_key) + "###" + salt_index
    status:   sha256("/pg/v1/status/{merchant_id}/{txn}" + salt_key) + "###" + salt_index
    callback: sha256(base64(response) + salt_key) + "###" + salt_index

AMOUNTS:
    Rupees in, paise on the wire (amount * 100).

TRANSACTION IDS:
    VD_{order_id}_{epoch_ms}
"""

import base64
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx

from shared.exceptions import PaymentGatewayError

logger = logging.getLogger(__name__)

PAY_PATH = "/pg/v1/pay"
STATUS_PATH = "/pg/v1/status"
SIGNATURE_SEPARATOR = "###"


@dataclass
class PaymentInitiation:
    payment_url: str
    merchant_transaction_id: str


@dataclass
class PaymentStatusResult:
    """PhonePe's answer to a status check. `state` is PENDING, COMPLETED or FAILED."""

    success: bool
    state: Optional[str]
    transaction_id: Optional[str] = None
    amount: Optional[float] = None  # rupees
    response_code: Optional[str] = None
    message: Optional[str] = None


def _sha256(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def to_paise(amount: float) -> int:
    return int(round(amount * 100))


class PhonePeClient:
    """PhonePe PG client. `transport` and `clock` are injectable for tests."""

    def __init__(
        self,
        merchant_id: str,
        salt_key: str,
        salt_index: str,
        base_url: str,
        redirect_url: str,
        callback_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.merchant_id = merchant_id
        self.salt_key = salt_key
        self.salt_index = str(salt_index)
        self.base_url = base_url.rstrip("/")
        self.redirect_url = redirect_url
        self.callback_url = callback_url
        self.timeout = timeout
        self.transport = transport
        self.clock = clock

    # Signatures -------------------------------------------------------------

    def pay_signature(self, encoded_payload: str) -> str:
        return _sha256(encoded_payload + PAY_PATH + self.salt_key) + SIGNATURE_SEPARATOR + self.salt_index

    def status_signature(self, merchant_transaction_id: str) -> str:
        path = f"{STATUS_PATH}/{self.merchant_id}/{merchant_transaction_id}"
        return _sha256(path + self.salt_key) + SIGNATURE_SEPARATOR + self.salt_index

    def verify_callback(self, x_verify: str, response: str) -> bool:
        """Check a callback's X-VERIFY header against its base64 `response` body."""
        received_hash, separator, received_index = (x_verify or "").partition(SIGNATURE_SEPARATOR)
        if not separator or received_index != self.salt_index:
            return False
        expected_hash = _sha256(response + self.salt_key)
        return hmac.compare_digest(received_hash, expected_hash)

    @staticmethod
    def decode_callback(response: str) -> Dict[str, Any]:
        """Decode a callback's base64 JSON body."""
        try:
            return json.loads(base64.b64decode(response).decode("utf-8"))
        except (ValueError, UnicodeDecodeError) as e:
            raise PaymentGatewayError(f"Malformed callback payload: {e}") from e

    # API calls --------------------------------------------------------------

    def new_transaction_id(self, order_id: str) -> str:
        return f"VD_{order_id}_{int(self.clock() * 1000)}"

    def create_payment(self, order_id: str, amount: float, user_phone: Optional[str] = None) -> PaymentInitiation:
        """Start a pay-page payment for `amount` rupees."""
        merchant_transaction_id = self.new_transaction_id(order_id)
        payload = {
            "merchantId": self.merchant_id,
            "merchantTransactionId": merchant_transaction_id,
            "merchantUserId": f"USER_{int(self.clock() * 1000)}",
            "amount": to_paise(amount),
            "redirectUrl": f"{self.redirect_url}?orderId={order_id}&transactionId={merchant_transaction_id}",
            "redirectMode": "POST",
            "callbackUrl": self.callback_url,
            "mobileNumber": user_phone,
            "paymentInstrument": {"type": "PAY_PAGE"},
        }
        encoded = base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")

        data = self._request(
            "POST",
            PAY_PATH,
            headers={"X-VERIFY": self.pay_signature(encoded)},
            json={"request": encoded},
        )

        if not data.get("success"):
            raise PaymentGatewayError(data.get("message") or "Payment initiation failed")

        try:
            payment_url = data["data"]["instrumentResponse"]["redirectInfo"]["url"]
        except (KeyError, TypeError) as e:
            raise PaymentGatewayError("PhonePe response has no redirect url") from e

        logger.info(
            f"PhonePe payment created {merchant_transaction_id}",
            extra={"order_id": order_id},
        )
        return PaymentInitiation(payment_url=payment_url, merchant_transaction_id=merchant_transaction_id)

    def check_status(self, merchant_transaction_id: str) -> PaymentStatusResult:
        data = self._request(
            "GET",
            f"{STATUS_PATH}/{self.merchant_id}/{merchant_transaction_id}",
            headers={"X-VERIFY": self.status_signature(merchant_transaction_id)},
        )
        details = data.get("data") or {}
        amount = details.get("amount")
        return PaymentStatusResult(
            success=bool(data.get("success")),
            state=details.get("state"),
            transaction_id=details.get("transactionId"),
            amount=amount / 100 if amount is not None else None,
            response_code=details.get("responseCode"),
            message=data.get("message"),
        )

    def _request(self, method: str, path: str, headers: Dict[str, str], json: Optional[dict] = None) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json", "accept": "application/json", **headers}
        try:
            with httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
                response = client.request(method, path, headers=headers, json=json)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            message = _error_message(e.response)
            logger.error(f"PhonePe {method} {path} failed: {e.response.status_code} {message}")
            raise PaymentGatewayError(message) from e
        except httpx.HTTPError as e:
            logger.error(f"PhonePe {method} {path} unreachable: {e}")
            raise PaymentGatewayError(f"PhonePe unavailable: {e}") from e
        except ValueError as e:
            raise PaymentGatewayError("PhonePe returned invalid JSON") from e

        if not isinstance(data, dict):
            raise PaymentGatewayError("PhonePe returned an unexpected response")
        return data


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return response.text
