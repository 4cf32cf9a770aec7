"""Tests for the PhonePe PG client."""

import base64
import hashlib
import json

import httpx
import pytest

from services.payment_service.phonepe_client import PhonePeClient, to_paise
from shared.exceptions import PaymentGatewayError

SALT_KEY = "099eb0cd-02cf-4e2a-8aca-3e6c6aff0399"
REDIRECT_URL = "https://shop.test/payment/status"


def _client(handler=None, clock=lambda: 1792300000.123):
    return PhonePeClient(
        merchant_id="PGTESTPAYUAT",
        salt_key=SALT_KEY,
        salt_index="1",
        base_url="https://phonepe.test/apis/pg-sandbox/",
        redirect_url=REDIRECT_URL,
        callback_url="https://api.shop.test/payments/phonepe/callback",
        transport=httpx.MockTransport(handler) if handler else None,
        clock=clock,
    )


def _encode(payload):
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


def _pay_ok(url="https://mercury.test/pay/abc"):
    return {
        "success": True,
        "code": "PAYMENT_INITIATED",
        "data": {"instrumentResponse": {"type": "PAY_PAGE", "redirectInfo": {"url": url, "method": "GET"}}},
    }


class TestSignatures:
    def test_pay_signature(self):
        expected = hashlib.sha256(("abc" + "/pg/v1/pay" + SALT_KEY).encode()).hexdigest() + "###1"
        assert _client().pay_signature("abc") == expected

    def test_status_signature(self):
        path = "/pg/v1/status/PGTESTPAYUAT/VD_1_2"
        expected = hashlib.sha256((path + SALT_KEY).encode()).hexdigest() + "###1"
        assert _client().status_signature("VD_1_2") == expected

    def test_verify_callback(self):
        response = _encode({"code": "PAYMENT_SUCCESS"})
        header = hashlib.sha256((response + SALT_KEY).encode()).hexdigest() + "###1"
        client = _client()
        assert client.verify_callback(header, response)
        assert not client.verify_callback(header, _encode({"code": "PAYMENT_ERROR"}))

    @pytest.mark.parametrize("header", ["", None, "deadbeef", "deadbeef###1"])
    def test_verify_callback_rejects_bad_headers(self, header):
        assert not _client().verify_callback(header, _encode({}))

    def test_verify_callback_rejects_other_salt_index(self):
        response = _encode({})
        header = hashlib.sha256((response + SALT_KEY).encode()).hexdigest() + "###2"
        assert not _client().verify_callback(header, response)


class TestDecodeCallback:
    def test_decodes_base64_json(self):
        payload = {"code": "PAYMENT_SUCCESS", "data": {"merchantTransactionId": "VD_1_2"}}
        assert PhonePeClient.decode_callback(_encode(payload)) == payload

    def test_malformed_payload(self):
        garbage = base64.b64encode(b"not json").decode("ascii")
        with pytest.raises(PaymentGatewayError):
            PhonePeClient.decode_callback(garbage)


class TestCreatePayment:
    def test_amount_in_paise(self):
        assert to_paise(1416) == 141600
        assert to_paise(99.99) == 9999

    def test_transaction_id_uses_clock(self):
        assert _client().new_transaction_id("VD2610180001") == "VD_VD2610180001_1792300000123"

    def test_posts_signed_request(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["x_verify"] = request.headers["X-VERIFY"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_pay_ok())

        client = _client(handler)
        initiation = client.create_payment("VD2610180001", 1416, user_phone="9876543210")

        assert initiation.payment_url == "https://mercury.test/pay/abc"
        assert initiation.merchant_transaction_id == "VD_VD2610180001_1792300000123"
        assert seen["url"] == "https://phonepe.test/apis/pg-sandbox/pg/v1/pay"

        encoded = seen["body"]["request"]
        assert seen["x_verify"] == client.pay_signature(encoded)
        payload = json.loads(base64.b64decode(encoded))
        assert payload["merchantId"] == "PGTESTPAYUAT"
        assert payload["amount"] == 141600
        assert payload["mobileNumber"] == "9876543210"
        assert payload["paymentInstrument"] == {"type": "PAY_PAGE"}
        assert payload["redirectUrl"].startswith(REDIRECT_URL + "?orderId=VD2610180001")

    def test_unsuccessful_response(self):
        def handler(request):
            return httpx.Response(200, json={"success": False, "message": "Merchant not active"})

        with pytest.raises(PaymentGatewayError, match="Merchant not active"):
            _client(handler).create_payment("VD2610180001", 100)

    def test_response_without_redirect(self):
        def handler(request):
            return httpx.Response(200, json={"success": True, "data": {}})

        with pytest.raises(PaymentGatewayError, match="redirect"):
            _client(handler).create_payment("VD2610180001", 100)

    def test_http_error_carries_gateway_message(self):
        def handler(request):
            return httpx.Response(400, json={"success": False, "message": "Key not found"})

        with pytest.raises(PaymentGatewayError, match="Key not found"):
            _client(handler).create_payment("VD2610180001", 100)

    def test_unreachable_gateway(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(PaymentGatewayError, match="unavailable"):
            _client(handler).create_payment("VD2610180001", 100)


class TestCheckStatus:
    def test_completed(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["x_verify"] = request.headers["X-VERIFY"]
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "code": "PAYMENT_SUCCESS",
                    "message": "Your payment is successful.",
                    "data": {
                        "merchantTransactionId": "VD_1_2",
                        "transactionId": "T2610181234",
                        "amount": 141600,
                        "state": "COMPLETED",
                        "responseCode": "SUCCESS",
                    },
                },
            )

        client = _client(handler)
        result = client.check_status("VD_1_2")
        assert seen["url"] == "https://phonepe.test/apis/pg-sandbox/pg/v1/status/PGTESTPAYUAT/VD_1_2"
        assert seen["x_verify"] == client.status_signature("VD_1_2")
        assert result.success
        assert result.state == "COMPLETED"
        assert result.transaction_id == "T2610181234"
        assert result.amount == 1416
        assert result.response_code == "SUCCESS"

    def test_pending_without_amount(self):
        def handler(request):
            return httpx.Response(200, json={"success": False, "code": "PAYMENT_PENDING", "data": {"state": "PENDING"}})

        result = _client(handler).check_status("VD_1_2")
        assert not result.success
        assert result.state == "PENDING"
        assert result.amount is None

    def test_invalid_json(self):
        def handler(request):
            return httpx.Response(200, text="<html></html>")

        with pytest.raises(PaymentGatewayError, match="invalid JSON"):
            _client(handler).check_status("VD_1_2")
