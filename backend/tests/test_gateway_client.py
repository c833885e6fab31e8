"""
Payment gateway HTTP client tests (httpx.MockTransport, no network).
"""

import json

import httpx
import pytest

from storefront.errors import UpstreamGatewayError
from storefront.services.gateway_client import GatewayClient


def _client(handler, key_id="rzp_test_key", key_secret="secret"):
    return GatewayClient(
        key_id=key_id,
        key_secret=key_secret,
        base_url="https://gateway.test/v1/",
        timeout=2.0,
        transport=httpx.MockTransport(handler),
    )


class TestCreateOrder:

    def test_posts_amount_in_minor_units(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "order_abc", "amount": 110000, "currency": "INR"})

        order = _client(handler).create_order(amount=110000, currency="INR", receipt="receipt_SR1")

        assert order["id"] == "order_abc"
        assert seen["url"] == "https://gateway.test/v1/orders"
        assert seen["auth"].startswith("Basic ")
        assert seen["body"] == {"amount": 110000, "currency": "INR", "receipt": "receipt_SR1", "payment_capture": 1}

    def test_unconfigured(self):
        client = _client(lambda request: httpx.Response(200, json={}), key_secret=None)
        with pytest.raises(UpstreamGatewayError, match="not configured"):
            client.create_order(amount=100, currency="INR", receipt="r")

    def test_rejected_request(self):
        client = _client(lambda request: httpx.Response(400, json={"error": {"code": "BAD_REQUEST_ERROR"}}))
        with pytest.raises(UpstreamGatewayError) as exc_info:
            client.create_order(amount=100, currency="INR", receipt="r")
        assert exc_info.value.details == {"gateway_status": 400}

    def test_timeout(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(UpstreamGatewayError, match="timed out"):
            _client(handler).create_order(amount=100, currency="INR", receipt="r")

    def test_missing_order_id(self):
        client = _client(lambda request: httpx.Response(200, json={"status": "created"}))
        with pytest.raises(UpstreamGatewayError, match="no order id"):
            client.create_order(amount=100, currency="INR", receipt="r")


class TestRefund:

    def test_refund_posts_amount(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "rfnd_1", "amount": 5000})

        refund = _client(handler).refund_payment("pay_123", 5000)

        assert refund["id"] == "rfnd_1"
        assert seen["path"] == "/v1/payments/pay_123/refund"
        assert seen["body"] == {"amount": 5000}
