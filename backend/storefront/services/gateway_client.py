# Overview: HTTP client for the Razorpay-compatible payment gateway.

"""
Payment Gateway Client

WHY: The gateway is the only outbound network dependency on the request
path. Every call is bounded by GATEWAY_TIMEOUT_SECONDS and every failure
(unconfigured keys, timeout, connection error, non-2xx) surfaces as
UpstreamGatewayError (HTTP 502), never as a validation error.

The active client is resolved per call through get_gateway_client(); an
instance registered in app.extensions["payment_gateway"] takes precedence
(tests register a fake there).
"""

from __future__ import annotations

import hashlib
import hmac

import httpx
from flask import current_app

from ..errors import UpstreamGatewayError


def compute_signature(secret: str, gateway_order_id: str, gateway_payment_id: str) -> str:
    """HMAC-SHA256(secret, "<order_id>|<payment_id>") as lowercase hex."""
    message = f"{gateway_order_id}|{gateway_payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class GatewayClient:
    def __init__(
        self,
        key_id: str | None,
        key_secret: str | None,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    def _post(self, path: str, payload: dict) -> dict:
        if not self.is_configured:
            raise UpstreamGatewayError("Payment gateway is not configured")

        try:
            with httpx.Client(
                base_url=self.base_url,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = client.post(path, json=payload)
        except httpx.TimeoutException as exc:
            raise UpstreamGatewayError("Payment gateway timed out") from exc
        except httpx.HTTPError as exc:
            raise UpstreamGatewayError("Payment gateway unreachable") from exc

        if response.status_code >= 400:
            raise UpstreamGatewayError(
                "Payment gateway rejected the request",
                details={"gateway_status": response.status_code},
            )

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamGatewayError("Payment gateway returned an invalid response") from exc

    def create_order(self, amount: int, currency: str, receipt: str) -> dict:
        """Create a gateway order for amount (minor units). Returns the gateway's order object."""
        data = self._post("/orders", {
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "payment_capture": 1,
        })
        if not data.get("id"):
            raise UpstreamGatewayError("Payment gateway returned no order id")
        return data

    def refund_payment(self, payment_id: str, amount: int | None = None) -> dict:
        """Refund a captured payment (full refund when amount is None)."""
        payload = {} if amount is None else {"amount": amount}
        data = self._post(f"/payments/{payment_id}/refund", payload)
        if not data.get("id"):
            raise UpstreamGatewayError("Payment gateway returned no refund id")
        return data


def get_gateway_client():
    override = current_app.extensions.get("payment_gateway")
    if override is not None:
        return override
    config = current_app.config
    return GatewayClient(
        key_id=config.get("RAZORPAY_KEY_ID"),
        key_secret=config.get("RAZORPAY_KEY_SECRET"),
        base_url=config.get("RAZORPAY_API_BASE", "https://api.razorpay.com/v1"),
        timeout=config.get("GATEWAY_TIMEOUT_SECONDS", 10.0),
    )
