# Overview: Domain error taxonomy shared by services and mapped to HTTP responses by routes.

"""
Storefront error taxonomy.

Services raise these synchronously; routes translate them with
error_response(). Anything that is not a StoreError is treated as an
unexpected failure (logged, generic 500).
"""

from __future__ import annotations

from flask import current_app, jsonify


class StoreError(Exception):
    """Base class for expected, caller-visible failures."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(StoreError, ValueError):
    """400-level input problem."""
    status_code = 400


class ConflictError(StoreError, ValueError):
    """409-level business rule conflict (e.g., duplicate coupon code)."""
    status_code = 409


class NotFoundError(StoreError):
    status_code = 404


class ItemNotFoundError(NotFoundError):
    """Cart line does not exist in the caller's cart."""


class ProductGoneError(NotFoundError):
    """Referenced product was deleted after the line was added."""


class ForbiddenError(StoreError):
    status_code = 403


class InsufficientStockError(ConflictError):
    """Requested quantity exceeds available stock."""


class InvalidTransitionError(ConflictError):
    """Illegal order status move."""


class CouponError(StoreError):
    """Coupon unknown, expired, exhausted, or not applicable to the cart."""
    status_code = 400


class UnsupportedPaymentMethodError(ValidationError):
    pass


class VerificationFailedError(StoreError):
    """Gateway callback signature did not match. Never retried."""
    status_code = 400


class UpstreamGatewayError(StoreError):
    """Payment gateway unreachable, misconfigured, or rejected the request."""
    status_code = 502


class NotificationDeliveryError(StoreError):
    """An explicitly requested notification could not be delivered."""
    status_code = 502


def error_response(exc: StoreError):
    body = {"success": False, "error": exc.message}
    if exc.details:
        body["details"] = exc.details
    return jsonify(body), exc.status_code


def internal_error_response(exc: Exception | None = None):
    body = {"success": False, "error": "Internal server error"}
    if exc is not None and current_app.config.get("EXPOSE_ERROR_DETAILS"):
        body["detail"] = f"{type(exc).__name__}: {exc}"
    return jsonify(body), 500
