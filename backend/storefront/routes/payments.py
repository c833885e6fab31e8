# Overview: Flask API routes for payments operations; parses input and returns JSON responses.

# backend/storefront/routes/payments.py
"""
Payment API Routes

WHY: The client pays the gateway directly; these routes only register the
order amount with the gateway and verify what the client reports back.

DESIGN:
- create-order: amount always comes from the stored order total
- verify: HMAC signature check, idempotent per gateway payment id
- refund: admin-initiated full refund through the gateway
- status: the order's payment ledger

SECURITY:
- All routes require authentication; owner or admin only
- Signature mismatches are ledgered and logged as possible tampering
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import payment_service
from ..errors import StoreError, error_response, internal_error_response
from ..decorators import require_auth, require_admin


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("/create-order")
@require_auth
def create_gateway_order_route():
    """
    Create the gateway order for a pending order.

    Request body: {"order_id": 123}

    Returns:
        200: {"id", "currency", "amount", "key", "order_id"}
        409: Order already paid or closed
        502: Gateway unavailable or not configured
    """
    try:
        data = request.get_json(silent=True) or {}
        order_id = data.get("order_id", data.get("orderId"))
        if order_id is None:
            return jsonify({"success": False, "error": "order_id required"}), 400

        gateway_order = payment_service.create_gateway_order(g.current_user, order_id)
        return jsonify({"success": True, **gateway_order}), 200

    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to create gateway order")
        return internal_error_response(e)


@payments_bp.post("/verify")
@require_auth
def verify_payment_route():
    """
    Verify the gateway's payment callback.

    Request body:
    {
        "razorpay_order_id": "order_...",
        "razorpay_payment_id": "pay_...",
        "razorpay_signature": "<hex hmac>",
        "order_id": 123
    }

    Returns:
        200: Payment verified (also on replay of an already verified payment)
        400: Missing fields or signature mismatch
    """
    try:
        data = request.get_json(silent=True) or {}
        result = payment_service.verify_payment(
            g.current_user,
            data.get("razorpay_order_id"),
            data.get("razorpay_payment_id"),
            data.get("razorpay_signature"),
            data.get("order_id", data.get("orderId")),
        )
        return jsonify({
            "success": True,
            "message": "Payment verified successfully",
            "already_verified": result.replayed,
            "order": result.order.to_dict(),
            "payment": result.payment.to_dict(),
        }), 200

    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to verify payment")
        return internal_error_response(e)


@payments_bp.post("/<int:order_id>/refund")
@require_auth
@require_admin
def refund_order_route(order_id: int):
    """Full refund of a paid processing/delivered order: {"reason": "..."} (optional)."""
    try:
        data = request.get_json(silent=True) or {}
        order = payment_service.refund_order(g.current_user, order_id, data.get("reason"))
        return jsonify({
            "success": True,
            "message": "Refund processed",
            "order": order.to_dict(),
        }), 200

    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to refund order")
        return internal_error_response(e)


@payments_bp.get("/<int:order_id>")
@require_auth
def get_payment_status_route(order_id: int):
    try:
        status = payment_service.get_payment_status(g.current_user, order_id)
        return jsonify({"success": True, **status}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to get payment status")
        return internal_error_response(e)
