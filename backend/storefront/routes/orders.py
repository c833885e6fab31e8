# Overview: Flask API routes for orders operations; parses input and returns JSON responses.

# backend/storefront/routes/orders.py
"""
Order API Routes

DESIGN:
- Checkout (from explicit items or from the caller's cart)
- Owner/admin reads, tracking
- Owner cancellation of unshipped orders
- Admin status transitions, notes and email resends

SECURITY:
- All routes require authentication
- Reads are limited to the owner or an admin (service enforced)
- Status, note and resend routes require the admin role
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import order_service
from ..services.pricing_service import pricing_policy_for_user
from ..errors import StoreError, error_response, internal_error_response
from ..decorators import require_auth, require_admin


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


# =============================================================================
# CHECKOUT
# =============================================================================

@orders_bp.post("/create")
@require_auth
def create_order_route():
    """
    Create an order.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2, "selected_size": "M", "selected_color": "Red"}],
                                   (optional; omitted = check out the cart)
        "shipping_address": {"name", "phone", "address", "city", "state", "pincode"},
        "payment_method": "razorpay",
        "coupon_code": "SAVE10"    (optional, ignored for resellers)
    }

    Returns:
        201: Order created (status pending, payment pending)
        400: Invalid input, coupon rejected, cash on delivery
        404: Product not found
        409: Insufficient stock
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.create_order(
            g.current_user,
            data.get("items"),
            data.get("shipping_address"),
            data.get("payment_method"),
            pricing_policy_for_user(g.current_user),
            coupon_code=data.get("coupon_code"),
        )
        return jsonify({
            "success": True,
            "message": "Order created successfully",
            "order": order.to_dict(),
        }), 201

    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to create order")
        return internal_error_response(e)


# =============================================================================
# QUERIES
# =============================================================================

@orders_bp.get("")
@require_auth
def list_orders_route():
    """
    List the caller's orders, newest first.

    Query params: page, limit (max 100), status, all ("true", admins only)
    """
    try:
        result = order_service.list_user_orders(
            g.current_user,
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", 10, type=int),
            status=request.args.get("status"),
            all_users=request.args.get("all") == "true",
        )
        return jsonify({"success": True, **result}), 200

    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to list orders")
        return internal_error_response(e)


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(g.current_user, order_id)
        return jsonify({"success": True, "order": order.to_dict()}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to get order")
        return internal_error_response(e)


@orders_bp.get("/<int:order_id>/track")
@require_auth
def track_order_route(order_id: int):
    try:
        tracking = order_service.track_order(g.current_user, order_id)
        return jsonify({"success": True, "tracking": tracking}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to track order")
        return internal_error_response(e)


# =============================================================================
# STATE TRANSITIONS
# =============================================================================

@orders_bp.post("/<int:order_id>/cancel")
@require_auth
def cancel_order_route(order_id: int):
    try:
        order = order_service.cancel_order(g.current_user, order_id)
        return jsonify({
            "success": True,
            "message": "Order cancelled successfully",
            "order": order.to_dict(),
        }), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to cancel order")
        return internal_error_response(e)


@orders_bp.put("/<int:order_id>/status")
@require_auth
@require_admin
def update_order_status_route(order_id: int):
    """
    Move an order along the fulfillment state machine (admin).

    Request body:
    {
        "status": "shipped",
        "note": "Packed and dispatched",  (optional)
        "courier_name": "BlueDart",       (optional, shipped only)
        "tracking_id": "BD123"            (optional, shipped only)
    }

    Returns:
        200: Updated order
        400: Unknown status
        409: Transition not allowed from the current status
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.update_order_status(
            g.current_user,
            order_id,
            data.get("status"),
            note=data.get("note"),
            courier_name=data.get("courier_name"),
            tracking_id=data.get("tracking_id"),
        )
        return jsonify({"success": True, "order": order.to_dict()}), 200

    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to update order status")
        return internal_error_response(e)


@orders_bp.post("/<int:order_id>/note")
@require_auth
@require_admin
def add_order_note_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.add_order_note(g.current_user, order_id, data.get("note"))
        return jsonify({"success": True, "order": order.to_dict()}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to add order note")
        return internal_error_response(e)


@orders_bp.post("/<int:order_id>/resend-email")
@require_auth
@require_admin
def resend_order_email_route(order_id: int):
    """Resend a customer email: {"email_type": "confirmation" | "shipped" | "delivered"}."""
    try:
        data = request.get_json(silent=True) or {}
        email_type = data.get("email_type")
        order = order_service.resend_order_email(g.current_user, order_id, email_type)
        return jsonify({
            "success": True,
            "message": f"{email_type} email sent",
            "order": order.to_dict(),
        }), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to resend order email")
        return internal_error_response(e)
