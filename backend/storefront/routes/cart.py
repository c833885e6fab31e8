# Overview: Flask API routes for cart operations; parses input and returns JSON responses.

# backend/storefront/routes/cart.py
"""
Shopping cart routes.

Every response carries the cart re-priced for the caller's role, so the
client never computes totals itself.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import cart_service, coupon_service
from ..services.pricing_service import pricing_policy_for_user
from ..errors import StoreError, error_response, internal_error_response
from ..decorators import require_auth


cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


def _policy():
    return pricing_policy_for_user(g.current_user)


def _cart_response(cart, message: str | None = None, status: int = 200):
    body = {"success": True, "cart": cart.to_dict()}
    if message:
        body["message"] = message
    return jsonify(body), status


@cart_bp.get("")
@require_auth
def get_cart_route():
    try:
        return _cart_response(cart_service.get_cart(g.current_user, _policy()))
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to load cart")
        return internal_error_response(e)


@cart_bp.post("")
@cart_bp.post("/add")
@require_auth
def add_to_cart_route():
    """
    Add a product to the cart.

    Request body:
    {
        "product_id": 12,
        "quantity": 2,
        "selected_size": "M",      (optional, default "Free Size")
        "selected_color": "Red"    (optional, default "Standard")
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        cart = cart_service.add_item(
            g.current_user,
            data.get("product_id", data.get("productId")),
            data.get("quantity", 1),
            _policy(),
            size=data.get("selected_size"),
            color=data.get("selected_color"),
        )
        return _cart_response(cart, "Item added to cart")
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to add item to cart")
        return internal_error_response(e)


@cart_bp.post("/merge")
@require_auth
def merge_cart_route():
    """Fold a guest cart ({"items": [...]}) into the caller's cart."""
    try:
        data = request.get_json(silent=True) or {}
        cart = cart_service.merge_cart(g.current_user, data.get("items"), _policy())
        return _cart_response(cart, "Cart merged")
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to merge cart")
        return internal_error_response(e)


@cart_bp.put("/<item_id>")
@require_auth
def update_cart_item_route(item_id: str):
    """Set a line's quantity. item_id may be the line id or the product id."""
    try:
        data = request.get_json(silent=True) or {}
        cart = cart_service.update_item(g.current_user, item_id, data.get("quantity"), _policy())
        return _cart_response(cart, "Cart updated")
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to update cart item")
        return internal_error_response(e)


@cart_bp.delete("/<item_id>")
@require_auth
def remove_cart_item_route(item_id: str):
    try:
        cart = cart_service.remove_item(g.current_user, item_id, _policy())
        return _cart_response(cart, "Item removed from cart")
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to remove cart item")
        return internal_error_response(e)


@cart_bp.delete("")
@require_auth
def clear_cart_route():
    try:
        cart = cart_service.clear_cart(g.current_user, _policy())
        return _cart_response(cart, "Cart cleared")
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to clear cart")
        return internal_error_response(e)


@cart_bp.post("/validate-coupon")
@require_auth
def validate_coupon_route():
    """Preview a coupon against the server-side cart: {"code": "SAVE10"}."""
    try:
        data = request.get_json(silent=True) or {}
        preview = coupon_service.preview_coupon(g.current_user, data.get("code"), _policy())
        return jsonify({"success": True, **preview}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to validate coupon")
        return internal_error_response(e)
