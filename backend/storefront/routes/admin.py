# Overview: Flask API routes for admin operations; parses input and returns JSON responses.

# backend/storefront/routes/admin.py
"""
Admin routes: coupons, reseller approval and stock levels.

SECURITY: Every route requires the admin role.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import auth_service, catalog_service, coupon_service
from ..models import Coupon
from ..errors import StoreError, error_response, internal_error_response
from ..validation import ModelValidationPolicy, validate_payload, enforce_rules_coupon
from ..decorators import require_auth, require_admin


COUPON_POLICY = ModelValidationPolicy(
    writable_fields=coupon_service.COUPON_MUTABLE_FIELDS | {"applicable_product_ids"},
    required_on_create={"code", "discount_type", "discount_value", "expiration_date"},
)

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.get("/coupons")
@require_auth
@require_admin
def list_coupons_route():
    """Query params: active_only ("true")"""
    try:
        coupons = coupon_service.list_coupons(active_only=request.args.get("active_only") == "true")
        return jsonify({
            "success": True,
            "items": [c.to_dict() for c in coupons],
            "count": len(coupons),
        }), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to list coupons")
        return internal_error_response(e)


@admin_bp.post("/coupons")
@require_auth
@require_admin
def create_coupon_route():
    """
    Create a coupon.

    Request body:
    {
        "code": "SAVE10",
        "discount_type": "PERCENTAGE" | "FIXED_AMOUNT",
        "discount_value": 10,                 (percent, or cents for FIXED_AMOUNT)
        "expiration_date": "2030-01-01T00:00:00Z",
        "max_discount_cents": 50000,          (optional)
        "min_order_cents": 100000,            (optional)
        "scope": "ALL" | "SPECIFIC",          (optional, default ALL)
        "applicable_product_ids": [1, 2],     (SPECIFIC only)
        "start_date": "...",                  (optional)
        "usage_limit": 100                    (optional)
    }
    """
    payload = request.get_json(silent=True) or {}
    if isinstance(payload.get("code"), str):
        payload["code"] = payload["code"].strip().upper()

    try:
        patch = validate_payload(model=Coupon, payload=payload, policy=COUPON_POLICY, partial=False)
        enforce_rules_coupon(patch)
        coupon = coupon_service.create_coupon(patch=patch)
        current_app.logger.info("Coupon %s created by admin %s", coupon.code, g.current_user.id)
        return jsonify({"success": True, "coupon": coupon.to_dict()}), 201
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to create coupon")
        return internal_error_response(e)


@admin_bp.post("/coupons/<int:coupon_id>/deactivate")
@require_auth
@require_admin
def deactivate_coupon_route(coupon_id: int):
    try:
        coupon = coupon_service.deactivate_coupon(coupon_id)
        return jsonify({"success": True, "coupon": coupon.to_dict()}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to deactivate coupon")
        return internal_error_response(e)


@admin_bp.delete("/coupons/<int:coupon_id>")
@require_auth
@require_admin
def delete_coupon_route(coupon_id: int):
    try:
        coupon_service.delete_coupon(coupon_id)
        return jsonify({"success": True, "message": "Coupon deleted"}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to delete coupon")
        return internal_error_response(e)


# =============================================================================
# RESELLERS
# =============================================================================


@admin_bp.get("/resellers/pending")
@require_auth
@require_admin
def list_pending_resellers_route():
    try:
        resellers = auth_service.list_pending_resellers()
        return jsonify({
            "success": True,
            "resellers": [u.to_dict() for u in resellers],
            "count": len(resellers),
        }), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to list pending resellers")
        return internal_error_response(e)


@admin_bp.put("/resellers/<int:user_id>/status")
@require_auth
@require_admin
def update_reseller_status_route(user_id: int):
    """Request body: {"status": "approved" | "rejected" | "suspended"}"""
    try:
        data = request.get_json(silent=True) or {}
        user = auth_service.set_reseller_status(g.current_user, user_id, data.get("status"))
        return jsonify({
            "success": True,
            "user": user.to_dict(),
            "message": f"Reseller {user.reseller_status}",
        }), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to update reseller status")
        return internal_error_response(e)


# =============================================================================
# STOCK
# =============================================================================


def _stock_row(product) -> dict:
    return {
        "id": product.id,
        "name": product.name,
        "category": product.category,
        "stock": product.stock,
        "price_cents": product.price_cents,
        "is_active": product.is_active,
    }


@admin_bp.put("/products/stock")
@require_auth
@require_admin
def bulk_update_stock_route():
    """
    Set stock levels in bulk.

    Request body: [{"product_id": 1, "stock": 25}, ...] or {"updates": [...]}
    """
    try:
        data = request.get_json(silent=True)
        updates = data.get("updates") if isinstance(data, dict) else data
        products = catalog_service.bulk_update_stock(updates)
        current_app.logger.info(
            "Stock updated for %d products by admin %s", len(products), g.current_user.id
        )
        return jsonify({
            "success": True,
            "items": [_stock_row(p) for p in products],
            "count": len(products),
        }), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to update stock")
        return internal_error_response(e)


@admin_bp.get("/products/stock")
@admin_bp.get("/products/low-stock")
@require_auth
@require_admin
def low_stock_route():
    """Query params: threshold (default 10); lists products with stock below it."""
    try:
        threshold = catalog_service.parse_threshold(request.args.get("threshold"))
        products = catalog_service.list_low_stock(threshold)
        return jsonify({
            "success": True,
            "threshold": threshold,
            "items": [_stock_row(p) for p in products],
            "count": len(products),
        }), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to list low stock products")
        return internal_error_response(e)
