# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/storefront/routes/products.py
"""
Product catalog routes.

Reads are public; a bearer token is optional and only selects the pricing
policy shown in each item's "pricing" block (resellers see wholesale).
Writes require the admin role.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..services import catalog_service
from ..services.pricing_service import pricing_policy_for_user
from ..models import Product
from ..errors import StoreError, error_response, internal_error_response
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
)
from ..decorators import optional_auth, require_auth, require_admin

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields=catalog_service.PRODUCT_MUTABLE_FIELDS | {"variants"},
    required_on_create={"name", "category", "price_cents"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _caller_policy():
    return pricing_policy_for_user(g.current_user)


@products_bp.get("")
@optional_auth
def list_products():
    """
    List products.

    Query params:
    - category, search
    - min_price_cents, max_price_cents: int
    - in_stock: "true" to hide sold-out products
    - featured: "true"/"false"
    - sort: price-asc, price-desc, newest (default), name
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    - include_inactive: admins only
    """
    args = request.args
    featured = args.get("featured")
    user = g.current_user

    try:
        result = catalog_service.list_products(
            category=args.get("category"),
            search=args.get("search"),
            min_price_cents=args.get("min_price_cents", type=int),
            max_price_cents=args.get("max_price_cents", type=int),
            in_stock=args.get("in_stock") == "true",
            featured=None if featured is None else featured == "true",
            include_inactive=bool(user and user.is_admin and args.get("include_inactive") == "true"),
            sort=args.get("sort"),
            page=args.get("page", type=int),
            per_page=args.get("per_page", type=int),
            policy=_caller_policy(),
        )
        return jsonify({"success": True, **result}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to list products")
        return internal_error_response(e)


@products_bp.get("/<int:product_id>")
@optional_auth
def get_product_route(product_id: int):
    user = g.current_user
    try:
        product = catalog_service.get_product(
            product_id, include_inactive=bool(user and user.is_admin)
        )
        return jsonify({
            "success": True,
            "product": catalog_service.product_view(product, _caller_policy()),
        }), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to get product")
        return internal_error_response(e)


@products_bp.post("")
@require_auth
@require_admin
def create_product_route():
    """Create a new product (admin)."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        created = catalog_service.create_product(patch=patch)
        current_app.logger.info("Product %s created by admin %s", created.id, g.current_user.id)
        return jsonify({"success": True, "product": created.to_dict()}), 201
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to create product")
        return internal_error_response(e)


@products_bp.patch("/<int:product_id>")
@require_auth
@require_admin
def update_product_route(product_id: int):
    """Partial update (admin). A "variants" list replaces all variants."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
        updated = catalog_service.update_product(product_id, patch=patch)
        return jsonify({"success": True, "product": updated.to_dict()}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to update product")
        return internal_error_response(e)


@products_bp.delete("/<int:product_id>")
@require_auth
@require_admin
def delete_product_route(product_id: int):
    """
    Delete a product (admin).

    Existing orders keep their line snapshots; cart lines pointing at the
    product are dropped on the owner's next cart read.
    """
    try:
        catalog_service.delete_product(product_id)
        current_app.logger.info("Product %s deleted by admin %s", product_id, g.current_user.id)
        return jsonify({"success": True, "message": "Product deleted"}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to delete product")
        return internal_error_response(e)
