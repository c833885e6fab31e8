# Overview: Coupon validation, discount computation, usage accounting and admin CRUD.

"""
Coupon Evaluator

WHY: Coupons are consulted twice, once for the cart preview and once at
order commit. Both paths call the same validate_coupon/compute_discount
pair so the previewed discount is exactly the committed one.

BASE: The discount applies to the merchandise subtotal (shipping excluded).
SPECIFIC-scope coupons apply only to the eligible lines' subtotal, and an
empty eligible subtotal is an error, never a zero discount.

ROUNDING: PERCENTAGE discounts round half-up to the cent; the result is
capped by max_discount_cents and never exceeds the base.

USAGE LIMIT: Enforced. validate_coupon rejects exhausted coupons and
consume_coupon performs an atomic conditional increment so concurrent
checkouts cannot overrun usage_limit.

RESELLERS: Never eligible; callers skip (order commit) or reject
(preview) before evaluating.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import or_, update

from ..extensions import db
from ..errors import ConflictError, CouponError, NotFoundError, ValidationError
from ..models import Coupon, Product
from ..models.coupons import DISCOUNT_PERCENTAGE, SCOPE_ALL, SCOPE_SPECIFIC
from storefront.time_utils import utcnow, to_naive_utc
from .pricing_service import percent_of


COUPON_MUTABLE_FIELDS = {
    "code",
    "discount_type",
    "discount_value",
    "max_discount_cents",
    "scope",
    "min_order_cents",
    "start_date",
    "expiration_date",
    "is_active",
    "usage_limit",
}


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def validate_coupon(code: str, cart_total_cents: int, now: datetime | None = None) -> Coupon:
    """
    Look up a coupon and check it is usable for an order of cart_total_cents.

    Raises CouponError if the code is unknown, inactive, outside its
    validity window, exhausted, or the total is below the minimum.
    """
    code = normalize_code(code)
    if not code:
        raise CouponError("Coupon code is required")

    now = to_naive_utc(now) if now is not None else utcnow()
    coupon = db.session.query(Coupon).filter_by(code=code).first()

    if coupon is None or not coupon.is_active:
        raise CouponError("Invalid or expired coupon")

    start = to_naive_utc(coupon.start_date)
    if start is not None and now < start:
        raise CouponError("Invalid or expired coupon")
    if now >= to_naive_utc(coupon.expiration_date):
        raise CouponError("Invalid or expired coupon")

    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        raise CouponError("Coupon usage limit reached")

    if cart_total_cents < (coupon.min_order_cents or 0):
        raise CouponError(
            "Minimum order value not met",
            details={"min_order_cents": coupon.min_order_cents},
        )

    return coupon


def compute_discount(coupon: Coupon, cart_total_cents: int, lines) -> int:
    """
    Discount in cents for the given total and lines.

    lines: iterable of objects with product_id, unit_price_cents and quantity.
    """
    if coupon.scope == SCOPE_SPECIFIC:
        eligible_ids = coupon.applicable_product_ids
        base = sum(
            line.unit_price_cents * line.quantity
            for line in lines
            if line.product_id in eligible_ids
        )
        if base <= 0:
            raise CouponError("Coupon not applicable to items in cart")
    else:
        base = cart_total_cents

    if coupon.discount_type == DISCOUNT_PERCENTAGE:
        discount = percent_of(base, coupon.discount_value)
    else:
        discount = coupon.discount_value

    if coupon.max_discount_cents:
        discount = min(discount, coupon.max_discount_cents)

    return max(0, min(discount, base))


def consume_coupon(coupon: Coupon) -> None:
    """
    Count one use of the coupon. Does not commit.

    Raises CouponError if a concurrent checkout exhausted it first.
    """
    stmt = update(Coupon).where(Coupon.id == coupon.id)
    if coupon.usage_limit is not None:
        stmt = stmt.where(or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit))
    result = db.session.execute(
        stmt.values(used_count=Coupon.used_count + 1).execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        raise CouponError("Coupon usage limit reached")


def preview_coupon(user, code: str, policy) -> dict:
    """
    Validate a coupon against the caller's server-side cart.

    The cart is re-priced first, so the preview uses the same numbers the
    order commit will.
    """
    if user.is_reseller:
        raise CouponError("Coupons are not available for reseller accounts")

    from .cart_service import get_cart

    cart = get_cart(user, policy)
    if not cart.items:
        raise CouponError("Cart is empty")

    coupon = validate_coupon(code, cart.subtotal_cents)
    discount = compute_discount(coupon, cart.subtotal_cents, cart.items)

    return {
        "coupon_code": coupon.code,
        "coupon_id": coupon.id,
        "discount_cents": discount,
        "subtotal_cents": cart.subtotal_cents,
        "total_after_discount_cents": cart.total_amount_cents - discount,
    }


# =============================================================================
# ADMIN CRUD
# =============================================================================

def _load_products(product_ids) -> list[Product]:
    if product_ids is None:
        return []
    if not isinstance(product_ids, list):
        raise ValidationError("applicable_product_ids must be a list")
    try:
        ids = {int(pid) for pid in product_ids}
    except (TypeError, ValueError):
        raise ValidationError("applicable_product_ids must contain product ids")
    products = db.session.query(Product).filter(Product.id.in_(ids)).all() if ids else []
    missing = ids - {p.id for p in products}
    if missing:
        raise ValidationError(f"Unknown products: {', '.join(str(i) for i in sorted(missing))}")
    return products


def create_coupon(*, patch: dict) -> Coupon:
    """
    Create a coupon from a validated patch.

    Raises ConflictError on a duplicate code, ValidationError when a
    SPECIFIC coupon names no products.
    """
    patch = dict(patch)
    product_ids = patch.pop("applicable_product_ids", None)
    patch["code"] = normalize_code(patch.get("code"))
    if not patch["code"]:
        raise ValidationError("code cannot be blank")

    if db.session.query(Coupon).filter_by(code=patch["code"]).first():
        raise ConflictError("Coupon code already exists")

    scope = patch.get("scope") or SCOPE_ALL
    products = _load_products(product_ids) if scope == SCOPE_SPECIFIC else []
    if scope == SCOPE_SPECIFIC and not products:
        raise ValidationError("SPECIFIC coupons need at least one applicable product")

    coupon = Coupon()
    for k, v in patch.items():
        if k in COUPON_MUTABLE_FIELDS:
            setattr(coupon, k, v)
    coupon.scope = scope
    coupon.applicable_products = products

    db.session.add(coupon)
    db.session.commit()
    return coupon


def list_coupons(*, active_only: bool = False) -> list[Coupon]:
    query = db.session.query(Coupon)
    if active_only:
        query = query.filter(Coupon.is_active.is_(True))
    return query.order_by(Coupon.created_at.desc(), Coupon.id.desc()).all()


def get_coupon(coupon_id: int) -> Coupon:
    coupon = db.session.get(Coupon, coupon_id)
    if coupon is None:
        raise NotFoundError("Coupon not found")
    return coupon


def deactivate_coupon(coupon_id: int) -> Coupon:
    coupon = get_coupon(coupon_id)
    coupon.is_active = False
    db.session.commit()
    return coupon


def delete_coupon(coupon_id: int) -> None:
    coupon = get_coupon(coupon_id)
    db.session.delete(coupon)
    db.session.commit()
