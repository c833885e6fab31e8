# Overview: Catalog lookup, product CRUD, and stock deduction/restoration helpers.

"""
Catalog Service

WHY: Products are the only hot shared mutable resource (stock). Every
stock movement goes through the two helpers at the bottom of this module
so that checkout, cancellation and refund move stock the same way.

STOCK RULES:
- deduct_stock is an atomic conditional UPDATE (stock >= qty). It never
  drives stock negative and raises InsufficientStockError when no row
  matches.
- Variant stock is a secondary pool matched by colour (same size
  preferred). It is floored at 0 rather than rejected, because the
  product-level stock is the authoritative sellable quantity.
- Neither helper commits; callers own the transaction.
"""

from __future__ import annotations

from sqlalchemy import or_, update

from ..extensions import db
from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..models import Product, ProductVariant
from .concurrency import lock_for_update, run_with_retry
from .pricing_service import PRODUCT_KINDS, KIND_GENERAL, resolve_price


PRODUCT_MUTABLE_FIELDS = {
    "name",
    "description",
    "category",
    "product_type",
    "attributes",
    "image_url",
    "price_cents",
    "stock",
    "wholesale_price_cents",
    "discount_percentage",
    "discount_start_date",
    "discount_end_date",
    "retail_shipping_cents",
    "retail_tax_bps",
    "wholesale_shipping_cents",
    "wholesale_tax_bps",
    "featured",
    "is_active",
}

SORT_OPTIONS = {
    "price-asc": (Product.price_cents.asc(), Product.id.asc()),
    "price-desc": (Product.price_cents.desc(), Product.id.asc()),
    "newest": (Product.created_at.desc(), Product.id.desc()),
    "name": (Product.name.asc(), Product.id.asc()),
}


# =============================================================================
# LOOKUP
# =============================================================================

def get_product(product_id: int, *, include_inactive: bool = False) -> Product:
    product = db.session.get(Product, product_id)
    if product is None or (not product.is_active and not include_inactive):
        raise NotFoundError("Product not found")
    return product


def product_view(product: Product, policy=None) -> dict:
    """Product dict plus the effective price for the caller's pricing policy."""
    data = product.to_dict()
    if policy is not None:
        quote = resolve_price(product, policy)
        data["pricing"] = {
            "policy": policy.name,
            "unit_price_cents": quote.unit_price_cents,
            "shipping_cost_cents": quote.shipping_cost_cents,
            "tax_bps": quote.tax_bps,
            "discount_active": quote.discount_active,
        }
    return data


def list_products(
    *,
    category: str | None = None,
    search: str | None = None,
    min_price_cents: int | None = None,
    max_price_cents: int | None = None,
    in_stock: bool = False,
    featured: bool | None = None,
    include_inactive: bool = False,
    sort: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
    policy=None,
) -> dict:
    """
    Filtered product listing with optional pagination.

    Returns dict with 'items', 'count', and pagination metadata if paginated.
    """
    query = db.session.query(Product)

    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    if category:
        query = query.filter(Product.category == category)
    if min_price_cents is not None:
        query = query.filter(Product.price_cents >= min_price_cents)
    if max_price_cents is not None:
        query = query.filter(Product.price_cents <= max_price_cents)
    if in_stock:
        query = query.filter(Product.stock > 0)
    if featured is not None:
        query = query.filter(Product.featured.is_(featured))
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))

    query = query.order_by(*SORT_OPTIONS.get(sort or "newest", SORT_OPTIONS["newest"]))

    if page is None:
        products = query.all()
        return {
            "items": [product_view(p, policy) for p in products],
            "count": len(products),
        }

    per_page = min(per_page or 20, 100)
    page = max(page, 1)

    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    products = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [product_view(p, policy) for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


# =============================================================================
# CRUD (admin)
# =============================================================================

def _validate_kind(product_type: str | None, attributes: dict | None) -> tuple[str, dict]:
    kind = (product_type or KIND_GENERAL).upper()
    allowed = PRODUCT_KINDS.get(kind)
    if allowed is None:
        raise ValidationError(f"product_type must be one of {', '.join(sorted(PRODUCT_KINDS))}")
    attributes = attributes or {}
    unknown = sorted(set(attributes) - allowed)
    if unknown:
        raise ValidationError(f"Attributes not allowed for {kind}: {', '.join(unknown)}")
    return kind, attributes


def _build_variants(raw_variants) -> list[ProductVariant]:
    if not isinstance(raw_variants, list):
        raise ValidationError("variants must be a list")
    variants = []
    for raw in raw_variants:
        if not isinstance(raw, dict):
            raise ValidationError("Each variant must be an object")
        stock = raw.get("stock", 0)
        if not isinstance(stock, int) or isinstance(stock, bool) or stock < 0:
            raise ValidationError("Variant stock must be a non-negative integer")
        variants.append(ProductVariant(
            color_name=(raw.get("color_name") or "").strip() or None,
            color_code=(raw.get("color_code") or "").strip() or None,
            size=(raw.get("size") or "").strip() or None,
            stock=stock,
        ))
    return variants


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def create_product(*, patch: dict) -> Product:
    """Create product from a validated patch dict (see validation.enforce_rules_product)."""
    patch = dict(patch)
    raw_variants = patch.pop("variants", None)
    patch["product_type"], patch["attributes"] = _validate_kind(
        patch.get("product_type"), patch.get("attributes")
    )

    product = Product()
    apply_product_patch(product, patch)
    if raw_variants is not None:
        product.variants = _build_variants(raw_variants)

    db.session.add(product)
    db.session.commit()
    return product


def update_product(product_id: int, *, patch: dict) -> Product:
    def _op():
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if product is None:
            raise NotFoundError("Product not found")

        data = dict(patch)
        raw_variants = data.pop("variants", None)
        if "product_type" in data or "attributes" in data:
            data["product_type"], data["attributes"] = _validate_kind(
                data.get("product_type", product.product_type),
                data.get("attributes", product.attributes),
            )

        apply_product_patch(product, data)
        if raw_variants is not None:
            product.variants = _build_variants(raw_variants)

        db.session.commit()
        return product

    return run_with_retry(_op)


def delete_product(product_id: int) -> None:
    """
    Hard-delete a product.

    Cart lines referencing it become dead and are dropped on the next
    recalculation; order lines keep their frozen snapshot.
    """
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    db.session.delete(product)
    db.session.commit()


# =============================================================================
# STOCK ADMINISTRATION
# =============================================================================

DEFAULT_LOW_STOCK_THRESHOLD = 10


def _parse_stock_updates(updates) -> list[tuple[int, int]]:
    if not isinstance(updates, list) or not updates:
        raise ValidationError("Stock updates are required")

    parsed: dict[int, int] = {}
    for entry in updates:
        if not isinstance(entry, dict):
            raise ValidationError("Each stock update must be an object")
        product_id = entry.get("product_id")
        stock = entry.get("stock")
        if isinstance(product_id, bool) or not isinstance(product_id, int):
            raise ValidationError("Product ID is required for each stock update")
        if isinstance(stock, bool) or not isinstance(stock, int) or stock < 0:
            raise ValidationError(
                "Stock must be a non-negative integer",
                details={"product_id": product_id},
            )
        # Last entry wins for a repeated product
        parsed[product_id] = stock
    return sorted(parsed.items())


def bulk_update_stock(updates) -> list[Product]:
    """
    Set absolute stock levels for several products in one transaction.

    updates: [{"product_id": 1, "stock": 25}, ...]

    Raises:
        ValidationError: empty list, missing id, negative or non-integer stock
        NotFoundError: any product id is unknown (nothing is written)
    """
    parsed = _parse_stock_updates(updates)
    product_ids = [product_id for product_id, _ in parsed]

    def _op():
        rows = lock_for_update(
            db.session.query(Product).filter(Product.id.in_(product_ids))
        ).all()
        by_id = {p.id: p for p in rows}
        missing = [product_id for product_id in product_ids if product_id not in by_id]
        if missing:
            raise NotFoundError("Product not found", details={"product_ids": missing})

        for product_id, stock in parsed:
            by_id[product_id].stock = stock
        db.session.commit()
        return [by_id[product_id] for product_id in product_ids]

    return run_with_retry(_op)


def parse_threshold(raw) -> int:
    if raw in (None, ""):
        return DEFAULT_LOW_STOCK_THRESHOLD
    try:
        threshold = int(raw)
    except (TypeError, ValueError):
        raise ValidationError("threshold must be a non-negative integer")
    if threshold < 0:
        raise ValidationError("threshold must be a non-negative integer")
    return threshold


def list_low_stock(threshold: int = DEFAULT_LOW_STOCK_THRESHOLD) -> list[Product]:
    """Products (active or not) with stock below threshold, emptiest first."""
    return (
        db.session.query(Product)
        .filter(Product.stock < threshold)
        .order_by(Product.stock.asc(), Product.id.asc())
        .all()
    )


# =============================================================================
# STOCK MOVEMENTS (no commit; caller owns the transaction)
# =============================================================================

def deduct_stock(product_id: int, quantity: int) -> None:
    """Atomically decrement product stock by quantity only if enough remains."""
    result = db.session.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity, version_id=Product.version_id + 1)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        raise InsufficientStockError(
            "Insufficient stock",
            details={"product_id": product_id, "requested": quantity},
        )


def restore_stock(product_id: int | None, quantity: int) -> bool:
    """Add quantity back to product stock. Returns False if the product is gone."""
    if product_id is None:
        return False
    result = db.session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(stock=Product.stock + quantity, version_id=Product.version_id + 1)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount > 0


def find_variant(product_id: int, color: str | None, size: str | None = None) -> ProductVariant | None:
    """Locked variant matching colour, preferring the same size."""
    if not color:
        return None
    variants = lock_for_update(
        db.session.query(ProductVariant)
        .filter_by(product_id=product_id, color_name=color)
        .order_by(ProductVariant.id.asc())
    ).all()
    if not variants:
        return None
    for variant in variants:
        if variant.size == size:
            return variant
    return variants[0]


def deduct_variant_stock(product_id: int, color: str | None, size: str | None, quantity: int) -> int | None:
    """Decrement the matching variant's stock floored at 0. Returns the variant id, if any."""
    variant = find_variant(product_id, color, size)
    if variant is None:
        return None
    variant.stock = max(0, variant.stock - quantity)
    return variant.id


def restore_variant_stock(variant_id: int | None, quantity: int) -> None:
    if variant_id is None:
        return
    variant = lock_for_update(db.session.query(ProductVariant).filter_by(id=variant_id)).first()
    if variant is not None:
        variant.stock += quantity
