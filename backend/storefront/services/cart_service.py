# Overview: Service-layer operations for cart; encapsulates business logic and database work.

"""
Cart Aggregator

WHY: The cart is the interactive pre-checkout workspace. Its aggregate
columns are a cache: every mutation (and every read) re-resolves each
line's price through the caller's PricingPolicy and rebuilds the totals
with compute_totals(), never patching them incrementally.

CONCURRENCY: Same-owner mutations are serialized. Each operation runs in
run_with_retry, locks the cart row (SELECT ... FOR UPDATE where the
database supports it) and bumps the cart's version_id; a concurrent
writer holding a stale version gets StaleDataError and is retried
against fresh state.

LINE IDENTITY: A line is (product, size, colour). Missing size/colour
default to "Free Size"/"Standard". update_item accepts either the line id
or the product id; remove_item accepts only the line id.

DEAD LINES: Lines whose product was deleted or deactivated are dropped
silently during recalculation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from ..extensions import db
from ..errors import (
    InsufficientStockError,
    ItemNotFoundError,
    NotFoundError,
    ProductGoneError,
    ValidationError,
)
from ..models import Cart, CartItem, Product
from ..models.cart import DEFAULT_COLOR, DEFAULT_SIZE
from storefront.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .pricing_service import resolve_price


@dataclass(frozen=True)
class CartTotals:
    subtotal_cents: int = 0
    total_shipping_cents: int = 0
    total_tax_cents: int = 0
    total_amount_cents: int = 0
    total_items: int = 0


def compute_totals(lines: Iterable) -> CartTotals:
    """
    Derive cart aggregates from line items.

    Each line needs unit_price_cents, quantity and shipping_amount_cents.
    Tax is always 0 under the current tax policy.
    """
    subtotal = 0
    shipping = 0
    items = 0
    for line in lines:
        subtotal += line.unit_price_cents * line.quantity
        shipping += line.shipping_amount_cents
        items += line.quantity
    return CartTotals(
        subtotal_cents=subtotal,
        total_shipping_cents=shipping,
        total_tax_cents=0,
        total_amount_cents=subtotal + shipping,
        total_items=items,
    )


def parse_quantity(value) -> int:
    """Quantities must be whole numbers >= 1."""
    if isinstance(value, bool):
        raise ValidationError("Quantity must be at least 1")
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int) or value < 1:
        raise ValidationError("Quantity must be at least 1")
    return value


def _normalize_variant(size: str | None, color: str | None) -> tuple[str, str]:
    return (size or "").strip() or DEFAULT_SIZE, (color or "").strip() or DEFAULT_COLOR


def _parse_id(value) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _is_live(product: Product | None) -> bool:
    return product is not None and product.is_active


def _find_line(cart: Cart, product_id: int, size: str, color: str) -> CartItem | None:
    for line in cart.items:
        if line.product_id == product_id and line.selected_size == size and line.selected_color == color:
            return line
    return None


def recalculate(cart: Cart, policy, now: datetime | None = None) -> Cart:
    """
    Re-price every line for the given policy and rebuild the aggregates.

    Drops dead lines. Does not commit; callers persist.
    """
    for line in list(cart.items):
        product = line.product
        if not _is_live(product):
            cart.items.remove(line)
            continue
        quote = resolve_price(product, policy, now)
        line.unit_price_cents = quote.unit_price_cents
        line.shipping_amount_cents = quote.shipping_cost_cents * line.quantity
        line.tax_amount_cents = 0

    totals = compute_totals(cart.items)
    cart.subtotal_cents = totals.subtotal_cents
    cart.total_shipping_cents = totals.total_shipping_cents
    cart.total_tax_cents = totals.total_tax_cents
    cart.total_amount_cents = totals.total_amount_cents
    cart.total_items = totals.total_items
    cart.updated_at = utcnow()
    return cart


# =============================================================================
# OPERATIONS
# =============================================================================

def get_or_create_cart(user) -> Cart:
    """
    Fetch the caller's cart row-locked, adding an empty one on first access.

    Idempotent (one cart per user). Does not commit; every mutation below
    calls it inside its own unit of work.
    """
    cart = lock_for_update(db.session.query(Cart).filter_by(user_id=user.id)).first()
    if cart is None:
        cart = Cart(user_id=user.id)
        db.session.add(cart)
        db.session.flush()
    return cart


def get_cart(user, policy) -> Cart:
    """Read the cart with prices refreshed against the live catalog."""
    def _op():
        cart = get_or_create_cart(user)
        recalculate(cart, policy)
        db.session.commit()
        return cart

    return run_with_retry(_op)


def add_item(user, product_id, quantity, policy, size: str | None = None, color: str | None = None) -> Cart:
    """
    Add quantity of a product variant to the cart.

    Raises:
        ValidationError: quantity < 1 or product id missing
        NotFoundError: product does not exist (or is inactive)
        InsufficientStockError: existing + requested quantity exceeds stock
    """
    quantity = parse_quantity(quantity)
    if product_id in (None, ""):
        raise ValidationError("Product ID is required")
    product_id = _parse_id(product_id)
    if product_id is None:
        raise NotFoundError("Product not found")
    size, color = _normalize_variant(size, color)

    def _op():
        cart = get_or_create_cart(user)

        product = db.session.get(Product, product_id)
        if not _is_live(product):
            raise NotFoundError("Product not found")

        line = _find_line(cart, product.id, size, color)
        existing_qty = line.quantity if line is not None else 0
        if product.stock < existing_qty + quantity:
            raise InsufficientStockError(
                "Insufficient stock",
                details={"available": product.stock, "in_cart": existing_qty},
            )

        if line is not None:
            line.quantity += quantity
        else:
            cart.items.append(CartItem(
                product_id=product.id,
                product=product,
                quantity=quantity,
                selected_size=size,
                selected_color=color,
            ))

        recalculate(cart, policy)
        db.session.commit()
        return cart

    return run_with_retry(_op)


def update_item(user, identifier, quantity, policy) -> Cart:
    """
    Set a line's absolute quantity.

    identifier matches the line id first, then the product id.

    Raises:
        ItemNotFoundError: no line matches identifier
        ProductGoneError: the line's product was deleted (line is removed)
        InsufficientStockError: new quantity exceeds stock
    """
    quantity = parse_quantity(quantity)
    try:
        identifier = int(identifier)
    except (TypeError, ValueError):
        raise ItemNotFoundError("Item not found in cart")

    def _op():
        cart = get_or_create_cart(user)

        line = next((i for i in cart.items if i.id == identifier), None)
        if line is None:
            line = next((i for i in cart.items if i.product_id == identifier), None)
        if line is None:
            raise ItemNotFoundError("Item not found in cart")

        product = line.product
        if not _is_live(product):
            cart.items.remove(line)
            recalculate(cart, policy)
            db.session.commit()
            raise ProductGoneError("Product no longer exists")

        if product.stock < quantity:
            raise InsufficientStockError(
                f"Only {product.stock} items available",
                details={"available": product.stock},
            )

        line.quantity = quantity
        recalculate(cart, policy)
        db.session.commit()
        return cart

    return run_with_retry(_op)


def remove_item(user, line_id, policy) -> Cart:
    """Remove a line by its own id (never by product id)."""
    try:
        line_id = int(line_id)
    except (TypeError, ValueError):
        raise ItemNotFoundError("Item not found")

    def _op():
        cart = get_or_create_cart(user)
        line = next((i for i in cart.items if i.id == line_id), None)
        if line is None:
            raise ItemNotFoundError("Item not found")
        cart.items.remove(line)
        recalculate(cart, policy)
        db.session.commit()
        return cart

    return run_with_retry(_op)


def clear_cart(user, policy) -> Cart:
    def _op():
        cart = get_or_create_cart(user)
        cart.items = []
        recalculate(cart, policy)
        db.session.commit()
        return cart

    return run_with_retry(_op)


def merge_cart(user, incoming_lines, policy) -> Cart:
    """
    Fold a pre-login (guest) cart into the authenticated cart.

    Lines whose product no longer exists are skipped. Stock is not checked
    here; it is enforced at checkout.
    """
    if not isinstance(incoming_lines, list):
        raise ValidationError("Invalid items")

    parsed = []
    for raw in incoming_lines:
        if not isinstance(raw, dict):
            raise ValidationError("Invalid items")
        product_id = _parse_id(raw.get("product_id", raw.get("product")))
        size, color = _normalize_variant(raw.get("selected_size"), raw.get("selected_color"))
        parsed.append((product_id, parse_quantity(raw.get("quantity", 1)), size, color))

    def _op():
        cart = get_or_create_cart(user)
        for product_id, quantity, size, color in parsed:
            product = db.session.get(Product, product_id) if product_id is not None else None
            if not _is_live(product):
                continue
            line = _find_line(cart, product.id, size, color)
            if line is not None:
                line.quantity += quantity
            else:
                cart.items.append(CartItem(
                    product_id=product.id,
                    product=product,
                    quantity=quantity,
                    selected_size=size,
                    selected_color=color,
                ))
        recalculate(cart, policy)
        db.session.commit()
        return cart

    return run_with_retry(_op)


def delete_cart(user_id: int) -> None:
    """Drop the user's cart (checkout consumes it). Does not commit."""
    cart = db.session.query(Cart).filter_by(user_id=user_id).first()
    if cart is not None:
        db.session.delete(cart)
