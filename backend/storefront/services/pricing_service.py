# Overview: Role-based price resolution; pure functions over product rows.

"""
Price Resolver

WHY: Retail customers and resellers see different prices, shipping and tax
for the same product. The caller's role selects a PricingPolicy once per
request and that policy is passed explicitly to the cart and order
services; nothing downstream re-derives pricing from the role string.

MONEY: All amounts are integer cents. Percentage math rounds half-up to
the cent, e.g. 10000 at 20% off -> 8000, 999 at 15% off -> 849.

DISCOUNT WINDOW: A discount is active iff discount_percentage > 0 and
start <= now <= end, with a missing bound treated as unconstrained.
Resellers never receive the retail discount.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..models.auth import ROLE_RESELLER
from storefront.time_utils import utcnow, to_naive_utc


# =============================================================================
# PRODUCT KINDS
# =============================================================================

KIND_BOOK = "BOOK"
KIND_SAREE = "SAREE"
KIND_GENERAL = "GENERAL"

# Allowed attribute keys per product_type. Pricing is identical across kinds.
PRODUCT_KINDS: dict[str, frozenset[str]] = {
    KIND_BOOK: frozenset({"author", "isbn", "publisher", "language", "pages", "formats"}),
    KIND_SAREE: frozenset({"fabric", "pattern", "occasion"}),
    KIND_GENERAL: frozenset(),
}


@dataclass(frozen=True)
class PriceQuote:
    """Effective per-unit pricing for one product under one policy."""
    unit_price_cents: int
    shipping_cost_cents: int
    tax_bps: int
    discount_active: bool = False


def percent_of(amount_cents: int, percent: int) -> int:
    """amount * percent / 100, rounded half-up to the cent."""
    return (amount_cents * percent + 50) // 100


def discounted_price_cents(price_cents: int, discount_percentage: int) -> int:
    """price * (1 - pct/100), rounded half-up to the cent."""
    return percent_of(price_cents, 100 - discount_percentage)


def is_discount_active(product, now: datetime | None = None) -> bool:
    if not product.discount_percentage or product.discount_percentage <= 0:
        return False
    now = to_naive_utc(now) if now is not None else utcnow()
    start = to_naive_utc(product.discount_start_date)
    end = to_naive_utc(product.discount_end_date)
    if start is not None and now < start:
        return False
    if end is not None and now > end:
        return False
    return True


class PricingPolicy:
    """Strategy interface: resolve a product's effective price for one role."""
    name = "base"

    def quote(self, product, now: datetime | None = None) -> PriceQuote:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__}>"


class RetailPricing(PricingPolicy):
    name = "retail"

    def quote(self, product, now: datetime | None = None) -> PriceQuote:
        active = is_discount_active(product, now)
        price = product.price_cents
        if active:
            price = discounted_price_cents(price, product.discount_percentage)
        return PriceQuote(
            unit_price_cents=price,
            shipping_cost_cents=product.retail_shipping_cents or 0,
            tax_bps=product.retail_tax_bps or 0,
            discount_active=active,
        )


class WholesalePricing(PricingPolicy):
    name = "wholesale"

    def quote(self, product, now: datetime | None = None) -> PriceQuote:
        wholesale = product.wholesale_price_cents or 0
        return PriceQuote(
            unit_price_cents=wholesale if wholesale > 0 else product.price_cents,
            shipping_cost_cents=product.wholesale_shipping_cents or 0,
            tax_bps=product.wholesale_tax_bps or 0,
        )


RETAIL = RetailPricing()
WHOLESALE = WholesalePricing()


def pricing_policy_for(role: str | None) -> PricingPolicy:
    """Resellers get wholesale pricing; every other role (or anonymous) retail."""
    return WHOLESALE if role == ROLE_RESELLER else RETAIL


def pricing_policy_for_user(user) -> PricingPolicy:
    """Policy for a signed-in caller (or None). Resellers awaiting approval pay retail."""
    if user is None or not user.is_reseller:
        return RETAIL
    return WHOLESALE


def resolve_price(product, role_or_policy, now: datetime | None = None) -> PriceQuote:
    """
    Resolve effective unit price, per-unit shipping and tax rate.

    role_or_policy: a PricingPolicy, or a role string (selected via
    pricing_policy_for).
    """
    policy = role_or_policy
    if not isinstance(policy, PricingPolicy):
        policy = pricing_policy_for(role_or_policy)
    return policy.quote(product, now)
