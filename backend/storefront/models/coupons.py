from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


DISCOUNT_PERCENTAGE = "PERCENTAGE"
DISCOUNT_FIXED_AMOUNT = "FIXED_AMOUNT"
VALID_DISCOUNT_TYPES = (DISCOUNT_PERCENTAGE, DISCOUNT_FIXED_AMOUNT)

SCOPE_ALL = "ALL"
SCOPE_SPECIFIC = "SPECIFIC"
VALID_SCOPES = (SCOPE_ALL, SCOPE_SPECIFIC)


coupon_products = db.Table(
    "coupon_products",
    db.Column("coupon_id", db.Integer, db.ForeignKey("coupons.id", ondelete="CASCADE"), primary_key=True),
    db.Column("product_id", db.Integer, db.ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
)


class Coupon(db.Model):
    """
    Discount coupon.

    discount_value is a whole percent (1-100) for PERCENTAGE and cents for
    FIXED_AMOUNT. max_discount_cents caps either type when set.

    VALID WHEN: is_active, start_date (if any) has passed, expiration_date
    has not, and usage_limit (if any) is not exhausted.
    """
    __tablename__ = "coupons"
    __table_args__ = (
        db.CheckConstraint("used_count >= 0", name="ck_coupons_used_count_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True, index=True)

    discount_type = db.Column(db.String(16), nullable=False, default=DISCOUNT_PERCENTAGE)
    discount_value = db.Column(db.Integer, nullable=False)
    max_discount_cents = db.Column(db.Integer, nullable=True)

    scope = db.Column(db.String(16), nullable=False, default=SCOPE_ALL)
    min_order_cents = db.Column(db.Integer, nullable=False, default=0)

    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    expiration_date = db.Column(db.DateTime(timezone=True), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    usage_limit = db.Column(db.Integer, nullable=True)
    used_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    applicable_products = db.relationship("Product", secondary=coupon_products, lazy="selectin")

    @property
    def applicable_product_ids(self) -> set[int]:
        return {p.id for p in self.applicable_products}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "max_discount_cents": self.max_discount_cents,
            "scope": self.scope,
            "applicable_product_ids": sorted(self.applicable_product_ids),
            "min_order_cents": self.min_order_cents,
            "start_date": to_utc_z(self.start_date),
            "expiration_date": to_utc_z(self.expiration_date),
            "is_active": self.is_active,
            "usage_limit": self.usage_limit,
            "used_count": self.used_count,
            "created_at": to_utc_z(self.created_at),
        }
