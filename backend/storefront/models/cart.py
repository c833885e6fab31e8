from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


DEFAULT_SIZE = "Free Size"
DEFAULT_COLOR = "Standard"


class Cart(db.Model):
    """
    One mutable cart per user.

    The aggregate columns are a cache derived from the lines by
    cart_service.compute_totals; they are rewritten on every mutation and
    on every read, never patched incrementally.
    """
    __tablename__ = "carts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    total_shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    total_tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_items = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    items = db.relationship(
        "CartItem",
        backref="cart",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="CartItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "items": [item.to_dict() for item in self.items],
            "subtotal_cents": self.subtotal_cents,
            "total_shipping_cents": self.total_shipping_cents,
            "total_tax_cents": self.total_tax_cents,
            "total_amount_cents": self.total_amount_cents,
            "total_items": self.total_items,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class CartItem(db.Model):
    """Cart line: product + variant selection + quantity, with cached pricing."""
    __tablename__ = "cart_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_cart_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)

    # Nullable: a deleted product leaves a dead line that recalculation drops
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    selected_size = db.Column(db.String(32), nullable=False, default=DEFAULT_SIZE)
    selected_color = db.Column(db.String(64), nullable=False, default=DEFAULT_COLOR)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> dict:
        product = self.product
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product": {
                "id": product.id,
                "name": product.name,
                "image_url": product.image_url,
                "category": product.category,
                "stock": product.stock,
            } if product is not None else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "shipping_amount_cents": self.shipping_amount_cents,
            "tax_amount_cents": self.tax_amount_cents,
            "selected_size": self.selected_size,
            "selected_color": self.selected_color,
        }
