from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data.

    PRODUCT KINDS: product_type is an explicit tag (BOOK, SAREE, GENERAL).
    Kind-specific fields (author/isbn for books, fabric/pattern for sarees)
    live in the attributes JSON and are validated per kind by
    catalog_service; pricing never inspects them.

    PRICING (all amounts in cents):
    - price_cents: retail list price
    - wholesale_price_cents: reseller price, 0 = "use price_cents"
    - discount_percentage + optional window: retail-only discount
    - retail_* / wholesale_*: per-role shipping (per unit) and tax (bps)

    STOCK: stock is the authoritative sellable quantity and never goes
    negative. Deductions use a conditional UPDATE (see catalog_service).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.CheckConstraint(
            "discount_percentage >= 0 AND discount_percentage <= 100",
            name="ck_products_discount_range",
        ),
        db.Index("ix_products_category_price", "category", "price_cents"),
        db.Index("ix_products_featured_stock", "featured", "stock"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(64), nullable=False, index=True)

    product_type = db.Column(db.String(16), nullable=False, default="GENERAL")
    attributes = db.Column(db.JSON, nullable=True)

    image_url = db.Column(db.String(512), nullable=True)

    price_cents = db.Column(db.Integer, nullable=False)
    stock = db.Column(db.Integer, nullable=False, default=0)

    wholesale_price_cents = db.Column(db.Integer, nullable=False, default=0)

    discount_percentage = db.Column(db.Integer, nullable=False, default=0)
    discount_start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    discount_end_date = db.Column(db.DateTime(timezone=True), nullable=True)

    retail_shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    retail_tax_bps = db.Column(db.Integer, nullable=False, default=0)
    wholesale_shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    wholesale_tax_bps = db.Column(db.Integer, nullable=False, default=0)

    featured = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    variants = db.relationship(
        "ProductVariant",
        backref="product",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="ProductVariant.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "product_type": self.product_type,
            "attributes": self.attributes or {},
            "image_url": self.image_url,
            "price_cents": self.price_cents,
            "stock": self.stock,
            "wholesale_price_cents": self.wholesale_price_cents,
            "discount_percentage": self.discount_percentage,
            "discount_start_date": to_utc_z(self.discount_start_date),
            "discount_end_date": to_utc_z(self.discount_end_date),
            "retail": {
                "shipping_cents": self.retail_shipping_cents,
                "tax_bps": self.retail_tax_bps,
            },
            "wholesale": {
                "shipping_cents": self.wholesale_shipping_cents,
                "tax_bps": self.wholesale_tax_bps,
            },
            "variants": [v.to_dict() for v in self.variants],
            "featured": self.featured,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductVariant(db.Model):
    """Color/size-specific stock pool under a product."""
    __tablename__ = "product_variants"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_product_variants_stock_non_negative"),
        db.Index("ix_product_variants_product_color", "product_id", "color_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    color_name = db.Column(db.String(64), nullable=True)
    color_code = db.Column(db.String(16), nullable=True)
    size = db.Column(db.String(32), nullable=True)
    stock = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "color_name": self.color_name,
            "color_code": self.color_code,
            "size": self.size,
            "stock": self.stock,
        }
