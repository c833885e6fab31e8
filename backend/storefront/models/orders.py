from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class Order(db.Model):
    """
    Order document (immutable pricing snapshot, evolving status).

    WHY: Line prices, names and shipping are frozen at checkout so later
    catalog edits never change historical orders. Only status,
    payment_status, payment details, tracking and notification flags move
    after creation, and every status move is recorded in
    order_status_history.

    MONEY (cents): total_amount = subtotal + shipping - coupon_discount.
    tax_cents is kept for schema compatibility and is always 0.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    customer_email = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=False)

    # Shipping address
    shipping_name = db.Column(db.String(128), nullable=False)
    shipping_phone = db.Column(db.String(32), nullable=False)
    shipping_address = db.Column(db.String(512), nullable=False)
    shipping_city = db.Column(db.String(128), nullable=False)
    shipping_state = db.Column(db.String(128), nullable=False)
    shipping_pincode = db.Column(db.String(16), nullable=False)

    payment_method = db.Column(db.String(32), nullable=False, default="razorpay")

    # Money
    subtotal_cents = db.Column(db.Integer, nullable=False)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    coupon_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False)

    coupon_code = db.Column(db.String(64), nullable=True)
    coupon_percentage = db.Column(db.Integer, nullable=True)

    # Lifecycle
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    # Gateway details (set by payment verification)
    gateway_name = db.Column(db.String(32), nullable=False, default="Razorpay")
    gateway_order_id = db.Column(db.String(64), nullable=True, index=True)
    gateway_payment_id = db.Column(db.String(64), nullable=True)
    gateway_signature = db.Column(db.String(128), nullable=True)
    transaction_id = db.Column(db.String(64), nullable=True)
    payment_date = db.Column(db.DateTime(timezone=True), nullable=True)

    # Tracking
    courier_name = db.Column(db.String(128), nullable=True)
    tracking_id = db.Column(db.String(128), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Notification idempotency flags
    confirmation_sent = db.Column(db.Boolean, nullable=False, default=False)
    confirmation_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_sent = db.Column(db.Boolean, nullable=False, default=False)
    shipped_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_sent = db.Column(db.Boolean, nullable=False, default=False)
    delivered_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    note = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship("User", backref=db.backref("orders", lazy=True))
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    status_history = db.relationship(
        "OrderStatusHistory",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def shipping_address_dict(self) -> dict:
        return {
            "name": self.shipping_name,
            "phone": self.shipping_phone,
            "address": self.shipping_address,
            "city": self.shipping_city,
            "state": self.shipping_state,
            "pincode": self.shipping_pincode,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "items": [item.to_dict() for item in self.items],
            "shipping_address": self.shipping_address_dict(),
            "payment_method": self.payment_method,
            "subtotal_cents": self.subtotal_cents,
            "shipping_cents": self.shipping_cents,
            "tax_cents": self.tax_cents,
            "coupon_discount_cents": self.coupon_discount_cents,
            "coupon": {
                "code": self.coupon_code,
                "discount_cents": self.coupon_discount_cents,
                "percentage": self.coupon_percentage,
            } if self.coupon_code else None,
            "total_amount_cents": self.total_amount_cents,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_details": {
                "gateway_name": self.gateway_name,
                "gateway_order_id": self.gateway_order_id,
                "gateway_payment_id": self.gateway_payment_id,
                "transaction_id": self.transaction_id,
                "payment_date": to_utc_z(self.payment_date),
            },
            "tracking": {
                "courier_name": self.courier_name,
                "tracking_id": self.tracking_id,
                "shipped_at": to_utc_z(self.shipped_at),
            } if self.shipped_at else None,
            "delivered_at": to_utc_z(self.delivered_at),
            "status_history": [h.to_dict() for h in self.status_history],
            "email_notifications": {
                "confirmation_sent": self.confirmation_sent,
                "confirmation_sent_at": to_utc_z(self.confirmation_sent_at),
                "shipped_sent": self.shipped_sent,
                "shipped_sent_at": to_utc_z(self.shipped_sent_at),
                "delivered_sent": self.delivered_sent,
                "delivered_sent_at": to_utc_z(self.delivered_sent_at),
            },
            "note": self.note,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderItem(db.Model):
    """Frozen copy of a purchased line. Independent of the live product."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)

    # Variant whose stock was deducted at checkout (restored on cancel)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id", ondelete="SET NULL"), nullable=True)

    name = db.Column(db.String(255), nullable=False)
    image = db.Column(db.String(512), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    shipping_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    selected_size = db.Column(db.String(32), nullable=True)
    selected_color = db.Column(db.String(64), nullable=True)

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "name": self.name,
            "image": self.image,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "shipping_amount_cents": self.shipping_amount_cents,
            "tax_amount_cents": self.tax_amount_cents,
            "selected_size": self.selected_size,
            "selected_color": self.selected_color,
        }


class OrderStatusHistory(db.Model):
    """
    Append-only audit trail of order status moves.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "order_status_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False)
    note = db.Column(db.String(512), nullable=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "note": self.note,
            "actor_user_id": self.actor_user_id,
            "timestamp": to_utc_z(self.created_at),
        }


class Payment(db.Model):
    """
    Append-only ledger of payment-gateway attempts.

    WHY: Audit trail and idempotency. transaction_id (the gateway payment
    id) is unique, so a callback delivered twice maps onto the same row.
    Failed attempts keep transaction_id NULL so a forged payment id can
    never claim the slot of a real one.

    STATUSES: initiated, pending, completed, failed, refunded, partial_refund
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_order_created", "order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(8), nullable=False, default="INR")
    payment_method = db.Column(db.String(32), nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default="initiated", index=True)

    gateway_order_id = db.Column(db.String(64), nullable=True)
    gateway_payment_id = db.Column(db.String(64), nullable=True)
    gateway_signature = db.Column(db.String(128), nullable=True)

    transaction_id = db.Column(db.String(64), nullable=True, unique=True)
    failure_reason = db.Column(db.String(255), nullable=True)

    # Refunds
    refund_id = db.Column(db.String(64), nullable=True)
    refund_amount_cents = db.Column(db.Integer, nullable=True)
    refund_status = db.Column(db.String(16), nullable=True)  # pending, processed, failed
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    order = db.relationship("Order", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "user_id": self.user_id,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "gateway_order_id": self.gateway_order_id,
            "gateway_payment_id": self.gateway_payment_id,
            "transaction_id": self.transaction_id,
            "failure_reason": self.failure_reason,
            "refund": {
                "refund_id": self.refund_id,
                "amount_cents": self.refund_amount_cents,
                "status": self.refund_status,
                "refunded_at": to_utc_z(self.refunded_at),
            } if self.refund_id else None,
            "created_at": to_utc_z(self.created_at),
        }
