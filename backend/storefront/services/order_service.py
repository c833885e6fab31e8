# Overview: Service-layer operations for orders; checkout, cancellation and the fulfillment state machine.

"""
Order Assembler and Fulfillment State Machine

WHY: Checkout turns a cart (or an explicit item list) into an immutable
pricing snapshot while committing stock. Everything that checkout writes
(stock deductions, variant deductions, coupon usage, the order row, its
lines, its first history entry, and the cart deletion) happens in ONE
database transaction. Any failure rolls every write back, so a failure
on item N never leaves items 1..N-1 deducted.

STOCK: Deduction is an atomic conditional UPDATE (catalog_service), so
two concurrent checkouts can never drive stock negative; the loser gets
InsufficientStockError. Cancellation (user or admin) and refund of an
unshipped order restore product and variant stock exactly once.

STATE MACHINE: Every status move is checked against ALLOWED_TRANSITIONS
and appended to order_status_history:

    pending    -> confirmed, processing, cancelled
    confirmed  -> processing, shipped, cancelled
    processing -> shipped, cancelled
    shipped    -> delivered
    delivered  -> refunded
    cancelled, refunded: terminal

NOTIFICATIONS: Shipped/delivered emails are sent after the status commit,
at most once per order (guarded by the *_sent flags), and a delivery
failure never fails the status update.
"""

from __future__ import annotations

import re
import secrets
import time

from flask import current_app

from ..extensions import db
from ..errors import (
    ForbiddenError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    NotificationDeliveryError,
    UnsupportedPaymentMethodError,
    ValidationError,
)
from ..models import Cart, Order, OrderItem, OrderStatusHistory, Product
from ..models.cart import DEFAULT_COLOR, DEFAULT_SIZE
from ..models.coupons import DISCOUNT_PERCENTAGE
from storefront.time_utils import utcnow
from . import catalog_service, coupon_service, notification_service
from .cart_service import delete_cart, parse_quantity
from .concurrency import lock_for_update, run_with_retry
from .pricing_service import resolve_price


# =============================================================================
# STATUS (CONSTANTS)
# =============================================================================

STATUS_PENDING = "pending"
STATUS_CONFIRMED = "confirmed"
STATUS_PROCESSING = "processing"
STATUS_SHIPPED = "shipped"
STATUS_DELIVERED = "delivered"
STATUS_CANCELLED = "cancelled"
STATUS_REFUNDED = "refunded"

VALID_STATUSES = (
    STATUS_PENDING,
    STATUS_CONFIRMED,
    STATUS_PROCESSING,
    STATUS_SHIPPED,
    STATUS_DELIVERED,
    STATUS_CANCELLED,
    STATUS_REFUNDED,
)

ALLOWED_TRANSITIONS = {
    STATUS_PENDING: {STATUS_CONFIRMED, STATUS_PROCESSING, STATUS_CANCELLED},
    STATUS_CONFIRMED: {STATUS_PROCESSING, STATUS_SHIPPED, STATUS_CANCELLED},
    STATUS_PROCESSING: {STATUS_SHIPPED, STATUS_CANCELLED},
    STATUS_SHIPPED: {STATUS_DELIVERED},
    STATUS_DELIVERED: {STATUS_REFUNDED},
    STATUS_CANCELLED: set(),
    STATUS_REFUNDED: set(),
}

PAYMENT_PENDING = "pending"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"
PAYMENT_REFUNDED = "refunded"

# Cash on delivery is disabled; everything else settles through the gateway
PAYMENT_METHOD_COD = "cod"
VALID_PAYMENT_METHODS = ("razorpay", "card", "upi", "netbanking", "wallet")

ADDRESS_FIELDS = ("name", "phone", "address", "city", "state", "pincode")
PHONE_RE = re.compile(r"^[0-9]{10}$")
PINCODE_RE = re.compile(r"^[0-9]{6}$")

EMAIL_TYPES = {
    "confirmation": (notification_service.ORDER_CONFIRMATION, "confirmation"),
    "shipped": (notification_service.ORDER_SHIPPED, "shipped"),
    "delivered": (notification_service.ORDER_DELIVERED, "delivered"),
}

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


# =============================================================================
# HELPERS
# =============================================================================

def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def _base36(value: int) -> str:
    digits = []
    while True:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
        if value == 0:
            break
    return "".join(reversed(digits))


def generate_order_number(prefix: str | None = None) -> str:
    """<prefix><base36 ms timestamp><5 random base36 chars>, e.g. SRLXK2J9QZ7F3KD."""
    if prefix is None:
        prefix = current_app.config.get("ORDER_NUMBER_PREFIX", "SR")
    stamp = _base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(5))
    return f"{prefix}{stamp}{suffix}"


def _unique_order_number(attempts: int = 5) -> str:
    for _ in range(attempts):
        candidate = generate_order_number()
        if not db.session.query(Order.id).filter_by(order_number=candidate).first():
            return candidate
    raise RuntimeError("Could not allocate a unique order number")


def validate_shipping_address(raw) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError("Shipping address is required")
    address = {}
    for field in ADDRESS_FIELDS:
        value = str(raw.get(field) or "").strip()
        if not value:
            raise ValidationError(f"Shipping address {field} is required")
        address[field] = value
    if not PHONE_RE.match(address["phone"]):
        raise ValidationError("Shipping phone must be a 10 digit number")
    if not PINCODE_RE.match(address["pincode"]):
        raise ValidationError("Shipping pincode must be a 6 digit number")
    return address


def _parse_items(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("Order items are required")
    parsed = []
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("Invalid order item")
        product_id = raw.get("product_id", raw.get("product"))
        try:
            product_id = int(product_id)
        except (TypeError, ValueError):
            raise ValidationError("Order item product_id is required")
        parsed.append({
            "product_id": product_id,
            "quantity": parse_quantity(raw.get("quantity")),
            "selected_size": (raw.get("selected_size") or "").strip() or DEFAULT_SIZE,
            "selected_color": (raw.get("selected_color") or "").strip() or DEFAULT_COLOR,
        })
    return parsed


def _items_from_cart(user_id: int) -> list[dict]:
    cart = db.session.query(Cart).filter_by(user_id=user_id).first()
    lines = cart.items if cart is not None else []
    return [
        {
            "product_id": line.product_id,
            "quantity": line.quantity,
            "selected_size": line.selected_size,
            "selected_color": line.selected_color,
        }
        for line in lines
        if line.product_id is not None
    ]


def _coupon_percentage(coupon) -> int | None:
    if coupon is None:
        return None
    return coupon.discount_value if coupon.discount_type == DISCOUNT_PERCENTAGE else 0


def record_status(order: Order, status: str, note: str | None, actor_user_id: int | None) -> None:
    """Set status and append the history entry. Does not commit."""
    now = utcnow()
    order.status = status
    order.updated_at = now
    order.status_history.append(OrderStatusHistory(
        status=status,
        note=note,
        actor_user_id=actor_user_id,
        created_at=now,
    ))


def restore_order_stock(order: Order) -> None:
    """Inverse of checkout's deductions. Does not commit."""
    for item in order.items:
        catalog_service.restore_stock(item.product_id, item.quantity)
        catalog_service.restore_variant_stock(item.variant_id, item.quantity)


def _load_locked(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise NotFoundError("Order not found")
    return order


def _require_owner_or_admin(user, order: Order, message: str = "Not authorized to access this order") -> None:
    if order.user_id != user.id and not user.is_admin:
        raise ForbiddenError(message)


# =============================================================================
# CHECKOUT
# =============================================================================

def create_order(
    user,
    items,
    shipping_address,
    payment_method,
    policy,
    coupon_code: str | None = None,
) -> Order:
    """
    Create an order, committing stock for every line in one transaction.

    items=None checks out the caller's cart.

    Raises:
        UnsupportedPaymentMethodError: cash on delivery
        ValidationError: bad payment method, address or items
        NotFoundError: a product does not exist
        InsufficientStockError: a line exceeds available stock
        CouponError: coupon invalid or not applicable (non-resellers only)
    """
    payment_method = (payment_method or "razorpay").strip().lower()
    if payment_method == PAYMENT_METHOD_COD:
        raise UnsupportedPaymentMethodError(
            "Cash on Delivery is currently unavailable. Please use online payment."
        )
    if payment_method not in VALID_PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {payment_method}")

    address = validate_shipping_address(shipping_address)
    requested = _parse_items(items) if items is not None else None

    def _op():
        lines = requested if requested is not None else _items_from_cart(user.id)
        if not lines:
            raise ValidationError("Order items are required")

        order_items = []
        subtotal = 0
        total_shipping = 0

        for line in lines:
            product = db.session.get(Product, line["product_id"])
            if product is None or not product.is_active:
                raise NotFoundError(f"Product not found: {line['product_id']}")

            quantity = line["quantity"]
            if product.stock < quantity:
                raise InsufficientStockError(
                    f"Insufficient stock for {product.name}",
                    details={"product_id": product.id, "available": product.stock},
                )

            quote = resolve_price(product, policy)
            line_shipping = quote.shipping_cost_cents * quantity

            catalog_service.deduct_stock(product.id, quantity)
            variant_id = catalog_service.deduct_variant_stock(
                product.id, line["selected_color"], line["selected_size"], quantity
            )

            order_items.append(OrderItem(
                product_id=product.id,
                variant_id=variant_id,
                name=product.name,
                image=product.image_url,
                quantity=quantity,
                unit_price_cents=quote.unit_price_cents,
                shipping_amount_cents=line_shipping,
                tax_amount_cents=0,
                selected_size=line["selected_size"],
                selected_color=line["selected_color"],
            ))
            subtotal += quote.unit_price_cents * quantity
            total_shipping += line_shipping

        discount = 0
        coupon = None
        if coupon_code and not user.is_reseller:
            coupon = coupon_service.validate_coupon(coupon_code, subtotal)
            discount = coupon_service.compute_discount(coupon, subtotal, order_items)
            coupon_service.consume_coupon(coupon)

        order = Order(
            order_number=_unique_order_number(),
            user_id=user.id,
            customer_email=user.email,
            customer_phone=address["phone"],
            shipping_name=address["name"],
            shipping_phone=address["phone"],
            shipping_address=address["address"],
            shipping_city=address["city"],
            shipping_state=address["state"],
            shipping_pincode=address["pincode"],
            payment_method=payment_method,
            subtotal_cents=subtotal,
            shipping_cents=total_shipping,
            tax_cents=0,
            coupon_discount_cents=discount,
            coupon_code=coupon.code if coupon else None,
            coupon_percentage=_coupon_percentage(coupon),
            total_amount_cents=subtotal + total_shipping - discount,
            status=STATUS_PENDING,
            payment_status=PAYMENT_PENDING,
            items=order_items,
        )
        db.session.add(order)
        record_status(order, STATUS_PENDING, "Order placed, awaiting payment", user.id)

        delete_cart(user.id)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info(
        "Order %s created for user %s: %s items, total %s cents",
        order.order_number, user.id, len(order.items), order.total_amount_cents,
    )
    return order


# =============================================================================
# QUERIES
# =============================================================================

def get_order(user, order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    _require_owner_or_admin(user, order)
    return order


def list_user_orders(
    user,
    *,
    page: int = 1,
    limit: int = 10,
    status: str | None = None,
    all_users: bool = False,
) -> dict:
    """Newest-first order listing. Admins may pass all_users=True."""
    query = db.session.query(Order)
    if not (all_users and user.is_admin):
        query = query.filter(Order.user_id == user.id)
    if status:
        if status not in VALID_STATUSES:
            raise ValidationError(f"Invalid status: {status}")
        query = query.filter(Order.status == status)

    limit = min(max(limit or 10, 1), 100)
    page = max(page or 1, 1)
    total = query.count()
    orders = (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "items": [o.to_dict() for o in orders],
        "count": len(orders),
        "total": total,
        "page": page,
        "limit": limit,
    }


def track_order(user, order_id: int) -> dict:
    order = get_order(user, order_id)
    return {
        "order_number": order.order_number,
        "status": order.status,
        "payment_status": order.payment_status,
        "status_history": [h.to_dict() for h in order.status_history],
        "tracking": order.to_dict()["tracking"],
        "delivered_at": order.to_dict()["delivered_at"],
    }


# =============================================================================
# STATE TRANSITIONS
# =============================================================================

def cancel_order(user, order_id: int) -> Order:
    """
    Owner cancels an unshipped order; stock is restored.

    Raises ForbiddenError for non-owners, InvalidTransitionError once the
    order has shipped or is already terminal.
    """
    def _op():
        order = _load_locked(order_id)
        if order.user_id != user.id:
            raise ForbiddenError("Not authorized to cancel this order")
        if not can_transition(order.status, STATUS_CANCELLED):
            raise InvalidTransitionError(
                "Order cannot be cancelled",
                details={"status": order.status},
            )

        restore_order_stock(order)
        record_status(order, STATUS_CANCELLED, "Order cancelled by user", user.id)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info("Order %s cancelled by user %s", order.order_number, user.id)
    notify_cancelled(order)
    return order


def notify_cancelled(order: Order) -> None:
    """Tell the customer their order was cancelled; failures are only logged."""
    result = notification_service.send(notification_service.ORDER_CANCELLED, order)
    if not result.success:
        current_app.logger.warning(
            "Failed to send cancellation notice for order %s: %s", order.order_number, result.error
        )


def send_once(order_id: int, template: str, flag: str) -> None:
    """Send a notification unless already sent; flag it on success."""
    order = db.session.get(Order, order_id)
    if order is None or getattr(order, flag):
        return
    result = notification_service.send(template, order)
    if not result.success:
        current_app.logger.warning(
            "Failed to send %s for order %s: %s", template, order.order_number, result.error
        )
        return
    setattr(order, flag, True)
    setattr(order, f"{flag}_at", utcnow())
    db.session.commit()


def update_order_status(
    admin,
    order_id: int,
    status: str,
    note: str | None = None,
    courier_name: str | None = None,
    tracking_id: str | None = None,
) -> Order:
    """
    Admin-driven status move, validated against ALLOWED_TRANSITIONS.

    Raises ValidationError for unknown statuses and InvalidTransitionError
    for illegal moves.
    """
    status = (status or "").strip().lower()
    if status not in VALID_STATUSES:
        raise ValidationError(f"Invalid status: {status or '(empty)'}")

    courier_name = (courier_name or "").strip() or None
    tracking_id = (tracking_id or "").strip() or None

    def _op():
        order = _load_locked(order_id)
        previous = order.status
        if not can_transition(previous, status):
            raise InvalidTransitionError(
                f"Cannot move order from {previous} to {status}",
                details={"from": previous, "to": status},
            )

        status_note = (note or "").strip() or f"Status updated to {status}"
        now = utcnow()

        if status == STATUS_SHIPPED:
            if courier_name:
                status_note += f" via {courier_name}"
            if tracking_id:
                status_note += f" ({tracking_id})"
            order.courier_name = courier_name
            order.tracking_id = tracking_id
            order.shipped_at = now

        if status == STATUS_DELIVERED:
            order.delivered_at = now
            order.payment_status = PAYMENT_COMPLETED

        if status == STATUS_CANCELLED:
            restore_order_stock(order)

        if status == STATUS_REFUNDED:
            order.payment_status = PAYMENT_REFUNDED

        record_status(order, status, status_note, admin.id)
        db.session.commit()
        return order, previous

    order, previous = run_with_retry(_op)
    current_app.logger.info(
        "Order %s moved %s -> %s by admin %s", order.order_number, previous, status, admin.id
    )

    if status == STATUS_SHIPPED:
        send_once(order.id, notification_service.ORDER_SHIPPED, "shipped_sent")
    elif status == STATUS_DELIVERED:
        send_once(order.id, notification_service.ORDER_DELIVERED, "delivered_sent")
    elif status == STATUS_CANCELLED:
        notify_cancelled(order)

    return order


def add_order_note(admin, order_id: int, note) -> Order:
    note = str(note or "").strip()
    if not note:
        raise ValidationError("Note is required")
    if len(note) > 2000:
        raise ValidationError("Note exceeds max length 2000")

    def _op():
        order = _load_locked(order_id)
        order.note = note
        order.updated_at = utcnow()
        db.session.commit()
        return order

    return run_with_retry(_op)


def resend_order_email(admin, order_id: int, email_type: str) -> Order:
    """
    Admin re-sends a customer email regardless of its sent flag.

    Raises NotificationDeliveryError when delivery fails.
    """
    if email_type not in EMAIL_TYPES:
        raise ValidationError("Invalid email type")
    template, flag_prefix = EMAIL_TYPES[email_type]

    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")

    result = notification_service.send(template, order)
    if not result.success:
        current_app.logger.warning(
            "Failed to resend %s email for order %s: %s", email_type, order.order_number, result.error
        )
        raise NotificationDeliveryError(f"Failed to send {email_type} email")

    setattr(order, f"{flag_prefix}_sent", True)
    setattr(order, f"{flag_prefix}_sent_at", utcnow())
    db.session.commit()
    return order
