# Overview: Best-effort order notifications (SMTP when configured, log otherwise).

"""
Notification Service

send() never raises: delivery failures come back as
NotificationResult(success=False, error=...) and callers log them. The
order's *_sent flags (set by the callers) make each notification at
most once per order.
"""

from __future__ import annotations

import smtplib
from dataclasses import dataclass
from email.message import EmailMessage

from flask import current_app


ORDER_CONFIRMATION = "order_confirmation"
PAYMENT_CONFIRMED = "payment_confirmed"
ORDER_SHIPPED = "order_shipped"
ORDER_DELIVERED = "order_delivered"
ORDER_CANCELLED = "order_cancelled"
ADMIN_NEW_ORDER = "admin_new_order"


@dataclass(frozen=True)
class NotificationResult:
    success: bool
    error: str | None = None


def format_money(cents: int, currency: str = "INR") -> str:
    return f"{currency} {cents // 100:,}.{cents % 100:02d}"


def _lines(order) -> str:
    return "\n".join(
        f"  - {item.name} x{item.quantity}: {format_money(item.line_total_cents)}"
        for item in order.items
    )


def _render_order_confirmation(order):
    return (
        f"Order Confirmed: #{order.order_number}",
        f"Thank you for your order.\n\n{_lines(order)}\n\n"
        f"Subtotal: {format_money(order.subtotal_cents)}\n"
        f"Shipping: {format_money(order.shipping_cents)}\n"
        f"Discount: {format_money(order.coupon_discount_cents)}\n"
        f"Total: {format_money(order.total_amount_cents)}\n",
    )


def _render_payment_confirmed(order):
    return (
        f"Payment Receipt - {order.order_number}",
        f"We received your payment of {format_money(order.total_amount_cents)}.\n"
        f"Transaction: {order.transaction_id}\n",
    )


def _render_order_shipped(order):
    return (
        f"Your Order #{order.order_number} has Shipped!",
        f"Courier: {order.courier_name or '-'}\nTracking ID: {order.tracking_id or '-'}\n",
    )


def _render_order_delivered(order):
    return (
        f"Delivered: Order #{order.order_number}",
        "Your order has been delivered. Thank you for shopping with us.\n",
    )


def _render_order_cancelled(order):
    return (
        f"Order Cancelled: #{order.order_number}",
        "Your order has been cancelled. Any payment taken will be refunded.\n",
    )


def _render_admin_new_order(order):
    return (
        f"[New Order] {order.order_number} - {format_money(order.total_amount_cents)}",
        f"Customer: {order.customer_email}\n\n{_lines(order)}\n",
    )


TEMPLATES = {
    ORDER_CONFIRMATION: _render_order_confirmation,
    PAYMENT_CONFIRMED: _render_payment_confirmed,
    ORDER_SHIPPED: _render_order_shipped,
    ORDER_DELIVERED: _render_order_delivered,
    ORDER_CANCELLED: _render_order_cancelled,
    ADMIN_NEW_ORDER: _render_admin_new_order,
}


def _deliver(message: EmailMessage) -> None:
    config = current_app.config
    with smtplib.SMTP(config["MAIL_SERVER"], config.get("MAIL_PORT", 587), timeout=10) as smtp:
        if config.get("MAIL_USE_TLS", True):
            smtp.starttls()
        if config.get("MAIL_USERNAME"):
            smtp.login(config["MAIL_USERNAME"], config.get("MAIL_PASSWORD") or "")
        smtp.send_message(message)


def send(template_name: str, order, recipient: str | None = None) -> NotificationResult:
    render = TEMPLATES.get(template_name)
    if render is None:
        return NotificationResult(False, f"Unknown template: {template_name}")

    to = recipient or order.customer_email
    if not to:
        return NotificationResult(False, "No recipient")

    subject, body = render(order)

    if not current_app.config.get("MAIL_SERVER"):
        current_app.logger.info("Mail (not sent, no MAIL_SERVER) to=%s subject=%s", to, subject)
        return NotificationResult(True)

    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = current_app.config.get("MAIL_DEFAULT_SENDER")
    message["To"] = to
    message.set_content(body)

    try:
        _deliver(message)
    except (smtplib.SMTPException, OSError) as exc:
        return NotificationResult(False, str(exc))

    return NotificationResult(True)


def notify_admin(template_name: str, order) -> NotificationResult | None:
    recipient = current_app.config.get("ADMIN_NOTIFICATION_EMAIL")
    if not recipient:
        return None
    return send(template_name, order, recipient=recipient)
