# Overview: Service-layer operations for payment; gateway order creation, signature verification and refunds.

"""
Payment Verifier

WHY: The browser completes payment with the gateway and then reports back
(gateway_order_id, gateway_payment_id, signature). Nothing in that report
is trusted until the HMAC-SHA256 of "<order_id>|<payment_id>" under the key
secret matches the signature in constant time.

DESIGN PRINCIPLES:
- Immutable ledger: every attempt (completed, failed, refunded) appends a
  row to payments; rows are never edited afterwards
- Idempotent: transaction_id (the gateway payment id) is unique, so a
  replayed or concurrent callback reuses the existing row and the order is
  finalized at most once
- Failed verification never touches the order; it is ledgered and logged
  as possible tampering
- Gateway calls happen outside the database transaction so a retry of the
  transaction can never repeat a network side effect
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    UpstreamGatewayError,
    ValidationError,
    VerificationFailedError,
)
from ..models import Order, Payment
from storefront.time_utils import utcnow
from . import notification_service
from .concurrency import lock_for_update, run_with_retry
from .gateway_client import compute_signature, get_gateway_client
from .order_service import (
    PAYMENT_COMPLETED,
    PAYMENT_FAILED,
    PAYMENT_PENDING,
    PAYMENT_REFUNDED,
    STATUS_CANCELLED,
    STATUS_DELIVERED,
    STATUS_PROCESSING,
    STATUS_REFUNDED,
    _require_owner_or_admin,
    can_transition,
    record_status,
    restore_order_stock,
    send_once,
)


REFUND_PROCESSED = "processed"

REFUNDABLE_STATUSES = (STATUS_PROCESSING, STATUS_DELIVERED)
# A captured payment only finalizes an order that has not been paid or refunded
FINALIZABLE_PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_FAILED)

VERIFY_FIELDS = ("gateway_order_id", "gateway_payment_id", "signature", "order_id")


@dataclass
class VerificationResult:
    order: Order
    payment: Payment
    replayed: bool


def _get_order(user, order_id) -> Order:
    try:
        order_id = int(order_id)
    except (TypeError, ValueError):
        raise ValidationError("order_id must be an integer")
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    _require_owner_or_admin(user, order)
    return order


def _key_secret() -> str:
    secret = current_app.config.get("RAZORPAY_KEY_SECRET")
    if not secret:
        raise UpstreamGatewayError("Payment gateway is not configured")
    return secret


# =============================================================================
# GATEWAY ORDER
# =============================================================================

def create_gateway_order(user, order_id) -> dict:
    """
    Register the order's stored total with the gateway.

    The amount always comes from the order row, never from the client.

    Raises:
        ConflictError: order already paid, cancelled or refunded
        UpstreamGatewayError: gateway unconfigured, unreachable or rejecting
    """
    order = _get_order(user, order_id)
    if order.payment_status == PAYMENT_COMPLETED:
        raise ConflictError("Order is already paid")
    if order.status in (STATUS_CANCELLED, STATUS_REFUNDED):
        raise ConflictError(f"Cannot pay for a {order.status} order")

    currency = current_app.config.get("CURRENCY", "INR")
    client = get_gateway_client()
    gateway_order = client.create_order(
        amount=order.total_amount_cents,
        currency=currency,
        receipt=f"receipt_{order.order_number}",
    )

    def _op():
        locked = lock_for_update(db.session.query(Order).filter_by(id=order.id)).first()
        locked.gateway_order_id = gateway_order["id"]
        locked.updated_at = utcnow()
        db.session.commit()
        return locked

    run_with_retry(_op)

    return {
        "id": gateway_order["id"],
        "currency": gateway_order.get("currency", currency),
        "amount": gateway_order.get("amount", order.total_amount_cents),
        "key": current_app.config.get("RAZORPAY_KEY_ID"),
        "order_id": order.id,
    }


# =============================================================================
# VERIFICATION
# =============================================================================

def _record_failed_attempt(order: Order, gateway_order_id, gateway_payment_id, signature, reason: str) -> None:
    db.session.add(Payment(
        order_id=order.id,
        user_id=order.user_id,
        amount_cents=order.total_amount_cents,
        currency=current_app.config.get("CURRENCY", "INR"),
        payment_method=order.payment_method,
        payment_status=PAYMENT_FAILED,
        gateway_order_id=gateway_order_id,
        gateway_payment_id=gateway_payment_id,
        gateway_signature=signature,
        failure_reason=reason,
    ))
    db.session.commit()


def verify_payment(user, gateway_order_id, gateway_payment_id, signature, order_id) -> VerificationResult:
    """
    Verify a gateway callback and finalize the order.

    Returns a VerificationResult; replayed=True when the payment id had
    already been recorded (nothing was credited twice).

    Raises:
        ValidationError: a verification field is missing
        VerificationFailedError: signature mismatch or foreign gateway order
    """
    values = dict(zip(VERIFY_FIELDS, (gateway_order_id, gateway_payment_id, signature, order_id)))
    if any(v is None or str(v).strip() == "" for v in values.values()):
        raise ValidationError("Missing payment verification details")

    gateway_order_id = str(gateway_order_id).strip()
    gateway_payment_id = str(gateway_payment_id).strip()
    signature = str(signature).strip()

    order = _get_order(user, order_id)

    expected = compute_signature(_key_secret(), gateway_order_id, gateway_payment_id)
    reason = None
    if not hmac.compare_digest(expected, signature):
        reason = "Invalid signature"
    elif order.gateway_order_id and order.gateway_order_id != gateway_order_id:
        reason = "Gateway order mismatch"

    if reason is not None:
        _record_failed_attempt(order, gateway_order_id, gateway_payment_id, signature, reason)
        current_app.logger.warning(
            "Payment verification failed for order %s (%s): payment %s, user %s",
            order.order_number, reason, gateway_payment_id, user.id,
        )
        raise VerificationFailedError("Payment verification failed")

    def _op():
        locked = lock_for_update(db.session.query(Order).filter_by(id=order.id)).first()

        payment = db.session.query(Payment).filter_by(transaction_id=gateway_payment_id).first()
        replayed = payment is not None
        if payment is None:
            payment = Payment(
                order_id=locked.id,
                user_id=locked.user_id,
                amount_cents=locked.total_amount_cents,
                currency=current_app.config.get("CURRENCY", "INR"),
                payment_method=locked.payment_method,
                payment_status=PAYMENT_COMPLETED,
                gateway_order_id=gateway_order_id,
                gateway_payment_id=gateway_payment_id,
                gateway_signature=signature,
                transaction_id=gateway_payment_id,
            )
            db.session.add(payment)
            db.session.flush()
        elif payment.order_id != locked.id:
            raise ConflictError("Payment belongs to a different order")

        if replayed:
            db.session.commit()
            return locked, payment, replayed

        if locked.payment_status in FINALIZABLE_PAYMENT_STATUSES:
            locked.payment_status = PAYMENT_COMPLETED
            locked.gateway_order_id = gateway_order_id
            locked.gateway_payment_id = gateway_payment_id
            locked.gateway_signature = signature
            locked.transaction_id = gateway_payment_id
            locked.payment_date = utcnow()
            if can_transition(locked.status, STATUS_PROCESSING):
                record_status(locked, STATUS_PROCESSING, "Payment verified", user.id)
            else:
                locked.updated_at = utcnow()
                current_app.logger.warning(
                    "Payment captured for order %s in status %s; manual follow-up required",
                    locked.order_number, locked.status,
                )
        else:
            current_app.logger.warning(
                "Payment %s captured for order %s with payment status %s; order left unchanged",
                gateway_payment_id, locked.order_number, locked.payment_status,
            )

        db.session.commit()
        return locked, payment, replayed

    try:
        order, payment, replayed = run_with_retry(_op)
    except IntegrityError:
        # A concurrent callback inserted the same transaction_id first
        db.session.rollback()
        order, payment, replayed = run_with_retry(_op)

    current_app.logger.info(
        "Payment %s verified for order %s%s",
        gateway_payment_id, order.order_number, " (replay)" if replayed else "",
    )

    if order.payment_status == PAYMENT_COMPLETED and not order.confirmation_sent:
        send_once(order.id, notification_service.PAYMENT_CONFIRMED, "confirmation_sent")
        result = notification_service.notify_admin(notification_service.ADMIN_NEW_ORDER, order)
        if result is not None and not result.success:
            current_app.logger.warning(
                "Failed to notify admin of order %s: %s", order.order_number, result.error
            )

    return VerificationResult(order=order, payment=payment, replayed=replayed)


def get_payment_status(user, order_id) -> dict:
    order = _get_order(user, order_id)
    payments = (
        db.session.query(Payment)
        .filter_by(order_id=order.id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .all()
    )
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "status": order.status,
        "payment_status": order.payment_status,
        "payments": [p.to_dict() for p in payments],
    }


# =============================================================================
# REFUNDS
# =============================================================================

def _check_refundable(order: Order) -> None:
    if order.status not in REFUNDABLE_STATUSES or order.payment_status != PAYMENT_COMPLETED:
        raise InvalidTransitionError(
            "Order is not eligible for a refund",
            details={"status": order.status, "payment_status": order.payment_status},
        )
    if not order.gateway_payment_id:
        raise ConflictError("Order has no captured gateway payment")


def refund_order(admin, order_id, reason: str | None = None) -> Order:
    """
    Refund a paid order in full through the gateway.

    A processing (unshipped) order gets its stock back; a delivered order
    does not.

    Raises:
        InvalidTransitionError: order not processing/delivered or not paid
        UpstreamGatewayError: gateway refused or unreachable
    """
    order = _get_order(admin, order_id)
    _check_refundable(order)

    refund = get_gateway_client().refund_payment(order.gateway_payment_id, order.total_amount_cents)
    note = (reason or "").strip() or "Payment refunded"

    def _op():
        locked = lock_for_update(db.session.query(Order).filter_by(id=order.id)).first()
        _check_refundable(locked)
        previous = locked.status
        now = utcnow()

        db.session.add(Payment(
            order_id=locked.id,
            user_id=locked.user_id,
            amount_cents=locked.total_amount_cents,
            currency=current_app.config.get("CURRENCY", "INR"),
            payment_method=locked.payment_method,
            payment_status=PAYMENT_REFUNDED,
            gateway_order_id=locked.gateway_order_id,
            gateway_payment_id=locked.gateway_payment_id,
            refund_id=refund["id"],
            refund_amount_cents=refund.get("amount", locked.total_amount_cents),
            refund_status=REFUND_PROCESSED,
            refunded_at=now,
        ))

        if previous == STATUS_PROCESSING:
            restore_order_stock(locked)

        locked.payment_status = PAYMENT_REFUNDED
        record_status(locked, STATUS_REFUNDED, note, admin.id)
        db.session.commit()
        return locked, previous

    order, previous = run_with_retry(_op)
    current_app.logger.info(
        "Order %s refunded from %s by admin %s (refund %s)",
        order.order_number, previous, admin.id, refund["id"],
    )
    return order
