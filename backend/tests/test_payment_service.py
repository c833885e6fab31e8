"""
Payment verification tests.

Verifies:
- Gateway orders are created for the stored order total only
- Signature mismatch is rejected, ledgered as failed, and never touches the order
- Replayed callbacks are idempotent (one completed payment, one transition)
- A late or replayed callback never moves a refunded order back to paid
- Refunds go through the gateway and restore stock only for unshipped orders
"""

import hashlib
import hmac

import pytest

from storefront.errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    UpstreamGatewayError,
    ValidationError,
    VerificationFailedError,
)
from storefront.models import OrderStatusHistory, Payment, Product
from storefront.services import order_service, payment_service
from storefront.services.gateway_client import compute_signature
from storefront.services.pricing_service import RETAIL

from conftest import GATEWAY_SECRET, SHIPPING_ADDRESS, sign


@pytest.fixture
def pending_order(customer, product):
    return order_service.create_order(
        customer,
        [{"product_id": product.id, "quantity": 2}],
        dict(SHIPPING_ADDRESS),
        "razorpay",
        RETAIL,
    )


@pytest.fixture
def gateway_order(customer, pending_order, gateway):
    return payment_service.create_gateway_order(customer, pending_order.id)


def _verify(user, order, gateway_order_id, payment_id="pay_test_1", signature=None):
    if signature is None:
        signature = sign(gateway_order_id, payment_id)
    return payment_service.verify_payment(user, gateway_order_id, payment_id, signature, order.id)


class TestSignature:

    def test_matches_hmac_sha256_hex(self):
        expected = hmac.new(b"secret", b"order_1|pay_1", hashlib.sha256).hexdigest()
        assert compute_signature("secret", "order_1", "pay_1") == expected

    def test_any_change_changes_signature(self):
        base = compute_signature(GATEWAY_SECRET, "order_1", "pay_1")
        assert compute_signature(GATEWAY_SECRET, "order_1", "pay_2") != base
        assert compute_signature(GATEWAY_SECRET, "order_2", "pay_1") != base
        assert compute_signature("other_secret", "order_1", "pay_1") != base


class TestCreateGatewayOrder:

    def test_uses_stored_total(self, customer, pending_order, gateway):
        result = payment_service.create_gateway_order(customer, pending_order.id)

        assert result["amount"] == pending_order.total_amount_cents == 110000
        assert result["currency"] == "INR"
        assert result["key"] == "rzp_test_key"
        assert gateway.orders[0]["receipt"] == f"receipt_{pending_order.order_number}"
        assert pending_order.gateway_order_id == result["id"]

    def test_other_users_cannot_pay(self, other_customer, pending_order, gateway):
        with pytest.raises(ForbiddenError):
            payment_service.create_gateway_order(other_customer, pending_order.id)

    def test_gateway_failure_surfaces(self, customer, pending_order, gateway):
        gateway.fail_with = "Gateway unavailable"
        with pytest.raises(UpstreamGatewayError):
            payment_service.create_gateway_order(customer, pending_order.id)
        assert pending_order.gateway_order_id is None

    def test_cancelled_order_cannot_be_paid(self, customer, pending_order, gateway):
        order_service.cancel_order(customer, pending_order.id)
        with pytest.raises(ConflictError):
            payment_service.create_gateway_order(customer, pending_order.id)

    def test_bad_order_id(self, customer, gateway, db_session):
        with pytest.raises(ValidationError):
            payment_service.create_gateway_order(customer, "abc")


class TestVerifyPayment:

    def test_valid_signature_finalizes_order(self, customer, pending_order, gateway_order):
        result = _verify(customer, pending_order, gateway_order["id"])

        order = result.order
        assert result.replayed is False
        assert order.payment_status == "completed"
        assert order.status == "processing"
        assert order.transaction_id == "pay_test_1"
        assert order.payment_date is not None
        assert order.confirmation_sent is True
        assert result.payment.payment_status == "completed"
        assert result.payment.amount_cents == order.total_amount_cents

    def test_replay_is_idempotent(self, db_session, customer, pending_order, gateway_order):
        first = _verify(customer, pending_order, gateway_order["id"])
        second = _verify(customer, pending_order, gateway_order["id"])

        assert second.replayed is True
        assert second.payment.id == first.payment.id
        assert db_session.query(Payment).filter_by(order_id=pending_order.id).count() == 1
        statuses = [
            h.status for h in db_session.query(OrderStatusHistory).filter_by(order_id=pending_order.id)
        ]
        assert statuses.count("processing") == 1

    def test_bad_signature_is_rejected_and_ledgered(self, db_session, customer, pending_order, gateway_order):
        with pytest.raises(VerificationFailedError):
            _verify(customer, pending_order, gateway_order["id"], signature="0" * 64)

        order = order_service.get_order(customer, pending_order.id)
        assert order.status == "pending"
        assert order.payment_status == "pending"
        assert order.transaction_id is None

        failed = db_session.query(Payment).filter_by(order_id=pending_order.id).one()
        assert failed.payment_status == "failed"
        assert failed.failure_reason == "Invalid signature"
        assert failed.transaction_id is None

    def test_signature_for_another_gateway_order_is_rejected(self, customer, pending_order, gateway_order):
        with pytest.raises(VerificationFailedError):
            _verify(customer, pending_order, "order_someone_else")
        assert pending_order.payment_status == "pending"

    def test_signature_under_wrong_secret_is_rejected(self, customer, pending_order, gateway_order):
        forged = compute_signature("not_the_secret", gateway_order["id"], "pay_test_1")
        with pytest.raises(VerificationFailedError):
            _verify(customer, pending_order, gateway_order["id"], signature=forged)

    @pytest.mark.parametrize("missing", ["gateway_order_id", "gateway_payment_id", "signature"])
    def test_missing_fields(self, customer, pending_order, gateway_order, missing):
        values = {
            "gateway_order_id": gateway_order["id"],
            "gateway_payment_id": "pay_test_1",
            "signature": sign(gateway_order["id"], "pay_test_1"),
        }
        values[missing] = ""
        with pytest.raises(ValidationError):
            payment_service.verify_payment(customer, order_id=pending_order.id, **values)

    def test_payment_id_reused_for_another_order(self, customer, product, pending_order, gateway_order):
        _verify(customer, pending_order, gateway_order["id"])
        second_order = order_service.create_order(
            customer, [{"product_id": product.id, "quantity": 1}], dict(SHIPPING_ADDRESS), "razorpay", RETAIL
        )
        second_gateway = payment_service.create_gateway_order(customer, second_order.id)

        with pytest.raises(ConflictError):
            _verify(customer, second_order, second_gateway["id"])

    def test_payment_status(self, customer, pending_order, gateway_order):
        _verify(customer, pending_order, gateway_order["id"])
        status = payment_service.get_payment_status(customer, pending_order.id)
        assert status["payment_status"] == "completed"
        assert [p["payment_status"] for p in status["payments"]] == ["completed"]


class TestRefund:

    def _paid(self, customer, order, gateway_order):
        return _verify(customer, order, gateway_order["id"]).order

    def test_refund_processing_order_restores_stock(
        self, db_session, customer, admin, product, pending_order, gateway_order, gateway
    ):
        self._paid(customer, pending_order, gateway_order)

        order = payment_service.refund_order(admin, pending_order.id, reason="Customer request")

        assert order.status == "refunded"
        assert order.payment_status == "refunded"
        assert order.status_history[-1].note == "Customer request"
        assert gateway.refunds[0]["payment_id"] == "pay_test_1"
        assert gateway.refunds[0]["amount"] == order.total_amount_cents
        assert db_session.get(Product, product.id, populate_existing=True).stock == 10

        refund_row = db_session.query(Payment).filter_by(order_id=order.id, payment_status="refunded").one()
        assert refund_row.refund_id == gateway.refunds[0]["id"]
        assert refund_row.refund_status == "processed"

    def test_refund_delivered_order_keeps_stock(
        self, db_session, customer, admin, product, pending_order, gateway_order
    ):
        self._paid(customer, pending_order, gateway_order)
        order_service.update_order_status(admin, pending_order.id, "shipped")
        order_service.update_order_status(admin, pending_order.id, "delivered")

        order = payment_service.refund_order(admin, pending_order.id)

        assert order.status == "refunded"
        assert db_session.get(Product, product.id, populate_existing=True).stock == 8

    def test_unpaid_order_cannot_be_refunded(self, admin, pending_order, gateway):
        with pytest.raises(InvalidTransitionError):
            payment_service.refund_order(admin, pending_order.id)
        assert gateway.refunds == []

    def test_refund_twice(self, customer, admin, pending_order, gateway_order, gateway):
        self._paid(customer, pending_order, gateway_order)
        payment_service.refund_order(admin, pending_order.id)
        with pytest.raises(InvalidTransitionError):
            payment_service.refund_order(admin, pending_order.id)
        assert len(gateway.refunds) == 1

    def test_replayed_callback_after_refund_keeps_order_refunded(
        self, db_session, customer, admin, pending_order, gateway_order, gateway
    ):
        self._paid(customer, pending_order, gateway_order)
        payment_service.refund_order(admin, pending_order.id)

        result = _verify(customer, pending_order, gateway_order["id"])

        assert result.replayed is True
        assert result.order.payment_status == "refunded"
        assert result.order.status == "refunded"
        statuses = [
            h.status for h in db_session.query(OrderStatusHistory).filter_by(order_id=pending_order.id)
        ]
        assert statuses.count("processing") == 1

    def test_new_capture_after_refund_is_recorded_but_order_untouched(
        self, db_session, customer, admin, pending_order, gateway_order, gateway
    ):
        self._paid(customer, pending_order, gateway_order)
        payment_service.refund_order(admin, pending_order.id)

        result = _verify(customer, pending_order, gateway_order["id"], payment_id="pay_test_2")

        assert result.replayed is False
        assert result.payment.transaction_id == "pay_test_2"
        assert result.order.payment_status == "refunded"
        assert result.order.status == "refunded"
        assert result.order.transaction_id == "pay_test_1"

    def test_gateway_refusal_leaves_order_paid(self, customer, admin, pending_order, gateway_order, gateway):
        self._paid(customer, pending_order, gateway_order)
        gateway.fail_with = "Refund rejected"
        with pytest.raises(UpstreamGatewayError):
            payment_service.refund_order(admin, pending_order.id)
        assert pending_order.status == "processing"
        assert pending_order.payment_status == "completed"
