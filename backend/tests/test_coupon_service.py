"""
Coupon evaluation tests.

Verifies:
- Validity: active flag, start/expiration window, usage limit, minimum order
- PERCENTAGE/FIXED_AMOUNT math with max_discount cap
- SPECIFIC scope applies only to eligible lines and errors when none match
- Resellers cannot preview coupons
- Admin CRUD normalizes codes and rejects duplicates
"""

from datetime import timedelta
from types import SimpleNamespace

import pytest

from storefront.errors import ConflictError, CouponError, ValidationError
from storefront.services import cart_service, coupon_service
from storefront.services.pricing_service import RETAIL, WHOLESALE
from storefront.time_utils import utcnow

from conftest import make_coupon


def _line(product_id, unit_price_cents, quantity=1):
    return SimpleNamespace(product_id=product_id, unit_price_cents=unit_price_cents, quantity=quantity)


class TestValidateCoupon:

    def test_valid_coupon_is_case_insensitive(self, coupon):
        assert coupon_service.validate_coupon("  save10 ", 10000).id == coupon.id

    def test_unknown_code(self, db_session):
        with pytest.raises(CouponError, match="Invalid or expired coupon"):
            coupon_service.validate_coupon("NOPE", 10000)

    def test_inactive(self, db_session):
        make_coupon(db_session, is_active=False)
        with pytest.raises(CouponError, match="Invalid or expired coupon"):
            coupon_service.validate_coupon("SAVE10", 10000)

    def test_expired(self, db_session):
        make_coupon(db_session, expiration_date=utcnow() - timedelta(minutes=1))
        with pytest.raises(CouponError, match="Invalid or expired coupon"):
            coupon_service.validate_coupon("SAVE10", 10000)

    def test_not_started(self, db_session):
        make_coupon(db_session, start_date=utcnow() + timedelta(days=1))
        with pytest.raises(CouponError, match="Invalid or expired coupon"):
            coupon_service.validate_coupon("SAVE10", 10000)

    def test_usage_limit_reached(self, db_session):
        make_coupon(db_session, usage_limit=2, used_count=2)
        with pytest.raises(CouponError, match="usage limit"):
            coupon_service.validate_coupon("SAVE10", 10000)

    def test_minimum_order(self, db_session):
        make_coupon(db_session, min_order_cents=50000)
        with pytest.raises(CouponError, match="Minimum order value not met"):
            coupon_service.validate_coupon("SAVE10", 49999)
        assert coupon_service.validate_coupon("SAVE10", 50000)


class TestComputeDiscount:

    def test_percentage(self, db_session):
        coupon = make_coupon(db_session, discount_value=15)
        assert coupon_service.compute_discount(coupon, 999, []) == 150

    def test_percentage_capped(self, db_session):
        coupon = make_coupon(db_session, discount_value=50, max_discount_cents=10000)
        assert coupon_service.compute_discount(coupon, 100000, []) == 10000

    def test_fixed_amount_never_exceeds_total(self, db_session):
        coupon = make_coupon(db_session, discount_type="FIXED_AMOUNT", discount_value=30000)
        assert coupon_service.compute_discount(coupon, 20000, []) == 20000
        assert coupon_service.compute_discount(coupon, 50000, []) == 30000

    def test_specific_scope_uses_eligible_lines_only(self, db_session, product, second_product):
        coupon = make_coupon(db_session, scope="SPECIFIC", discount_value=10)
        coupon.applicable_products = [product]
        db_session.commit()

        lines = [_line(product.id, 50000, 2), _line(second_product.id, 120000)]
        assert coupon_service.compute_discount(coupon, 220000, lines) == 10000

    def test_specific_scope_without_eligible_lines_is_an_error(self, db_session, product, second_product):
        coupon = make_coupon(db_session, scope="SPECIFIC", discount_value=10)
        coupon.applicable_products = [product]
        db_session.commit()

        with pytest.raises(CouponError, match="not applicable"):
            coupon_service.compute_discount(coupon, 120000, [_line(second_product.id, 120000)])


class TestConsumeCoupon:

    def test_increments_used_count(self, coupon, db_session):
        coupon_service.consume_coupon(coupon)
        db_session.commit()
        db_session.refresh(coupon)
        assert coupon.used_count == 1

    def test_exhausted_coupon_is_not_consumed(self, db_session):
        coupon = make_coupon(db_session, usage_limit=1, used_count=1)
        with pytest.raises(CouponError):
            coupon_service.consume_coupon(coupon)
        db_session.rollback()
        db_session.refresh(coupon)
        assert coupon.used_count == 1


class TestPreviewCoupon:

    def test_preview_against_server_cart(self, customer, product, coupon):
        cart_service.add_item(customer, product.id, 2, RETAIL)
        preview = coupon_service.preview_coupon(customer, "save10", RETAIL)

        assert preview["coupon_code"] == "SAVE10"
        assert preview["subtotal_cents"] == 100000
        assert preview["discount_cents"] == 10000
        assert preview["total_after_discount_cents"] == 100000

    def test_empty_cart(self, customer, coupon):
        with pytest.raises(CouponError, match="Cart is empty"):
            coupon_service.preview_coupon(customer, "SAVE10", RETAIL)

    def test_resellers_cannot_use_coupons(self, reseller, product, coupon):
        cart_service.add_item(reseller, product.id, 1, WHOLESALE)
        with pytest.raises(CouponError, match="reseller"):
            coupon_service.preview_coupon(reseller, "SAVE10", WHOLESALE)

    def test_pending_reseller_shops_as_retail(self, pending_reseller, product, coupon):
        cart_service.add_item(pending_reseller, product.id, 2, RETAIL)
        preview = coupon_service.preview_coupon(pending_reseller, "SAVE10", RETAIL)
        assert preview["discount_cents"] == 10000


class TestCouponAdmin:

    def _patch(self, **overrides):
        patch = {
            "code": "festive20",
            "discount_type": "PERCENTAGE",
            "discount_value": 20,
            "expiration_date": utcnow() + timedelta(days=10),
        }
        patch.update(overrides)
        return patch

    def test_create_upper_cases_code(self, db_session):
        coupon = coupon_service.create_coupon(patch=self._patch())
        assert coupon.code == "FESTIVE20"
        assert coupon.scope == "ALL"
        assert coupon.used_count == 0

    def test_duplicate_code(self, db_session):
        coupon_service.create_coupon(patch=self._patch())
        with pytest.raises(ConflictError, match="already exists"):
            coupon_service.create_coupon(patch=self._patch(code="FESTIVE20"))

    def test_specific_requires_products(self, db_session):
        with pytest.raises(ValidationError):
            coupon_service.create_coupon(patch=self._patch(scope="SPECIFIC"))

    def test_specific_with_products(self, db_session, product):
        coupon = coupon_service.create_coupon(
            patch=self._patch(scope="SPECIFIC", applicable_product_ids=[product.id])
        )
        assert coupon.applicable_product_ids == {product.id}

    def test_unknown_applicable_product(self, db_session):
        with pytest.raises(ValidationError, match="Unknown products"):
            coupon_service.create_coupon(patch=self._patch(scope="SPECIFIC", applicable_product_ids=[9999]))

    def test_deactivate_and_list(self, db_session, coupon):
        coupon_service.deactivate_coupon(coupon.id)
        assert coupon_service.list_coupons(active_only=True) == []
        assert [c.code for c in coupon_service.list_coupons()] == ["SAVE10"]
