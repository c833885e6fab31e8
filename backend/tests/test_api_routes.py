"""
HTTP-level tests for the storefront API.

Verifies:
- Error taxonomy maps to status codes (400/404/409/502) with a JSON body
- A full retail purchase over HTTP: cart, coupon preview, checkout,
  gateway order, verification (and replay), shipping, delivery
- Resellers see wholesale prices and cannot preview coupons
- Reseller applications stay pending (retail, no sign-in) until an admin approves
- Admins set stock levels in bulk and list low-stock products
- Health endpoint reports database, session and integration checks
- Unexpected failures return a generic 500, with detail only when enabled
"""

import pytest

from storefront.models import Product, User
from storefront.services import cart_service

from conftest import PASSWORD, SHIPPING_ADDRESS, auth_headers, get_auth_token, make_product, sign


# =============================================================================
# SYSTEM
# =============================================================================


class TestHealth:

    def test_health_reports_checks(self, client, db_session):
        resp = client.get("/api/system/health")
        assert resp.status_code == 200
        assert resp.json["status"] == "healthy"
        assert set(resp.json["checks"]) == {"database", "session_service", "integrations"}
        assert resp.json["checks"]["integrations"]["details"]["payment_gateway_configured"] is True

    def test_unknown_route_is_json_404(self, client, db_session):
        resp = client.get("/api/does-not-exist")
        assert resp.status_code == 404
        assert resp.json["success"] is False


class TestUnexpectedErrors:

    @staticmethod
    def _break_cart(monkeypatch):
        def explode(user, policy):
            raise RuntimeError("cart table unavailable")

        monkeypatch.setattr(cart_service, "get_cart", explode)

    def test_internal_error_hides_detail_by_default(self, client, customer_headers, monkeypatch):
        self._break_cart(monkeypatch)

        resp = client.get("/api/cart", headers=customer_headers)

        assert resp.status_code == 500
        assert resp.json == {"success": False, "error": "Internal server error"}

    def test_internal_error_exposes_detail_when_enabled(self, app, client, customer_headers, monkeypatch):
        self._break_cart(monkeypatch)
        monkeypatch.setitem(app.config, "EXPOSE_ERROR_DETAILS", True)

        resp = client.get("/api/cart", headers=customer_headers)

        assert resp.status_code == 500
        assert resp.json["detail"] == "RuntimeError: cart table unavailable"


# =============================================================================
# AUTH
# =============================================================================


class TestAuthRoutes:

    def test_register_and_me(self, client, db_session):
        resp = client.post("/api/auth/register", json={
            "name": "Meera",
            "email": "Meera@Example.com",
            "password": "Password123!",
        })
        assert resp.status_code == 201
        token = resp.json["token"]

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json["user"]["email"] == "meera@example.com"

    def test_duplicate_registration(self, client, customer):
        resp = client.post("/api/auth/register", json={
            "name": "Asha Again",
            "email": customer.email,
            "password": "Password123!",
        })
        assert resp.status_code == 409

    def test_weak_password(self, client, db_session):
        resp = client.post("/api/auth/register", json={
            "name": "Weak",
            "email": "weak@example.com",
            "password": "short",
        })
        assert resp.status_code == 400
        assert resp.json["success"] is False

    def test_login_missing_fields(self, client, db_session):
        assert client.post("/api/auth/login", json={"email": "x@example.com"}).status_code == 400

    def test_login_bad_password(self, client, customer):
        resp = client.post("/api/auth/login", json={"email": customer.email, "password": "Wrong123!"})
        assert resp.status_code == 401
        assert resp.json["error"] == "Invalid credentials"


# =============================================================================
# CATALOG AND CART
# =============================================================================


class TestCatalogPricing:

    def test_reseller_sees_wholesale_price(self, client, reseller_headers, product):
        resp = client.get(f"/api/products/{product.id}", headers=reseller_headers)
        assert resp.status_code == 200
        pricing = resp.json["product"]["pricing"]
        assert pricing["policy"] == "wholesale"
        assert pricing["unit_price_cents"] == 35000
        assert pricing["shipping_cost_cents"] == 2000

    def test_inactive_product_hidden_from_public(self, client, db_session):
        hidden = make_product(db_session, is_active=False)
        assert client.get(f"/api/products/{hidden.id}").status_code == 404

    def test_product_validation_error(self, client, admin_headers):
        resp = client.post(
            "/api/products",
            json={"name": "No Price", "category": "misc"},
            headers=admin_headers,
        )
        assert resp.status_code == 400
        assert "price_cents" in resp.json["error"]


class TestCartRoutes:

    def test_add_update_remove(self, client, customer_headers, product):
        resp = client.post(
            "/api/cart/add",
            json={"product_id": product.id, "quantity": 2, "selected_size": "M"},
            headers=customer_headers,
        )
        assert resp.status_code == 200
        cart = resp.json["cart"]
        assert cart["total_amount_cents"] == 110000
        line_id = cart["items"][0]["id"]

        resp = client.put(f"/api/cart/{line_id}", json={"quantity": 1}, headers=customer_headers)
        assert resp.json["cart"]["total_items"] == 1

        resp = client.delete(f"/api/cart/{line_id}", headers=customer_headers)
        assert resp.json["cart"]["items"] == []

    def test_over_stock_is_conflict(self, client, customer_headers, product):
        resp = client.post(
            "/api/cart/add", json={"product_id": product.id, "quantity": 11}, headers=customer_headers
        )
        assert resp.status_code == 409

    def test_unknown_product_is_not_found(self, client, customer_headers, db_session):
        resp = client.post("/api/cart/add", json={"product_id": 9999}, headers=customer_headers)
        assert resp.status_code == 404

    def test_reseller_coupon_preview_rejected(self, client, reseller_headers, product, coupon):
        client.post("/api/cart/add", json={"product_id": product.id}, headers=reseller_headers)
        resp = client.post("/api/cart/validate-coupon", json={"code": "SAVE10"}, headers=reseller_headers)
        assert resp.status_code == 400


# =============================================================================
# CHECKOUT AND PAYMENT
# =============================================================================


class TestPurchaseFlow:

    def test_retail_purchase_end_to_end(self, client, customer_headers, admin_headers, product, coupon, gateway):
        client.post("/api/cart/add", json={"product_id": product.id, "quantity": 2}, headers=customer_headers)

        preview = client.post("/api/cart/validate-coupon", json={"code": "save10"}, headers=customer_headers)
        assert preview.status_code == 200
        assert preview.json["discount_cents"] == 10000

        created = client.post("/api/orders/create", json={
            "shipping_address": SHIPPING_ADDRESS,
            "payment_method": "razorpay",
            "coupon_code": "SAVE10",
        }, headers=customer_headers)
        assert created.status_code == 201
        order = created.json["order"]
        assert order["total_amount_cents"] == 100000
        assert order["coupon"]["code"] == "SAVE10"
        assert client.get("/api/cart", headers=customer_headers).json["cart"]["items"] == []

        gateway_order = client.post(
            "/api/payments/create-order", json={"order_id": order["id"]}, headers=customer_headers
        )
        assert gateway_order.status_code == 200
        assert gateway_order.json["amount"] == 100000
        goid = gateway_order.json["id"]

        verify_body = {
            "razorpay_order_id": goid,
            "razorpay_payment_id": "pay_http_1",
            "razorpay_signature": sign(goid, "pay_http_1"),
            "order_id": order["id"],
        }
        verified = client.post("/api/payments/verify", json=verify_body, headers=customer_headers)
        assert verified.status_code == 200
        assert verified.json["already_verified"] is False
        assert verified.json["order"]["status"] == "processing"

        replay = client.post("/api/payments/verify", json=verify_body, headers=customer_headers)
        assert replay.status_code == 200
        assert replay.json["already_verified"] is True

        shipped = client.put(f"/api/orders/{order['id']}/status", json={
            "status": "shipped", "courier_name": "Delhivery", "tracking_id": "DL42",
        }, headers=admin_headers)
        assert shipped.status_code == 200
        assert shipped.json["order"]["tracking"]["courier_name"] == "Delhivery"

        delivered = client.put(
            f"/api/orders/{order['id']}/status", json={"status": "delivered"}, headers=admin_headers
        )
        assert delivered.status_code == 200

        tracking = client.get(f"/api/orders/{order['id']}/track", headers=customer_headers).json["tracking"]
        assert [h["status"] for h in tracking["status_history"]] == [
            "pending", "processing", "shipped", "delivered",
        ]

    def test_cash_on_delivery_is_bad_request(self, client, customer_headers, product):
        resp = client.post("/api/orders/create", json={
            "items": [{"product_id": product.id, "quantity": 1}],
            "shipping_address": SHIPPING_ADDRESS,
            "payment_method": "cod",
        }, headers=customer_headers)
        assert resp.status_code == 400
        assert "Cash on Delivery" in resp.json["error"]

    def test_insufficient_stock_is_conflict(self, client, customer_headers, product):
        resp = client.post("/api/orders/create", json={
            "items": [{"product_id": product.id, "quantity": 50}],
            "shipping_address": SHIPPING_ADDRESS,
        }, headers=customer_headers)
        assert resp.status_code == 409
        assert resp.json["details"]["available"] == 10

    def test_invalid_coupon_is_bad_request(self, client, customer_headers, product):
        resp = client.post("/api/orders/create", json={
            "items": [{"product_id": product.id, "quantity": 1}],
            "shipping_address": SHIPPING_ADDRESS,
            "coupon_code": "NOPE",
        }, headers=customer_headers)
        assert resp.status_code == 400
        assert resp.json["error"] == "Invalid or expired coupon"

    def _order(self, client, headers, product):
        return client.post("/api/orders/create", json={
            "items": [{"product_id": product.id, "quantity": 1}],
            "shipping_address": SHIPPING_ADDRESS,
        }, headers=headers).json["order"]

    def test_bad_signature_is_bad_request(self, client, customer_headers, product, gateway):
        order = self._order(client, customer_headers, product)
        goid = client.post(
            "/api/payments/create-order", json={"order_id": order["id"]}, headers=customer_headers
        ).json["id"]

        resp = client.post("/api/payments/verify", json={
            "razorpay_order_id": goid,
            "razorpay_payment_id": "pay_forged",
            "razorpay_signature": "deadbeef",
            "order_id": order["id"],
        }, headers=customer_headers)
        assert resp.status_code == 400
        assert resp.json["error"] == "Payment verification failed"

        status = client.get(f"/api/payments/{order['id']}", headers=customer_headers).json
        assert status["payment_status"] == "pending"
        assert status["payments"][0]["payment_status"] == "failed"

    def test_gateway_outage_is_bad_gateway(self, client, customer_headers, product, gateway):
        order = self._order(client, customer_headers, product)
        gateway.fail_with = "Connection refused"
        resp = client.post(
            "/api/payments/create-order", json={"order_id": order["id"]}, headers=customer_headers
        )
        assert resp.status_code == 502

    def test_create_gateway_order_requires_order_id(self, client, customer_headers):
        resp = client.post("/api/payments/create-order", json={}, headers=customer_headers)
        assert resp.status_code == 400

    def test_illegal_transition_is_conflict(self, client, customer_headers, admin_headers, product):
        order = self._order(client, customer_headers, product)
        resp = client.put(
            f"/api/orders/{order['id']}/status", json={"status": "delivered"}, headers=admin_headers
        )
        assert resp.status_code == 409
        assert resp.json["details"] == {"from": "pending", "to": "delivered"}

    def test_cancel_twice_is_conflict(self, client, customer_headers, product):
        order = self._order(client, customer_headers, product)
        assert client.post(f"/api/orders/{order['id']}/cancel", headers=customer_headers).status_code == 200
        assert client.post(f"/api/orders/{order['id']}/cancel", headers=customer_headers).status_code == 409

    def test_missing_order_is_not_found(self, client, customer_headers):
        assert client.get("/api/orders/424242", headers=customer_headers).status_code == 404


# =============================================================================
# ADMIN COUPONS
# =============================================================================


class TestAdminCoupons:

    def test_create_and_deactivate(self, client, admin_headers):
        resp = client.post("/api/admin/coupons", json={
            "code": "diwali25",
            "discount_type": "PERCENTAGE",
            "discount_value": 25,
            "max_discount_cents": 50000,
            "expiration_date": "2099-01-01T00:00:00Z",
        }, headers=admin_headers)
        assert resp.status_code == 201
        coupon = resp.json["coupon"]
        assert coupon["code"] == "DIWALI25"

        resp = client.post(f"/api/admin/coupons/{coupon['id']}/deactivate", headers=admin_headers)
        assert resp.json["coupon"]["is_active"] is False

    def test_percentage_over_100_rejected(self, client, admin_headers):
        resp = client.post("/api/admin/coupons", json={
            "code": "TOOMUCH",
            "discount_type": "PERCENTAGE",
            "discount_value": 150,
            "expiration_date": "2099-01-01T00:00:00Z",
        }, headers=admin_headers)
        assert resp.status_code == 400

    def test_duplicate_code_conflict(self, client, admin_headers, coupon):
        resp = client.post("/api/admin/coupons", json={
            "code": "save10",
            "discount_type": "FIXED_AMOUNT",
            "discount_value": 1000,
            "expiration_date": "2099-01-01T00:00:00Z",
        }, headers=admin_headers)
        assert resp.status_code == 409

    def test_delete_missing_coupon(self, client, admin_headers):
        assert client.delete("/api/admin/coupons/4242", headers=admin_headers).status_code == 404


# =============================================================================
# RESELLER ONBOARDING
# =============================================================================


class TestResellerOnboarding:

    APPLICATION = {
        "name": "Kiran",
        "email": "kiran@traders.example.com",
        "password": "Password123!",
        "business_name": "Kiran Traders",
        "gst_number": "29abcde1234f1z5",
    }

    def test_application_is_pending_and_cannot_sign_in(self, client, db_session):
        resp = client.post("/api/auth/register-reseller", json=self.APPLICATION)
        assert resp.status_code == 201
        assert resp.json["user"]["role"] == "reseller"
        assert resp.json["user"]["reseller_status"] == "pending"
        assert "token" not in resp.json

        user = db_session.query(User).filter_by(email=self.APPLICATION["email"]).one()
        assert user.gst_number == "29ABCDE1234F1Z5"

        resp = client.post("/api/auth/login", json={
            "email": self.APPLICATION["email"],
            "password": self.APPLICATION["password"],
        })
        assert resp.status_code == 403
        assert resp.json["details"] == {"reseller_status": "pending"}

    def test_business_name_required(self, client, db_session):
        application = dict(self.APPLICATION, business_name="  ")
        assert client.post("/api/auth/register-reseller", json=application).status_code == 400

    def test_duplicate_email_conflict(self, client, customer):
        application = dict(self.APPLICATION, email=customer.email)
        assert client.post("/api/auth/register-reseller", json=application).status_code == 409

    def test_admin_approves_then_wholesale_applies(self, client, admin_headers, pending_reseller, product):
        resp = client.get("/api/admin/resellers/pending", headers=admin_headers)
        assert resp.status_code == 200
        assert [r["email"] for r in resp.json["resellers"]] == [pending_reseller.email]

        resp = client.put(
            f"/api/admin/resellers/{pending_reseller.id}/status",
            json={"status": "approved"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json["user"]["reseller_status"] == "approved"
        assert client.get("/api/admin/resellers/pending", headers=admin_headers).json["count"] == 0

        headers = auth_headers(get_auth_token(client, pending_reseller.email))
        pricing = client.get(f"/api/products/{product.id}", headers=headers).json["product"]["pricing"]
        assert pricing["policy"] == "wholesale"

    def test_rejected_applicant_cannot_sign_in(self, client, admin_headers, pending_reseller):
        client.put(
            f"/api/admin/resellers/{pending_reseller.id}/status",
            json={"status": "rejected"},
            headers=admin_headers,
        )
        resp = client.post("/api/auth/login", json={"email": pending_reseller.email, "password": PASSWORD})
        assert resp.status_code == 403
        assert resp.json["error"] == "Your reseller application was rejected"

    def test_suspension_revokes_sessions(self, client, admin_headers, reseller, reseller_headers):
        assert client.get("/api/auth/me", headers=reseller_headers).status_code == 200

        resp = client.put(
            f"/api/admin/resellers/{reseller.id}/status",
            json={"status": "suspended"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert client.get("/api/auth/me", headers=reseller_headers).status_code == 401

    def test_invalid_status(self, client, admin_headers, pending_reseller):
        resp = client.put(
            f"/api/admin/resellers/{pending_reseller.id}/status",
            json={"status": "pending"},
            headers=admin_headers,
        )
        assert resp.status_code == 400

    def test_non_reseller_is_not_found(self, client, admin_headers, db_session, customer):
        resp = client.put(
            f"/api/admin/resellers/{customer.id}/status",
            json={"status": "approved"},
            headers=admin_headers,
        )
        assert resp.status_code == 404
        assert db_session.get(User, customer.id, populate_existing=True).reseller_status is None


# =============================================================================
# ADMIN STOCK
# =============================================================================


class TestAdminStock:

    def test_bulk_update_sets_absolute_levels(self, client, admin_headers, db_session, product, second_product):
        resp = client.put("/api/admin/products/stock", json=[
            {"product_id": product.id, "stock": 25},
            {"product_id": second_product.id, "stock": 0},
        ], headers=admin_headers)

        assert resp.status_code == 200
        assert resp.json["count"] == 2
        assert db_session.get(Product, product.id, populate_existing=True).stock == 25
        assert db_session.get(Product, second_product.id, populate_existing=True).stock == 0

    def test_wrapped_updates_accepted(self, client, admin_headers, product):
        resp = client.put(
            "/api/admin/products/stock",
            json={"updates": [{"product_id": product.id, "stock": 7}]},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json["items"][0]["stock"] == 7

    def test_unknown_product_writes_nothing(self, client, admin_headers, db_session, product):
        resp = client.put("/api/admin/products/stock", json=[
            {"product_id": product.id, "stock": 99},
            {"product_id": 4242, "stock": 1},
        ], headers=admin_headers)

        assert resp.status_code == 404
        assert resp.json["details"] == {"product_ids": [4242]}
        assert db_session.get(Product, product.id, populate_existing=True).stock == 10

    @pytest.mark.parametrize("body", [
        [],
        [{"product_id": 1, "stock": -1}],
        [{"product_id": 1, "stock": 2.5}],
        [{"stock": 3}],
        {"updates": "all"},
    ])
    def test_invalid_updates_rejected(self, client, admin_headers, product, body):
        assert client.put("/api/admin/products/stock", json=body, headers=admin_headers).status_code == 400

    def test_low_stock_below_threshold(self, client, admin_headers, db_session, product, second_product):
        low = make_product(db_session, name="Last Dupatta", stock=2)

        resp = client.get("/api/admin/products/low-stock?threshold=6", headers=admin_headers)

        assert resp.status_code == 200
        assert resp.json["threshold"] == 6
        assert [p["id"] for p in resp.json["items"]] == [low.id, second_product.id]

    def test_stock_listing_defaults_to_ten(self, client, admin_headers, product):
        resp = client.get("/api/admin/products/stock", headers=admin_headers)
        assert resp.json["threshold"] == 10
        assert resp.json["count"] == 0

    def test_bad_threshold(self, client, admin_headers):
        resp = client.get("/api/admin/products/low-stock?threshold=-1", headers=admin_headers)
        assert resp.status_code == 400
