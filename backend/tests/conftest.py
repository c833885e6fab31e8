"""
Pytest fixtures for storefront backend tests.

Provides test database setup, a fake payment gateway, role-specific users,
catalog/coupon fixtures and the test client.
"""

from datetime import timedelta

import pytest
from storefront import create_app
from storefront.extensions import db
from storefront.models import Coupon, Product, ProductVariant, User
from storefront.services.auth_service import hash_password
from storefront.services.gateway_client import compute_signature
from storefront.errors import UpstreamGatewayError
from storefront.time_utils import utcnow


PASSWORD = "Password123!"
GATEWAY_SECRET = "test_key_secret"

SHIPPING_ADDRESS = {
    "name": "Asha Rao",
    "phone": "9876543210",
    "address": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560001",
}


class FakeGateway:
    """In-process stand-in for the payment gateway client."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.orders = []
        self.refunds = []
        self.fail_with = None
        self._seq = 0

    def create_order(self, amount, currency, receipt):
        if self.fail_with:
            raise UpstreamGatewayError(self.fail_with)
        self._seq += 1
        order = {"id": f"order_test_{self._seq}", "amount": amount, "currency": currency, "receipt": receipt}
        self.orders.append(order)
        return order

    def refund_payment(self, payment_id, amount=None):
        if self.fail_with:
            raise UpstreamGatewayError(self.fail_with)
        self._seq += 1
        refund = {"id": f"rfnd_test_{self._seq}", "payment_id": payment_id, "amount": amount}
        self.refunds.append(refund)
        return refund


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RAZORPAY_KEY_ID': 'rzp_test_key',
        'RAZORPAY_KEY_SECRET': GATEWAY_SECRET,
        'MAIL_SERVER': None,
        'ADMIN_NOTIFICATION_EMAIL': None,
        'LOG_LEVEL': 'WARNING',
    })
    app.extensions['payment_gateway'] = FakeGateway()

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def gateway(app):
    fake = app.extensions['payment_gateway']
    fake.reset()
    return fake


@pytest.fixture(scope='session')
def password_hash():
    """bcrypt is slow by design; hash the shared test password once."""
    return hash_password(PASSWORD)


def _make_user(db_session, password_hash, name, email, role, **fields):
    user = User(name=name, email=email, password_hash=password_hash, role=role, **fields)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def customer(db_session, password_hash):
    return _make_user(db_session, password_hash, "Asha", "asha@example.com", "user")


@pytest.fixture(scope='function')
def other_customer(db_session, password_hash):
    return _make_user(db_session, password_hash, "Ravi", "ravi@example.com", "customer")


@pytest.fixture(scope='function')
def reseller(db_session, password_hash):
    return _make_user(
        db_session, password_hash, "Wholesale Co", "reseller@example.com", "reseller",
        reseller_status="approved",
    )


@pytest.fixture(scope='function')
def pending_reseller(db_session, password_hash):
    return _make_user(
        db_session, password_hash, "Trade Applicant", "applicant@example.com", "reseller",
        reseller_status="pending", business_name="Applicant Traders",
    )


@pytest.fixture(scope='function')
def admin(db_session, password_hash):
    return _make_user(db_session, password_hash, "Admin", "admin@example.com", "admin")


def make_product(db_session, **overrides):
    fields = {
        "name": "Cotton Kurta",
        "category": "apparel",
        "price_cents": 50000,
        "stock": 10,
        "retail_shipping_cents": 5000,
        "wholesale_price_cents": 35000,
        "wholesale_shipping_cents": 2000,
    }
    fields.update(overrides)
    product = Product(**fields)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product(db_session):
    """Retail 500.00 + 50.00 shipping per unit, stock 10."""
    return make_product(db_session)


@pytest.fixture(scope='function')
def second_product(db_session):
    return make_product(
        db_session,
        name="Silk Saree",
        category="sarees",
        product_type="SAREE",
        attributes={"fabric": "silk"},
        price_cents=120000,
        stock=5,
        retail_shipping_cents=0,
        wholesale_price_cents=0,
    )


@pytest.fixture(scope='function')
def variant_product(db_session):
    product = make_product(db_session, name="Printed Saree", stock=6)
    product.variants = [
        ProductVariant(color_name="Red", size="Free Size", stock=3),
        ProductVariant(color_name="Blue", size="Free Size", stock=3),
    ]
    db_session.commit()
    return product


def make_coupon(db_session, **overrides):
    now = utcnow()
    fields = {
        "code": "SAVE10",
        "discount_type": "PERCENTAGE",
        "discount_value": 10,
        "start_date": now - timedelta(days=1),
        "expiration_date": now + timedelta(days=30),
    }
    fields.update(overrides)
    coupon = Coupon(**fields)
    db_session.add(coupon)
    db_session.commit()
    return coupon


@pytest.fixture(scope='function')
def coupon(db_session):
    return make_coupon(db_session)


def sign(gateway_order_id: str, gateway_payment_id: str, secret: str = GATEWAY_SECRET) -> str:
    return compute_signature(secret, gateway_order_id, gateway_payment_id)


def get_auth_token(client, email: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def customer_headers(client, customer):
    return auth_headers(get_auth_token(client, customer.email))


@pytest.fixture(scope='function')
def other_customer_headers(client, other_customer):
    return auth_headers(get_auth_token(client, other_customer.email))


@pytest.fixture(scope='function')
def reseller_headers(client, reseller):
    return auth_headers(get_auth_token(client, reseller.email))


@pytest.fixture(scope='function')
def admin_headers(client, admin):
    return auth_headers(get_auth_token(client, admin.email))
