from datetime import timedelta

import pytest
from flask_jwt_extended import create_access_token
from werkzeug.security import generate_password_hash

from meatcart import create_app
from meatcart.config import TestConfig
from meatcart.extensions import db
from meatcart.model import Coupon, DeliveryBoy, Product, User
from meatcart.services import cart_service, order_service
from meatcart.utils.dates import utcnow
from meatcart.utils.money import D

ADDRESS = {
    "street": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "zip_code": "560001",
}

CHECKOUT = {
    "delivery_address": ADDRESS,
    "contact_info": {"phone": "9876543210"},
    "payment_method": "cash-on-delivery",
}


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def _user(email, role="user", name="Test User"):
    u = User(email=email, name=name, phone="9000000000",
             password_hash=generate_password_hash("secret123"), role=role)
    db.session.add(u)
    db.session.commit()
    return u


def _courier(email, phone, approved=True, availability="available"):
    d = DeliveryBoy(
        first_name="Ravi", last_name=email.split("@")[0], email=email, phone=phone,
        password_hash=generate_password_hash("secret123"),
        is_approved=approved, is_verified=approved, availability=availability,
    )
    db.session.add(d)
    db.session.commit()
    return d


@pytest.fixture
def customer(app):
    return _user("asha@example.com", name="Asha")


@pytest.fixture
def other_customer(app):
    return _user("vikram@example.com", name="Vikram")


@pytest.fixture
def admin(app):
    return _user("admin@example.com", role="admin", name="Admin")


@pytest.fixture
def courier(app):
    return _courier("ravi@example.com", "9111111111")


@pytest.fixture
def courier_b(app):
    return _courier("suresh@example.com", "9222222222")


@pytest.fixture
def products(app):
    items = {
        "chicken": Product(name="Chicken Curry Cut", category="chicken", price=D("300"), quantity=20),
        "mutton": Product(name="Mutton Boneless", category="mutton", price=D("1500"), quantity=10),
        "fish": Product(name="Seer Fish Steaks", category="fish", price=D("200"), quantity=5),
    }
    db.session.add_all(items.values())
    db.session.commit()
    return items


def _coupon(code, **kw):
    now = utcnow()
    c = Coupon(
        code=code,
        description=kw.pop("description", code),
        valid_from=kw.pop("valid_from", now - timedelta(days=1)),
        valid_to=kw.pop("valid_to", now + timedelta(days=30)),
        usage_count=0,
        is_active=True,
        **kw,
    )
    db.session.add(c)
    db.session.commit()
    return c


@pytest.fixture
def make_coupon(app):
    return _coupon


@pytest.fixture
def welcome10(app):
    return _coupon("WELCOME10", type="percentage", value=D("10"),
                   minimum_order_value=D("500"), maximum_discount=D("200"))


@pytest.fixture
def flat100(app):
    return _coupon("FLAT100", type="fixed", value=D("100"), minimum_order_value=D("1000"))


@pytest.fixture
def auth_headers(app):
    def _headers(who):
        kind = "delivery" if isinstance(who, DeliveryBoy) else "user"
        token = create_access_token(identity=str(who.id), additional_claims={"kind": kind})
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def place_order(app):
    """Fill the user's cart with {product: qty} and check out."""
    def _place(user, lines, coupon_code=None, payload=None):
        for product, qty in lines.items():
            cart_service.add_item(user.id, product.id, qty)
        if coupon_code:
            cart_service.apply_coupon(user.id, coupon_code)
        return order_service.checkout(user, payload or CHECKOUT)
    return _place
