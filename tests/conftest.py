import hashlib
import hmac
import json
import os
from decimal import Decimal

# Settings are read at import time, so the environment goes first.
os.environ["DATABASE_URL"] = "sqlite:///./test_app.db"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp_test_secret"

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from clinic_payments.config import Settings  # noqa: E402
from clinic_payments.database import Base  # noqa: E402
from clinic_payments.gateway import RazorpayGateway  # noqa: E402
from clinic_payments.models import CartItem, Doctor, Product, User  # noqa: E402
from clinic_payments.orchestrator import PaymentOrchestrator  # noqa: E402
from clinic_payments.purchasables import PurchasableRegistry  # noqa: E402

KEY_ID = "rzp_test_key"
KEY_SECRET = "rzp_test_secret"

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_payments.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)


class FakeRazorpay:
    """Stands in for the Razorpay REST API behind an httpx.MockTransport."""

    def __init__(self):
        self.orders = []
        self.payments = {}
        self.requests = []
        self.outage = None          # "timeout" | "error" | None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.outage == "timeout":
            raise httpx.ReadTimeout("timed out", request=request)
        if self.outage == "error":
            return httpx.Response(500, json={"error": {"code": "SERVER_ERROR"}})

        if request.method == "POST" and request.url.path.endswith("/orders"):
            body = json.loads(request.content)
            order = {
                "id": f"order_{len(self.orders) + 1:04d}",
                "entity": "order",
                "amount": body["amount"],
                "currency": body["currency"],
                "receipt": body["receipt"],
                "notes": body["notes"],
                "status": "created",
            }
            self.orders.append(order)
            return httpx.Response(200, json=order)

        if request.method == "GET" and "/payments/" in request.url.path:
            payment_id = request.url.path.rsplit("/", 1)[-1]
            if payment_id not in self.payments:
                return httpx.Response(400, json={"error": {"code": "BAD_REQUEST_ERROR"}})
            return httpx.Response(200, json=self.payments[payment_id])

        return httpx.Response(404)


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db():
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def settings():
    return Settings(
        database_url=SQLALCHEMY_DATABASE_URL,
        razorpay_key_id=KEY_ID,
        razorpay_key_secret=KEY_SECRET,
        pro_tier_price=Decimal("999"),
        pro_tier_days=30,
    )


@pytest.fixture
def razorpay():
    return FakeRazorpay()


@pytest.fixture
def gateway(razorpay):
    gw = RazorpayGateway(KEY_ID, KEY_SECRET, transport=httpx.MockTransport(razorpay))
    yield gw
    gw.close()


@pytest.fixture
def registry(settings):
    return PurchasableRegistry(settings)


@pytest.fixture
def orchestrator(db, gateway, registry, settings):
    return PaymentOrchestrator(db, gateway, registry, settings)


@pytest.fixture
def sign():
    def _sign(order_id, payment_id, secret=KEY_SECRET):
        return hmac.new(
            secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256
        ).hexdigest()
    return _sign


@pytest.fixture
def make_user(db):
    def _make(**fields):
        fields.setdefault("name", "Asha Rao")
        user = User(**fields)
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def make_doctor(db):
    def _make(fee="1500", **fields):
        fields.setdefault("name", "Dr. Mehta")
        doctor = Doctor(fee=Decimal(fee), **fields)
        db.add(doctor)
        db.commit()
        return doctor
    return _make


@pytest.fixture
def make_product(db):
    def _make(price, name="Ashwagandha"):
        product = Product(name=name, price=Decimal(price))
        db.add(product)
        db.commit()
        return product
    return _make


@pytest.fixture
def add_to_cart(db):
    def _add(user, product, quantity=1):
        db.add(CartItem(user_id=user.id, product_id=product.id, quantity=quantity))
        db.commit()
    return _add
