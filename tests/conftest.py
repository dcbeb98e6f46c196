"""Pytest configuration for the storefront order core tests."""

import json
import os
from decimal import Decimal
import uuid

# Keep the app from touching a developer database at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("STOREFRONT_SKIP_CREATE_TABLES", "1")

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from storefront.auth import get_or_create_user  # noqa: E402
from storefront.config import StorefrontConfig, set_config  # noqa: E402
from storefront.database import Base, make_engine  # noqa: E402
from storefront.errors import GatewayError  # noqa: E402
from storefront.metrics import metrics_collector  # noqa: E402
from storefront.models import Product, ProductSize  # noqa: E402
from storefront.payment_gateway import GatewayOrder, RazorpayClient, compute_signature  # noqa: E402
from storefront.schemas import CartLine, ShippingAddressInput  # noqa: E402

KEY_ID = "rzp_test_key"
KEY_SECRET = "rzp_test_secret"
ADMIN_KEY = "admin-test-key"


# ---------------------------------------------------------------------------
# Database: a file-backed SQLite database per test, so worker threads can
# open their own connections and contend on real row updates.
# ---------------------------------------------------------------------------

@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'storefront.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def config():
    """Fresh config for every test; secrets are test values."""
    cfg = StorefrontConfig(
        database_url="sqlite://",
        payments_key_id=KEY_ID,
        payments_key_secret=KEY_SECRET,
        admin_api_key=ADMIN_KEY,
    )
    set_config(cfg)
    metrics_collector.reset()
    yield cfg
    set_config(None)


# ---------------------------------------------------------------------------
# Payment gateway doubles
# ---------------------------------------------------------------------------

class FakeGateway:
    """In-process gateway: hands out unique order ids and verifies with the test secret."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    async def create_order(self, amount_minor, currency, notes=None, receipt=None):
        if self.fail:
            raise GatewayError("Failed to create payment order. Please try again.")
        self.calls.append({"amount": amount_minor, "currency": currency, "notes": notes, "receipt": receipt})
        return GatewayOrder(
            id=f"order_{uuid.uuid4().hex[:14]}",
            amount=amount_minor,
            currency=currency,
            receipt=receipt,
            notes=notes or {},
        )

    def verify_signature(self, order_id, payment_id, signature):
        return RazorpayClient(KEY_ID, KEY_SECRET).verify_signature(order_id, payment_id, signature)


@pytest.fixture
def gateway():
    return FakeGateway()


def razorpay_transport(requests_seen: list, status_code: int = 200):
    """MockTransport that answers POST /orders like the Razorpay Orders API."""

    def handler(request: httpx.Request) -> httpx.Response:
        requests_seen.append(request)
        if status_code != 200:
            return httpx.Response(status_code, json={"error": {"code": "BAD_REQUEST_ERROR", "description": "rejected"}})
        body = json.loads(request.content)
        return httpx.Response(200, json={
            "id": f"order_{uuid.uuid4().hex[:14]}",
            "entity": "order",
            "amount": body["amount"],
            "currency": body["currency"],
            "receipt": body["receipt"],
            "status": "created",
            "notes": body["notes"],
        })

    return httpx.MockTransport(handler)


def sign(order_id: str, payment_id: str) -> str:
    return compute_signature(KEY_SECRET, order_id, payment_id)


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------

def seed_product(db, name="Product A", price="100", discount="10", stock=5, sizes=None, images=None):
    """
    Insert a product. With sizes ({label: qty}), stock is their sum.
    Returns (product_id, {label: size_id}).
    """
    product = Product(
        name=name,
        price=Decimal(price),
        discount=Decimal(discount),
        stock=sum(sizes.values()) if sizes else stock,
        images=images if images is not None else [f"https://cdn.example.com/{name.lower().replace(' ', '-')}.jpg"],
    )
    for label, qty in (sizes or {}).items():
        product.sizes.append(ProductSize(size=label, quantity=qty))
    db.add(product)
    db.commit()
    size_ids = {s.size: s.id for s in product.sizes}
    return product.id, size_ids


@pytest.fixture
def user(db):
    return get_or_create_user(db, "idp|customer-1", "customer@example.com", "Customer One")


@pytest.fixture
def other_user(db):
    return get_or_create_user(db, "idp|customer-2", "other@example.com", "Customer Two")


def address(**overrides):
    fields = {
        "full_name": "Asha Rao",
        "phone": "+91 98765 43210",
        "street": "12 MG Road",
        "city": "Bengaluru",
        "state": "KA",
        "postal_code": "560001",
        "country": "IN",
    }
    fields.update(overrides)
    return ShippingAddressInput(**fields)


def line(product_id, quantity, size_id=None):
    return CartLine(product_id=product_id, quantity=quantity, size_id=size_id)


ADDRESS_JSON = {
    "fullName": "Asha Rao",
    "phone": "+91 98765 43210",
    "street": "12 MG Road",
    "city": "Bengaluru",
    "state": "KA",
    "postalCode": "560001",
    "country": "IN",
}
