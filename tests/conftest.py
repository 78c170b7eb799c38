import hashlib
import hmac
import json
import os
import time
import uuid
from decimal import Decimal

os.environ["DATABASE_URL"] = "sqlite:///./test_shop.db"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["ENVIRONMENT"] = "test"

import pytest
from fastapi.testclient import TestClient

from app import database
from app.auth import Identity, verify_token
from app.cart import CartStore
from app.main import create_app
from app.models import Product

WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture(autouse=True)
def setup_db():
    database.Base.metadata.create_all(bind=database.engine)
    yield
    database.Base.metadata.drop_all(bind=database.engine)


@pytest.fixture
def cart_store():
    return CartStore()


@pytest.fixture
def customer():
    return Identity(id="user-1", role="customer", email="buyer@example.com")


@pytest.fixture
def admin():
    return Identity(id="admin-1", role="admin", email="admin@example.com")


@pytest.fixture
def fastapi_app(cart_store):
    return create_app(cart_store=cart_store)


@pytest.fixture
def client(fastapi_app, customer):
    # Bypass token verification; tests act as the customer by default
    fastapi_app.dependency_overrides[verify_token] = lambda: customer
    with TestClient(fastapi_app) as c:
        yield c
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def as_identity(fastapi_app):
    def switch(identity):
        fastapi_app.dependency_overrides[verify_token] = lambda: identity

    return switch


@pytest.fixture
def make_product():
    """Insert a product with its own short-lived session and return its id."""

    def factory(slug="widget", price="10.00", stock=5, is_active=True, name=None):
        product_id = str(uuid.uuid4())
        session = database.SessionLocal()
        try:
            session.add(
                Product(
                    id=product_id,
                    name=name or slug.replace("-", " ").title(),
                    slug=slug,
                    sku=slug.upper(),
                    price=Decimal(price),
                    stock=stock,
                    images=[f"https://cdn.example.com/{slug}.png"],
                    is_active=is_active,
                )
            )
            session.commit()
        finally:
            session.close()
        return product_id

    return factory


def stock_of(product_id):
    session = database.SessionLocal()
    try:
        return session.get(Product, product_id).stock
    finally:
        session.close()


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def webhook_body(kind: str, obj: dict, event_id: str = "evt_test") -> bytes:
    return json.dumps({"id": event_id, "type": kind, "data": {"object": obj}}).encode("utf-8")


def set_product(product_id, **values):
    session = database.SessionLocal()
    try:
        product = session.get(Product, product_id)
        for key, value in values.items():
            setattr(product, key, value)
        session.commit()
    finally:
        session.close()


ADDRESS = {
    "street": "Av. Principal 123",
    "city": "Santiago",
    "state": "RM",
    "zipCode": "8320000",
    "country": "Chile",
}
