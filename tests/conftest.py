"""Pytest configuration for the storefront API tests."""

import hashlib
import hmac
import json
import time

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from database import create_document, ensure_indexes, get_db
from main import app
from payments import CheckoutSession, PaymentError, StripeGateway, get_payment_gateway
from schemas import Product as ProductSchema, Role, User as UserSchema
from security import create_access_token, get_password_hash

WEBHOOK_SECRET = "whsec_test_secret"
PASSWORD = "s3cret-pass"


class FakeGateway(StripeGateway):
    """Records checkout sessions instead of calling Stripe. Webhook verification is the real one."""

    def __init__(self):
        super().__init__(api_key="sk_test", webhook_secret=WEBHOOK_SECRET, currency="usd", frontend_url="http://shop.test")
        self.sessions = []
        self.fail_with = None

    def create_checkout_session(self, line_items, customer_email, metadata):
        if self.fail_with:
            raise PaymentError(self.fail_with)
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions.append({
            "id": session_id,
            "line_items": line_items,
            "customer_email": customer_email,
            "metadata": metadata,
        })
        return CheckoutSession(id=session_id, url=f"https://checkout.stripe.test/pay/{session_id}")


def stripe_signature(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def post_event(client, event: dict, secret: str = WEBHOOK_SECRET):
    payload = json.dumps(event)
    return client.post(
        "/api/orders/webhook",
        content=payload,
        headers={"stripe-signature": stripe_signature(payload, secret), "content-type": "application/json"},
    )


# ---------------------------------------------------------------------------
# App wiring
# ---------------------------------------------------------------------------

@pytest.fixture
def db():
    """Fresh in-memory database per test, with the production indexes."""
    database = mongomock.MongoClient()["storefront_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(db, gateway):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Data helpers
# ---------------------------------------------------------------------------

def make_user(db, email, username="shopper", role=Role.USER, password=PASSWORD):
    user = UserSchema(username=username, email=email, password_hash=get_password_hash(password), role=role)
    user_id = create_document(db, "user", user)
    return db["user"].find_one({"_id": ObjectId(user_id)})


def auth_headers(user_doc):
    return {"Authorization": f"Bearer {create_access_token(user_doc)}"}


def make_product(db, name="Kenyan AA", price=17.0, categories=None, image=None):
    product = ProductSchema(name=name, price=price, categories=categories or [], image=image)
    return create_document(db, "product", product)


@pytest.fixture
def user(db):
    return make_user(db, "alice@example.com", username="alice")


@pytest.fixture
def other_user(db):
    return make_user(db, "bob@example.com", username="bob")


@pytest.fixture
def admin(db):
    return make_user(db, "admin@example.com", username="root", role=Role.ADMIN)


@pytest.fixture
def user_headers(user):
    return auth_headers(user)


@pytest.fixture
def other_headers(other_user):
    return auth_headers(other_user)


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def product_id(db):
    return make_product(db, name="Colombian Supremo", price=14.99, categories=["Medium Roast", "Colombian"])
