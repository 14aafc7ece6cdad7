import os

# security.py reads these at import time, so they must be set before main is imported.
os.environ.setdefault("JWT_SECRET", "test-secret-key")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import create_document, ensure_indexes, get_db
from main import app
from payments import ChargeResult, GatewayUnavailable, PaymentGateway, get_gateway
from schemas import ROLE_ADMIN, ROLE_USER, User
from security import create_token, hash_password


class FakeGateway(PaymentGateway):
    def __init__(self):
        self.charges = []
        self.decline = False
        self.unreachable = False

    def generate_token(self):
        if self.unreachable:
            raise GatewayUnavailable("connection refused")
        return "fake-client-token"

    def charge(self, amount, nonce):
        if self.unreachable:
            raise GatewayUnavailable("connection refused")
        self.charges.append((amount, nonce))
        if self.decline:
            return ChargeResult(success=False, message="Processor Declined")
        return ChargeResult(
            success=True,
            transaction_id=f"txn_{len(self.charges)}",
            status="submitted_for_settlement",
            amount=amount,
            currency="USD",
        )


@pytest.fixture
def db():
    database = mongomock.MongoClient()["ecommerce-test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(db, gateway):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_gateway] = lambda: gateway
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(email="alice@shop.io", password="secret123", role=ROLE_USER, name="Alice Johnson", answer="blue"):
        user = User(
            name=name,
            email=email,
            password=hash_password(password),
            phone="5550100",
            address="123 Main St",
            answer=answer,
            role=role,
        )
        return create_document(db, "user", user)
    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(email="admin@shop.io", name="Admin", role=ROLE_ADMIN)


def auth(user_doc):
    return {"Authorization": create_token(str(user_doc["_id"]))}


@pytest.fixture
def user_headers(user):
    return auth(user)


@pytest.fixture
def admin_headers(admin):
    return auth(admin)


@pytest.fixture
def category(db):
    return create_document(db, "category", {"name": "Electronics", "slug": "electronics"})


@pytest.fixture
def product(db, category):
    return create_document(db, "product", {
        "name": "Gaming Laptop",
        "slug": "gaming-laptop",
        "description": "High-performance gaming laptop",
        "price": 2499.0,
        "category": category["_id"],
        "quantity": 10,
        "shipping": True,
        "photo": {"data": b"\x89PNG-laptop", "content_type": "image/png"},
    })


@pytest.fixture
def headers_for():
    return auth
