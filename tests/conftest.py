"""Pytest fixtures for storefront tests."""

import os

os.environ.setdefault("JWT_SECRET", "test-secret-key-that-is-long-enough-for-hs256")
os.environ.setdefault("ENVIRONMENT", "test")

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import CurrentUser, generate_token
from database import ORDERS, PRODUCTS, USERS, create_document, get_db, to_object_id


@pytest.fixture
def mongo_db():
    """Fresh in-memory database per test."""
    client = mongomock.MongoClient()
    yield client["storefront_test"]
    client.close()


@pytest.fixture
def client(mongo_db):
    from main import app

    app.dependency_overrides[get_db] = lambda: mongo_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(mongo_db):
    """Insert a user document; password hashing is skipped unless a hash is given."""

    def _make(username="alice", email=None, is_admin=False, password_hash="not-a-real-hash"):
        user_id = create_document(mongo_db, USERS, {
            "username": username,
            "email": email or f"{username}@example.com",
            "password_hash": password_hash,
            "is_admin": is_admin,
        })
        return CurrentUser(id=user_id, username=username, is_admin=is_admin)

    return _make


@pytest.fixture
def user(make_user):
    return make_user("alice")


@pytest.fixture
def other_user(make_user):
    return make_user("bob")


@pytest.fixture
def admin(make_user):
    return make_user("root", is_admin=True)


def bearer(actor: CurrentUser) -> dict:
    return {"Authorization": f"Bearer {generate_token(actor.id, actor.is_admin)}"}


@pytest.fixture
def user_headers(user):
    return bearer(user)


@pytest.fixture
def admin_headers(admin):
    return bearer(admin)


@pytest.fixture
def make_product(mongo_db):
    def _make(name="Classic Tee", sizes=None, price=10.0, brand="Acme", category="Shirts"):
        return create_document(mongo_db, PRODUCTS, {
            "brand": brand,
            "name": name,
            "description": None,
            "price": price,
            "image_url": "https://img.example.com/tee.png",
            "category": category,
            "sizes": {"M": 5} if sizes is None else sizes,
        })

    return _make


def line_item(product_id, size="M", quantity=2, price=10.0, name="Classic Tee"):
    return {
        "product": product_id,
        "name": name,
        "image_url": "https://img.example.com/tee.png",
        "price": price,
        "size": size,
        "quantity": quantity,
    }


SHIPPING = {"address": "1 Main St", "city": "Springfield", "postal_code": "12345", "country": "US"}
PAYMENT = {"method": "card", "transaction_id": "txn_1"}


def sizes_of(db, product_id):
    return db[PRODUCTS].find_one({"_id": to_object_id(product_id)})["sizes"]


def order_doc(db, order_id):
    return db[ORDERS].find_one({"_id": to_object_id(order_id)})
