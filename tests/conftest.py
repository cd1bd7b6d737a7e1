"""Root conftest: shared app, database and account fixtures."""

import os
import tempfile

# Settings are cached on first read, so the environment must be set first
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="grocery-uploads-"))
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import mongomock
import pytest
from bson.objectid import ObjectId
from fastapi.testclient import TestClient

from database import CATEGORIES, PRODUCTS, create_document
from main import create_app
from schemas import Category, Product

PASSWORD = "secret123"


def signup_payload(**overrides) -> dict:
    payload = {
        "name": "Asha Rao",
        "email": "asha@freshmail.in",
        "phone": "9876543210",
        "password": PASSWORD,
        "addressLine1": "12 MG Road",
        "city": "Bengaluru",
        "state": "Karnataka",
        "pincode": "560001",
    }
    payload.update(overrides)
    return payload


def register(client, **overrides) -> dict:
    """Sign up through the API and return ids plus auth headers."""
    res = client.post("/api/auth/signup", json=signup_payload(**overrides))
    assert res.status_code == 201, res.json()
    body = res.json()
    return {
        "id": body["user"]["id"],
        "token": body["token"],
        "headers": {"Authorization": f"Bearer {body['token']}"},
        "address_id": body["user"]["defaultAddress"]["id"],
        "body": body,
    }


@pytest.fixture
def db():
    return mongomock.MongoClient(tz_aware=True)["grocery_test"]


@pytest.fixture
def client(db):
    with TestClient(create_app(database=db)) as c:
        yield c


@pytest.fixture
def user(client):
    return register(client)


@pytest.fixture
def other_user(client):
    return register(client, name="Ravi Kumar", email="ravi@freshmail.in", phone="9123456780")


@pytest.fixture
def admin(client, db):
    account = register(client, name="Store Admin", email="admin@freshmail.in", phone="9000000001")
    db.users.update_one({"_id": ObjectId(account["id"])}, {"$set": {"isAdmin": True}})
    return account


@pytest.fixture
def category(db):
    return create_document(db, CATEGORIES, Category(name="Fruits", icon="apple", color="#FF6B6B"))


@pytest.fixture
def make_product(db, category):
    def _make(name="Alphonso Mango", price=225.0, stock_count=10, **fields):
        fields.setdefault("category", category)
        return create_document(db, PRODUCTS, Product(
            name=name, price=price, stock_count=stock_count, unit="1 kg", **fields,
        ))
    return _make
