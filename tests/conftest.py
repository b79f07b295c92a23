import itertools
import os

os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("JWT_SECRET", "test-secret")

import mongomock  # noqa: E402
import pytest  # noqa: E402
from bson import ObjectId  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from carts import CartService  # noqa: E402
from catalog import ProductService  # noqa: E402
from database import create_document, ensure_indexes  # noqa: E402
from main import create_app  # noqa: E402
from orders import OrderService  # noqa: E402
from reviews import ReviewService  # noqa: E402
from schemas import Address, User  # noqa: E402
from security import create_token, hash_password  # noqa: E402


@pytest.fixture()
def db():
    database = mongomock.MongoClient()["storefront_test"]
    ensure_indexes(database)
    return database


@pytest.fixture()
def client(db):
    with TestClient(create_app(database=db)) as test_client:
        yield test_client


@pytest.fixture()
def make_user(db):
    counter = itertools.count()

    def _make(role="user", active=True, password="secret123", username=None):
        username = username or f"{role}{next(counter)}"
        user = User(
            username=username,
            email=f"{username}@example.com",
            password_hash=hash_password(password),
            role=role,
            active=active,
        )
        return db["user"].find_one({"_id": ObjectId(create_document(db, "user", user))})

    return _make


@pytest.fixture()
def make_product(db):
    counter = itertools.count()

    def _make(**overrides):
        n = next(counter)
        data = {
            "name": f"Product {n}",
            "description": "A product",
            "price": 10.0,
            "category": "General",
            "stock": 10,
            "featured": False,
            "image_url": "https://img.example.com/p.png",
            "images": [],
        }
        data.update(overrides)
        return db["product"].find_one({"_id": ObjectId(create_document(db, "product", data))})

    return _make


@pytest.fixture()
def auth():
    def _headers(user):
        return {"Authorization": f"Bearer {create_token(user)}"}

    return _headers


@pytest.fixture()
def products(db):
    return ProductService(db)


@pytest.fixture()
def carts(db, products):
    return CartService(db, products)


@pytest.fixture()
def orders(db, products, carts):
    return OrderService(db, products, carts)


@pytest.fixture()
def reviews(db, products):
    return ReviewService(db, products)


@pytest.fixture()
def address():
    return Address(street="1 Main St", city="Springfield", postal_code="12345", country="US")
