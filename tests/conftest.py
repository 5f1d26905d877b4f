import base64
import os

os.environ.setdefault("JWT_SECRET", "test-secret-for-the-storefront-suite-0123456789")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import create_token, hash_password
from database import create_document, ensure_indexes, get_db
from main import app, seed_categories
from schemas import User

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
PNG_DATA_URI = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()


@pytest.fixture
def db():
    database = mongomock.MongoClient()["storefront_test"]
    ensure_indexes(database)
    seed_categories(database)
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    app.state.db = db
    yield TestClient(app)
    app.dependency_overrides.clear()
    app.state.db = None


@pytest.fixture
def admin_user(db):
    user = User(name="Admin", email="admin@example.com", password_hash=hash_password("secret"), is_admin=True)
    return create_document(db, "user", user)


@pytest.fixture
def customer_user(db):
    user = User(name="Jane", email="jane@example.com", password_hash=hash_password("hunter2"))
    return create_document(db, "user", user)


@pytest.fixture
def admin_headers(admin_user):
    return {"Authorization": f"Bearer {create_token(admin_user)}"}


@pytest.fixture
def product_payload():
    return {
        "name": "Classic Tee",
        "description": "Heavyweight cotton tee",
        "originalPrice": 500,
        "salePrice": 350,
        "category": "t-shirt",
        "sizes": ["S", "M", "L"],
        "colors": ["Black", "Off-white"],
        "images": [PNG_DATA_URI],
    }


@pytest.fixture
def product(client, admin_headers, product_payload):
    res = client.post("/api/products", json=product_payload, headers=admin_headers)
    assert res.status_code == 201
    return res.json()
