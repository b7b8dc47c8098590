import re

import mongomock
import pytest

from storefront import create_app
from storefront import emails

API = "/api/v1"

TEST_CONFIG = {
    "TESTING": True,
    "BCRYPT_ROUNDS": 4,
    "JWT_SECRET_KEY": "test-secret-key-with-enough-length-for-hs256",
    "RESEND_API_KEY": "",
    "MAX_FAILED_LOGIN_ATTEMPTS": 3,
    "RATELIMIT_ENABLED": False,
}

SHIPPING_ADDRESS = {
    "full_name": "Nguyen Van A",
    "phone": "+84901234567",
    "street": "123 Nguyen Hue Street",
    "ward": "Ben Nghe Ward",
    "district": "District 1",
    "city": "Ho Chi Minh City",
}


@pytest.fixture
def db():
    return mongomock.MongoClient().storefront_test


@pytest.fixture
def app(db):
    return create_app(dict(TEST_CONFIG), database=db)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def outbox(monkeypatch):
    sent = []

    def fake_send(payload, api_key):
        sent.append(payload)
        return True, None

    monkeypatch.setattr(emails, "send_email_via_resend", fake_send)
    return sent


def extract_code(message):
    match = re.search(r"\b(\d{6})\b", message["text"])
    assert match, message["text"]
    return match.group(1)


def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def register(client, outbox):
    def _register(email="shopper@example.com", password="password123", name="Shopper"):
        response = client.post(
            f"{API}/auth/register",
            json={"name": name, "email": email, "password": password},
        )
        assert response.status_code == 201, response.get_json()
        return response.get_json()["data"]

    return _register


@pytest.fixture
def user(register):
    return register()


@pytest.fixture
def user_headers(user):
    return auth_headers(user["access_token"])


@pytest.fixture
def admin_headers(register, db):
    data = register(email="admin@example.com", name="Store Admin")
    db.users.update_one({"email": "admin@example.com"}, {"$set": {"role": "admin"}})
    return auth_headers(data["access_token"])


@pytest.fixture
def make_category(client, admin_headers):
    def _make(name="Electronics", parent=None, **extra):
        body = {"name": name, **extra}
        if parent:
            body["parent"] = parent
        response = client.post(f"{API}/categories", json=body, headers=admin_headers)
        assert response.status_code == 201, response.get_json()
        return response.get_json()["data"]

    return _make


@pytest.fixture
def category(make_category):
    return make_category()


@pytest.fixture
def make_product(client, admin_headers, category):
    def _make(name="Wireless Mouse", price=250000, stock=20, **extra):
        body = {
            "name": name,
            "description": f"{name} description",
            "price": price,
            "category": category["id"],
            "images": ["https://example.com/image.png"],
            "stock": stock,
            "status": "active",
            **extra,
        }
        response = client.post(f"{API}/products", json=body, headers=admin_headers)
        assert response.status_code == 201, response.get_json()
        return response.get_json()["data"]

    return _make


@pytest.fixture
def product(make_product):
    return make_product()
