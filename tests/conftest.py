import mongomock
import pytest
from fastapi.testclient import TestClient

from cache import Cache
from config import Settings
from main import create_app

SHIPPING_ADDRESS = {
    "street": "123 Main St",
    "city": "Springfield",
    "state": "IL",
    "zip_code": "62701",
}


@pytest.fixture()
def settings():
    return Settings(
        jwt_secret="test-secret",
        refresh_token_secret="test-refresh-secret",
        bcrypt_rounds=4,
        log_level="WARNING",
        environment="test",
        api_rate_limit="10000 per hour",
        auth_rate_limit="1000 per hour",
    )


@pytest.fixture()
def db():
    return mongomock.MongoClient()["vireon_test"]


@pytest.fixture()
def cache():
    return Cache()


@pytest.fixture()
def app(settings, db, cache):
    return create_app(settings, database=db, cache=cache)


@pytest.fixture()
def client(app):
    return TestClient(app)


@pytest.fixture()
def register(client):
    """Register a user and return ``(user_id, auth_headers)``."""

    def _register(email="a@x.com", password="secret1", name="A", role=None):
        payload = {"name": name, "email": email, "password": password}
        if role:
            payload["role"] = role
        response = client.post("/api/auth/register", json=payload)
        assert response.status_code == 201, response.text
        body = response.json()
        return body["user"]["id"], {"Authorization": f"Bearer {body['token']}"}

    return _register


@pytest.fixture()
def user(register):
    return register()


@pytest.fixture()
def admin(register):
    return register(email="admin@shop.com", name="Admin", role="admin")


@pytest.fixture()
def create_product(client, admin):
    """Create a product as the admin and return its id."""

    def _create(name="Widget", price=10.0, stock=5, category="Gadgets", **extra):
        _, headers = admin
        response = client.post(
            "/api/products",
            json={"name": name, "price": price, "stock": stock, "category": category, **extra},
            headers=headers,
        )
        assert response.status_code == 201, response.text
        return response.json()["product"]["id"]

    return _create
