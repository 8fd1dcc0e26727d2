import os
from datetime import date, timedelta

os.environ.setdefault("JWT_SECRET", "test-signing-key")
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SEED_DEFAULT_DATA"] = "false"

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import main
from database import create_document
from schemas import User as UserSchema

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "Admin@123"


@pytest.fixture
def mongo(monkeypatch):
    test_db = mongomock.MongoClient()["tourvista_test"]
    monkeypatch.setattr(database, "db", test_db)
    monkeypatch.setattr(main, "db", test_db)
    database.ensure_indexes(test_db)
    return test_db


@pytest.fixture
def client(mongo):
    return TestClient(main.app)


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def future_day(days=7):
    return (date.today() + timedelta(days=days)).isoformat()


@pytest.fixture
def register(client):
    def _register(name="Asha Verma", email="asha@example.com", password="secret123", phone="9876543210"):
        res = client.post("/api/auth/register", json={"name": name, "email": email, "password": password, "phone": phone})
        assert res.status_code == 201, res.json()
        body = res.json()
        return body["user"], bearer(body["token"])
    return _register


@pytest.fixture
def admin_headers(client, mongo):
    create_document("user", UserSchema(
        name="Administrator",
        email=ADMIN_EMAIL,
        password_hash=main.auth.hash_password(ADMIN_PASSWORD),
        role="admin",
    ))
    res = client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert res.status_code == 200
    return bearer(res.json()["token"])


@pytest.fixture
def make_tour(client, admin_headers):
    def _make_tour(title="Golden Triangle", price=1000, **extra):
        payload = {"title": title, "description": f"{title} tour", "price": price, "duration": "5 days", **extra}
        res = client.post("/api/tours", json=payload, headers=admin_headers)
        assert res.status_code == 201, res.json()
        return res.json()["data"]
    return _make_tour
