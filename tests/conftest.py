# tests/conftest.py

from __future__ import annotations

import os

import mongomock
import pymongo
import pytest

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-with-enough-bytes-for-hs256")
os.environ.setdefault("PUBLIC_BASE_URL", "http://testserver")

# db.py builds its client at import time, so the in-memory client must be in place first.
pymongo.MongoClient = mongomock.MongoClient

from fastapi.testclient import TestClient  # noqa: E402

from db import marrowlink_db  # noqa: E402
from main import app  # noqa: E402
from routers.users import create_user_in_db  # noqa: E402

PASSWORD = "correct-horse-battery"


@pytest.fixture(autouse=True)
def clean_db():
    """Every test starts from an empty database."""
    yield
    for name in marrowlink_db.list_collection_names():
        marrowlink_db.drop_collection(name)


@pytest.fixture()
def client() -> TestClient:
    return TestClient(app)


def _auth_headers(client: TestClient, role: str) -> dict:
    email = f"{role}@marrowlink.org"
    create_user_in_db({
        "email": email,
        "password": PASSWORD,
        "full_name": f"{role.title()} User",
        "role": role,
    })
    response = client.post("/users/login", data={"email": email, "password": PASSWORD})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture()
def admin_headers(client: TestClient) -> dict:
    return _auth_headers(client, "admin")


@pytest.fixture()
def staff_headers(client: TestClient) -> dict:
    return _auth_headers(client, "staff")


@pytest.fixture()
def readonly_headers(client: TestClient) -> dict:
    return _auth_headers(client, "readonly")


@pytest.fixture()
def donor(client: TestClient, staff_headers: dict) -> dict:
    """A donor created through the API, with a phone number for call tests."""
    response = client.post(
        "/donors",
        data={
            "first_name": "Ada",
            "last_name": "Lovelace",
            "birth_date": "1990-05-17",
            "assigned_sex": "female",
            "email": "ada@example.com",
            "cell_phone": "(301) 555-0142",
        },
        headers=staff_headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["donor"]


@pytest.fixture()
def intake_form() -> dict:
    """Valid public pre-screen form fields."""
    return {
        "first_name": "Grace",
        "last_name": "Hopper",
        "phone": "3015550199",
        "email": "grace@example.com",
        "street_address": "1 Navy Way",
        "city": "Arlington",
        "state": "VA",
        "zip_code": "22201",
        "birth_date": "1992-12-09",
        "assigned_sex": "female",
        "height_feet": "5",
        "height_inches": "6",
        "weight": "140",
        "acknowledge_info_accurate": "true",
        "acknowledge_health_screening": "true",
        "acknowledge_time_commitment": "true",
    }
