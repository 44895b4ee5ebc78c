"""
Shared fixtures. The data dir points at a temp directory and persistence is
off, so every test starts from an empty in-memory store in mock LLM mode.
"""

import os
import tempfile

os.environ["EDUPATH_DATA_DIR"] = tempfile.mkdtemp(prefix="edupath-test-")
os.environ["PERSIST_DATA"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ.pop("ANTHROPIC_API_KEY", None)
os.environ.pop("DATABASE_URL", None)

import pytest

from edupath.db import reset_db, get_db, save_db
from edupath.settings import reset_settings
from edupath.analysis import analysis_cache


@pytest.fixture(autouse=True)
def clean_state():
    """Empty store, default settings and an empty analysis cache per test."""
    reset_db()
    reset_settings()
    analysis_cache.clear()
    yield


@pytest.fixture
def registration_data():
    return {
        "username": "priya_s",
        "password": "secret123",
        "confirmPassword": "secret123",
        "email": "priya@example.com",
        "firstName": "Priya",
        "lastName": "Sharma",
        "phoneNumber": "+9779812345678",
        "studyDestination": "Australia",
        "startDate": "2026-02",
        "city": "Kathmandu",
        "country": "Nepal",
        "counsellingMode": "online",
        "fundingSource": "Family",
        "studyLevel": "Master",
        "agreeToTerms": True,
        "allowContact": True,
        "receiveUpdates": False,
    }


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from edupath.server import app
    return TestClient(app)


@pytest.fixture
def user_client(client, registration_data):
    """Client holding the session cookie of a freshly registered student."""
    resp = client.post("/api/register", json=registration_data)
    assert resp.status_code == 201
    return client


@pytest.fixture
def make_admin():
    """Insert an admin account directly and return its credentials."""
    from edupath.auth import hash_password
    from edupath.db import next_id

    def _make(username="counsellor", password="adminpass1"):
        db = get_db()
        db["users"].append({
            "id": next_id(db, "users"), "username": username, "email": f"{username}@edupath.test",
            "password": hash_password(password), "firstName": "Admin", "lastName": "User",
            "role": "admin", "status": "active", "analysisCount": 0, "maxAnalyses": 0,
            "createdAt": "2026-01-01T00:00:00",
        })
        save_db(db)
        return {"username": username, "password": password}
    return _make


@pytest.fixture
def admin_client(make_admin):
    from fastapi.testclient import TestClient
    from edupath.server import app
    c = TestClient(app)
    resp = c.post("/api/login", json=make_admin())
    assert resp.status_code == 200
    return c
