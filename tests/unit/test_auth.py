"""
Unit tests for password hashing, session tokens and account seeding.
"""

from datetime import datetime, timedelta

import jwt as pyjwt
import pytest
from fastapi import HTTPException

from edupath.auth import (
    hash_password, verify_password, create_jwt, decode_jwt, authenticate, can_access,
    find_user_by_username, seed_admin,
)
from edupath.config import JWT_SECRET, JWT_ALGORITHM
from edupath.db import get_db, save_db
import edupath.auth as auth


def _add_user(username="anna", password="secret123", **extra):
    db = get_db()
    user = {"id": len(db["users"]) + 1, "username": username, "email": f"{username}@x.com",
            "password": hash_password(password), "role": "user", "status": "active", **extra}
    db["users"].append(user)
    save_db(db)
    return user


class TestPasswords:

    def test_hash_and_verify(self):
        hashed = hash_password("secret123")
        assert hashed != "secret123"
        assert verify_password("secret123", hashed)
        assert not verify_password("wrong", hashed)

    def test_malformed_hash_is_not_an_error(self):
        assert verify_password("secret123", "not-a-bcrypt-hash") is False


class TestTokens:

    def test_round_trip(self):
        token = create_jwt({"id": 42, "username": "anna", "role": "admin"})
        payload = decode_jwt(token)
        assert payload["sub"] == "42"
        assert payload["role"] == "admin"

    def test_expired(self):
        token = pyjwt.encode({"sub": "1", "exp": datetime.utcnow() - timedelta(minutes=1)},
                             JWT_SECRET, algorithm=JWT_ALGORITHM)
        with pytest.raises(HTTPException) as exc:
            decode_jwt(token)
        assert exc.value.status_code == 401
        assert exc.value.detail == "Session expired"

    def test_tampered(self):
        token = pyjwt.encode({"sub": "1"}, "some-other-secret", algorithm=JWT_ALGORITHM)
        with pytest.raises(HTTPException) as exc:
            decode_jwt(token)
        assert exc.value.status_code == 401


class TestAuthenticate:

    def test_valid_credentials(self):
        _add_user()
        assert authenticate("ANNA", "secret123")["username"] == "anna"

    def test_invalid_credentials(self):
        _add_user()
        assert authenticate("anna", "wrong-pass") is None
        assert authenticate("nobody", "secret123") is None

    def test_can_access(self):
        owner, other, admin = {"id": 1, "role": "user"}, {"id": 2, "role": "user"}, {"id": 3, "role": "admin"}
        rec = {"userId": 1}
        assert can_access(owner, rec)
        assert not can_access(other, rec)
        assert can_access(admin, rec)


class TestSeedAdmin:

    def test_skipped_without_password(self, monkeypatch):
        monkeypatch.setattr(auth, "ADMIN_PASSWORD", "")
        assert seed_admin() is None
        assert get_db()["users"] == []

    def test_creates_once(self, monkeypatch):
        monkeypatch.setattr(auth, "ADMIN_PASSWORD", "bootstrap-pass")
        first = seed_admin()
        second = seed_admin()
        assert first["role"] == "admin"
        assert second is first
        assert len(get_db()["users"]) == 1
        assert find_user_by_username(get_db(), first["username"])["id"] == first["id"]
        assert authenticate(first["username"], "bootstrap-pass") is not None
