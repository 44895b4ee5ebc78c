"""
EduPath Consult — Authentication & Roles
Password hashing, JWT session tokens (cookie or bearer), role checks.
"""
from datetime import datetime, timedelta
from fastapi import Request, Response, HTTPException

from edupath.config import (
    JWT_SECRET, JWT_ALGORITHM, JWT_EXPIRY_HOURS, SESSION_COOKIE, SECURE_COOKIES,
    ADMIN_USERNAME, ADMIN_PASSWORD, ADMIN_EMAIL,
)
from edupath.db import get_db, save_db, find_record, next_id

# ============================================================
# PASSWORD HASHING
# ============================================================
import bcrypt

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()

def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        # Malformed stored hash
        return False

# ============================================================
# JWT
# ============================================================
import jwt as pyjwt

def create_jwt(user: dict) -> str:
    payload = {
        "sub": str(user["id"]), "username": user["username"], "role": user["role"],
        "exp": datetime.utcnow() + timedelta(hours=JWT_EXPIRY_HOURS),
        "iat": datetime.utcnow()
    }
    return pyjwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)

def decode_jwt(token: str) -> dict:
    try:
        return pyjwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(401, "Session expired")
    except pyjwt.InvalidTokenError:
        raise HTTPException(401, "Invalid session")

# ============================================================
# SESSION COOKIE
# ============================================================
def set_session_cookie(response: Response, user: dict) -> str:
    token = create_jwt(user)
    response.set_cookie(SESSION_COOKIE, token, httponly=True, samesite="lax",
                        secure=SECURE_COOKIES, max_age=JWT_EXPIRY_HOURS * 3600)
    return token

def clear_session_cookie(response: Response):
    response.delete_cookie(SESSION_COOKIE)

# ============================================================
# USER LOOKUP
# ============================================================
def find_user_by_username(db: dict, username: str):
    uname = (username or "").strip().lower()
    for u in db.get("users", []):
        if u.get("username", "").lower() == uname:
            return u
    return None

def find_user_by_email(db: dict, email: str):
    addr = (email or "").strip().lower()
    for u in db.get("users", []):
        if u.get("email", "").lower() == addr:
            return u
    return None

def authenticate(username: str, password: str):
    """Return the user record for valid credentials, else None."""
    user = find_user_by_username(get_db(), username)
    if not user or not verify_password(password, user.get("password", "")):
        return None
    return user

# ============================================================
# REQUEST HELPERS
# ============================================================
def _token_from_request(request: Request) -> str:
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return auth[7:]
    return request.cookies.get(SESSION_COOKIE, "")

def _user_from_request(request: Request):
    """Resolve the session to a live user record. Returns None if no session."""
    token = _token_from_request(request)
    if not token:
        return None
    payload = decode_jwt(token)
    try:
        uid = int(payload["sub"])
    except (KeyError, ValueError):
        raise HTTPException(401, "Invalid session")
    user = find_record(get_db(), "users", uid)
    if not user:
        raise HTTPException(401, "Account no longer exists")
    return user

async def get_current_user(request: Request) -> dict:
    """Dependency: require an authenticated, active user."""
    user = _user_from_request(request)
    if not user:
        raise HTTPException(401, "Authentication required")
    if user.get("status") == "suspended":
        raise HTTPException(403, "Account suspended")
    return user

async def require_admin(request: Request) -> dict:
    """Dependency: require role 'admin'."""
    user = await get_current_user(request)
    if user.get("role") != "admin":
        raise HTTPException(403, "Admin access required")
    return user

def can_access(user: dict, record: dict) -> bool:
    """Owners and admins may read a user-owned record."""
    return user.get("role") == "admin" or record.get("userId") == user.get("id")

# ============================================================
# ADMIN SEEDING
# ============================================================
def seed_admin():
    """Create the bootstrap admin account if configured and missing."""
    if not ADMIN_PASSWORD:
        print("[AUTH] SEED_ADMIN set but ADMIN_PASSWORD is empty, skipping")
        return None
    db = get_db()
    existing = find_user_by_username(db, ADMIN_USERNAME)
    if existing:
        return existing
    admin = {
        "id": next_id(db, "users"), "username": ADMIN_USERNAME, "email": ADMIN_EMAIL,
        "password": hash_password(ADMIN_PASSWORD), "firstName": "Platform", "lastName": "Admin",
        "role": "admin", "status": "active", "analysisCount": 0, "maxAnalyses": 0,
        "createdAt": datetime.now().isoformat(),
    }
    db["users"].append(admin)
    save_db(db)
    print(f"[AUTH] Seeded admin account '{ADMIN_USERNAME}'")
    return admin
