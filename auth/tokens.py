"""
auth/tokens.py -- JWT, password hashing, and API token utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       user_id, username, role, and expiry. Verification returns None on any
       failure -- route layer turns that into a 401 or a login redirect.

  Passwords: bcrypt directly. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether a username exists.

  API tokens: secrets.token_hex gives 160 bits of entropy. The token is shown
       on the owner's profile page, so it is stored as-is.

Layer rule: no imports from api/, web/, registry/, or cache/. Import from
core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("packhouse.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt refuses input past 72 bytes; UserForm rejects longer passwords
    before they get here.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


_DUMMY_HASH: str = hash_password("packhouse_timing_dummy")


# ---------------------------------------------------------------------------
# Account state
# ---------------------------------------------------------------------------


def is_expired(user: User, today: date | None = None) -> bool:
    """True once the account's expires_at date has been reached."""
    if not user.expires_at:
        return False
    try:
        expires = date.fromisoformat(user.expires_at)
    except ValueError:
        logger.warning("Ignoring malformed expires_at %r for user %s", user.expires_at, user.username)
        return False
    return (today or datetime.now(timezone.utc).date()) >= expires


def can_authenticate(user: User) -> bool:
    return user.is_active and not is_expired(user)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user_id: int, username: str, role: str, expire_seconds: int = 0) -> str:
    """Encode a signed JWT with user identity and expiry.

    expire_seconds of 0 (default) uses Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "sub": username,
        "user_id": user_id,
        "role": role,
        "exp": expire,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
        if "user_id" not in payload or "role" not in payload:
            return None
        return payload
    except JWTError:
        return None


# ---------------------------------------------------------------------------
# User authentication (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, username: str, password: str) -> User | None:
    """Authenticate a username/password login with timing equalization.

    Always runs bcrypt whether or not the user exists, so response time does
    not leak which usernames are registered. Inactive and expired accounts
    are rejected after the password check.

    Returns the User on success, None on any failure.
    """
    user = store.get_by_username(username)
    if user is None or user.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if not can_authenticate(user):
        return None
    return user


# ---------------------------------------------------------------------------
# API tokens
# ---------------------------------------------------------------------------


def generate_api_token() -> str:
    """Return a new 40-character hex API token."""
    return secrets.token_hex(20)


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the JWT access token as an httpOnly, samesite=lax cookie.

    secure is only set when SECURE_COOKIES=true (production behind HTTPS).
    max_age matches the JWT expiry so both expire together.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    response.set_cookie(
        "access_token",
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=duration,
    )
