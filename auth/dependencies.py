"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Three auth methods are checked in priority order:
  1. JWT cookie ("access_token") -- set by the web UI login flow.
  2. Authorization: Bearer <token> header -- API clients using JWTs.
  3. X-API-Key header -- package manager clients using the account API token.

All three methods converge on a User object after successful verification.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_admin() wraps get_current_user() and raises HTTP 403 if not admin.
get_request_context() bundles the request and the (optional) principal into
a RequestContext, which is what the account handlers in web/routes.py take.

Layer rule: no imports from web/, registry/, or cache/.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass

from fastapi import HTTPException, Request

from auth.models import User
from auth.tokens import can_authenticate, decode_access_token


def try_get_current_user(request: Request) -> User | None:
    """Attempt to authenticate the request via cookie, Bearer, or API token.

    Returns the authenticated User on success, None on any failure.
    Never raises -- callers that need a hard 401 should use get_current_user().
    """
    user_store = request.app.state.user_store

    # 1. Cookie (web UI)
    token: str | None = request.cookies.get("access_token")

    # 2. Authorization: Bearer header (API clients)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]

    if token:
        payload = decode_access_token(token)
        if payload:
            user = user_store.get_by_id(payload["user_id"])
            if user and can_authenticate(user):
                return user

    # 3. X-API-Key header (package manager clients)
    raw_token = request.headers.get("X-API-Key", "")
    if raw_token:
        user = user_store.get_by_api_token(raw_token)
        if user and user.api_token and hmac.compare_digest(user.api_token, raw_token) and can_authenticate(user):
            return user

    return None


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated."""
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user


def require_admin(request: Request) -> User:
    """Require admin role. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    user = get_current_user(request)
    if not user.is_admin:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return user


@dataclass
class RequestContext:
    """Request-scoped handle on the caller.

    Handlers read the principal from here instead of re-deriving it from
    cookies or headers, so every handler sees the same answer for the
    lifetime of one request.
    """

    request: Request
    user: User | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def is_admin(self) -> bool:
        return self.user is not None and self.user.is_admin

    def is_user(self, other: User) -> bool:
        """True if other is the authenticated principal (compared by id)."""
        return self.user is not None and self.user.id is not None and self.user.id == other.id


def get_request_context(request: Request) -> RequestContext:
    """FastAPI dependency: resolve the principal once and wrap it with the request."""
    return RequestContext(request=request, user=try_get_current_user(request))
