"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login   -- password login; sets JWT cookie
  POST /api/v1/auth/logout  -- clears cookie; 200
  GET  /api/v1/auth/me      -- current user info (requires auth)

Security:
  POST /login is rate-limited (LOGIN_RATE_LIMIT, default 10/minute per IP).
  authenticate_user() provides timing equalization -- use it, never inline.
  Cache-Control: no-store on login responses.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from api.models import LoginRequest, LoginResponse, MeResponse
from auth.dependencies import get_current_user
from auth.models import User
from auth.store import UserStore
from auth.tokens import authenticate_user, create_access_token, set_auth_cookie
from cache.favorites import FavoriteManager
from core.config import get_settings
from core.limiter import limiter

logger = logging.getLogger("packhouse.api")

_settings = get_settings()

# Auth policy:
# - POST /api/v1/auth/login:   public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/logout:  public -- clearing a cookie needs no prior auth
# - GET  /api/v1/auth/me:      requires auth (get_current_user)
router = APIRouter()


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; set JWT cookie.

    Returns the same generic error for wrong username, wrong password and
    disabled or expired accounts ("bad_credentials") so the response does
    not reveal which usernames exist.
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.username, body.password)
    if user is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid username or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    user_store.update_last_login(user.id)
    token = create_access_token(user.id, user.username, user.role)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=_settings.token_expire_seconds,
            username=user.username,
            role=user.role,
        ).model_dump(),
    )
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout")
async def logout() -> JSONResponse:
    """Clear the JWT cookie and end the session."""
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie("access_token")
    return resp


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the currently authenticated user.

    favorite_count is null when Redis cannot be reached.
    """
    manager: FavoriteManager = request.app.state.favorite_manager
    try:
        favorite_count = manager.get_favorite_count(current_user)
    except RedisError as exc:
        logger.warning("Favorite count unavailable for %s: %s", current_user.username, exc)
        favorite_count = None
    return MeResponse(
        user_id=current_user.id,
        username=current_user.username,
        email=current_user.email,
        role=current_user.role,
        favorite_count=favorite_count,
    )
