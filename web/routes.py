"""
web/routes.py -- Account pages and favorites endpoints for the Packhouse UI.

These routes serve server-rendered HTML, except the two favorites mutations
which speak JSON to the page's fetch() calls. They share app.state with the
API routes (same user store, package store and favorite manager).

Every handler receives a RequestContext (auth/dependencies.py) carrying the
authenticated principal, and looks up the {name} user explicitly at the top
of the handler. An unknown name is a 404 for every route.

Route registration order matters. Starlette resolves paths in order:
  - /users/create and /users/sshkey are registered before /users/{name}/...
    so the fixed paths win even for a user literally named "create".

Routes:
  GET       /                                  -- home (auth required)
  GET       /users/                            -- user list (admin)
  GET/POST  /users/create                      -- create user (admin)
  GET/POST  /users/sshkey                      -- add SSH key (auth required)
  GET/POST  /users/{name}/update               -- edit user (admin, not self, not admins)
  GET       /users/{name}/                     -- profile + delete form (auth required)
  GET       /users/{name}/packages/            -- maintained packages (auth required)
  POST      /users/{name}/delete               -- delete user (admin, CSRF form)
  GET       /users/{name}/favorites/           -- favorites list (auth required)
  POST      /users/{name}/favorites/           -- JSON: add favorite (owner only)
  DELETE    /users/{name}/favorites/{package}  -- JSON: remove favorite (owner only)
  GET       /profile/                          -- own profile (auth required)
  GET       /login                             -- login form
  POST      /login                             -- handle password login
  POST      /logout                            -- clear cookie, redirect /login
"""

import html
import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from redis.exceptions import RedisError

from auth.csrf import CSRF_FIELD, get_csrf_token, validate_csrf_token
from auth.dependencies import RequestContext, get_request_context, try_get_current_user
from auth.manager import UserManager, UsernameTakenError
from auth.models import SshCredentials, User
from auth.store import UserStore
from auth.tokens import authenticate_user, create_access_token, generate_api_token, set_auth_cookie
from cache.favorites import FavoriteManager
from core.config import get_settings
from core.limiter import limiter
from core.pagination import FavoritesPageSource, Pager, QueryPageSource
from core.sshkeys import get_fingerprint
from registry.models import Package
from registry.store import PackageStore, is_valid_package_name
from web.flash import add_flash, pop_flashes
from web.forms import FORM_ERROR, SshKeyForm, UserForm, bind_form, form_values

logger = logging.getLogger("packhouse.web")

_settings = get_settings()

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
# Template globals so layout.html can show the session user, flashes and
# CSRF tokens without every handler passing them explicitly.
templates.env.globals["try_get_current_user"] = try_get_current_user
templates.env.globals["pop_flashes"] = pop_flashes
templates.env.globals["csrf_token"] = get_csrf_token
templates.env.globals["csrf_field"] = CSRF_FIELD
router = APIRouter()

_USERS_PER_PAGE = 6
_PACKAGES_PER_PAGE = 15
_FAVORITES_PER_PAGE = 15

_CSRF_ERROR = "The CSRF token is invalid. Please try to resubmit the form."


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _safe_next(next_url: Optional[str]) -> str:
    """Only accept relative, non protocol-relative post-login targets."""
    if next_url and next_url.startswith("/") and not next_url.startswith("//"):
        return next_url
    return "/"


def _login_redirect(request: Request) -> RedirectResponse:
    return RedirectResponse(f"/login?next={request.url.path}", status_code=302)


def _forbidden(message: str) -> HTMLResponse:
    return HTMLResponse(f"<h1>Access denied</h1><p>{html.escape(message)}</p>", status_code=403)


def _user_not_found(name: str) -> HTMLResponse:
    return HTMLResponse(f"<h1>User {html.escape(name)} not found</h1>", status_code=404)


def _require_login(ctx: RequestContext) -> Optional[Response]:
    """Return a login redirect for anonymous callers, None otherwise.

    Call at the top of protected handlers:
        if denied := _require_login(ctx):
            return denied
    """
    if not ctx.is_authenticated:
        return _login_redirect(ctx.request)
    return None


def _require_admin(ctx: RequestContext) -> Optional[Response]:
    """Login redirect for anonymous callers, 403 page for non-admins, None for admins."""
    if denied := _require_login(ctx):
        return denied
    if not ctx.is_admin:
        return _forbidden("This section is restricted to administrators.")
    return None


def _lookup_user(request: Request, name: str) -> Optional[User]:
    user_store: UserStore = request.app.state.user_store
    return user_store.get_by_username(name)


def _user_packages(request: Request, user: User, page: int) -> Pager:
    package_store: PackageStore = request.app.state.package_store
    source = QueryPageSource(
        lambda offset, limit: package_store.find_packages_by_maintainer(user.id, offset, limit),
        lambda: package_store.count_packages_by_maintainer(user.id),
    )
    return Pager(source, _PACKAGES_PER_PAGE, page)


def _packages_metadata(request: Request, packages: Pager) -> dict:
    """Per-package figures shown next to each listing row.

    Faver counts come from Redis; when it is down the listing still renders,
    just without the counts.
    """
    manager: FavoriteManager = request.app.state.favorite_manager
    try:
        favers = manager.get_faver_counts(p.id for p in packages.items)
    except RedisError as exc:
        logger.warning("Could not load faver counts: %s", exc)
        favers = {}
    return {"favers": favers}


def _api_error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


def _require_api_user(ctx: RequestContext) -> User:
    if ctx.user is None:
        raise _api_error(401, "unauthorized", "Authentication required.")
    return ctx.user


def _require_api_target(request: Request, name: str) -> User:
    user = _lookup_user(request, name)
    if user is None:
        raise _api_error(404, "not_found", f'The given user "{name}" was not found.')
    return user


def _require_own_favorites(ctx: RequestContext, user: User) -> None:
    if not ctx.is_user(user):
        raise _api_error(403, "forbidden", "You can only change your own favorites")


async def _read_package_name(request: Request) -> str:
    """Read the "package" field from a JSON or form-encoded body."""
    value = None
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            value = body.get("package")
    else:
        form = await request.form()
        value = form.get("package")
    return value.strip() if isinstance(value, str) else ""


# ---------------------------------------------------------------------------
# GET / -- home
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def home(request: Request, ctx: RequestContext = Depends(get_request_context)) -> Response:
    if denied := _require_login(ctx):
        return denied
    return templates.TemplateResponse(request, "home.html", {"user": ctx.user})


# ---------------------------------------------------------------------------
# GET /users/ -- user list (admin)
# ---------------------------------------------------------------------------


@router.get("/users/", response_class=HTMLResponse)
def users_list(request: Request, page: int = 1, ctx: RequestContext = Depends(get_request_context)) -> Response:
    """List non-admin accounts, newest first, six per page."""
    if denied := _require_admin(ctx):
        return denied
    user_store: UserStore = request.app.state.user_store
    users = Pager(
        QueryPageSource(user_store.find_users_excluding_admins, user_store.count_users_excluding_admins),
        _USERS_PER_PAGE,
        page,
    )
    return templates.TemplateResponse(
        request,
        "users/list.html",
        {"users": users, "csrf_form": {"token": get_csrf_token(request)}},
    )


# ---------------------------------------------------------------------------
# GET/POST /users/create and /users/{name}/update -- user form
# ---------------------------------------------------------------------------


async def _handle_update(request: Request, user: User, flash_message: str) -> Response:
    """Shared GET/POST flow for the create and update pages.

    GET renders the form filled from user. POST binds and validates the body;
    on success the user is saved through UserManager and the browser is sent
    back to the list, otherwise the form is re-rendered with field messages.
    """
    creating = user.id is None
    errors: dict[str, str] = {}
    values = {
        "username": user.username,
        "email": user.email,
        "is_active": user.is_active,
        "expires_at": user.expires_at or "",
    }

    if request.method == "POST":
        data = await request.form()
        values = form_values(data, "username", "email", "expires_at")
        values["is_active"] = "is_active" in data

        form, errors = bind_form(UserForm, data)
        if not validate_csrf_token(request, data.get(CSRF_FIELD)):
            errors[FORM_ERROR] = _CSRF_ERROR
        if form is not None and creating and not form.password:
            errors.setdefault("password", "A password is required for new users.")

        if form is not None and not errors:
            user.username = form.username
            user.email = form.email
            user.is_active = form.is_active
            user.expires_at = form.expires_at
            try:
                UserManager(request.app.state.user_store).update_user(user, form.password)
            except UsernameTakenError:
                errors["username"] = "This username is already used."
            else:
                add_flash(request, "success", flash_message)
                return RedirectResponse("/users/", status_code=303)

    return templates.TemplateResponse(
        request,
        "users/update.html",
        {"form": values, "errors": errors, "entity": user, "creating": creating},
    )


@router.api_route("/users/create", methods=["GET", "POST"], response_class=HTMLResponse)
async def users_create(request: Request, ctx: RequestContext = Depends(get_request_context)) -> Response:
    if denied := _require_admin(ctx):
        return denied
    user = User(username="", api_token=generate_api_token())
    return await _handle_update(request, user, "User has been saved.")


# ---------------------------------------------------------------------------
# GET/POST /users/sshkey -- register an SSH public key
# ---------------------------------------------------------------------------


@router.api_route("/users/sshkey", methods=["GET", "POST"], response_class=HTMLResponse)
async def add_ssh_key(request: Request, ctx: RequestContext = Depends(get_request_context)) -> Response:
    """Fingerprint and store an SSH key for the current user."""
    if denied := _require_login(ctx):
        return denied

    errors: dict[str, str] = {}
    values = {"name": "", "key": ""}
    if request.method == "POST":
        data = await request.form()
        values = form_values(data, "name", "key")
        form, errors = bind_form(SshKeyForm, data)
        if not validate_csrf_token(request, data.get(CSRF_FIELD)):
            errors[FORM_ERROR] = _CSRF_ERROR

        if form is not None and not errors:
            creds = SshCredentials(
                user_id=ctx.user.id,
                name=form.name,
                key=form.key,
                fingerprint=get_fingerprint(form.key),
            )
            user_store: UserStore = request.app.state.user_store
            user_store.create_ssh_credentials(creds)
            logger.info("SSH key %s added for %s", creds.fingerprint, ctx.user.username)
            add_flash(request, "success", "Ssh key was added successfully")
            return RedirectResponse("/", status_code=303)

    return templates.TemplateResponse(request, "users/sshkey.html", {"form": values, "errors": errors})


# ---------------------------------------------------------------------------
# GET/POST /users/{name}/update -- edit another user (admin)
# ---------------------------------------------------------------------------


@router.api_route("/users/{name}/update", methods=["GET", "POST"], response_class=HTMLResponse)
async def users_update(request: Request, name: str, ctx: RequestContext = Depends(get_request_context)) -> Response:
    """Edit a user account.

    Refused for the acting user's own account and for admin accounts,
    whatever the payload.
    """
    if denied := _require_admin(ctx):
        return denied
    user = _lookup_user(request, name)
    if user is None:
        return _user_not_found(name)
    if ctx.is_user(user) or user.is_admin:
        return _forbidden("You can not update yourself")
    return await _handle_update(request, user, "User has been saved.")


# ---------------------------------------------------------------------------
# GET /users/{name}/ -- profile with packages and delete form
# ---------------------------------------------------------------------------


@router.get("/users/{name}/", response_class=HTMLResponse)
def user_profile(
    request: Request, name: str, page: int = 1, ctx: RequestContext = Depends(get_request_context)
) -> Response:
    if denied := _require_login(ctx):
        return denied
    user = _lookup_user(request, name)
    if user is None:
        return _user_not_found(name)

    packages = _user_packages(request, user, page)
    return templates.TemplateResponse(
        request,
        "users/profile.html",
        {
            "packages": packages,
            "meta": _packages_metadata(request, packages),
            "user": user,
            "delete_form": {"token": get_csrf_token(request)},
        },
    )


# ---------------------------------------------------------------------------
# GET /users/{name}/packages/ -- packages the user maintains
# ---------------------------------------------------------------------------


@router.get("/users/{name}/packages/", response_class=HTMLResponse)
def user_packages(
    request: Request, name: str, page: int = 1, ctx: RequestContext = Depends(get_request_context)
) -> Response:
    if denied := _require_login(ctx):
        return denied
    user = _lookup_user(request, name)
    if user is None:
        return _user_not_found(name)

    packages = _user_packages(request, user, page)
    return templates.TemplateResponse(
        request,
        "users/packages.html",
        {"packages": packages, "meta": _packages_metadata(request, packages), "user": user},
    )


# ---------------------------------------------------------------------------
# POST /users/{name}/delete -- delete a user (admin, CSRF form)
# ---------------------------------------------------------------------------


@router.post("/users/{name}/delete")
async def user_delete(request: Request, name: str, ctx: RequestContext = Depends(get_request_context)) -> Response:
    if denied := _require_admin(ctx):
        return denied
    user = _lookup_user(request, name)
    if user is None:
        return _user_not_found(name)

    data = await request.form()
    if not validate_csrf_token(request, data.get(CSRF_FIELD)):
        return PlainTextResponse("Invalid form input", status_code=400)

    user_store: UserStore = request.app.state.user_store
    package_store: PackageStore = request.app.state.package_store
    user_store.delete_user(user.id)
    package_store.remove_maintainer_links(user.id)
    manager: FavoriteManager = request.app.state.favorite_manager
    try:
        manager.remove_user_favorites(user)
    except RedisError as exc:
        logger.warning("Could not clear favorites of deleted user %s: %s", user.username, exc)
    logger.info("User %s deleted by %s", user.username, ctx.user.username)
    return RedirectResponse("/", status_code=303)


# ---------------------------------------------------------------------------
# GET /users/{name}/favorites/ -- favorites list
# ---------------------------------------------------------------------------


@router.get("/users/{name}/favorites/", response_class=HTMLResponse)
def user_favorites(
    request: Request, name: str, page: int = 1, ctx: RequestContext = Depends(get_request_context)
) -> Response:
    """List the user's favorites from Redis, 15 per page.

    When Redis is unreachable the page still renders: an error flash, an
    empty list, and a log line.
    """
    if denied := _require_login(ctx):
        return denied
    user = _lookup_user(request, name)
    if user is None:
        return _user_not_found(name)

    manager: FavoriteManager = request.app.state.favorite_manager
    try:
        manager.ping()
        packages = Pager(FavoritesPageSource(manager, user), _FAVORITES_PER_PAGE, page)
        packages.items  # noqa: B018 -- load the page while Redis errors can still be caught
    except RedisError as exc:
        add_flash(request, "error", "Could not connect to the Redis database.")
        logger.warning("Favorites of %s unavailable: %s", user.username, exc, exc_info=True)
        return templates.TemplateResponse(request, "users/favorites.html", {"user": user, "packages": []})

    return templates.TemplateResponse(request, "users/favorites.html", {"packages": packages, "user": user})


# ---------------------------------------------------------------------------
# POST /users/{name}/favorites/ -- JSON: add favorite
# ---------------------------------------------------------------------------


@limiter.limit(_settings.favorites_rate_limit)
@router.post("/users/{name}/favorites/", status_code=201)
async def add_favorite(request: Request, name: str, ctx: RequestContext = Depends(get_request_context)) -> JSONResponse:
    """Mark a package as favorite for the acting user.

    The ownership check runs before the body is read, so acting on someone
    else's list is a 403 whatever the payload.
    """
    _require_api_user(ctx)
    user = _require_api_target(request, name)
    _require_own_favorites(ctx, user)

    package_name = await _read_package_name(request)
    if not package_name:
        raise _api_error(400, "missing_package", 'The "package" field is required.')
    package_store: PackageStore = request.app.state.package_store
    package: Optional[Package] = package_store.get_by_name(package_name)
    if package is None:
        raise _api_error(404, "not_found", f'The given package "{package_name}" was not found.')

    manager: FavoriteManager = request.app.state.favorite_manager
    try:
        manager.mark_favorite(user, package)
    except RedisError as exc:
        logger.warning("Could not mark %s as favorite for %s: %s", package.name, user.username, exc)
        raise _api_error(503, "cache_unavailable", "Favorites are temporarily unavailable.") from exc

    return JSONResponse({"status": "success"}, status_code=201)


# ---------------------------------------------------------------------------
# DELETE /users/{name}/favorites/{vendor}/{package} -- JSON: remove favorite
# ---------------------------------------------------------------------------


@limiter.limit(_settings.favorites_rate_limit)
@router.delete("/users/{name}/favorites/{package_name:path}", status_code=204)
async def remove_favorite(
    request: Request,
    name: str,
    package_name: str,
    ctx: RequestContext = Depends(get_request_context),
) -> Response:
    """Unmark a favorite. 204 even when the package was never marked."""
    _require_api_user(ctx)
    user = _require_api_target(request, name)
    _require_own_favorites(ctx, user)

    package_store: PackageStore = request.app.state.package_store
    package = package_store.get_by_name(package_name) if is_valid_package_name(package_name) else None
    if package is None:
        raise _api_error(404, "not_found", f'The given package "{package_name}" was not found.')

    manager: FavoriteManager = request.app.state.favorite_manager
    try:
        manager.remove_favorite(user, package)
    except RedisError as exc:
        logger.warning("Could not remove favorite %s for %s: %s", package.name, user.username, exc)
        raise _api_error(503, "cache_unavailable", "Favorites are temporarily unavailable.") from exc

    return Response(status_code=204)


# ---------------------------------------------------------------------------
# GET /profile/ -- the session user's own profile
# ---------------------------------------------------------------------------


@router.get("/profile/", response_class=HTMLResponse)
def my_profile(request: Request, page: int = 1, ctx: RequestContext = Depends(get_request_context)) -> Response:
    if denied := _require_login(ctx):
        return denied
    user = ctx.user
    user_store: UserStore = request.app.state.user_store

    packages = _user_packages(request, user, page)
    return templates.TemplateResponse(
        request,
        "profile/show.html",
        {
            "packages": packages,
            "meta": _packages_metadata(request, packages),
            "user": user,
            "ssh_keys": user_store.get_ssh_credentials(user.id),
        },
    )


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request, ctx: RequestContext = Depends(get_request_context)) -> Response:
    if ctx.is_authenticated:
        return RedirectResponse("/", status_code=302)
    error_msg = "Invalid username or password." if request.query_params.get("error") == "bad_credentials" else None
    return templates.TemplateResponse(
        request,
        "login.html",
        {"error_msg": error_msg, "next": _safe_next(request.query_params.get("next"))},
    )


@limiter.limit(_settings.login_rate_limit)
@router.post("/login", response_class=HTMLResponse)
def login_post(
    request: Request,
    username: str = Form(...),
    password: str = Form(...),
) -> RedirectResponse:
    """Handle username/password login form submission."""
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, username, password)
    if user is None:
        logger.info("Failed login for %r", username)
        return RedirectResponse("/login?error=bad_credentials", status_code=302)

    user_store.update_last_login(user.id)
    token = create_access_token(user.id, user.username, user.role)
    resp = RedirectResponse(_safe_next(request.query_params.get("next")), status_code=302)
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/logout")
def logout(request: Request) -> RedirectResponse:
    resp = RedirectResponse("/login", status_code=302)
    resp.delete_cookie("access_token")
    return resp
