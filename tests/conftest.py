"""
tests/conftest.py -- Shared test fixtures for Packhouse integration tests.

This module provides:
  - _make_test_stores(): creates isolated in-memory DBs for users + packages
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - app_env: module-scoped running TestClient plus seeded accounts/packages
  - env: per-test view of app_env with cookies cleared and a fresh
    favorites mock installed on app.state

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.

Redis is never contacted: app.state.favorite_manager is a MagicMock with
FavoriteManager as its spec, so route tests assert on the calls it receives.

Environment variables must be set before any app import: get_settings() is
cached on first call and the rate-limit decorators read it at import time.
"""

from __future__ import annotations

import os
import re
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from unittest.mock import MagicMock

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", "testserver,localhost")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("FAVORITES_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from asgi import app
from auth.models import User
from auth.store import UserStore
from auth.tokens import create_access_token, generate_api_token, hash_password
from cache.favorites import FavoriteManager
from registry.models import Package
from registry.store import PackageStore

PASSWORD = "correct-horse-battery"

_TOKEN_RE = re.compile(r'name="_token" value="([^"]+)"')


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def extract_csrf_token(html: str) -> str:
    """Pull the hidden _token value out of a rendered form."""
    match = _TOKEN_RE.search(html)
    assert match, "no CSRF token field in the rendered page"
    return match.group(1)


def make_favorite_manager() -> MagicMock:
    """FavoriteManager stand-in with an empty Redis behind it."""
    manager = MagicMock(spec=FavoriteManager)
    manager.ping.return_value = True
    manager.get_favorites.return_value = []
    manager.get_favorite_count.return_value = 0
    manager.get_faver_counts.return_value = {}
    return manager


def _make_test_stores(db_suffix: str) -> tuple[UserStore, PackageStore]:
    """Create isolated named shared-memory SQLite stores for test isolation.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    users_url = f"sqlite:///file:test_users_{db_suffix}?mode=memory&cache=shared&uri=true"
    packages_url = f"sqlite:///file:test_packages_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=users_url), PackageStore(db_url=packages_url)


def _patch_lifespan(user_store: UserStore, package_store: PackageStore):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.package_store = package_store
        app.state.favorite_manager = make_favorite_manager()
        yield

    return test_lifespan


@dataclass
class AppEnv:
    """Running app plus the records seeded for one test module."""

    client: TestClient
    user_store: UserStore
    package_store: PackageStore
    users: dict[str, User] = field(default_factory=dict)
    tokens: dict[str, str] = field(default_factory=dict)
    packages: dict[str, Package] = field(default_factory=dict)
    password: str = PASSWORD

    @property
    def favorites(self) -> MagicMock:
        return self.client.app.state.favorite_manager

    def headers(self, username: str) -> dict[str, str]:
        return auth_headers(self.tokens[username])

    def csrf_token(self, path: str, as_user: str = "root") -> str:
        """Render the form page at path and return its CSRF token.

        The session cookie that binds the token stays in the client jar.
        """
        resp = self.client.get(path, headers=self.headers(as_user))
        assert resp.status_code == 200, f"GET {path} returned {resp.status_code}"
        return extract_csrf_token(resp.text)


def _seed_user(user_store: UserStore, username: str, role: str = "user") -> User:
    uid = user_store.create_user(
        User(
            username=username,
            email=f"{username}@example.com",
            role=role,
            hashed_password=hash_password(PASSWORD),
            api_token=generate_api_token(),
        )
    )
    return user_store.get_by_id(uid)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def app_env(request) -> Generator[AppEnv, None, None]:
    """Start the app once per test module with seeded data.

    Accounts: root (admin), alice and bob (users), all with PASSWORD.
    Packages: acme/http and acme/log maintained by alice, beta/tool by bob.

    follow_redirects=False so tests can assert on redirect locations.
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    user_store, package_store = _make_test_stores(suffix)

    env_users = {
        "root": _seed_user(user_store, "root", role="admin"),
        "alice": _seed_user(user_store, "alice"),
        "bob": _seed_user(user_store, "bob"),
    }
    tokens = {
        name: create_access_token(u.id, u.username, u.role, expire_seconds=3600) for name, u in env_users.items()
    }

    packages = {}
    for name, maintainer in (("acme/http", "alice"), ("acme/log", "alice"), ("beta/tool", "bob")):
        pid = package_store.create_package(Package(name=name, description=f"The {name} package"))
        package_store.add_maintainer(pid, env_users[maintainer].id)
        packages[name] = package_store.get_by_id(pid)

    app.router.lifespan_context = _patch_lifespan(user_store, package_store)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield AppEnv(
            client=client,
            user_store=user_store,
            package_store=package_store,
            users=env_users,
            tokens=tokens,
            packages=packages,
        )

    package_store.close()
    user_store.close()


@pytest.fixture
def env(app_env: AppEnv) -> AppEnv:
    """Per-test handle: empty cookie jar and a fresh favorites mock."""
    app_env.client.cookies.clear()
    app_env.client.app.state.favorite_manager = make_favorite_manager()
    return app_env
