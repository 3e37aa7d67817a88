"""
tests/test_api_routes.py -- Integration tests for the /api/v1/auth routes.

These tests exercise the full stack: FastAPI routing -> auth dependency
injection -> UserStore operations -> response model serialization.

Coverage:
  - Auth failures: 401 envelope on GET /me without credentials
  - POST /login valid 200 (token + cookie), invalid 401
  - GET /me via Bearer JWT and via X-API-Key, favorite count from Redis
  - POST /logout clears the cookie
"""

from __future__ import annotations

from redis.exceptions import ConnectionError as RedisConnectionError


class TestApiAuthFailure:
    def test_get_me_unauthenticated(self, env) -> None:
        resp = env.client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_get_me_bad_bearer_token(self, env) -> None:
        resp = env.client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    def test_login_validation_error(self, env) -> None:
        resp = env.client.post("/api/v1/auth/login", json={"username": "alice"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


class TestApiAuthRoutes:
    def test_login_valid_credentials(self, env) -> None:
        resp = env.client.post("/api/v1/auth/login", json={"username": "alice", "password": env.password})
        assert resp.status_code == 200
        data = resp.json()
        assert data["username"] == "alice"
        assert data["role"] == "user"
        assert data["token_type"] == "bearer"
        assert data["access_token"]
        assert "access_token" in resp.cookies
        assert resp.headers["cache-control"] == "no-store"

    def test_login_invalid_credentials(self, env) -> None:
        resp = env.client.post("/api/v1/auth/login", json={"username": "alice", "password": "wrong-password"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"

    def test_login_unknown_user_same_error(self, env) -> None:
        resp = env.client.post("/api/v1/auth/login", json={"username": "nobody", "password": "wrong-password"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"

    def test_me_authenticated(self, env) -> None:
        env.favorites.get_favorite_count.return_value = 3
        resp = env.client.get("/api/v1/auth/me", headers=env.headers("root"))
        assert resp.status_code == 200
        data = resp.json()
        assert data["username"] == "root"
        assert data["role"] == "admin"
        assert data["email"] == "root@example.com"
        assert data["favorite_count"] == 3

    def test_me_with_api_token(self, env) -> None:
        resp = env.client.get("/api/v1/auth/me", headers={"X-API-Key": env.users["bob"].api_token})
        assert resp.status_code == 200
        assert resp.json()["user_id"] == env.users["bob"].id

    def test_me_when_redis_down(self, env) -> None:
        env.favorites.get_favorite_count.side_effect = RedisConnectionError("connection refused")
        resp = env.client.get("/api/v1/auth/me", headers=env.headers("alice"))
        assert resp.status_code == 200
        assert resp.json()["favorite_count"] is None

    def test_logout(self, env) -> None:
        resp = env.client.post("/api/v1/auth/logout")
        assert resp.status_code == 200
        assert resp.json() == {"message": "Logged out."}


class TestApiDocs:
    def test_docs_require_admin(self, env) -> None:
        assert env.client.get("/docs").status_code == 401
        assert env.client.get("/docs", headers=env.headers("alice")).status_code == 403
        assert env.client.get("/docs", headers=env.headers("root")).status_code == 200

    def test_redoc_require_admin(self, env) -> None:
        assert env.client.get("/redoc", headers=env.headers("bob")).status_code == 403
        assert env.client.get("/redoc", headers=env.headers("root")).status_code == 200
