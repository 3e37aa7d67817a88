"""
tests/test_favorite_routes.py -- Integration tests for the favorites pages and endpoints.

app.state.favorite_manager is a MagicMock (see conftest.make_favorite_manager),
so these tests check what the handlers ask of the favorites store and how
they answer, including Redis outages.

Coverage:
  - GET list: owner controls, pagination slice, Redis down -> flash + empty list
  - POST add: 201 JSON, JSON or form body, 400/401/403/404/503
  - DELETE remove: 204 empty body, never-added still 204, 401/403/404
  - Ownership is checked before the package or body is looked at
"""

from __future__ import annotations

from redis.exceptions import ConnectionError as RedisConnectionError


# ---------------------------------------------------------------------------
# GET /users/{name}/favorites/
# ---------------------------------------------------------------------------


class TestFavoritesList:
    def test_owner_sees_favorites_with_remove_buttons(self, env) -> None:
        http = env.packages["acme/http"]
        env.favorites.get_favorite_count.return_value = 1
        env.favorites.get_favorites.return_value = [http]

        resp = env.client.get("/users/alice/favorites/", headers=env.headers("alice"))
        assert resp.status_code == 200
        assert 'data-package="acme/http"' in resp.text
        assert 'class="unfavorite"' in resp.text

    def test_other_user_sees_list_without_controls(self, env) -> None:
        env.favorites.get_favorite_count.return_value = 1
        env.favorites.get_favorites.return_value = [env.packages["beta/tool"]]

        resp = env.client.get("/users/alice/favorites/", headers=env.headers("bob"))
        assert resp.status_code == 200
        assert 'data-package="beta/tool"' in resp.text
        assert 'class="unfavorite"' not in resp.text

    def test_list_reads_requested_page(self, env) -> None:
        env.favorites.get_favorite_count.return_value = 20
        env.favorites.get_favorites.return_value = []

        resp = env.client.get("/users/alice/favorites/?page=2", headers=env.headers("alice"))
        assert resp.status_code == 200
        args, kwargs = env.favorites.get_favorites.call_args
        assert args[0].id == env.users["alice"].id
        assert kwargs == {"limit": 15, "offset": 15}

    def test_out_of_range_page_is_empty(self, env) -> None:
        env.favorites.get_favorite_count.return_value = 3

        resp = env.client.get("/users/alice/favorites/?page=5", headers=env.headers("alice"))
        assert resp.status_code == 200
        assert "No favorites yet." in resp.text
        env.favorites.get_favorites.assert_not_called()

    def test_redis_down_renders_empty_list_with_flash(self, env) -> None:
        env.favorites.ping.side_effect = RedisConnectionError("connection refused")

        resp = env.client.get("/users/alice/favorites/", headers=env.headers("alice"))
        assert resp.status_code == 200
        assert "Could not connect to the Redis database." in resp.text
        assert "No favorites yet." in resp.text

    def test_redis_failure_while_listing(self, env) -> None:
        env.favorites.get_favorite_count.side_effect = RedisConnectionError("timeout")

        resp = env.client.get("/users/alice/favorites/", headers=env.headers("alice"))
        assert resp.status_code == 200
        assert "Could not connect to the Redis database." in resp.text

    def test_unknown_user(self, env) -> None:
        resp = env.client.get("/users/ghost/favorites/", headers=env.headers("alice"))
        assert resp.status_code == 404

    def test_anonymous_redirected(self, env) -> None:
        resp = env.client.get("/users/alice/favorites/")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login?next=/users/alice/favorites/"


# ---------------------------------------------------------------------------
# POST /users/{name}/favorites/
# ---------------------------------------------------------------------------


class TestAddFavorite:
    def test_add_favorite(self, env) -> None:
        resp = env.client.post(
            "/users/alice/favorites/", headers=env.headers("alice"), json={"package": "acme/http"}
        )
        assert resp.status_code == 201
        assert resp.json() == {"status": "success"}

        user, package = env.favorites.mark_favorite.call_args.args
        assert user.id == env.users["alice"].id
        assert package.name == "acme/http"

    def test_add_favorite_form_body(self, env) -> None:
        resp = env.client.post("/users/alice/favorites/", headers=env.headers("alice"), data={"package": "beta/tool"})
        assert resp.status_code == 201
        assert env.favorites.mark_favorite.call_args.args[1].name == "beta/tool"

    def test_add_twice_is_accepted(self, env) -> None:
        for _ in range(2):
            resp = env.client.post(
                "/users/alice/favorites/", headers=env.headers("alice"), json={"package": "acme/http"}
            )
            assert resp.status_code == 201
        assert env.favorites.mark_favorite.call_count == 2

    def test_api_token_authentication(self, env) -> None:
        resp = env.client.post(
            "/users/bob/favorites/",
            headers={"X-API-Key": env.users["bob"].api_token},
            json={"package": "acme/log"},
        )
        assert resp.status_code == 201

    def test_other_users_list_forbidden(self, env) -> None:
        resp = env.client.post("/users/bob/favorites/", headers=env.headers("alice"), json={"package": "acme/http"})
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"
        assert resp.json()["error"]["message"] == "You can only change your own favorites"
        env.favorites.mark_favorite.assert_not_called()

    def test_ownership_checked_before_body(self, env) -> None:
        resp = env.client.post("/users/bob/favorites/", headers=env.headers("alice"), json={})
        assert resp.status_code == 403

    def test_admin_cannot_edit_others(self, env) -> None:
        resp = env.client.post("/users/alice/favorites/", headers=env.headers("root"), json={"package": "acme/http"})
        assert resp.status_code == 403

    def test_unknown_package(self, env) -> None:
        resp = env.client.post(
            "/users/alice/favorites/", headers=env.headers("alice"), json={"package": "acme/missing"}
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"
        env.favorites.mark_favorite.assert_not_called()

    def test_missing_package_field(self, env) -> None:
        resp = env.client.post("/users/alice/favorites/", headers=env.headers("alice"), json={"name": "acme/http"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "missing_package"

    def test_unknown_user(self, env) -> None:
        resp = env.client.post("/users/ghost/favorites/", headers=env.headers("alice"), json={"package": "acme/http"})
        assert resp.status_code == 404

    def test_anonymous_unauthorized(self, env) -> None:
        resp = env.client.post("/users/alice/favorites/", json={"package": "acme/http"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_redis_down(self, env) -> None:
        env.favorites.mark_favorite.side_effect = RedisConnectionError("connection refused")
        resp = env.client.post(
            "/users/alice/favorites/", headers=env.headers("alice"), json={"package": "acme/http"}
        )
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "cache_unavailable"


# ---------------------------------------------------------------------------
# DELETE /users/{name}/favorites/{vendor}/{package}
# ---------------------------------------------------------------------------


class TestRemoveFavorite:
    def test_remove_favorite(self, env) -> None:
        resp = env.client.delete("/users/alice/favorites/acme/http", headers=env.headers("alice"))
        assert resp.status_code == 204
        assert resp.content == b""

        user, package = env.favorites.remove_favorite.call_args.args
        assert user.id == env.users["alice"].id
        assert package.name == "acme/http"

    def test_remove_never_added_is_still_204(self, env) -> None:
        """ZREM on a missing member is a no-op, so a favorite that never existed
        is indistinguishable from a removed one and also answers 204.
        """
        resp = env.client.delete("/users/alice/favorites/beta/tool", headers=env.headers("alice"))
        assert resp.status_code == 204

    def test_other_users_list_forbidden(self, env) -> None:
        resp = env.client.delete("/users/bob/favorites/acme/http", headers=env.headers("alice"))
        assert resp.status_code == 403
        env.favorites.remove_favorite.assert_not_called()

    def test_ownership_checked_before_package_lookup(self, env) -> None:
        resp = env.client.delete("/users/bob/favorites/acme/missing", headers=env.headers("alice"))
        assert resp.status_code == 403

    def test_unknown_package(self, env) -> None:
        resp = env.client.delete("/users/alice/favorites/acme/missing", headers=env.headers("alice"))
        assert resp.status_code == 404
        env.favorites.remove_favorite.assert_not_called()

    def test_malformed_package_name(self, env) -> None:
        resp = env.client.delete("/users/alice/favorites/a/b/c", headers=env.headers("alice"))
        assert resp.status_code == 404

    def test_anonymous_unauthorized(self, env) -> None:
        resp = env.client.delete("/users/alice/favorites/acme/http")
        assert resp.status_code == 401

    def test_redis_down(self, env) -> None:
        env.favorites.remove_favorite.side_effect = RedisConnectionError("connection refused")
        resp = env.client.delete("/users/alice/favorites/acme/http", headers=env.headers("alice"))
        assert resp.status_code == 503
