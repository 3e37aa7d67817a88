"""
cache/favorites.py -- Redis-backed favorite packages.

Each favorite is written twice so both directions are a single sorted-set
read:

    usr:{user_id}:fav     members = package ids,  score = time marked
    pkg:{package_id}:fav  members = user ids,     score = time marked

Listing a user's favorites is ZREVRANGE (newest first) followed by one
PackageStore.get_by_ids() call; counting is ZCARD. Marking an existing
favorite again only refreshes its score, and removing a missing one is a
no-op, so both operations are idempotent from the caller's side.

Connection failures surface as redis.exceptions.RedisError. The favorites
page calls ping() first and degrades to an empty list when Redis is down.

Usage:
    manager = FavoriteManager(build_redis_client(settings.redis_url), package_store)
    manager.mark_favorite(user, package)
    manager.get_favorites(user, limit=15, offset=0)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable

import redis

from auth.models import User
from registry.models import Package
from registry.store import PackageStore

logger = logging.getLogger("packhouse.cache")

_USER_KEY = "usr:{}:fav"
_PACKAGE_KEY = "pkg:{}:fav"


def build_redis_client(url: str) -> redis.Redis:
    """Create a Redis client from a redis:// URL.

    The client connects lazily; nothing touches the network until the first
    command, so app startup does not depend on Redis being up.
    """
    return redis.Redis.from_url(url, decode_responses=True, socket_connect_timeout=2, socket_timeout=2)


def user_favorites_key(user_id: int) -> str:
    return _USER_KEY.format(user_id)


def package_favers_key(package_id: int) -> str:
    return _PACKAGE_KEY.format(package_id)


class FavoriteManager:
    def __init__(self, client: redis.Redis, packages: PackageStore) -> None:
        self._client = client
        self._packages = packages

    def ping(self) -> bool:
        """Round-trip to Redis. Raises redis.exceptions.RedisError when unreachable."""
        return bool(self._client.ping())

    def mark_favorite(self, user: User, package: Package) -> None:
        now = time.time()
        pipe = self._client.pipeline()
        pipe.zadd(package_favers_key(package.id), {str(user.id): now})
        pipe.zadd(user_favorites_key(user.id), {str(package.id): now})
        pipe.execute()
        logger.debug("User %s marked %s as favorite", user.username, package.name)

    def remove_favorite(self, user: User, package: Package) -> None:
        pipe = self._client.pipeline()
        pipe.zrem(package_favers_key(package.id), str(user.id))
        pipe.zrem(user_favorites_key(user.id), str(package.id))
        pipe.execute()
        logger.debug("User %s removed %s from favorites", user.username, package.name)

    def get_favorites(self, user: User, limit: int = 0, offset: int = 0) -> list[Package]:
        """Return the user's favorite packages, most recently marked first.

        limit=0 returns everything from offset on. Ids whose package no longer
        exists are skipped.
        """
        end = offset + limit - 1 if limit > 0 else -1
        ids = self._client.zrevrange(user_favorites_key(user.id), offset, end)
        return self._packages.get_by_ids(int(i) for i in ids)

    def get_favorite_count(self, user: User) -> int:
        return int(self._client.zcard(user_favorites_key(user.id)))

    def get_faver_count(self, package: Package) -> int:
        return int(self._client.zcard(package_favers_key(package.id)))

    def get_faver_counts(self, package_ids: Iterable[int]) -> dict[int, int]:
        """Return {package_id: number of users who favorited it}."""
        ids = list(package_ids)
        if not ids:
            return {}
        pipe = self._client.pipeline()
        for package_id in ids:
            pipe.zcard(package_favers_key(package_id))
        counts = pipe.execute()
        return {package_id: int(count) for package_id, count in zip(ids, counts)}

    def is_marked(self, user: User, package: Package) -> bool:
        return self._client.zscore(user_favorites_key(user.id), str(package.id)) is not None

    def remove_user_favorites(self, user: User) -> int:
        """Drop every favorite the user marked, from both sides.

        Returns how many packages were unmarked.
        """
        key = user_favorites_key(user.id)
        package_ids = self._client.zrange(key, 0, -1)
        pipe = self._client.pipeline()
        for package_id in package_ids:
            pipe.zrem(package_favers_key(package_id), str(user.id))
        pipe.delete(key)
        pipe.execute()
        logger.debug("Cleared %d favorites of user %s", len(package_ids), user.username)
        return len(package_ids)
