"""
core/pagination.py -- Page slicing over relational and cache-backed listings.

A Pager never talks to a database or to Redis directly. It asks a PageSource
for the total count and for one slice of rows. Two sources exist:

  QueryPageSource      -- wraps a pair of typed repository calls
                          (e.g. PackageStore.find_packages_by_maintainer /
                          count_packages_by_maintainer).
  FavoritesPageSource  -- wraps the favorite manager for one user.

Out-of-range pages are allowed: asking for page 40 of a 2-page listing yields
an empty items list rather than an error or a silent jump to the last page.
Pages below 1 are clamped to 1.

Layer rule: no imports from api/, web/, auth/, registry/, or cache/.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol


class PageSource(Protocol):
    def list(self, offset: int, limit: int) -> list: ...

    def count(self) -> int: ...


class QueryPageSource:
    """PageSource backed by two repository calls.

    fetch(offset, limit) returns the rows of one slice; count() returns the
    total number of rows matching the same filter.
    """

    def __init__(self, fetch: Callable[[int, int], list], count: Callable[[], int]) -> None:
        self._fetch = fetch
        self._count = count

    def list(self, offset: int, limit: int) -> list:
        return self._fetch(offset, limit)

    def count(self) -> int:
        return self._count()


class FavoritesPageSource:
    """PageSource backed by the favorites sorted set of one user."""

    def __init__(self, manager: Any, user: Any) -> None:
        self._manager = manager
        self._user = user

    def list(self, offset: int, limit: int) -> list:
        return self._manager.get_favorites(self._user, limit=limit, offset=offset)

    def count(self) -> int:
        return self._manager.get_favorite_count(self._user)


class Pager:
    """One page of a PageSource.

    The count and the slice are fetched lazily and memoized, so a template
    that reads nb_pages and items several times hits the source only once
    for each.
    """

    def __init__(self, source: PageSource, max_per_page: int, current_page: int = 1) -> None:
        if max_per_page < 1:
            raise ValueError("max_per_page must be at least 1")
        self.source = source
        self.max_per_page = max_per_page
        self.current_page = max(1, current_page)
        self._nb_results: int | None = None
        self._items: list | None = None

    @property
    def offset(self) -> int:
        return (self.current_page - 1) * self.max_per_page

    @property
    def nb_results(self) -> int:
        if self._nb_results is None:
            self._nb_results = self.source.count()
        return self._nb_results

    @property
    def nb_pages(self) -> int:
        return max(1, -(-self.nb_results // self.max_per_page))

    @property
    def items(self) -> list:
        if self._items is None:
            if self.offset >= self.nb_results:
                self._items = []
            else:
                self._items = list(self.source.list(self.offset, self.max_per_page))
        return self._items

    @property
    def has_previous_page(self) -> bool:
        return self.current_page > 1

    @property
    def has_next_page(self) -> bool:
        return self.current_page < self.nb_pages

    @property
    def previous_page(self) -> int | None:
        return self.current_page - 1 if self.has_previous_page else None

    @property
    def next_page(self) -> int | None:
        return self.current_page + 1 if self.has_next_page else None

    def __iter__(self):
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)
