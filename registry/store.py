"""
registry/store.py -- SQLAlchemy-backed persistence layer for packages.

Uses SQLAlchemy Core (not ORM) so the dataclasses in registry/models.py remain
the authoritative domain representation.

Pattern: Repository + Data Mapper. PackageStore is the repository; the
_row_to_package function is the mapper. Route handlers never touch SQL.

Maintainership is an N:M link table keyed by (package_id, user_id). The user
table lives in auth/store.py; user ids are stored here without a foreign key
so the two stores can sit in separate databases.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = PackageStore()
    pid = store.create_package(Package(name="acme/http"))
    store.add_maintainer(pid, user_id)
    page = store.find_packages_by_maintainer(user_id, offset=0, limit=15)
    store.close()
"""

import re
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from registry.models import Package

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'packhouse.db'}"

PACKAGE_NAME_PATTERN = r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$"
_PACKAGE_NAME_RE = re.compile(PACKAGE_NAME_PATTERN)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_packages = Table(
    "packages",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False, unique=True),
    Column("description", Text, nullable=False, server_default=""),
    Column("repository", String(255)),
    Column("created_at", String(32), nullable=False),
)

_maintainers = Table(
    "package_maintainers",
    metadata,
    Column("package_id", Integer, nullable=False),
    Column("user_id", Integer, nullable=False, index=True),
    UniqueConstraint("package_id", "user_id", name="uq_package_maintainer"),
)


def is_valid_package_name(name: str) -> bool:
    return bool(_PACKAGE_NAME_RE.match(name or ""))


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode. Set per-connection; SQLite PRAGMAs are not pooled."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PackageStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Packages
    # ------------------------------------------------------------------

    def create_package(self, package: Package) -> int:
        """Insert a new package and return its assigned database ID.

        Raises ValueError for names that are not "vendor/name" and
        sqlalchemy.exc.IntegrityError if the name is already registered.
        """
        if not is_valid_package_name(package.name):
            raise ValueError(f"Invalid package name: {package.name!r}")
        with self.engine.connect() as conn:
            result = conn.execute(
                _packages.insert().values(
                    name=package.name,
                    description=package.description or "",
                    repository=package.repository,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_name(self, name: str) -> Optional[Package]:
        with self.engine.connect() as conn:
            row = conn.execute(_packages.select().where(_packages.c.name == name)).fetchone()
            if row is None:
                return None
            return _row_to_package(row, self._maintainer_ids(conn, [row.id]).get(row.id, []))

    def get_by_id(self, package_id: int) -> Optional[Package]:
        with self.engine.connect() as conn:
            row = conn.execute(_packages.select().where(_packages.c.id == package_id)).fetchone()
            if row is None:
                return None
            return _row_to_package(row, self._maintainer_ids(conn, [row.id]).get(row.id, []))

    def get_by_ids(self, package_ids: Iterable[int]) -> list[Package]:
        """Return packages in the order of package_ids. Unknown ids are skipped.

        The favorites list hands over ids already ordered newest-first, so the
        caller's order wins over any database ordering.
        """
        ids = [int(i) for i in package_ids]
        if not ids:
            return []
        with self.engine.connect() as conn:
            rows = conn.execute(_packages.select().where(_packages.c.id.in_(ids))).fetchall()
            maintainers = self._maintainer_ids(conn, [r.id for r in rows])
        by_id = {r.id: _row_to_package(r, maintainers.get(r.id, [])) for r in rows}
        return [by_id[i] for i in ids if i in by_id]

    # ------------------------------------------------------------------
    # Maintainers
    # ------------------------------------------------------------------

    def add_maintainer(self, package_id: int, user_id: int) -> bool:
        """Link user_id as a maintainer. Returns False if the link already existed."""
        with self.engine.connect() as conn:
            exists = conn.execute(
                select(_maintainers.c.package_id).where(
                    (_maintainers.c.package_id == package_id) & (_maintainers.c.user_id == user_id)
                )
            ).fetchone()
            if exists is not None:
                return False
            conn.execute(_maintainers.insert().values(package_id=package_id, user_id=user_id))
            conn.commit()
        return True

    def remove_maintainer_links(self, user_id: int) -> int:
        """Drop every maintainer link of user_id. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_maintainers.delete().where(_maintainers.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def find_packages_by_maintainer(self, user_id: int, offset: int, limit: int) -> list[Package]:
        """Return one slice of the packages user_id maintains, ordered by name."""
        query = (
            _packages.select()
            .join(_maintainers, _maintainers.c.package_id == _packages.c.id)
            .where(_maintainers.c.user_id == user_id)
            .order_by(_packages.c.name)
            .offset(offset)
            .limit(limit)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
            maintainers = self._maintainer_ids(conn, [r.id for r in rows])
        return [_row_to_package(r, maintainers.get(r.id, [])) for r in rows]

    def count_packages_by_maintainer(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_maintainers).where(_maintainers.c.user_id == user_id)
            ).scalar()
        return result or 0

    def _maintainer_ids(self, conn, package_ids: list[int]) -> dict[int, list[int]]:
        if not package_ids:
            return {}
        rows = conn.execute(
            select(_maintainers.c.package_id, _maintainers.c.user_id)
            .where(_maintainers.c.package_id.in_(package_ids))
            .order_by(_maintainers.c.user_id)
        ).fetchall()
        result: dict[int, list[int]] = {}
        for package_id, user_id in rows:
            result.setdefault(package_id, []).append(user_id)
        return result

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_package(row, maintainer_ids: list[int]) -> Package:
    return Package(
        id=row.id,
        name=row.name,
        description=row.description or "",
        repository=row.repository,
        created_at=row.created_at,
        maintainer_ids=list(maintainer_ids),
    )
