"""
auth/store.py -- SQLAlchemy Core persistence layer for account entities.

Pattern: Repository + Data Mapper (same as registry/store.py).
UserStore is the repository; _row_to_user / _row_to_ssh_credentials are the
mappers. Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Listing queries take explicit offset/limit arguments and come in pairs with a
count query so core.pagination.QueryPageSource can wrap them.

Layer rule: no imports from api/, web/, registry/, or cache/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import SshCredentials, User

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'packhouse.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(180), nullable=False, unique=True),
    Column("email", String(255), nullable=False, server_default=""),
    Column("hashed_password", Text),  # NULL = token-only account
    Column("role", String(30), nullable=False, server_default="user"),
    Column("api_token", String(64), unique=True),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("expires_at", String(10)),  # YYYY-MM-DD
    Column("created_at", String(32), nullable=False),
    Column("last_login", Text),
    sqlite_autoincrement=True,
)

_ssh_credentials = Table(
    "ssh_credentials",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("key", Text, nullable=False),
    Column("fingerprint", String(64), nullable=False),
    Column("created_at", String(32), nullable=False),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode. Set per-connection; SQLite PRAGMAs are not pooled."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and SshCredentials entities.

    Usage:
        store = UserStore()
        uid = store.create_user(User(username="alice", email="alice@example.com"))
        user = store.get_by_username("alice")
        store.close()
    """

    # Columns update_user() may write. Anything else is a programming error.
    _MUTABLE_FIELDS: set = {
        "username",
        "email",
        "hashed_password",
        "role",
        "api_token",
        "is_active",
        "expires_at",
    }

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username (or API token)
        already exists. UserManager turns that into UsernameTakenError.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    role=user.role,
                    api_token=user.api_token,
                    is_active=1 if user.is_active else 0,
                    expires_at=user.expires_at,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_api_token(self, api_token: str) -> User | None:
        """Look up a user by API token. O(1) via the UNIQUE index."""
        if not api_token:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.api_token == api_token)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_users_excluding_admins(self, offset: int, limit: int) -> list[User]:
        """Return one slice of non-admin users, newest account first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select()
                .where(_users.c.role != "admin")
                .order_by(_users.c.id.desc())
                .offset(offset)
                .limit(limit)
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    def count_users_excluding_admins(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users).where(_users.c.role != "admin")).scalar()
        return result or 0

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        is_active must be passed as bool; this method converts to int for SQLite.
        Unknown field names raise ValueError.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - self._MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if not fields:
            return self.get_by_id(user_id) is not None
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user and their SSH credentials.

        Maintainer links live in the package store; callers clear those
        through PackageStore.remove_maintainer_links().
        """
        with self.engine.connect() as conn:
            conn.execute(_ssh_credentials.delete().where(_ssh_credentials.c.user_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    # ------------------------------------------------------------------
    # SSH credentials
    # ------------------------------------------------------------------

    def create_ssh_credentials(self, creds: SshCredentials) -> int:
        """Insert an SSH key record. The fingerprint must already be computed."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _ssh_credentials.insert().values(
                    user_id=creds.user_id,
                    name=creds.name,
                    key=creds.key,
                    fingerprint=creds.fingerprint,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_ssh_credentials(self, user_id: int) -> list[SshCredentials]:
        """Return the user's SSH keys, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _ssh_credentials.select()
                .where(_ssh_credentials.c.user_id == user_id)
                .order_by(_ssh_credentials.c.id)
            ).fetchall()
        return [_row_to_ssh_credentials(r) for r in rows]

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email or "",
        hashed_password=row.hashed_password,
        role=row.role,
        api_token=row.api_token,
        is_active=bool(row.is_active),
        expires_at=row.expires_at,
        created_at=row.created_at,
        last_login=row.last_login,
    )


def _row_to_ssh_credentials(row) -> SshCredentials:
    return SshCredentials(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        key=row.key,
        fingerprint=row.fingerprint,
        created_at=row.created_at,
    )
