"""
auth/manager.py -- Create-or-update entry point for user accounts.

Handlers never call UserStore.create_user / update_user directly when saving
a profile form. UserManager hashes a newly supplied password, decides between
insert and update from the presence of an id, and maps the store's
IntegrityError to a domain error the form layer can show next to the
username field.

Layer rule: no imports from api/, web/, registry/, or cache/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password

logger = logging.getLogger("packhouse.auth")


class UsernameTakenError(Exception):
    """Raised when saving a user whose username belongs to another account."""


class UserManager:
    def __init__(self, store: UserStore) -> None:
        self.store = store

    def update_user(self, user: User, plain_password: str | None = None) -> User:
        """Persist user and return the stored record.

        A non-empty plain_password replaces the stored hash; None or "" keeps
        the current one.
        """
        if plain_password:
            user.hashed_password = hash_password(plain_password)

        existing = self.store.get_by_username(user.username)
        if existing is not None and existing.id != user.id:
            raise UsernameTakenError(user.username)

        try:
            if user.id is None:
                user.id = self.store.create_user(user)
                logger.info("Created user %s (id=%s)", user.username, user.id)
            else:
                self.store.update_user(
                    user.id,
                    username=user.username,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    role=user.role,
                    is_active=user.is_active,
                    expires_at=user.expires_at,
                )
                logger.info("Updated user %s (id=%s)", user.username, user.id)
        except IntegrityError as exc:
            # A concurrent request took the username between the check and the write.
            raise UsernameTakenError(user.username) from exc

        stored = self.store.get_by_id(user.id)
        return stored if stored is not None else user
