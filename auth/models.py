"""
auth/models.py -- Domain dataclasses for account entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in registry/models.py -- dataclasses own domain shape; stores and routes do
the work.

Layer rule: no imports from api/, web/, registry/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """An account in Packhouse.

    role is "admin" or "user". Admin accounts are hidden from the user list
    and cannot be edited through the user update form.

    api_token is generated once at creation and shown on the owner's profile.
    Package manager clients send it in the X-API-Key header.

    expires_at is an optional YYYY-MM-DD date; from that day on the account
    can no longer authenticate.
    """

    username: str
    email: str = ""
    role: str = "user"  # "admin", "user"
    id: int | None = None
    hashed_password: str | None = None
    api_token: str | None = None
    is_active: bool = True
    expires_at: str | None = None
    created_at: str | None = None
    last_login: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass
class SshCredentials:
    """An SSH public key owned by exactly one user.

    fingerprint is computed from key by core.sshkeys when the record is
    created and is never recomputed afterwards.
    """

    user_id: int
    name: str
    key: str
    fingerprint: str
    id: int | None = None
    created_at: str | None = None
