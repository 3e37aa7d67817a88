"""
web/forms.py -- Form binding and validation for the account pages.

Forms are plain pydantic models. bind_form() feeds them the raw form body and
flattens pydantic's ValidationError into {field: message} so templates can
print one message next to each input. The "__all__" key carries form-level
errors such as a bad CSRF token.

Checkbox semantics follow HTML: an unchecked box is simply absent from the
body, so is_active defaults to False when the form is submitted.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import date
from typing import Any, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.sshkeys import is_valid_public_key

FORM_ERROR = "__all__"

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_MAX_PASSWORD_BYTES = 72

F = TypeVar("F", bound=BaseModel)


class UserForm(BaseModel):
    """Create/update form for a user account."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=2, max_length=180, pattern=r"^[A-Za-z0-9_.-]+$")
    email: str = Field(max_length=255)
    password: Optional[str] = None
    is_active: bool = False
    expires_at: Optional[str] = None

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        if not _EMAIL_RE.match(value):
            raise ValueError("This value is not a valid email address.")
        return value.lower()

    @field_validator("password", "expires_at", mode="before")
    @classmethod
    def empty_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("password")
    @classmethod
    def check_password(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        if len(value) < 8:
            raise ValueError("The password must be at least 8 characters.")
        # bcrypt rejects anything past 72 bytes, not characters.
        if len(value.encode("utf-8")) > _MAX_PASSWORD_BYTES:
            raise ValueError("The password must be at most 72 bytes long.")
        return value

    @field_validator("expires_at")
    @classmethod
    def check_expires_at(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        try:
            return date.fromisoformat(value).isoformat()
        except ValueError as exc:
            raise ValueError("Use the YYYY-MM-DD format.") from exc

    @field_validator("is_active", mode="before")
    @classmethod
    def checkbox(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.lower() in ("1", "on", "true", "yes")
        return bool(value)


class SshKeyForm(BaseModel):
    """Form for registering an SSH public key."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    key: str = Field(min_length=1, max_length=16384)

    @field_validator("key")
    @classmethod
    def check_key(cls, value: str) -> str:
        if not is_valid_public_key(value):
            raise ValueError("This is not a valid SSH public key.")
        return value


def bind_form(model: type[F], data: Mapping[str, Any]) -> tuple[Optional[F], dict[str, str]]:
    """Validate data against model.

    Returns (instance, {}) on success and (None, errors) on failure, where
    errors maps each failing field to its first message.
    """
    fields = {name: data[name] for name in model.model_fields if name in data}
    try:
        return model(**fields), {}
    except ValidationError as exc:
        errors: dict[str, str] = {}
        for err in exc.errors():
            loc = err.get("loc") or (FORM_ERROR,)
            field = str(loc[0])
            message = err.get("msg", "Invalid value.")
            # pydantic prefixes custom validator messages with "Value error, ".
            if message.startswith("Value error, "):
                message = message[len("Value error, ") :]
            errors.setdefault(field, message)
        return None, errors


def form_values(data: Mapping[str, Any], *names: str) -> dict[str, str]:
    """Echo submitted values back into a re-rendered form, never passwords."""
    return {name: str(data.get(name, "")) for name in names}
