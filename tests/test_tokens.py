"""Unit tests for auth/tokens.py -- passwords, JWTs and account state.

Covers:
- bcrypt round trip
- JWT encode/decode, tampered tokens rejected
- is_expired() / can_authenticate() for disabled and expired accounts
- authenticate_user() success and every failure path
"""

from datetime import date

import pytest

from auth.models import User
from auth.store import UserStore
from auth.tokens import (
    authenticate_user,
    can_authenticate,
    create_access_token,
    decode_access_token,
    generate_api_token,
    hash_password,
    is_expired,
    verify_password,
)


@pytest.fixture
def store():
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


def test_password_round_trip():
    hashed = hash_password("s3cret-pass")
    assert verify_password("s3cret-pass", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("s3cret-pass", "not-a-bcrypt-hash")


def test_access_token_round_trip():
    token = create_access_token(5, "alice", "user", expire_seconds=60)
    payload = decode_access_token(token)
    assert payload["user_id"] == 5
    assert payload["sub"] == "alice"
    assert payload["role"] == "user"


def test_tampered_token_rejected():
    token = create_access_token(5, "alice", "user")
    assert decode_access_token(token[:-2] + "xx") is None
    assert decode_access_token("garbage") is None


def test_api_token_shape():
    token = generate_api_token()
    assert len(token) == 40
    assert token != generate_api_token()


@pytest.mark.parametrize(
    "expires_at,expired",
    [(None, False), ("2030-01-02", False), ("2030-01-01", True), ("2029-06-30", True), ("garbage", False)],
)
def test_is_expired(expires_at, expired):
    user = User(username="alice", expires_at=expires_at)
    assert is_expired(user, today=date(2030, 1, 1)) is expired


def test_can_authenticate():
    assert can_authenticate(User(username="alice")) is True
    assert can_authenticate(User(username="alice", is_active=False)) is False
    assert can_authenticate(User(username="alice", expires_at="2000-01-01")) is False


def test_authenticate_user(store):
    store.create_user(User(username="alice", hashed_password=hash_password("s3cret-pass")))
    store.create_user(User(username="disabled", hashed_password=hash_password("s3cret-pass"), is_active=False))
    store.create_user(User(username="expired", hashed_password=hash_password("s3cret-pass"), expires_at="2000-01-01"))
    store.create_user(User(username="tokenonly"))

    assert authenticate_user(store, "alice", "s3cret-pass").username == "alice"
    assert authenticate_user(store, "alice", "wrong") is None
    assert authenticate_user(store, "ghost", "s3cret-pass") is None
    assert authenticate_user(store, "disabled", "s3cret-pass") is None
    assert authenticate_user(store, "expired", "s3cret-pass") is None
    assert authenticate_user(store, "tokenonly", "s3cret-pass") is None
