"""Unit tests for core/sshkeys.py -- SSH public key fingerprints.

Covers:
- MD5 fingerprint of a full authorized_keys line (type, blob, comment)
- Bare base64 blob gives the same fingerprint
- Keys that do not decode are rejected
"""

import pytest

from core.sshkeys import get_fingerprint, is_valid_public_key

BLOB = "AAAAC3NzaC1lZDI1NTE5AAAAIHBhY2tob3VzZS10ZXN0LWtleS0wMTIzNDU2Nzg5YWJj"
KEY = f"ssh-ed25519 {BLOB} alice@laptop"
FINGERPRINT = "64:9e:c0:6d:7b:8b:5e:c5:8a:bb:d7:84:b5:0e:61:f1"


def test_fingerprint_of_authorized_keys_line():
    assert get_fingerprint(KEY) == FINGERPRINT


def test_fingerprint_of_bare_blob():
    assert get_fingerprint(BLOB) == FINGERPRINT


def test_comment_and_whitespace_do_not_change_fingerprint():
    assert get_fingerprint(f"  ssh-ed25519   {BLOB}   other comment here \n") == FINGERPRINT


def test_fingerprint_format_is_sixteen_hex_pairs():
    parts = get_fingerprint(KEY).split(":")
    assert len(parts) == 16
    assert all(len(p) == 2 for p in parts)


@pytest.mark.parametrize("key", ["", "   ", "ssh-rsa not*base64!", "ssh-rsa AAAA=B"])
def test_invalid_keys(key):
    assert get_fingerprint(key) is None
    assert is_valid_public_key(key) is False


def test_valid_key():
    assert is_valid_public_key(KEY) is True
