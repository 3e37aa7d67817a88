"""
core/sshkeys.py -- OpenSSH public key fingerprinting.

The fingerprint is the MD5 digest of the decoded key blob, printed as
colon-separated hex pairs -- the format `ssh-keygen -l -E md5` shows after
its "MD5:" prefix:

    get_fingerprint("ssh-rsa AAAAB3NzaC1yc2E... alice@laptop")
    -> "d5:2c:...:9f"

Accepted input is either a full authorized_keys line (type, blob, optional
comment) or the bare base64 blob.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
from typing import Optional


def _key_blob(public_key: str) -> Optional[bytes]:
    parts = public_key.strip().split()
    if not parts:
        return None
    encoded = parts[1] if len(parts) > 1 else parts[0]
    try:
        blob = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        return None
    return blob or None


def get_fingerprint(public_key: str) -> Optional[str]:
    """Return the MD5 fingerprint of an SSH public key, or None if it does not decode."""
    blob = _key_blob(public_key)
    if blob is None:
        return None
    digest = hashlib.md5(blob).hexdigest()  # noqa: S324 # nosec B324 -- display fingerprint, not a security hash
    return ":".join(digest[i : i + 2] for i in range(0, len(digest), 2))


def is_valid_public_key(public_key: str) -> bool:
    return _key_blob(public_key) is not None
