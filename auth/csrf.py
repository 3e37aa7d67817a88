"""
auth/csrf.py -- Session-bound CSRF tokens for HTML forms.

One random token per session, kept in the Starlette session cookie (signed
with SECRET_KEY by SessionMiddleware). Every state-changing form renders it
in a hidden "_token" field; the handler checks it with validate_csrf_token()
before touching any store.

The token is created lazily on the first form render, so sessions that never
see a form never carry one.

Layer rule: no imports from api/, web/, registry/, or cache/.
"""

from __future__ import annotations

import hmac
import secrets

from fastapi import Request

CSRF_FIELD = "_token"
_SESSION_KEY = "_csrf_token"


def get_csrf_token(request: Request) -> str:
    """Return the session's CSRF token, creating it if needed."""
    token = request.session.get(_SESSION_KEY)
    if not token:
        token = secrets.token_urlsafe(32)
        request.session[_SESSION_KEY] = token
    return token


def validate_csrf_token(request: Request, submitted: str | None) -> bool:
    """Constant-time comparison of a submitted token against the session's."""
    expected = request.session.get(_SESSION_KEY)
    if not expected or not submitted:
        return False
    return hmac.compare_digest(expected, submitted)
