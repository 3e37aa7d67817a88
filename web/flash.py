"""
web/flash.py -- One-shot messages carried across a redirect.

Messages are stored in the signed session cookie and cleared the first time
a template reads them. Categories map to alert styles in layout.html
("success", "error", "warning").
"""

from __future__ import annotations

from fastapi import Request

_SESSION_KEY = "_flashes"


def add_flash(request: Request, category: str, message: str) -> None:
    flashes = list(request.session.get(_SESSION_KEY, []))
    flashes.append([category, message])
    request.session[_SESSION_KEY] = flashes


def pop_flashes(request: Request) -> list[tuple[str, str]]:
    flashes = request.session.pop(_SESSION_KEY, [])
    return [(category, message) for category, message in flashes]
