"""
core/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (to mount as middleware) and by the route modules
(to apply per-route limits with @limiter.limit()). It lives in core/ so the
api/ and web/ layers can both use it without importing each other.

Using a single shared instance ensures all routes share the same in-memory
counter store.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
