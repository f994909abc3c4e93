"""
api/limiter.py -- Shared slowapi rate limiter.

api/main.py mounts it as middleware; api/routes/auth.py applies the login
limit with @limiter.limit(). All routes must share this one instance so they
share one in-memory counter store.

The login limit is read from settings on each check, so tests can raise it
through LOGIN_RATE_LIMIT without rebuilding the app.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_rate_limit() -> str:
    return get_settings().login_rate_limit
