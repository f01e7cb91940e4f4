"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in the route modules
(to apply per-route limits with @limiter.limit()).

A single shared instance means every route uses the same in-memory counter
store. Per-module instances would each keep an isolated counter and the
limits would never trigger.

Limit strings come from settings (LOGIN_RATE_LIMIT, FORGOT_PASSWORD_RATE_LIMIT)
and are read lazily, per request, through the callables below.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_limit() -> str:
    return get_settings().login_rate_limit


def forgot_password_limit() -> str:
    return get_settings().forgot_password_rate_limit
