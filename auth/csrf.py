"""
auth/csrf.py -- Double-submit cookie CSRF protection.

Two phases:
  Provisioning (every request): if the browser has no CSRF cookie yet, mint
      256 bits of randomness and set it as a script-readable cookie. Requests
      that already carry one are left alone, so the value is stable for the
      browser session.

  Validation (state-changing routes only): the page script reads the cookie
      and echoes it in the X-CSRF-Token header (or a `_csrf` form/JSON field).
      A cross-site attacker can make the browser send the cookie but cannot
      read it, so it cannot produce the matching echo.

Validation is independent of session authentication and runs before it on a
route, so a forged request is refused without touching the user store.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

import hmac
import logging
import secrets

from fastapi import Request

from auth.cookies import set_csrf_cookie
from core.config import Settings
from core.errors import PermissionDeniedError

logger = logging.getLogger("reelvault.auth.csrf")


def generate_csrf_token() -> str:
    """64 hex chars = 256 bits of entropy."""
    return secrets.token_hex(32)


def validate_csrf(cookie_token: str | None, sent_token: str | None) -> None:
    """Raise PermissionDeniedError unless both tokens are present and equal."""
    if not cookie_token:
        raise PermissionDeniedError("Missing CSRF cookie token.")
    if not sent_token:
        raise PermissionDeniedError("Missing CSRF token in request.")
    if not hmac.compare_digest(cookie_token.encode("utf-8"), sent_token.encode("utf-8")):
        logger.warning("CSRF token mismatch")
        raise PermissionDeniedError("Invalid CSRF token.")


async def read_sent_token(request: Request, settings: Settings) -> str | None:
    """Return the client-echoed CSRF token from the header, else the body field.

    Body parsing is best-effort: an unparseable or non-object body simply has
    no token. Starlette caches the parsed body on the request, so the route
    handler can still read it afterwards.
    """
    header_token = request.headers.get(settings.csrf_header_name)
    if header_token:
        return header_token

    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            return None
        if isinstance(body, dict):
            value = body.get(settings.csrf_form_field)
            return value if isinstance(value, str) else None
        return None
    if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        value = form.get(settings.csrf_form_field)
        return value if isinstance(value, str) else None
    return None


async def ensure_csrf_cookie(request: Request, call_next):
    """HTTP middleware: provision the CSRF cookie when the browser lacks one."""
    settings: Settings = request.app.state.settings
    missing = not request.cookies.get(settings.csrf_cookie_name)

    response = await call_next(request)

    if missing:
        set_csrf_cookie(response, generate_csrf_token(), settings)
    return response
