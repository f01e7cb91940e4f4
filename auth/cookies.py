"""
auth/cookies.py -- Session and CSRF cookie helpers.

Every cookie this application sets is built from _base_options(). The set and
clear paths for the session cookie share that dict, so they always agree on
path/samesite/secure/httponly. A browser only removes a cookie when the clear
request matches the attributes it was set with; a mismatch silently leaves
the old session in place.

  Session cookie: httponly=True -- page scripts cannot read it (XSS mitigation).
  CSRF cookie:    httponly=False -- the page script must read it to echo the
                  value back in the X-CSRF-Token header.
  samesite="lax": sent on same-site navigations and top-level GET links,
                  not on cross-site POST.
  secure:         only sent over HTTPS in production (Settings.cookies_secure).

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from core.config import Settings

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _base_options(settings: Settings, httponly: bool) -> dict:
    return {
        "httponly": httponly,
        "secure": settings.cookies_secure,
        "samesite": "lax",
        "path": "/",
    }


def session_cookie_options(settings: Settings) -> dict:
    return _base_options(settings, httponly=True)


def csrf_cookie_options(settings: Settings) -> dict:
    return _base_options(settings, httponly=False)


def set_session_cookie(response, token: str, settings: Settings) -> None:
    """Write the session token as an HttpOnly cookie that expires with the token."""
    response.set_cookie(
        settings.session_cookie_name,
        value=token,
        max_age=settings.token_expire_seconds,
        **session_cookie_options(settings),
    )


def clear_session_cookie(response, settings: Settings) -> None:
    """Expire the session cookie using the exact option set it was written with."""
    response.set_cookie(
        settings.session_cookie_name,
        value="",
        max_age=0,
        expires=_EPOCH,
        **session_cookie_options(settings),
    )


def set_csrf_cookie(response, token: str, settings: Settings) -> None:
    """Write the CSRF token as a script-readable session cookie."""
    response.set_cookie(
        settings.csrf_cookie_name,
        value=token,
        **csrf_cookie_options(settings),
    )
