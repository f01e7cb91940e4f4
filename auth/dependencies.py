"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

Credential sources, checked in priority order (auth.tokens.extract_token):
  1. Authorization: Bearer <token> header -- API clients (mobile, Postman).
  2. Session cookie ("jwt") -- set by the browser login flow.

get_current_session() runs the SessionAuthenticator and returns the
AuthenticatedSession (principal + raw claims) to the handler.
try_get_current_session() is the view-mode variant: None instead of 401/403.

Guard combinators:
  require_role(*roles)            -> Depends(...) returning the session
  require_owner_or_admin(loader)  -> Depends(...) returning the loaded resource

CSRF:
  require_csrf is meant for the route's `dependencies=[...]` list. FastAPI
  resolves those before the handler's own parameters, so a forged request
  fails CSRF before session authentication is attempted. The check applies to
  every caller, whichever credential it authenticates with.

Components are read from request.app.state (constructed in the lifespan).

Layer rule: no imports from api/ or catalog/.
  auth/dependencies.py may import from fastapi because this module is part of
  the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from fastapi import Depends, Request

from auth.csrf import read_sent_token, validate_csrf
from auth.guards import check_owner_or_admin, check_role
from auth.models import AuthenticatedSession, Role
from auth.session import SessionAuthenticator
from auth.tokens import extract_token
from core.config import Settings


def _request_token(request: Request) -> str | None:
    settings: Settings = request.app.state.settings
    return extract_token(request.headers.get("Authorization"), request.cookies, settings.session_cookie_name)


def get_current_session(request: Request) -> AuthenticatedSession:
    """Require authentication. Raises 401/403 (AppError) if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(session: AuthenticatedSession = Depends(get_current_session)): ...
    """
    authenticator: SessionAuthenticator = request.app.state.authenticator
    return authenticator.authenticate(_request_token(request))


def try_get_current_session(request: Request) -> AuthenticatedSession | None:
    """Attempt to authenticate the request; never raises for a bad credential.

    Returns None for guests so handlers can branch on it.
    """
    authenticator: SessionAuthenticator = request.app.state.authenticator
    return authenticator.try_authenticate(_request_token(request))


def require_role(*allowed_roles: Role | str) -> Callable[..., AuthenticatedSession]:
    """Build a dependency that passes only for the given roles.

    Use as a FastAPI dependency:
        @router.patch("/users/{user_id}")
        def route(session: AuthenticatedSession = Depends(require_role(Role.ADMIN))): ...
    """

    def _role_guard(session: AuthenticatedSession = Depends(get_current_session)) -> AuthenticatedSession:
        check_role(session, allowed_roles)
        return session

    return _role_guard


def require_owner_or_admin(load_resource: Callable[..., Any]) -> Callable[..., Any]:
    """Build a dependency that loads a resource and checks the caller may modify it.

    load_resource is itself a FastAPI dependency (it may take path params)
    and should raise NotFoundError when the resource does not exist. The
    session parameter is declared first, so an unauthenticated request is
    rejected before the resource lookup can reveal whether it exists.
    """

    def _owner_guard(
        session: AuthenticatedSession = Depends(get_current_session),
        resource: Any = Depends(load_resource),
    ) -> Any:
        check_owner_or_admin(session, resource)
        return resource

    return _owner_guard


async def require_csrf(request: Request) -> None:
    """Validate the double-submit CSRF token for a state-changing request."""
    settings: Settings = request.app.state.settings
    cookie_token = request.cookies.get(settings.csrf_cookie_name)
    sent_token = await read_sent_token(request, settings)
    validate_csrf(cookie_token, sent_token)
