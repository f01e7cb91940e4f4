"""
auth/guards.py -- Role and ownership checks on an authenticated session.

Both checks take the session (and the resource) as explicit arguments. A guard
that receives None for the session was wired into a route without the session
authenticator in front of it -- that is a bug in the route, reported as
GuardOrderError (500), never as a client-facing 401/403.

The FastAPI Depends() wrappers for these live in auth/dependencies.py.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from auth.models import AuthenticatedSession, Role
from core.errors import GuardOrderError, PermissionDeniedError


class OwnedResource(Protocol):
    owner_id: int | None


def check_role(session: AuthenticatedSession | None, allowed_roles: Iterable[Role | str]) -> None:
    """Pass if the principal's role is one of allowed_roles, else 403."""
    if session is None:
        raise GuardOrderError("Role guard evaluated before session authentication.")
    allowed = {Role(r).value for r in allowed_roles}
    if session.principal.role not in allowed:
        raise PermissionDeniedError("You do not have permission to perform this action.")


def check_owner_or_admin(session: AuthenticatedSession | None, resource: OwnedResource | None) -> None:
    """Pass for admins, or when the resource's owner is the principal.

    Owner ids are compared as integers so a string id from a driver or a
    JSON payload still matches.
    """
    if session is None:
        raise GuardOrderError("Ownership guard evaluated before session authentication.")
    if session.principal.role == Role.ADMIN.value:
        return
    if resource is None:
        raise GuardOrderError("Ownership guard evaluated before the resource was loaded.")
    owner_id = resource.owner_id
    if owner_id is None or int(owner_id) != int(session.principal.id):
        raise PermissionDeniedError("You do not have permission to modify this resource.")
