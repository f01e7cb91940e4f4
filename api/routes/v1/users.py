"""
api/routes/v1/users.py -- Current-user and admin user management endpoints.

Routes:
  GET   /api/v1/users/me      -- the authenticated user's profile
  PATCH /api/v1/users/{id}    -- change role and/or active flag (CSRF, ADMIN only)

Security:
  [M4] PATCH /users/{id} blocks self-deactivation, self-demotion, and
       deactivating or demoting the last active admin.
  Deactivation takes effect on the target's next request: the session
  authenticator reloads the user every time and refuses inactive accounts.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import UserData, UserOut, UserPatch, UserResponse
from auth.dependencies import get_current_session, require_csrf, require_role
from auth.models import AuthenticatedSession, Role
from auth.store import UserStore
from core.errors import NotFoundError, ValidationError

# Auth policy:
# - GET   /users/me:    requires auth (get_current_session)
# - PATCH /users/{id}:  CSRF, then ADMIN (require_role)
router = APIRouter()


@router.get("/users/me", response_model=UserResponse)
async def me(session: AuthenticatedSession = Depends(get_current_session)) -> UserResponse:
    """Return profile information for the currently authenticated user."""
    return UserResponse(data=UserData(user=UserOut.from_principal(session.principal)))


@router.patch("/users/{user_id}", response_model=UserResponse, dependencies=[Depends(require_csrf)])
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    session: AuthenticatedSession = Depends(require_role(Role.ADMIN)),
) -> UserResponse:
    """Update a user's role or active status. Admin only."""
    user_store: UserStore = request.app.state.user_store

    target = user_store.get_by_id(user_id)
    if target is None:
        raise NotFoundError("User not found.")

    is_self = target.id == session.principal.id
    target_is_active_admin = Role(target.role) is Role.ADMIN and target.active
    demoting = body.role is not None and body.role.value != Role.ADMIN.value
    deactivating = body.active is False

    updates: dict = {}
    if body.role is not None:
        updates["role"] = body.role.value
    if body.active is not None:
        updates["active"] = body.active
    if not updates:
        raise ValidationError("No fields to update.")

    # [M4] Block self-lockout
    if is_self and deactivating:
        raise ValidationError("You cannot deactivate your own account.")
    if is_self and demoting:
        raise ValidationError("You cannot remove your own admin role.")
    # [M4] Block losing the last admin
    if target_is_active_admin and (deactivating or demoting) and user_store.count_active_admins() <= 1:
        raise ValidationError("Cannot deactivate or demote the last active admin account.")

    user_store.update_user(user_id, **updates)
    return UserResponse(data=UserData(user=UserOut.from_user(user_store.get_by_id(user_id))))
