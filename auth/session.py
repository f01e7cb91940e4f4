"""
auth/session.py -- Turns a candidate token into an authenticated session.

State machine (each arrow either advances or rejects):

  NoCredential --token?--> Extracted --verify--> Verified --load--> Loaded --fresh?--> Active
       |                       |                     |                  |
       401 not logged in       401 invalid/expired   401 user gone      401 password changed
                                                     403 disabled

Ordering constraints:
  - Signature/expiry is checked before any store access, so forged or stale
    tokens cost no database round trip.
  - The disabled-account check runs before the password-change check, so a
    disabled account is reported as disabled even when its token is also
    stale.

Stale-password rule: a token is rejected when
password_changed_at > issued_at + 1 second. JWT iat has one-second
resolution, so the buffer keeps a token issued in the same second as the
change (e.g. the fresh token returned by change-password) valid.

The user record is loaded once per request. Changes to `active` made while
the request is being processed are not re-checked.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from auth.models import AuthenticatedSession, Principal
from auth.store import UserStore
from auth.tokens import TokenService
from core.errors import AppError, AuthenticationError, PermissionDeniedError

logger = logging.getLogger("reelvault.auth.session")

PASSWORD_CHANGE_GRACE = timedelta(seconds=1)


class SessionAuthenticator:
    """Authenticates requests against the token service and the user store."""

    def __init__(self, store: UserStore, tokens: TokenService) -> None:
        self.store = store
        self.tokens = tokens

    def authenticate(self, token: str | None) -> AuthenticatedSession:
        """Run the full state machine. Raises AppError subclasses on rejection."""
        if not token:
            raise AuthenticationError("You are not logged in. Please log in.")

        claims = self.tokens.verify(token)

        user = self.store.get_by_id(claims.subject_id)
        if user is None:
            logger.info("Token for missing user id=%s rejected", claims.subject_id)
            raise AuthenticationError("The user belonging to this token no longer exists.")
        if not user.active:
            raise PermissionDeniedError("This account is disabled.")

        changed_at = user.password_changed_at
        if changed_at is not None and changed_at > claims.issued_at + PASSWORD_CHANGE_GRACE:
            logger.info("Token issued before password change rejected (user id=%s)", user.id)
            raise AuthenticationError("Password was changed recently. Please log in again.")

        return AuthenticatedSession(principal=Principal.from_user(user), claims=claims)

    def try_authenticate(self, token: str | None) -> AuthenticatedSession | None:
        """View-mode variant: returns None instead of rejecting.

        Used by pages and endpoints that render differently for guests and
        logged-in users. Faults (FatalError) still propagate.
        """
        try:
            return self.authenticate(token)
        except AppError:
            return None
