"""
auth/accounts.py -- Local account registration and password login.

Security:
  [C1] authenticate_local() always runs bcrypt, even for an unknown email or
       a Google-only account, against a dummy hash computed once at import.
       Response time therefore does not reveal whether an email is
       registered. Unknown email and wrong password return the same message.

  Disabled accounts are reported as disabled (403) only after the password
  has been verified, so the status of an account is never revealed to
  someone who does not know its password.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.models import Provider, Role, User
from auth.passwords import hash_password, validate_password_policy, verify_password
from auth.store import UserStore, normalize_email
from core.errors import AuthenticationError, ConflictError, PermissionDeniedError, ValidationError

logger = logging.getLogger("reelvault.auth.accounts")

_MAX_NAME_LENGTH = 100

# Timing equalization dummy hash [C1]. Computed once at module load so the
# first login attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("reelvault_timing_dummy1")

_BAD_CREDENTIALS = "Incorrect email or password."


def register_local(store: UserStore, name: str, email: str, password: str, bcrypt_rounds: int = 12) -> User:
    """Create an active local USER account and return it."""
    name = (name or "").strip()
    normalized = normalize_email(email)
    if not name or not normalized or not password:
        raise ValidationError("Please provide name, email and password.")
    if len(name) > _MAX_NAME_LENGTH:
        raise ValidationError(f"Name must be at most {_MAX_NAME_LENGTH} characters long.")
    if "@" not in normalized:
        raise ValidationError("Please provide a valid email address.")
    validate_password_policy(password)

    if store.get_by_email(normalized) is not None:
        raise ConflictError("Email is already in use.")

    try:
        user_id = store.create_user(
            User(
                email=normalized,
                name=name,
                password_hash=hash_password(password, rounds=bcrypt_rounds),
                role=Role.USER,
                provider=Provider.LOCAL,
                active=True,
            )
        )
    except IntegrityError as exc:
        # A concurrent registration won the race after our existence check.
        raise ConflictError("Email is already in use.") from exc

    logger.info("Registered local user id=%s", user_id)
    return store.get_by_id(user_id)


def authenticate_local(store: UserStore, email: str, password: str) -> User:
    """Verify an email/password pair with timing equalization [C1]."""
    if not email or not password:
        raise ValidationError("Please provide email and password.")

    user = store.get_by_email(email)
    if user is None or not user.password_hash:
        # Equalize timing -- do NOT return early before running bcrypt [C1]
        verify_password(password, _DUMMY_HASH)
        raise AuthenticationError(_BAD_CREDENTIALS)
    if not verify_password(password, user.password_hash):
        raise AuthenticationError(_BAD_CREDENTIALS)
    if not user.active:
        raise PermissionDeniedError("Account is disabled.")
    return user
