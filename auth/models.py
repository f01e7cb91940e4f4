"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond trivial
conversions). Mirrors catalog/models.py -- dataclasses own domain shape;
stores and services do the work.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class Provider(str, Enum):
    LOCAL = "local"
    GOOGLE = "google"


@dataclass
class User:
    """A persisted identity record.

    email is always stored normalized (trimmed, lowercase) -- see
    auth.store.normalize_email().

    password_hash is None for Google-only users (they have no local password).
    provider_id is the external subject identifier once a Google identity has
    been linked; it is unique within a provider.

    password_reset_token_hash holds sha256(raw reset token); the raw token only
    ever exists in the email sent to the user. A past or missing
    password_reset_expires_at means there is no active reset token.

    password_change_count / password_change_window_start are the sliding-window
    state for the password change rate limit.
    """

    email: str
    name: str = ""
    id: int | None = None
    password_hash: str | None = None  # None = Google-only user
    role: Role = Role.USER
    provider: Provider = Provider.LOCAL
    provider_id: str | None = None
    active: bool = True
    password_changed_at: datetime | None = None
    password_reset_token_hash: str | None = None
    password_reset_expires_at: datetime | None = None
    password_change_count: int = 0
    password_change_window_start: datetime | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class TokenClaims:
    """Verified contents of a session token."""

    subject_id: int
    role: str
    issued_at: datetime
    expires_at: datetime
    raw: dict = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class Principal:
    """The authenticated identity attached to a request.

    Carries only profile fields that are safe to hand to downstream handlers
    and to serialize back to the client. Never carries hashes or reset state.
    """

    id: int
    role: str
    email: str
    name: str = ""
    provider: str = Provider.LOCAL.value
    active: bool = True
    created_at: datetime | None = None

    @classmethod
    def from_user(cls, user: User) -> "Principal":
        return cls(
            id=user.id,
            role=Role(user.role).value,
            email=user.email,
            name=user.name,
            provider=Provider(user.provider).value,
            active=user.active,
            created_at=user.created_at,
        )


@dataclass(frozen=True)
class AuthenticatedSession:
    """Request context produced by the session authenticator.

    Guards take this as an explicit argument instead of reading attributes off
    the request. principal comes from the freshly loaded user record; claims
    are the raw verified token contents.
    """

    principal: Principal
    claims: TokenClaims


@dataclass(frozen=True)
class ExternalIdentity:
    """Normalized result of verifying a Google ID token."""

    subject: str
    email: str | None
    email_verified: bool
    display_name: str = ""
