"""
auth/passwords.py -- Password policy, hashing, and the change/reset lifecycle.

Hashing:
  bcrypt used directly (no passlib wrapper). bcrypt only looks at the first
  72 bytes of input and newer releases raise instead of truncating, so both
  hash_password() and verify_password() cut the UTF-8 encoding at 72 bytes
  themselves. The policy caps passwords at 128 characters.

Policy:
  Trimmed length in [5, 128], at least one letter and one digit. Each
  violated rule has its own message so the client can show it verbatim.

Rate limit (change and reset share it):
  At most PASSWORD_CHANGE_LIMIT successful changes per user per rolling
  PASSWORD_CHANGE_WINDOW_SECONDS. The window starts at the first attempt after
  the previous window expired. When an expired window is read, the counter is
  reset and persisted immediately -- before the attempt is validated -- so a
  failed attempt right after expiry still starts the new window. The
  read-then-write is not atomic; concurrent requests can over- or under-count
  slightly. This is a soft limit, not a security boundary.

Reset tokens:
  32 random bytes, hex-encoded, sent by email. Only sha256(token) is stored,
  with a 10-minute expiry. Forgot-password answers identically whether or not
  the account exists. If the email cannot be sent, the stored token is
  cleared and the request fails with 500 rather than leaving an unusable
  token behind.

Every successful change or reset stamps password_changed_at, which makes the
session authenticator reject all previously issued tokens, then issues a
fresh token for the caller.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

import hashlib
import logging
import re
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from html import escape

import bcrypt

from auth.mailer import Mailer
from auth.models import User
from auth.store import UserStore, normalize_email
from auth.tokens import TokenService
from core.config import Settings
from core.errors import (
    AuthenticationError,
    EmailDeliveryError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitedError,
    ValidationError,
)

logger = logging.getLogger("reelvault.auth.passwords")

PASSWORD_MIN_LENGTH = 5
PASSWORD_MAX_LENGTH = 128
_BCRYPT_MAX_BYTES = 72

_LETTER_RE = re.compile(r"[A-Za-z]")
_DIGIT_RE = re.compile(r"\d")

FORGOT_PASSWORD_MESSAGE = "If that email exists, a password reset link has been sent."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8")[:_BCRYPT_MAX_BYTES], bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:_BCRYPT_MAX_BYTES], hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def hash_reset_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


def validate_password_policy(password) -> None:
    """Raise ValidationError naming the first rule the password breaks."""
    if not isinstance(password, str):
        raise ValidationError("Password must be a string.")
    trimmed = password.strip()
    if len(trimmed) < PASSWORD_MIN_LENGTH:
        raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long.")
    if len(trimmed) > PASSWORD_MAX_LENGTH:
        raise ValidationError(f"Password must be at most {PASSWORD_MAX_LENGTH} characters long.")
    if not _LETTER_RE.search(trimmed) or not _DIGIT_RE.search(trimmed):
        raise ValidationError("Password must contain at least one letter and one number.")


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PasswordUpdateResult:
    """Outcome of a successful change or reset: the updated user and a fresh token."""

    user: User
    token: str


@dataclass(frozen=True)
class _Window:
    count: int
    start: datetime


class PasswordManager:
    """Change, forgot and reset flows for local passwords.

    Usage:
        manager = PasswordManager(store, tokens, mailer, settings)
        result = manager.change_password(user_id, "old1", "new1pass", "new1pass")
        manager.forgot_password("a@x.com")
        result = manager.reset_password(raw_token, "new2pass", "new2pass")
    """

    def __init__(
        self,
        store: UserStore,
        tokens: TokenService,
        mailer: Mailer,
        settings: Settings,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.mailer = mailer
        self.bcrypt_rounds = settings.bcrypt_rounds
        self.change_limit = settings.password_change_limit
        self.change_window = timedelta(seconds=settings.password_change_window_seconds)
        self.reset_ttl = timedelta(seconds=settings.password_reset_ttl_seconds)
        self.app_base_url = settings.app_base_url.rstrip("/")
        self._clock = clock

    def hash(self, plain: str) -> str:
        return hash_password(plain, rounds=self.bcrypt_rounds)

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    def _open_window(self, user: User, now: datetime) -> _Window:
        """Return the user's current window, starting a new one if it expired.

        A reset is written straight away so that the new window start is
        recorded even if the attempt fails validation afterwards.
        """
        start = user.password_change_window_start
        if start is None or now > start + self.change_window:
            self.store.update_user(user.id, password_change_count=0, password_change_window_start=now)
            return _Window(count=0, start=now)
        return _Window(count=user.password_change_count, start=start)

    def _check_rate_limit(self, window: _Window, now: datetime) -> None:
        if window.count >= self.change_limit:
            retry_after = int((window.start + self.change_window - now).total_seconds()) + 1
            raise RateLimitedError(
                "Too many password changes. Please try again later.",
                retry_after=retry_after,
            )

    def _store_new_password(
        self, user: User, new_password: str, window: _Window, now: datetime, clear_reset: bool
    ) -> PasswordUpdateResult:
        self.store.update_password(
            user.id,
            self.hash(new_password),
            changed_at=now,
            change_count=window.count + 1,
            window_start=window.start,
            clear_reset=clear_reset,
        )
        updated = self.store.get_by_id(user.id)
        return PasswordUpdateResult(user=updated, token=self.tokens.issue(updated.id, updated.role))

    # ------------------------------------------------------------------
    # Change
    # ------------------------------------------------------------------

    def change_password(
        self,
        user_id: int,
        current_password: str,
        new_password: str,
        new_password_confirm: str,
    ) -> PasswordUpdateResult:
        """Change the password of an authenticated user."""
        if not current_password or not new_password or not new_password_confirm:
            raise ValidationError("Please provide current_password, new_password and new_password_confirm.")
        if new_password != new_password_confirm:
            raise ValidationError("New password and confirmation do not match.")
        if current_password == new_password:
            raise ValidationError("New password must be different from current password.")
        validate_password_policy(new_password)

        user = self.store.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found.")
        if not user.active:
            raise PermissionDeniedError("This account is disabled.")
        if not user.password_hash:
            raise ValidationError("This account does not have a local password to change.")

        now = self._clock()
        window = self._open_window(user, now)
        self._check_rate_limit(window, now)

        if not verify_password(current_password, user.password_hash):
            raise AuthenticationError("Your current password is wrong.")

        result = self._store_new_password(user, new_password, window, now, clear_reset=False)
        logger.info("Password changed for user id=%s", user.id)
        return result

    # ------------------------------------------------------------------
    # Forgot
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> None:
        """Issue and email a reset token when the account is eligible.

        Returns normally for unknown and disabled accounts too; the caller
        always answers with FORGOT_PASSWORD_MESSAGE. Raises
        EmailDeliveryError (after rolling back the token) if sending fails.
        """
        normalized = normalize_email(email)
        if not normalized:
            raise ValidationError("Please provide your email.")

        user = self.store.get_by_email(normalized)
        if user is None or not user.active:
            return

        raw_token = secrets.token_hex(32)
        expires_at = self._clock() + self.reset_ttl
        self.store.set_password_reset(user.id, hash_reset_token(raw_token), expires_at)

        reset_url = f"{self.app_base_url}/reset-password/{raw_token}"
        minutes = int(self.reset_ttl.total_seconds() // 60)
        html_body = (
            f"<p>Hi {escape(user.name or 'there')},</p>"
            f"<p>Someone asked to reset the password for your ReelVault account.</p>"
            f'<p><a href="{escape(reset_url)}">Reset your password</a></p>'
            f"<p>This link is valid for {minutes} minutes. If you did not ask for it, ignore this email.</p>"
        )
        if not self.mailer.send(user.email, "Your password reset link", html_body):
            self.store.clear_password_reset(user.id)
            logger.error("Password reset email failed for user id=%s; token cleared", user.id)
            raise EmailDeliveryError("There was an error sending the email. Please try again later.")
        logger.info("Password reset token issued for user id=%s", user.id)

    # ------------------------------------------------------------------
    # Reset
    # ------------------------------------------------------------------

    def reset_password(self, raw_token: str, new_password: str, new_password_confirm: str) -> PasswordUpdateResult:
        """Consume a reset token and set a new password."""
        if not raw_token:
            raise ValidationError("Reset token is missing.")
        if not new_password or not new_password_confirm:
            raise ValidationError("Please provide new_password and new_password_confirm.")
        if new_password != new_password_confirm:
            raise ValidationError("New password and confirmation do not match.")
        validate_password_policy(new_password)

        now = self._clock()
        user = self.store.get_by_reset_token_hash(hash_reset_token(raw_token), now)
        if user is None:
            raise ValidationError("Token is invalid or has expired.")
        if not user.active:
            raise PermissionDeniedError("This account is disabled.")

        window = self._open_window(user, now)
        self._check_rate_limit(window, now)

        result = self._store_new_password(user, new_password, window, now, clear_reset=True)
        logger.info("Password reset completed for user id=%s", user.id)

        html_body = (
            f"<p>Hi {escape(user.name or 'there')},</p>"
            "<p>Your ReelVault password was just reset. If this was not you, contact support immediately.</p>"
        )
        if not self.mailer.send(user.email, "Your password was reset", html_body):
            logger.warning("Password reset confirmation email failed for user id=%s", user.id)
        return result
