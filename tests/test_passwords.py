"""
tests/test_passwords.py -- Unit tests for auth/passwords.py.

Covers:
  - password policy messages and bcrypt hashing helpers
  - change_password validation order and the per-user rolling-window limit
  - forgot_password: silent for unknown/disabled accounts, rollback on email failure
  - reset_password: single use, 10-minute expiry, shares the change limit

The manager runs on a FakeClock, so windows and expiries are exact. Tokens
issued on the fake clock are only inspected for presence, never verified.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from auth.models import Provider
from auth.passwords import (
    PasswordManager,
    hash_password,
    hash_reset_token,
    validate_password_policy,
    verify_password,
)
from auth.tokens import TokenService
from core.config import Settings
from core.errors import (
    AuthenticationError,
    EmailDeliveryError,
    PermissionDeniedError,
    RateLimitedError,
    ValidationError,
)
from tests.helpers import DEFAULT_PASSWORD, FakeClock

SECRET = "password-test-secret-key-with-enough-entropy"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def manager_settings() -> Settings:
    return Settings(
        debug=True,
        secret_key=SECRET,
        bcrypt_rounds=4,
        password_change_limit=3,
        password_change_window_seconds=3600,
        password_reset_ttl_seconds=600,
        app_base_url="https://reelvault.example/",
    )


@pytest.fixture
def manager(user_store, mailer, clock, manager_settings) -> PasswordManager:
    tokens = TokenService(SECRET, clock=clock)
    return PasswordManager(user_store, tokens, mailer, manager_settings, clock=clock)


# ---------------------------------------------------------------------------
# Policy and hashing
# ---------------------------------------------------------------------------


class TestPolicy:
    @pytest.mark.parametrize(
        ("password", "message"),
        [
            (12345, "Password must be a string."),
            ("ab1", "Password must be at least 5 characters long."),
            ("  ab1  ", "Password must be at least 5 characters long."),
            ("a1" * 65, "Password must be at most 128 characters long."),
            ("abcdefgh", "Password must contain at least one letter and one number."),
            ("12345678", "Password must contain at least one letter and one number."),
        ],
    )
    def test_rejections_name_the_broken_rule(self, password, message) -> None:
        """Each policy violation gets its own message."""
        with pytest.raises(ValidationError) as exc_info:
            validate_password_policy(password)
        assert exc_info.value.message == message

    def test_valid_passwords_pass(self) -> None:
        validate_password_policy("abcd1")
        validate_password_policy("x1" * 64)


class TestHashing:
    def test_hash_verifies(self) -> None:
        hashed = hash_password("secret123", rounds=4)
        assert hashed != "secret123"
        assert verify_password("secret123", hashed)
        assert not verify_password("secret124", hashed)

    def test_inputs_longer_than_72_bytes_are_truncated_consistently(self) -> None:
        """bcrypt sees only 72 bytes; hashing and verifying cut at the same place."""
        long_password = "a1" * 40
        hashed = hash_password(long_password, rounds=4)
        assert verify_password(long_password, hashed)

    def test_malformed_hash_does_not_verify(self) -> None:
        assert not verify_password("secret123", "not-a-bcrypt-hash")

    def test_reset_token_hash_is_sha256_hex(self) -> None:
        """Only the sha256 of a reset token is ever stored."""
        digest = hash_reset_token("abc")
        assert len(digest) == 64
        assert digest == hash_reset_token("abc")


# ---------------------------------------------------------------------------
# Change
# ---------------------------------------------------------------------------


class TestChangePassword:
    def test_success_stores_new_hash_and_stamps_change(self, manager, make_user, user_store, clock) -> None:
        """A change stores the new hash, stamps password_changed_at and counts the attempt."""
        user = make_user("alice@example.com")
        result = manager.change_password(user.id, DEFAULT_PASSWORD, "newpass1", "newpass1")
        stored = user_store.get_by_id(user.id)
        assert result.token
        assert result.user.id == user.id
        assert verify_password("newpass1", stored.password_hash)
        assert stored.password_changed_at == clock.now
        assert stored.password_change_count == 1
        assert stored.password_change_window_start == clock.now

    @pytest.mark.parametrize(
        ("current", "new", "confirm", "message"),
        [
            ("", "newpass1", "newpass1", "Please provide current_password, new_password and new_password_confirm."),
            (DEFAULT_PASSWORD, "newpass1", "newpass2", "New password and confirmation do not match."),
            (DEFAULT_PASSWORD, DEFAULT_PASSWORD, DEFAULT_PASSWORD, "New password must be different from current password."),
            (DEFAULT_PASSWORD, "short", "short", "Password must contain at least one letter and one number."),
        ],
    )
    def test_invalid_input_is_rejected(self, manager, make_user, current, new, confirm, message) -> None:
        user = make_user("bob@example.com")
        with pytest.raises(ValidationError) as exc_info:
            manager.change_password(user.id, current, new, confirm)
        assert exc_info.value.message == message

    def test_wrong_current_password(self, manager, make_user, user_store) -> None:
        """Wrong current password -> 401 and nothing is written."""
        user = make_user("carol@example.com")
        with pytest.raises(AuthenticationError) as exc_info:
            manager.change_password(user.id, "wrong123", "newpass1", "newpass1")
        assert exc_info.value.message == "Your current password is wrong."
        assert user_store.get_by_id(user.id).password_change_count == 0

    def test_google_only_account_has_no_password_to_change(self, manager, make_user) -> None:
        """An account without a password cannot use change-password."""
        user = make_user("gina@example.com", password=None, provider=Provider.GOOGLE)
        with pytest.raises(ValidationError):
            manager.change_password(user.id, "anything1", "newpass1", "newpass1")

    def test_disabled_account_is_forbidden(self, manager, make_user) -> None:
        user = make_user("dan@example.com", active=False)
        with pytest.raises(PermissionDeniedError):
            manager.change_password(user.id, DEFAULT_PASSWORD, "newpass1", "newpass1")


class TestChangeRateLimit:
    def _change_three_times(self, manager, user_id, clock) -> str:
        passwords = [DEFAULT_PASSWORD, "second22", "third333", "fourth44"]
        for current, new in zip(passwords, passwords[1:]):
            manager.change_password(user_id, current, new, new)
            clock.advance(minutes=1)
        return passwords[-1]

    def test_fourth_change_within_window_is_limited(self, manager, make_user, clock) -> None:
        """Three changes per window; the fourth -> 429 with retry_after."""
        user = make_user("erin@example.com")
        current = self._change_three_times(manager, user.id, clock)
        with pytest.raises(RateLimitedError) as exc_info:
            manager.change_password(user.id, current, "fifth555", "fifth555")
        assert exc_info.value.status_code == 429
        assert exc_info.value.message == "Too many password changes. Please try again later."
        # Window opened at the first change; three minutes have passed since.
        assert 0 < exc_info.value.retry_after <= 57 * 60 + 1

    def test_change_allowed_again_after_window(self, manager, make_user, clock, user_store) -> None:
        """Once the window passes the counter starts over."""
        user = make_user("frank@example.com")
        current = self._change_three_times(manager, user.id, clock)
        clock.advance(hours=1)
        manager.change_password(user.id, current, "fifth555", "fifth555")
        stored = user_store.get_by_id(user.id)
        assert stored.password_change_count == 1
        assert stored.password_change_window_start == clock.now

    def test_expired_window_is_reset_even_when_attempt_fails(self, manager, make_user, clock, user_store) -> None:
        """An expired window is reset when read, before the attempt is validated."""
        user = make_user("gail@example.com")
        self._change_three_times(manager, user.id, clock)
        clock.advance(hours=2)
        with pytest.raises(AuthenticationError):
            manager.change_password(user.id, "wrong123", "sixth666", "sixth666")
        stored = user_store.get_by_id(user.id)
        assert stored.password_change_count == 0
        assert stored.password_change_window_start == clock.now


# ---------------------------------------------------------------------------
# Forgot and reset
# ---------------------------------------------------------------------------


class TestForgotPassword:
    def test_sends_link_and_stores_only_the_hash(self, manager, make_user, mailer, user_store, clock) -> None:
        """The email carries the raw token; the store keeps only its hash and expiry."""
        user = make_user("hank@example.com")
        manager.forgot_password("  HANK@example.com ")
        assert len(mailer.sent) == 1
        to, _subject, body = mailer.sent[0]
        assert to == "hank@example.com"
        raw_token = mailer.last_reset_token()
        assert f"https://reelvault.example/reset-password/{raw_token}" in body
        stored = user_store.get_by_id(user.id)
        assert stored.password_reset_token_hash == hash_reset_token(raw_token)
        assert stored.password_reset_token_hash != raw_token
        assert stored.password_reset_expires_at == clock.now + timedelta(minutes=10)

    def test_unknown_email_is_silent(self, manager, mailer) -> None:
        """Unknown email: no error, no email."""
        manager.forgot_password("nobody@example.com")
        assert mailer.sent == []

    def test_disabled_account_is_silent(self, manager, make_user, mailer, user_store) -> None:
        """Disabled account: no error, no email."""
        user = make_user("ivy@example.com", active=False)
        manager.forgot_password("ivy@example.com")
        assert mailer.sent == []
        assert user_store.get_by_id(user.id).password_reset_token_hash is None

    def test_missing_email_is_rejected(self, manager) -> None:
        with pytest.raises(ValidationError):
            manager.forgot_password("   ")

    def test_delivery_failure_rolls_back_token(self, manager, make_user, mailer, user_store) -> None:
        """SMTP failure clears the stored token and reports a 500."""
        user = make_user("jack@example.com")
        mailer.fail = True
        with pytest.raises(EmailDeliveryError) as exc_info:
            manager.forgot_password("jack@example.com")
        assert exc_info.value.status_code == 500
        stored = user_store.get_by_id(user.id)
        assert stored.password_reset_token_hash is None
        assert stored.password_reset_expires_at is None


class TestResetPassword:
    def _issue(self, manager, mailer, email: str) -> str:
        manager.forgot_password(email)
        return mailer.last_reset_token()

    def test_reset_sets_password_and_clears_token(self, manager, make_user, mailer, user_store, clock) -> None:
        """Reset stores the new password and spends the token."""
        user = make_user("kate@example.com")
        raw_token = self._issue(manager, mailer, "kate@example.com")
        result = manager.reset_password(raw_token, "brandnew1", "brandnew1")
        stored = user_store.get_by_id(user.id)
        assert result.token
        assert verify_password("brandnew1", stored.password_hash)
        assert stored.password_changed_at == clock.now
        assert stored.password_reset_token_hash is None
        assert mailer.sent[-1][1] == "Your password was reset"

    def test_token_is_single_use(self, manager, make_user, mailer) -> None:
        """A spent token -> 400."""
        make_user("leo@example.com")
        raw_token = self._issue(manager, mailer, "leo@example.com")
        manager.reset_password(raw_token, "brandnew1", "brandnew1")
        with pytest.raises(ValidationError) as exc_info:
            manager.reset_password(raw_token, "brandnew2", "brandnew2")
        assert exc_info.value.message == "Token is invalid or has expired."

    def test_token_valid_just_before_expiry(self, manager, make_user, mailer, clock) -> None:
        """Token still works at 9:59."""
        make_user("mia@example.com")
        raw_token = self._issue(manager, mailer, "mia@example.com")
        clock.advance(minutes=9, seconds=59)
        assert manager.reset_password(raw_token, "brandnew1", "brandnew1").user.email == "mia@example.com"

    def test_token_expires_after_ten_minutes(self, manager, make_user, mailer, clock) -> None:
        """Token rejected after 10 minutes."""
        make_user("ned@example.com")
        raw_token = self._issue(manager, mailer, "ned@example.com")
        clock.advance(minutes=10, seconds=1)
        with pytest.raises(ValidationError):
            manager.reset_password(raw_token, "brandnew1", "brandnew1")

    def test_newer_request_replaces_older_token(self, manager, make_user, mailer) -> None:
        """A second forgot-password request voids the first link."""
        make_user("olga@example.com")
        first = self._issue(manager, mailer, "olga@example.com")
        second = self._issue(manager, mailer, "olga@example.com")
        with pytest.raises(ValidationError):
            manager.reset_password(first, "brandnew1", "brandnew1")
        manager.reset_password(second, "brandnew1", "brandnew1")

    def test_unknown_token_is_rejected(self, manager) -> None:
        with pytest.raises(ValidationError):
            manager.reset_password("f" * 64, "brandnew1", "brandnew1")

    def test_mismatched_confirmation_is_rejected(self, manager, make_user, mailer) -> None:
        make_user("pat@example.com")
        raw_token = self._issue(manager, mailer, "pat@example.com")
        with pytest.raises(ValidationError):
            manager.reset_password(raw_token, "brandnew1", "brandnew2")

    def test_disabled_account_cannot_reset(self, manager, make_user, mailer, user_store) -> None:
        """Valid token for a disabled account -> 403."""
        user = make_user("quinn@example.com")
        raw_token = self._issue(manager, mailer, "quinn@example.com")
        user_store.update_user(user.id, active=False)
        with pytest.raises(PermissionDeniedError):
            manager.reset_password(raw_token, "brandnew1", "brandnew1")

    def test_reset_shares_the_change_limit(self, manager, make_user, mailer, clock) -> None:
        """Resets count against the same window as changes."""
        user = make_user("rita@example.com")
        passwords = [DEFAULT_PASSWORD, "second22", "third333", "fourth44"]
        for current, new in zip(passwords, passwords[1:]):
            manager.change_password(user.id, current, new, new)
        raw_token = self._issue(manager, mailer, "rita@example.com")
        with pytest.raises(RateLimitedError):
            manager.reset_password(raw_token, "brandnew1", "brandnew1")

    def test_confirmation_email_failure_does_not_fail_reset(self, manager, make_user, mailer) -> None:
        """The confirmation email is best effort."""
        make_user("sam@example.com")
        raw_token = self._issue(manager, mailer, "sam@example.com")
        mailer.fail = True
        assert manager.reset_password(raw_token, "brandnew1", "brandnew1").token
