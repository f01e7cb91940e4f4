"""
core/errors.py -- Error taxonomy shared by every layer.

Two hierarchies that never overlap:

  AppError   Operational, request-level failures. Each carries the HTTP status
             the client sees and a message safe to show verbatim. The API
             layer renders them as {"status": "fail"|"error", "message": ...}.

  FatalError Programming or configuration faults (missing signing secret,
             a guard evaluated before authentication). These are bugs, not
             client mistakes: the API layer logs them with full context and
             answers with a generic 500. They must never be caught by code
             that handles AppError.

Layer rule: core/ is the kernel. No imports from api/, auth/, or catalog/.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for operational errors raised while serving a request."""

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    @property
    def status(self) -> str:
        return "fail" if 400 <= self.status_code < 500 else "error"


class ValidationError(AppError):
    status_code = 400


class AuthenticationError(AppError):
    status_code = 401


class TokenVerificationError(AuthenticationError):
    """A session token failed signature, structure, or expiry checks."""


class TokenInvalidError(TokenVerificationError):
    pass


class TokenExpiredError(TokenVerificationError):
    pass


class PermissionDeniedError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    status_code = 409


class RateLimitedError(AppError):
    """Too many attempts. retry_after is the number of seconds to wait."""

    status_code = 429

    def __init__(self, message: str, retry_after: int = 0) -> None:
        super().__init__(message)
        self.retry_after = max(retry_after, 0)


class EmailDeliveryError(AppError):
    status_code = 500


class FatalError(Exception):
    """Base class for faults that indicate a bug or a broken deployment."""


class ConfigurationError(FatalError):
    pass


class GuardOrderError(FatalError):
    """An authorization guard ran without the state it depends on."""
