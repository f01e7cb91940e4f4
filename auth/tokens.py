"""
auth/tokens.py -- Session JWT issuance/verification and credential extraction.

Security design decisions:
  JWT: python-jose with HS256 only. The algorithm list passed to decode() has
       exactly one entry, so a token claiming "none" or an asymmetric
       algorithm is rejected before its signature is even considered.
       Tokens carry sub (user id as a string), role, iat and exp.

  Verification raises a typed error instead of returning None:
       TokenExpiredError for a well-formed token past its exp, and
       TokenInvalidError for everything else (bad signature, garbage, missing
       claims). Both become the same 401 at the API layer; only the log line
       differs.

  Missing signing secret: TokenService refuses to be constructed without one.
       That is a deployment fault (ConfigurationError), never a 401.

  Credential extraction: Authorization: Bearer first, session cookie second.
       The first match wins even if it later fails verification -- a bad
       bearer token does not fall back to the cookie.

Layer rule: no imports from api/ or catalog/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import Role, TokenClaims
from core.config import Settings
from core.errors import ConfigurationError, TokenExpiredError, TokenInvalidError

logger = logging.getLogger("reelvault.auth.tokens")

ALGORITHM = "HS256"

_BEARER_PREFIX = "Bearer "


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Issues and verifies signed, time-limited session tokens.

    Usage:
        tokens = TokenService.from_settings(get_settings())
        token = tokens.issue(user.id, user.role)
        claims = tokens.verify(token)   # raises TokenVerificationError
    """

    def __init__(
        self,
        secret_key: str,
        expire_seconds: int = 7 * 24 * 3600,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not secret_key:
            raise ConfigurationError("Session signing secret is not configured (SECRET_KEY).")
        if expire_seconds <= 0:
            raise ConfigurationError("TOKEN_EXPIRE_SECONDS must be positive.")
        self._secret_key = secret_key
        self.expire_seconds = expire_seconds
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], datetime] = _utcnow) -> "TokenService":
        return cls(settings.secret_key, settings.token_expire_seconds, clock=clock)

    def issue(self, subject_id: int, role: Role | str) -> str:
        """Encode a signed JWT for the given user id and role."""
        issued_at = self._clock()
        payload = {
            "sub": str(subject_id),
            "role": Role(role).value,
            "iat": issued_at,
            "exp": issued_at + timedelta(seconds=self.expire_seconds),
        }
        return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)

    def verify(self, token: str) -> TokenClaims:
        """Decode and verify a JWT.

        Raises TokenExpiredError when the signature is valid but exp has
        passed, TokenInvalidError for any other failure.
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[ALGORITHM])
        except ExpiredSignatureError as exc:
            logger.info("Rejected expired session token")
            raise TokenExpiredError("Invalid or expired token. Please log in again.") from exc
        except JWTError as exc:
            logger.info("Rejected malformed or badly signed session token: %s", exc)
            raise TokenInvalidError("Invalid or expired token. Please log in again.") from exc

        try:
            subject_id = int(payload["sub"])
            role = str(payload["role"])
            issued_at = datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc)
            expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
        except (KeyError, TypeError, ValueError) as exc:
            logger.info("Rejected session token with incomplete payload")
            raise TokenInvalidError("Invalid token payload. Please log in again.") from exc

        return TokenClaims(
            subject_id=subject_id,
            role=role,
            issued_at=issued_at,
            expires_at=expires_at,
            raw=dict(payload),
        )


# ---------------------------------------------------------------------------
# Credential extraction
# ---------------------------------------------------------------------------


def extract_token(authorization: str | None, cookies: Mapping[str, str], cookie_name: str) -> str | None:
    """Return the candidate session token for a request, or None if absent.

    Order: Authorization: Bearer <token>, then the session cookie. A header
    that is present but not a Bearer credential (e.g. Basic) is ignored.
    """
    if authorization and authorization.startswith(_BEARER_PREFIX):
        token = authorization[len(_BEARER_PREFIX) :].strip()
        if token:
            return token
    token = cookies.get(cookie_name)
    if token:
        return token
    return None
