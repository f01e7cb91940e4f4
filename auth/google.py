"""
auth/google.py -- Google Sign-In: ID token verification and account reconciliation.

The browser obtains a Google ID token (the "credential") from Google Identity
Services and POSTs it to /api/v1/auth/google. We verify it locally:

  - RS256 signature against Google's published JWKS (fetched with requests,
    cached for an hour, refetched once when a token names an unknown kid).
  - iss is accounts.google.com, aud is our GOOGLE_CLIENT_ID, exp not passed.

Security notes:
  [H1] Email verification is mandatory. A credential whose email is absent or
       not verified is refused -- an unverified address could be a victim's
       address added by an attacker.

  Fails closed: any verification problem, including failure to fetch the
  keys, refuses the login. A missing GOOGLE_CLIENT_ID is a deployment fault
  (ConfigurationError), not a client error.

Account resolution (resolve_google_user):
  1. (provider="google", provider_id=sub) -- returning Google user.
  2. normalized email -- existing account; the Google identity is linked to it.
  3. otherwise a new active USER with provider="google" and no password.
  Disabled accounts are refused on every path.

Layer rule: no imports from api/ or catalog/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

import requests
from authlib.jose import JsonWebToken
from authlib.jose.errors import JoseError

from auth.models import ExternalIdentity, Provider, Role, User
from auth.store import UserStore, normalize_email
from core.errors import AuthenticationError, ConfigurationError, PermissionDeniedError, ValidationError

logger = logging.getLogger("reelvault.auth.google")

GOOGLE_CERTS_URL = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_ISSUERS = ["accounts.google.com", "https://accounts.google.com"]

_JWKS_TTL_SECONDS = 3600
_CLOCK_SKEW_SECONDS = 30
_MAX_NAME_LENGTH = 100

_jwt = JsonWebToken(["RS256"])


def fetch_google_jwks() -> dict:
    """Download Google's current signing keys."""
    resp = requests.get(GOOGLE_CERTS_URL, timeout=10)
    resp.raise_for_status()
    return resp.json()


class GoogleIdentityVerifier:
    """Verifies Google ID tokens for one OAuth client id.

    Usage:
        verifier = GoogleIdentityVerifier(settings.google_client_id)
        identity = verifier.verify(credential)
    """

    def __init__(self, client_id: str, fetch_jwks: Callable[[], dict] = fetch_google_jwks) -> None:
        self.client_id = client_id
        self._fetch_jwks = fetch_jwks
        self._jwks: dict | None = None
        self._jwks_fetched_at = 0.0

    def _keys(self, force_refresh: bool = False) -> dict:
        stale = time.monotonic() - self._jwks_fetched_at > _JWKS_TTL_SECONDS
        if self._jwks is None or stale or force_refresh:
            self._jwks = self._fetch_jwks()
            self._jwks_fetched_at = time.monotonic()
        return self._jwks

    def _decode(self, credential: str):
        claims_options = {
            "iss": {"essential": True, "values": GOOGLE_ISSUERS},
            "aud": {"essential": True, "value": self.client_id},
            "exp": {"essential": True},
        }
        try:
            return _jwt.decode(credential, self._keys(), claims_options=claims_options)
        except JoseError:
            raise
        except ValueError:
            # authlib raises ValueError when no key matches the token's kid;
            # Google may have rotated keys since the last fetch.
            return _jwt.decode(credential, self._keys(force_refresh=True), claims_options=claims_options)

    def verify(self, credential: str) -> ExternalIdentity:
        if not self.client_id:
            raise ConfigurationError("GOOGLE_CLIENT_ID is not configured.")
        if not credential or not isinstance(credential, str):
            raise ValidationError("Google credential (id_token) is missing.")

        try:
            claims = self._decode(credential)
            claims.validate(leeway=_CLOCK_SKEW_SECONDS)
        except requests.RequestException as exc:
            logger.error("Could not fetch Google signing keys: %s", exc)
            raise AuthenticationError("Could not verify Google credential. Please try again.") from exc
        except (JoseError, ValueError) as exc:
            logger.info("Rejected Google credential: %s", exc)
            raise AuthenticationError("Invalid Google token.") from exc

        subject = claims.get("sub")
        if not subject:
            raise AuthenticationError("Google user id (sub) is missing.")

        verified = claims.get("email_verified")
        return ExternalIdentity(
            subject=str(subject),
            email=normalize_email(claims.get("email")) or None,
            email_verified=verified is True or verified == "true",
            display_name=str(claims.get("name") or "").strip()[:_MAX_NAME_LENGTH],
        )


def resolve_google_user(store: UserStore, identity: ExternalIdentity) -> User:
    """Find, link, or create the local account for a verified Google identity."""
    if not identity.email:
        raise ValidationError("Google account did not provide an email.")
    if not identity.email_verified:
        raise AuthenticationError("Google email is not verified.")

    user = store.get_by_provider(Provider.GOOGLE, identity.subject)
    if user is None:
        existing = store.get_by_email(identity.email)
        if existing is not None:
            store.link_provider(existing.id, Provider.GOOGLE, identity.subject)
            logger.info("Linked Google identity to existing user id=%s", existing.id)
            user = store.get_by_id(existing.id)
        else:
            new_id = store.create_user(
                User(
                    email=identity.email,
                    name=identity.display_name or "Google User",
                    password_hash=None,
                    role=Role.USER,
                    provider=Provider.GOOGLE,
                    provider_id=identity.subject,
                    active=True,
                )
            )
            logger.info("Created Google user id=%s", new_id)
            user = store.get_by_id(new_id)

    if user is None:
        raise AuthenticationError("Failed to authenticate with Google.")
    if not user.active:
        raise PermissionDeniedError("Account is disabled.")
    return user
