"""
tests/helpers.py -- Test doubles and request helpers shared by the test modules.

Kept out of conftest.py so test modules can import them by name.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

DEFAULT_PASSWORD = "secret123"

_RESET_LINK_RE = re.compile(r"/reset-password/([0-9a-f]{64})")


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingMailer:
    """Mailer double. Set fail=True to simulate an SMTP outage."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail = False

    def send(self, to: str, subject: str, html_body: str) -> bool:
        if self.fail:
            return False
        self.sent.append((to, subject, html_body))
        return True

    def last_reset_token(self) -> str:
        """Return the raw reset token from the most recent reset-link email."""
        for _to, _subject, body in reversed(self.sent):
            match = _RESET_LINK_RE.search(body)
            if match:
                return match.group(1)
        raise AssertionError("no reset link has been sent")


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------


def register(client: TestClient, email: str, password: str = DEFAULT_PASSWORD, name: str = "Test User"):
    """POST /auth/register and return the response."""
    return client.post("/api/v1/auth/register", json={"name": name, "email": email, "password": password})


def login(client: TestClient, email: str, password: str = DEFAULT_PASSWORD):
    return client.post("/api/v1/auth/login", json={"email": email, "password": password})


def csrf_headers(client: TestClient) -> dict[str, str]:
    """Echo the CSRF cookie, fetching one first if the jar has none."""
    token = client.cookies.get("csrfToken")
    if token is None:
        client.get("/api/v1/health")
        token = client.cookies.get("csrfToken")
    return {"X-CSRF-Token": token}


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def as_user(client: TestClient, token: str) -> dict[str, str]:
    """Headers for a state-changing request made with a bearer token.

    Bearer callers pass the same CSRF check as browsers, so the echo of the
    client's CSRF cookie rides along with the Authorization header.
    """
    return {**csrf_headers(client), **bearer(token)}
