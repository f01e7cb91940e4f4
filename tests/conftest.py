"""
tests/conftest.py -- Shared test fixtures for ReelVault unit and integration tests.

This module provides:
  - user_store / movie_store: isolated in-memory DBs, one per test
  - settings: the cached Settings object (env is set below, before any import)
  - make_user: inserts a user with a bcrypt-hashed password
  - api_client: TestClient with a patched lifespan wired to the test stores

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares one
in-memory instance across all connections in the same process.

The environment must be set before any core/auth/api import so get_settings()
caches test-friendly values: a fixed SECRET_KEY, the minimum bcrypt cost,
relaxed per-IP limits, and "testserver" (TestClient's Host header) in
ALLOWED_HOSTS so it passes TrustedHostMiddleware.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set the environment before any core/auth/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECRET_KEY", "reelvault-test-secret-key-0123456789abcdef")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("FORGOT_PASSWORD_RATE_LIMIT", "1000/minute")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id.apps.googleusercontent.com")
os.environ.setdefault("APP_BASE_URL", "http://localhost:3000")

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_components
from auth.google import GoogleIdentityVerifier
from auth.models import Provider, Role, User
from auth.passwords import PasswordManager, hash_password
from auth.store import UserStore
from catalog.store import MovieStore
from core.config import Settings, get_settings
from tests.helpers import DEFAULT_PASSWORD, RecordingMailer


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


def _memory_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore(db_url=_memory_url("test_users"))
    yield store
    store.close()


@pytest.fixture
def movie_store() -> Generator[MovieStore, None, None]:
    store = MovieStore(db_url=_memory_url("test_movies"))
    yield store
    store.close()


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def make_user(user_store: UserStore):
    """Factory: make_user("a@x.com", role=Role.ADMIN) -> User (as stored)."""

    def _make(
        email: str,
        password: str | None = DEFAULT_PASSWORD,
        name: str = "Test User",
        role: Role = Role.USER,
        active: bool = True,
        provider: Provider = Provider.LOCAL,
    ) -> User:
        user_id = user_store.create_user(
            User(
                email=email,
                name=name,
                password_hash=hash_password(password, rounds=4) if password else None,
                role=role,
                provider=provider,
                active=active,
            )
        )
        return user_store.get_by_id(user_id)

    return _make


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, movie_store: MovieStore, mailer: RecordingMailer):
    """Return an async context manager that replaces the real lifespan.

    Wires the test stores into app.state through the same build_components()
    the real lifespan uses, then swaps in the recording mailer. The Google
    verifier never fetches keys unless a test replaces it.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        settings = get_settings()
        build_components(app, settings, user_store, movie_store)
        app.state.mailer = mailer
        app.state.password_manager = PasswordManager(user_store, app.state.tokens, mailer, settings)
        app.state.google_verifier = GoogleIdentityVerifier(settings.google_client_id, fetch_jwks=lambda: {"keys": []})
        yield

    return test_lifespan


@pytest.fixture
def api_client(
    user_store: UserStore, movie_store: MovieStore, mailer: RecordingMailer
) -> Generator[TestClient, None, None]:
    """Yield a TestClient for the real app backed by this test's stores.

    Function-scoped so every test starts with an empty cookie jar and empty
    databases.
    """
    app.router.lifespan_context = _patch_lifespan(user_store, movie_store, mailer)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client
