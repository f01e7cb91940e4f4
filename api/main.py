"""
api/main.py -- FastAPI application entry point for ReelVault.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. log_requests          -- one log line per request with latency
  2. ensure_csrf_cookie    -- provisions the csrfToken cookie for browsers
  3. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  4. CORSMiddleware        -- adds CORS headers for allowed browser origins
  5. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds every auth component from the Settings object and stores it
on app.state; route dependencies read them from there. Shutdown closes both
stores.

Errors:
  AppError   -> its own status and message, {"status": "fail"|"error", "message"}
  FatalError -> logged with traceback, generic 500
  anything else -> logged with traceback, generic 500
In DEBUG the 500 envelope also names the exception class and its message.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.favorites import router as favorites_router
from api.routes.v1.movies import router as movies_router
from api.routes.v1.users import router as users_router
from auth.csrf import ensure_csrf_cookie
from auth.google import GoogleIdentityVerifier
from auth.mailer import SmtpMailer
from auth.passwords import PasswordManager
from auth.session import SessionAuthenticator
from auth.store import UserStore
from auth.tokens import TokenService
from catalog.store import MovieStore
from core.config import Settings, get_settings
from core.errors import AppError, FatalError, RateLimitedError

APP_VERSION = "0.1.0"

_GENERIC_SERVER_ERROR = "Something went wrong on the server."

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("reelvault.api")

settings: Settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


def build_components(app: FastAPI, settings: Settings, user_store: UserStore, movie_store: MovieStore) -> None:
    """Construct the auth components from settings and attach them to app.state.

    Shared by the real lifespan and the test lifespan so both wire the same
    object graph.
    """
    tokens = TokenService.from_settings(settings)
    mailer = SmtpMailer.from_settings(settings)
    app.state.settings = settings
    app.state.user_store = user_store
    app.state.movie_store = movie_store
    app.state.tokens = tokens
    app.state.authenticator = SessionAuthenticator(user_store, tokens)
    app.state.mailer = mailer
    app.state.password_manager = PasswordManager(user_store, tokens, mailer, settings)
    app.state.google_verifier = GoogleIdentityVerifier(settings.google_client_id)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    logger.info("ReelVault API starting up")
    user_store = UserStore(settings.database_url)
    movie_store = MovieStore(settings.database_url)
    build_components(app, settings, user_store, movie_store)
    if not app.state.mailer.is_configured:
        logger.warning("SMTP_HOST not set -- emails will be logged, not sent")
    if not settings.google_client_id:
        logger.warning("GOOGLE_CLIENT_ID not set -- Google sign-in is disabled")
    logger.info("Auth initialized (debug=%s, secure_cookies=%s)", settings.debug, settings.cookies_secure)

    yield

    movie_store.close()
    user_store.close()
    logger.info("ReelVault API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="ReelVault API",
    description="Movie catalog backend: accounts, sessions and owned catalog entries.",
    version=APP_VERSION,
    lifespan=lifespan,
)

# Settings are also needed by middleware before the lifespan has run for a
# request (e.g. TestClient without a context manager).
app.state.settings = settings

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the current stack, so the LAST registered middleware
# is the outermost. Registered innermost-first: SlowAPI -> CORS -> TrustedHost.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", settings.csrf_header_name],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

# SlowAPIMiddleware looks for app.state.limiter by convention.
app.state.limiter = limiter

# Double-submit CSRF: every response to a browser without a csrfToken cookie
# sets one. State-changing routes validate it through require_csrf.
app.middleware("http")(ensure_csrf_cookie)


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(movies_router, prefix="/api/v1", tags=["Movies"])
app.include_router(favorites_router, prefix="/api/v1", tags=["Favorites"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(
    request: Request, status_code: int, message: str, headers: dict | None = None, **debug
) -> JSONResponse:
    """Render the error envelope. The debug fields are included only when the app runs with DEBUG."""
    app_settings: Settings = request.app.state.settings
    body = ErrorResponse(
        status="fail" if 400 <= status_code < 500 else "error",
        message=message,
        **(debug if app_settings.debug else {}),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True), headers=headers)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Operational errors carry a client-safe message and their own status."""
    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.retry_after)}
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return _error_response(request, exc.status_code, exc.message, headers=headers)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 when a slowapi per-IP limit is exceeded.

    slowapi puts the violated limit on the exception; the window length of
    that limit is a safe upper bound for Retry-After.
    """
    limit = getattr(exc, "limit", None)
    retry_after = 60
    if limit is not None and hasattr(limit, "limit"):
        retry_after = int(limit.limit.get_expiry())
    return _error_response(
        request,
        429,
        "Too many requests from this IP. Please try again later.",
        headers={"Retry-After": str(retry_after)},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with the first validation problem, e.g. 'title: String should have at least 1 character'."""
    errors = exc.errors()
    message = "Invalid input data."
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "path", "query"))
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    return _error_response(request, 400, message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Unknown routes, wrong methods and any HTTPException raised by the framework."""
    message = exc.detail if isinstance(exc.detail, str) else "Request failed."
    if exc.status_code == 404 and exc.detail == "Not Found":
        message = f"Can't find {request.url.path} on this server!"
    return _error_response(request, exc.status_code, message, headers=getattr(exc, "headers", None))


@app.exception_handler(FatalError)
async def fatal_error_handler(request: Request, exc: FatalError) -> JSONResponse:
    """Configuration and programming faults: log everything, tell the client nothing."""
    logger.exception("Fatal %s on %s %s", type(exc).__name__, request.method, request.url.path)
    return _error_response(request, 500, _GENERIC_SERVER_ERROR, error=type(exc).__name__, detail=str(exc))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only (outside DEBUG). Stack traces in
    responses leak implementation details.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(request, 500, _GENERIC_SERVER_ERROR, error=type(exc).__name__, detail=str(exc))


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database status."""
    database_ok = request.app.state.user_store.ping()
    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        version=APP_VERSION,
        components={"app": "ok", "database": "ok" if database_ok else "error"},
    )
