"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST  /api/v1/auth/register                -- local sign-up; sets JWT cookie
  POST  /api/v1/auth/login                   -- password login; sets JWT cookie
  POST  /api/v1/auth/logout                  -- clears the JWT cookie
  POST  /api/v1/auth/google                  -- Google ID token sign-in; sets JWT cookie
  PATCH /api/v1/auth/change-password         -- authenticated change (CSRF protected)
  POST  /api/v1/auth/forgot-password         -- emails a reset link (generic answer)
  PATCH /api/v1/auth/reset-password/{token}  -- consumes a reset token; sets JWT cookie
  GET   /api/v1/auth/session                 -- current user or null (never 401)

Security:
  [H2] register, login, google and forgot-password are rate-limited per IP.
  [C1] authenticate_local() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries a token.
  Logout only clears the cookie. A token already handed to an API client stays
  valid until it expires or the password changes.

Handlers that hash passwords are plain `def` so FastAPI runs them in the
threadpool and bcrypt never blocks the event loop.

No `from __future__ import annotations` here: slowapi wraps the rate-limited
handlers, and FastAPI resolves string annotations against the wrapper's
module globals, not this module's.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import forgot_password_limit, limiter, login_limit
from api.models import (
    AuthResponse,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    GoogleAuthRequest,
    LoginRequest,
    MessageData,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
    UserData,
    UserOut,
    UserResponse,
)
from auth.accounts import authenticate_local, register_local
from auth.cookies import clear_session_cookie, set_session_cookie
from auth.dependencies import get_current_session, require_csrf, try_get_current_session
from auth.google import GoogleIdentityVerifier, resolve_google_user
from auth.models import AuthenticatedSession, User
from auth.passwords import FORGOT_PASSWORD_MESSAGE, PasswordManager
from auth.store import UserStore
from auth.tokens import TokenService
from core.config import Settings

# Auth policy:
# - POST  /auth/register, /auth/login, /auth/google:  public, rate-limited
# - POST  /auth/logout:                                public -- clearing a cookie needs no prior auth
# - PATCH /auth/change-password:                       CSRF, then session
# - POST  /auth/forgot-password:                       public, rate-limited
# - PATCH /auth/reset-password/{token}:                public -- the token is the credential
# - GET   /auth/session:                               view mode (guests get user=null)
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _auth_response(user: User, token: str, settings: Settings, status_code: int = 200) -> JSONResponse:
    """Build the auth response envelope and set the session cookie."""
    body = AuthResponse(token=token, data=UserData(user=UserOut.from_user(user)))
    resp = JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))
    set_session_cookie(resp, token, settings)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _issue_for(request: Request, user: User) -> str:
    tokens: TokenService = request.app.state.tokens
    return tokens.issue(user.id, user.role)


# ---------------------------------------------------------------------------
# Sign-up, sign-in, sign-out
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
@limiter.limit(login_limit)  # [H2] below @router so FastAPI registers the rate-limited wrapper
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a local account and sign it in."""
    settings: Settings = request.app.state.settings
    user_store: UserStore = request.app.state.user_store
    user = register_local(user_store, body.name, body.email, body.password, bcrypt_rounds=settings.bcrypt_rounds)
    return _auth_response(user, _issue_for(request, user), settings, status_code=201)


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(login_limit)  # [H2]
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set JWT cookie.

    Wrong email and wrong password produce the same 401 message.
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_local(user_store, body.email, body.password)
    return _auth_response(user, _issue_for(request, user), request.app.state.settings)


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(request: Request) -> JSONResponse:
    """Clear the JWT cookie and end the browser session."""
    body = MessageResponse(data=MessageData(message="Logged out."))
    resp = JSONResponse(content=body.model_dump())
    clear_session_cookie(resp, request.app.state.settings)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/google", response_model=AuthResponse)
@limiter.limit(login_limit)  # [H2]
def google_sign_in(request: Request, body: GoogleAuthRequest) -> JSONResponse:
    """Verify a Google ID token, then find, link or create the local account."""
    verifier: GoogleIdentityVerifier = request.app.state.google_verifier
    identity = verifier.verify(body.credential)
    user = resolve_google_user(request.app.state.user_store, identity)
    return _auth_response(user, _issue_for(request, user), request.app.state.settings)


@router.get("/auth/session", response_model=UserResponse)
async def current_session(session: AuthenticatedSession | None = Depends(try_get_current_session)) -> UserResponse:
    """Return the signed-in user, or user=null for guests and bad tokens."""
    user = UserOut.from_principal(session.principal) if session is not None else None
    return UserResponse(data=UserData(user=user))


# ---------------------------------------------------------------------------
# Password lifecycle
# ---------------------------------------------------------------------------


@router.patch(
    "/auth/change-password",
    response_model=AuthResponse,
    dependencies=[Depends(require_csrf)],
)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    session: AuthenticatedSession = Depends(get_current_session),
) -> JSONResponse:
    """Change the caller's password.

    Every token issued before the change stops working; the response carries
    the replacement token and cookie.
    """
    manager: PasswordManager = request.app.state.password_manager
    result = manager.change_password(
        session.principal.id,
        body.current_password,
        body.new_password,
        body.new_password_confirm,
    )
    return _auth_response(result.user, result.token, request.app.state.settings)


@router.post("/auth/forgot-password", response_model=MessageResponse)
@limiter.limit(forgot_password_limit)  # [H2]
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Email a reset link. The answer is the same whether or not the account exists."""
    manager: PasswordManager = request.app.state.password_manager
    manager.forgot_password(body.email)
    return MessageResponse(data=MessageData(message=FORGOT_PASSWORD_MESSAGE))


@router.patch("/auth/reset-password/{token}", response_model=AuthResponse)
def reset_password(request: Request, token: str, body: ResetPasswordRequest) -> JSONResponse:
    """Consume a reset token, set the new password and sign the user in."""
    manager: PasswordManager = request.app.state.password_manager
    result = manager.reset_password(token, body.new_password, body.new_password_confirm)
    return _auth_response(result.user, result.token, request.app.state.settings)
