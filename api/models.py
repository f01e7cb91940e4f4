"""
API request and response models for ReelVault REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
catalog/models.py, which own the internal domain representation. Route
handlers map between the two.

Request models for the auth endpoints are deliberately permissive (plain
strings, defaults of ""): required-field and password-policy checks live in
the auth services so that every client sees the same specific message.
Both snake_case and camelCase field names are accepted, since the browser
forms post camelCase.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import Principal, User
from catalog.models import Favorite, Movie

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class _AuthRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterRequest(_AuthRequest):
    """Request body for POST /api/v1/auth/register."""

    name: str = ""
    email: str = Field(default="", max_length=255)
    password: str = Field(default="", max_length=1024)


class LoginRequest(_AuthRequest):
    """Request body for POST /api/v1/auth/login."""

    email: str = Field(default="", max_length=255)
    password: str = Field(default="", max_length=1024)


class GoogleAuthRequest(_AuthRequest):
    """Request body for POST /api/v1/auth/google -- the Google ID token."""

    credential: str = Field(default="", max_length=8192)


class ChangePasswordRequest(_AuthRequest):
    """Request body for PATCH /api/v1/auth/change-password."""

    current_password: str = Field(default="", max_length=1024)
    new_password: str = Field(default="", max_length=1024)
    new_password_confirm: str = Field(default="", max_length=1024)


class ForgotPasswordRequest(_AuthRequest):
    """Request body for POST /api/v1/auth/forgot-password."""

    email: str = Field(default="", max_length=255)


class ResetPasswordRequest(_AuthRequest):
    """Request body for PATCH /api/v1/auth/reset-password/{token}."""

    new_password: str = Field(default="", max_length=1024)
    new_password_confirm: str = Field(default="", max_length=1024)


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class UserOut(BaseModel):
    """Public view of a user. Never includes hashes or reset state."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    role: str
    provider: str
    active: bool
    created_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls.from_principal(Principal.from_user(user))

    @classmethod
    def from_principal(cls, principal: Principal) -> "UserOut":
        return cls(
            id=principal.id,
            name=principal.name,
            email=principal.email,
            role=principal.role,
            provider=principal.provider,
            active=principal.active,
            created_at=principal.created_at,
        )


class UserData(BaseModel):
    user: Optional[UserOut]


class UserResponse(BaseModel):
    """Envelope for endpoints that return a single user (or null for guests)."""

    status: str = "success"
    data: UserData


class AuthResponse(BaseModel):
    """Returned by register/login/google/change/reset.

    token is the same JWT that is also set as the HttpOnly session cookie;
    API clients send it back as Authorization: Bearer <token>.
    """

    status: str = "success"
    token: str
    data: UserData


class MessageData(BaseModel):
    message: str


class MessageResponse(BaseModel):
    status: str = "success"
    data: MessageData


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/users/{id} (admin only)."""

    role: Optional[RoleEnum] = None
    active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class MovieCreate(BaseModel):
    """Request body for POST /api/v1/movies."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=255)
    overview: str = Field(default="", max_length=5000)
    release_date: Optional[date] = None


class MoviePatch(BaseModel):
    """Request body for PATCH /api/v1/movies/{id}. Omitted fields are unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    overview: Optional[str] = Field(default=None, max_length=5000)
    release_date: Optional[date] = None


class MovieOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    overview: str
    release_date: Optional[str]
    owner_id: Optional[int]
    created_at: str
    updated_at: Optional[str] = None

    @classmethod
    def from_movie(cls, movie: Movie) -> "MovieOut":
        return cls(
            id=movie.id,
            title=movie.title,
            overview=movie.overview,
            release_date=movie.release_date,
            owner_id=movie.owner_id,
            created_at=movie.created_at,
            updated_at=movie.updated_at,
        )


class MovieData(BaseModel):
    movie: MovieOut


class MovieResponse(BaseModel):
    status: str = "success"
    data: MovieData


# ---------------------------------------------------------------------------
# Favorites
# ---------------------------------------------------------------------------


class FavoriteCreate(BaseModel):
    """Request body for POST /api/v1/favorites. Accepts movieId or movie_id."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    movie_id: Optional[int] = None


class FavoriteOut(MovieOut):
    favorited_at: str

    @classmethod
    def from_favorite(cls, favorite: Favorite) -> "FavoriteOut":
        return cls(**MovieOut.from_movie(favorite.movie).model_dump(), favorited_at=favorite.favorited_at)


class FavoriteListData(BaseModel):
    favorites: list[FavoriteOut]


class FavoriteListResponse(BaseModel):
    status: str = "success"
    results: int
    data: FavoriteListData


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Error envelope returned on 4xx/5xx responses.

    error and detail are only populated in DEBUG mode.
    """

    model_config = ConfigDict(frozen=True)

    status: str
    message: str
    error: Optional[str] = None
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str
    version: str
    components: dict[str, str]
