"""
api/routes/v1/favorites.py -- The authenticated user's favorite movies.

Routes:
  GET    /api/v1/favorites            -- list my favorites, newest first (session)
  POST   /api/v1/favorites            -- add {movieId} (CSRF, session)
  DELETE /api/v1/favorites/{movieId}  -- remove (CSRF, session)

Every list belongs to the caller: the user id always comes from the session,
never from the request. Add and remove are idempotent; a repeated call
answers 200 with a message saying nothing changed.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.models import (
    FavoriteCreate,
    FavoriteListData,
    FavoriteListResponse,
    FavoriteOut,
    MessageData,
    MessageResponse,
)
from auth.dependencies import get_current_session, require_csrf
from auth.models import AuthenticatedSession
from catalog.store import MovieStore
from core.errors import NotFoundError, ValidationError

# Auth policy:
# - GET    /favorites:            session
# - POST   /favorites:            CSRF, then session
# - DELETE /favorites/{movie_id}: CSRF, then session
router = APIRouter()


def _valid_movie_id(movie_id: int | None) -> int:
    if movie_id is None or movie_id <= 0:
        raise ValidationError("Please provide a valid movieId.")
    return movie_id


def _message(text: str) -> MessageResponse:
    return MessageResponse(data=MessageData(message=text))


@router.get("/favorites", response_model=FavoriteListResponse)
def list_favorites(
    request: Request,
    session: AuthenticatedSession = Depends(get_current_session),
) -> FavoriteListResponse:
    movie_store: MovieStore = request.app.state.movie_store
    favorites = [FavoriteOut.from_favorite(f) for f in movie_store.list_favorites(session.principal.id)]
    return FavoriteListResponse(results=len(favorites), data=FavoriteListData(favorites=favorites))


@router.post(
    "/favorites",
    response_model=MessageResponse,
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def add_favorite(
    request: Request,
    response: Response,
    body: FavoriteCreate,
    session: AuthenticatedSession = Depends(get_current_session),
) -> MessageResponse:
    """Add a movie to the caller's favorites. 201 when added, 200 when already there."""
    movie_id = _valid_movie_id(body.movie_id)
    movie_store: MovieStore = request.app.state.movie_store
    if movie_store.get_movie(movie_id) is None:
        raise NotFoundError("Movie not found.")

    if not movie_store.add_favorite(session.principal.id, movie_id):
        response.status_code = 200
        return _message("Already in favorites.")
    return _message("Added to favorites.")


@router.delete(
    "/favorites/{movie_id}",
    response_model=MessageResponse,
    dependencies=[Depends(require_csrf)],
)
def remove_favorite(
    request: Request,
    movie_id: int,
    session: AuthenticatedSession = Depends(get_current_session),
) -> MessageResponse:
    movie_store: MovieStore = request.app.state.movie_store
    if not movie_store.remove_favorite(session.principal.id, _valid_movie_id(movie_id)):
        return _message("Not in favorites.")
    return _message("Removed from favorites.")
