"""
api/routes/v1/movies.py -- Owned catalog entries.

Routes:
  POST   /api/v1/movies        -- create; the caller becomes the owner (CSRF, session)
  GET    /api/v1/movies/{id}   -- public read
  PATCH  /api/v1/movies/{id}   -- update (CSRF, session, owner-or-admin)
  DELETE /api/v1/movies/{id}   -- delete (CSRF, session, owner-or-admin)

Guard order on writes: CSRF (route dependencies) -> session -> resource load ->
ownership check. The resource is loaded once by load_movie and handed to the
guard as a typed value; the handler receives the same instance.

The record is not locked between the ownership check and the write. A
concurrent ownership change in that gap is not detected.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.models import MovieCreate, MovieData, MovieOut, MoviePatch, MovieResponse
from auth.dependencies import get_current_session, require_csrf, require_owner_or_admin
from auth.models import AuthenticatedSession
from catalog.models import Movie
from catalog.store import MovieStore
from core.errors import NotFoundError, ValidationError

# Auth policy:
# - POST   /movies:        CSRF, then session
# - GET    /movies/{id}:   public
# - PATCH  /movies/{id}:   CSRF, session, owner-or-admin
# - DELETE /movies/{id}:   CSRF, session, owner-or-admin
router = APIRouter()


def load_movie(request: Request, movie_id: int) -> Movie:
    """Dependency: fetch the movie named in the path or raise 404."""
    movie_store: MovieStore = request.app.state.movie_store
    movie = movie_store.get_movie(movie_id)
    if movie is None:
        raise NotFoundError("No movie found with that ID.")
    return movie


def _movie_response(movie: Movie) -> MovieResponse:
    return MovieResponse(data=MovieData(movie=MovieOut.from_movie(movie)))


@router.post(
    "/movies",
    response_model=MovieResponse,
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def create_movie(
    request: Request,
    body: MovieCreate,
    session: AuthenticatedSession = Depends(get_current_session),
) -> MovieResponse:
    movie_store: MovieStore = request.app.state.movie_store
    movie_id = movie_store.create_movie(
        Movie(
            title=body.title,
            overview=body.overview,
            release_date=body.release_date.isoformat() if body.release_date else None,
            owner_id=session.principal.id,
        )
    )
    return _movie_response(movie_store.get_movie(movie_id))


@router.get("/movies/{movie_id}", response_model=MovieResponse)
def get_movie(movie: Movie = Depends(load_movie)) -> MovieResponse:
    return _movie_response(movie)


@router.patch(
    "/movies/{movie_id}",
    response_model=MovieResponse,
    dependencies=[Depends(require_csrf)],
)
def update_movie(
    request: Request,
    body: MoviePatch,
    movie: Movie = Depends(require_owner_or_admin(load_movie)),
) -> MovieResponse:
    """Update title, overview or release date. Omitted fields keep their value."""
    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise ValidationError("No fields to update.")
    if "title" in updates and updates["title"] is None:
        raise ValidationError("Title cannot be empty.")
    if "overview" in updates and updates["overview"] is None:
        updates["overview"] = ""
    if updates.get("release_date") is not None:
        updates["release_date"] = updates["release_date"].isoformat()

    movie_store: MovieStore = request.app.state.movie_store
    if not movie_store.update_movie(movie.id, **updates):
        raise NotFoundError("No movie found with that ID.")
    return _movie_response(movie_store.get_movie(movie.id))


@router.delete(
    "/movies/{movie_id}",
    status_code=204,
    dependencies=[Depends(require_csrf)],
)
def delete_movie(
    request: Request,
    movie: Movie = Depends(require_owner_or_admin(load_movie)),
) -> Response:
    movie_store: MovieStore = request.app.state.movie_store
    if not movie_store.delete_movie(movie.id):
        raise NotFoundError("No movie found with that ID.")
    return Response(status_code=204)
