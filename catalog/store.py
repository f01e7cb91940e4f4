"""
catalog/store.py -- SQLAlchemy Core persistence for movies and favorites.

Pattern: Repository + Data Mapper (same as auth/store.py). MovieStore is the
repository; _row_to_movie is the mapper. Route handlers never touch SQL.

Favorites are a (user_id, movie_id) relationship table. The composite primary
key makes a second add of the same pair a no-op reported to the caller, and
deleting a movie removes it from every favorites list in the same transaction.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = MovieStore("sqlite:///:memory:")
    movie_id = store.create_movie(Movie(title="Alien", owner_id=1))
    store.update_movie(movie_id, title="Aliens")
    store.add_favorite(user_id=1, movie_id=movie_id)
    store.close()
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, create_engine, event, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from catalog.models import Favorite, Movie

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'reelvault_catalog.db'}"

_UPDATABLE_FIELDS = {"title", "overview", "release_date"}

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_movies = Table(
    "movies",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(255), nullable=False),
    Column("overview", Text, nullable=False, server_default=""),
    Column("release_date", String(10)),  # YYYY-MM-DD
    Column("owner_id", Integer, index=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32)),
)

_favorites = Table(
    "favorite_movies",
    _metadata,
    Column("user_id", Integer, primary_key=True),
    Column("movie_id", Integer, ForeignKey("movies.id"), primary_key=True),
    Column("created_at", String(32), nullable=False),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class MovieStore:
    """Repository for Movie records."""

    def __init__(self, db_url: str = "") -> None:
        db_url = db_url or _DEFAULT_DB_URL
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def create_movie(self, movie: Movie) -> int:
        """Insert a movie and return its assigned ID."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _movies.insert().values(
                    title=movie.title,
                    overview=movie.overview,
                    release_date=movie.release_date,
                    owner_id=movie.owner_id,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_movie(self, movie_id: int) -> Movie | None:
        with self.engine.connect() as conn:
            row = conn.execute(_movies.select().where(_movies.c.id == movie_id)).fetchone()
        return _row_to_movie(row) if row is not None else None

    def update_movie(self, movie_id: int, **fields) -> bool:
        """Update title/overview/release_date. Returns False if the movie does not exist.

        Ownership is NOT checked here -- routes run the owner-or-admin guard
        before calling this.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown movie fields: {unknown!r}")
        if not fields:
            return False
        with self.engine.connect() as conn:
            result = conn.execute(
                _movies.update().where(_movies.c.id == movie_id).values(updated_at=_now_iso(), **fields)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_movie(self, movie_id: int) -> bool:
        with self.engine.connect() as conn:
            conn.execute(_favorites.delete().where(_favorites.c.movie_id == movie_id))
            result = conn.execute(_movies.delete().where(_movies.c.id == movie_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------

    def add_favorite(self, user_id: int, movie_id: int) -> bool:
        """Add movie_id to the user's favorites.

        Returns False when the pair already exists. The caller checks that the
        movie exists first.
        """
        with self.engine.connect() as conn:
            try:
                conn.execute(_favorites.insert().values(user_id=user_id, movie_id=movie_id, created_at=_now_iso()))
            except IntegrityError:
                conn.rollback()
                return False
            conn.commit()
        return True

    def remove_favorite(self, user_id: int, movie_id: int) -> bool:
        """Returns False when the movie was not on the list."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _favorites.delete().where(_favorites.c.user_id == user_id, _favorites.c.movie_id == movie_id)
            )
            conn.commit()
        return result.rowcount > 0

    def list_favorites(self, user_id: int) -> list[Favorite]:
        """Return the user's favorites, most recently added first."""
        query = (
            select(_movies, _favorites.c.created_at.label("favorited_at"))
            .join(_favorites, _favorites.c.movie_id == _movies.c.id)
            .where(_favorites.c.user_id == user_id)
            .order_by(_favorites.c.created_at.desc(), _movies.c.id.desc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [Favorite(movie=_row_to_movie(row), favorited_at=row.favorited_at) for row in rows]

    def close(self) -> None:
        self.engine.dispose()


def _row_to_movie(row) -> Movie:
    return Movie(
        id=row.id,
        title=row.title,
        overview=row.overview or "",
        release_date=row.release_date,
        owner_id=row.owner_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
