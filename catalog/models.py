"""
catalog/models.py -- Domain dataclass for catalog entries.

Pure data containers with zero logic. owner_id is the id of the user who
created the record; auth.guards.check_owner_or_admin compares it against the
authenticated principal before any update or delete.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Movie:
    """A movie in the catalog.

    id is None before the record is written to the database.
    """

    title: str
    owner_id: int | None = None
    id: int | None = None
    overview: str = ""
    release_date: str | None = None  # YYYY-MM-DD
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str | None = None


@dataclass
class Favorite:
    """A movie on a user's favorites list, with the time it was added."""

    movie: Movie
    favorited_at: str
