"""
auth/store.py -- SQLAlchemy Core persistence layer for user credentials.

Pattern: Repository + Data Mapper (same as catalog/store.py).
UserStore is the repository; _row_to_user is the mapper. Service and route
code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(provider, provider_id) is enforced in code rather than SQL because
  SQLite treats two NULL values as distinct in UNIQUE constraints, which would
  allow duplicate unlinked records. get_by_provider() + link_provider() check
  it before writing.

  Only sha256(reset token) is stored. A leaked database does not hand out
  usable reset links.

Timestamps:
  Stored as fixed-width UTC ISO 8601 strings (microsecond precision) so that
  string comparison in SQL matches chronological order. The reset-token
  lookup relies on this to compare expiry against "now" in the WHERE clause.

DB path: auth/reelvault.db unless DATABASE_URL is set.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import Provider, Role, User

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'reelvault.db'}"

# Columns a caller may change through update_user(). Anything else (id, email,
# created_at) is immutable after insert or has a dedicated method.
_UPDATABLE_FIELDS = {
    "name",
    "role",
    "active",
    "password_change_count",
    "password_change_window_start",
}

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, server_default=""),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text),  # NULL for Google-only users
    Column("role", String(10), nullable=False, server_default=Role.USER.value),
    Column("provider", String(20), nullable=False, server_default=Provider.LOCAL.value),
    Column("provider_id", String(255)),
    Column("active", Integer, nullable=False, server_default="1"),
    Column("password_changed_at", String(32)),
    Column("password_reset_token_hash", String(64), index=True),
    Column("password_reset_expires_at", String(32)),
    Column("password_change_count", Integer, nullable=False, server_default="0"),
    Column("password_change_window_start", String(32)),
    Column("created_at", String(32), nullable=False),
    # Note: UNIQUE(provider, provider_id) enforced in code, not SQL.
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalize_email(email: str | None) -> str:
    """Trim and lowercase an email address. None becomes ""."""
    return str(email or "").strip().lower()


def _to_db_time(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_db_time(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore()
        user_id = store.create_user(User(email="a@x.com", name="A", password_hash=hash_password("abcde1")))
        user = store.get_by_email("A@X.com")
        store.close()
    """

    def __init__(self, db_url: str = "") -> None:
        db_url = db_url or _DEFAULT_DB_URL
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Inserts
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        The email is normalized before insert. Raises
        sqlalchemy.exc.IntegrityError if the email already exists -- callers
        translate that into a 409 because a concurrent request may have won
        the race after their own existence check.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    name=user.name,
                    email=normalize_email(user.email),
                    password_hash=user.password_hash,
                    role=Role(user.role).value,
                    provider=Provider(user.provider).value,
                    provider_id=user.provider_id,
                    active=1 if user.active else 0,
                    password_changed_at=_to_db_time(user.password_changed_at),
                    password_change_count=user.password_change_count,
                    password_change_window_start=_to_db_time(user.password_change_window_start),
                    created_at=_to_db_time(user.created_at or _now()),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    # ------------------------------------------------------------------
    # Point lookups
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email. Matching is case-insensitive via normalization."""
        normalized = normalize_email(email)
        if not normalized:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalized)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_provider(self, provider: Provider | str, provider_id: str) -> User | None:
        """Look up a user by (provider, provider_id). Returns None if no linked record exists."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(
                    (_users.c.provider == Provider(provider).value) & (_users.c.provider_id == provider_id)
                )
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_reset_token_hash(self, token_hash: str, now: datetime) -> User | None:
        """Return the user holding an unexpired reset token with this hash.

        Expiry must be strictly after `now`. An expired token is
        indistinguishable from an unknown one.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(
                    (_users.c.password_reset_token_hash == token_hash)
                    & (_users.c.password_reset_expires_at.is_not(None))
                    & (_users.c.password_reset_expires_at > _to_db_time(now))
                )
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable profile/rate-limit fields on an existing user.

        Accepted fields: name, role, active, password_change_count,
        password_change_window_start. Unknown fields raise ValueError rather
        than being silently ignored.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if not fields:
            return False
        if "active" in fields:
            fields["active"] = 1 if fields["active"] else 0
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        if "password_change_window_start" in fields:
            fields["password_change_window_start"] = _to_db_time(fields["password_change_window_start"])
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def link_provider(self, user_id: int, provider: Provider | str, provider_id: str) -> None:
        """Attach an external identity to an existing user record.

        Called on the first Google login for an account that was matched by
        email. Subsequent logins find the user through get_by_provider().
        """
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(provider=Provider(provider).value, provider_id=provider_id)
            )
            conn.commit()

    def update_password(
        self,
        user_id: int,
        password_hash: str,
        changed_at: datetime,
        change_count: int,
        window_start: datetime | None,
        clear_reset: bool = False,
    ) -> None:
        """Store a new password hash and stamp the change in one write.

        password_changed_at invalidates every token issued before it (see
        auth.session). The reset token is cleared in the same statement when
        clear_reset is True so a successful reset can never leave a usable
        token behind.
        """
        values: dict = {
            "password_hash": password_hash,
            "password_changed_at": _to_db_time(changed_at),
            "password_change_count": change_count,
            "password_change_window_start": _to_db_time(window_start),
        }
        if clear_reset:
            values["password_reset_token_hash"] = None
            values["password_reset_expires_at"] = None
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            conn.commit()

    def set_password_reset(self, user_id: int, token_hash: str, expires_at: datetime) -> None:
        """Store the hash of a freshly issued reset token, replacing any previous one."""
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(password_reset_token_hash=token_hash, password_reset_expires_at=_to_db_time(expires_at))
            )
            conn.commit()

    def clear_password_reset(self, user_id: int) -> None:
        """Remove any reset token. Used when the reset email could not be sent."""
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(password_reset_token_hash=None, password_reset_expires_at=None)
            )
            conn.commit()

    # ------------------------------------------------------------------
    # Admin helpers
    # ------------------------------------------------------------------

    def count_active_admins(self) -> int:
        """Return the number of active admin users.

        Used by PATCH /users/{id} to prevent deactivating or demoting the
        last admin [M4].
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_users)
                .where((_users.c.role == Role.ADMIN.value) & (_users.c.active == 1))
            ).scalar()
        return result or 0

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by GET /health."""
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
        except SQLAlchemyError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name or "",
        email=row.email,
        password_hash=row.password_hash,
        role=Role(row.role),
        provider=Provider(row.provider),
        provider_id=row.provider_id,
        active=bool(row.active),
        password_changed_at=_from_db_time(row.password_changed_at),
        password_reset_token_hash=row.password_reset_token_hash,
        password_reset_expires_at=_from_db_time(row.password_reset_expires_at),
        password_change_count=row.password_change_count or 0,
        password_change_window_start=_from_db_time(row.password_change_window_start),
        created_at=_from_db_time(row.created_at),
    )
