"""
auth/store.py -- SQLAlchemy Core persistence layer for users and sessions.

Pattern: Repository + Data Mapper.
UserStore and SessionStore are the repositories; _row_to_user /
_row_to_session are the mappers. Services and routes never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Session secrets live only in the sessions table and in Session objects.

Errors:
  Any SQLAlchemyError surfaces as core.errors.PersistenceError. The core does
  not retry -- a failed write is reported to the immediate caller. A duplicate
  username (IntegrityError on insert) is a ConflictError instead.

Both stores may share one Engine (pass engine=) so users and sessions live in
the same database; each can also open its own from a URL.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import Role, Session, User
from core.errors import ConflictError, PersistenceError

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'identity.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),  # UUID string
    Column("username", String(255), nullable=False, unique=True),
    Column("hashed_password", Text),
    Column("role", Integer, nullable=False, server_default=str(int(Role.USER))),
    Column("created_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(36), primary_key=True),  # UUID string
    Column("user_id", String(36), nullable=False, index=True),
    Column("secret", String(256), nullable=False),
    Column("token", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32)),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str = _DEFAULT_DB_URL) -> Engine:
    """Create an Engine and make sure the schema exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    try:
        engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(engine, "connect", _set_wal_mode)
        _metadata.create_all(engine)
    except SQLAlchemyError as exc:
        raise PersistenceError("Could not initialize the database.", detail=str(exc)) from exc
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_iso(value: datetime | None) -> str | None:
    # Fixed-width UTC text, so string comparison in SQL orders timestamps correctly.
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore()
        store.create_user(User(id=str(uuid4()), username="admin", role=Role.ADMIN))
        user = store.get_by_username("admin")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, engine: Engine | None = None) -> None:
        self._owns_engine = engine is None
        self.engine: Engine = engine if engine is not None else make_engine(db_url)

    def has_users(self) -> bool:
        """Return True if at least one user record exists."""
        try:
            with self.engine.connect() as conn:
                result = conn.execute(select(func.count()).select_from(_users)).scalar()
        except SQLAlchemyError as exc:
            raise PersistenceError("User lookup failed.", detail=str(exc)) from exc
        return (result or 0) > 0

    def create_user(self, user: User) -> str:
        """Insert a new user and return its id.

        Raises ConflictError if the username already exists.
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _users.insert().values(
                        id=user.id,
                        username=user.username,
                        hashed_password=user.hashed_password,
                        role=int(user.role),
                        created_at=_to_iso(user.created_at),
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError("A user with that username already exists.") from exc
        except SQLAlchemyError as exc:
            raise PersistenceError("User write failed.", detail=str(exc)) from exc
        return user.id

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by id. Returns None if not found."""
        return self._fetch_one(_users.select().where(_users.c.id == user_id))

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        return self._fetch_one(_users.select().where(_users.c.username == username))

    def list_users(self) -> list[User]:
        """Return all users ordered by username."""
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(_users.select().order_by(_users.c.username)).fetchall()
        except SQLAlchemyError as exc:
            raise PersistenceError("User lookup failed.", detail=str(exc)) from exc
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: username, role, hashed_password.
        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - {"username", "role", "hashed_password"}
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "role" in fields:
            fields["role"] = int(fields["role"])
        try:
            with self.engine.connect() as conn:
                result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError("A user with that username already exists.") from exc
        except SQLAlchemyError as exc:
            raise PersistenceError("User write failed.", detail=str(exc)) from exc
        return result.rowcount > 0

    def delete_user(self, user_id: str) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found.

        Sessions are not touched here -- IdentityService.delete_user() revokes
        them first so their cache entries are evicted too.
        """
        try:
            with self.engine.connect() as conn:
                result = conn.execute(_users.delete().where(_users.c.id == user_id))
                conn.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError("User delete failed.", detail=str(exc)) from exc
        return result.rowcount > 0

    def _fetch_one(self, stmt) -> User | None:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(stmt).fetchone()
        except SQLAlchemyError as exc:
            raise PersistenceError("User lookup failed.", detail=str(exc)) from exc
        return _row_to_user(row) if row is not None else None

    def close(self) -> None:
        if self._owns_engine:
            self.engine.dispose()


class SessionStore:
    """Repository for Session entities, including their secrets."""

    def __init__(self, db_url: str = _DEFAULT_DB_URL, engine: Engine | None = None) -> None:
        self._owns_engine = engine is None
        self.engine: Engine = engine if engine is not None else make_engine(db_url)

    def get_by_id(self, session_id: str) -> Session | None:
        """Look up a session by id. Returns None if not found."""
        try:
            with self.engine.connect() as conn:
                row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        except SQLAlchemyError as exc:
            raise PersistenceError("Session lookup failed.", detail=str(exc)) from exc
        return _row_to_session(row) if row is not None else None

    def save(self, session: Session) -> None:
        """Insert or replace a session record."""
        values = {
            "user_id": session.user_id,
            "secret": session.secret,
            "token": session.token,
            "created_at": _to_iso(session.created_at),
            "expires_at": _to_iso(session.expires_at),
        }
        try:
            with self.engine.connect() as conn:
                result = conn.execute(_sessions.update().where(_sessions.c.id == session.id).values(**values))
                if result.rowcount == 0:
                    conn.execute(_sessions.insert().values(id=session.id, **values))
                conn.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError("Session write failed.", detail=str(exc)) from exc

    def delete(self, session: Session) -> bool:
        """Delete a session. Returns True if deleted, False if it was already gone."""
        try:
            with self.engine.connect() as conn:
                result = conn.execute(_sessions.delete().where(_sessions.c.id == session.id))
                conn.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError("Session delete failed.", detail=str(exc)) from exc
        return result.rowcount > 0

    def list_for_user(self, user_id: str) -> list[Session]:
        """Return every session owned by user_id (newest first)."""
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(
                    _sessions.select().where(_sessions.c.user_id == user_id).order_by(_sessions.c.created_at.desc())
                ).fetchall()
        except SQLAlchemyError as exc:
            raise PersistenceError("Session lookup failed.", detail=str(exc)) from exc
        return [_row_to_session(r) for r in rows]

    def list_expired(self, now: datetime | None = None) -> list[Session]:
        """Return sessions whose expires_at is in the past."""
        cutoff = _to_iso(now or datetime.now(timezone.utc))
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(
                    _sessions.select().where(_sessions.c.expires_at.is_not(None) & (_sessions.c.expires_at <= cutoff))
                ).fetchall()
        except SQLAlchemyError as exc:
            raise PersistenceError("Session lookup failed.", detail=str(exc)) from exc
        return [_row_to_session(r) for r in rows]

    def close(self) -> None:
        if self._owns_engine:
            self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        created_at=_from_iso(row.created_at),
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        secret=row.secret,
        token=row.token,
        created_at=_from_iso(row.created_at),
        expires_at=_from_iso(row.expires_at),
    )
