"""
auth/store.py -- SQLAlchemy Core persistence layer for user records.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. Service and route
code never touches SQL directly.

Concurrency:
  Every write runs inside engine.begin(), so each update is a single
  transaction scoped by username. That per-row atomicity is the only guard
  around the iat session counter; there is no in-process lock. Two concurrent
  logins for the same user both commit and the later one wins.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or storage/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    case,
    create_engine,
    event,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import User
from core.errors import ConflictError

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(32), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("admin", Boolean, nullable=False, server_default="0"),
    Column("iat", BigInteger, nullable=False, server_default="0"),
    Column("access_code", String(6)),
    Column("access_code_issued_at", BigInteger),  # epoch milliseconds
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///users.db")
        store.create_user(User(username="alice1", hashed_password=hash_password("Secret123"), admin=True))
        user = store.get_by_username("alice1")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(text("SELECT COUNT(*) FROM users")).scalar()
        return (result or 0) > 0

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.username)).fetchall()
        return [_row_to_user(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises ConflictError if the username already exists. Uniqueness is
        enforced by the UNIQUE constraint, so two concurrent registrations of
        the same name cannot both succeed.
        """
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.insert().values(
                        username=user.username,
                        hashed_password=user.hashed_password,
                        admin=user.admin,
                        iat=user.iat,
                        created_at=_now_iso(),
                    )
                )
        except IntegrityError as exc:
            raise ConflictError(f"Username '{user.username}' is already taken!") from exc
        return result.inserted_primary_key[0]

    def next_iat(self, username: str, floor: int) -> int | None:
        """Advance the session counter and return its new value.

        The new value is max(iat + 1, floor). Callers pass the current time in
        milliseconds as floor, so a counter reset to 0 by logout never climbs
        back to a value an old token still carries. The update and the
        read-back share one transaction.

        Returns None if the user does not exist.
        """
        bumped = case((_users.c.iat + 1 > floor, _users.c.iat + 1), else_=floor)
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.username == username).values(iat=bumped))
            if result.rowcount == 0:
                return None
            return conn.execute(select(_users.c.iat).where(_users.c.username == username)).scalar_one()

    def set_iat(self, username: str, iat: int) -> bool:
        return self._update(username, iat=iat)

    def update_password(self, username: str, hashed_password: str) -> bool:
        """Replace the password hash, burn any access code, and revoke all sessions."""
        return self._update(
            username,
            hashed_password=hashed_password,
            access_code=None,
            access_code_issued_at=None,
            iat=0,
        )

    def set_access_code(self, username: str, code: str | None, issued_at: int | None) -> bool:
        return self._update(username, access_code=code, access_code_issued_at=issued_at)

    def set_admin(self, username: str, admin: bool) -> bool:
        return self._update(username, admin=admin)

    def delete_user(self, username: str) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found.

        Permission and admin-protection rules are the caller's responsibility.
        """
        with self.engine.begin() as conn:
            result = conn.execute(_users.delete().where(_users.c.username == username))
        return result.rowcount > 0

    def _update(self, username: str, **fields) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.username == username).values(**fields))
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        hashed_password=row.hashed_password,
        admin=bool(row.admin),
        iat=row.iat or 0,
        access_code=row.access_code,
        access_code_issued_at=row.access_code_issued_at,
        created_at=row.created_at,
    )
