"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user /
_row_to_otp are the mappers. Engine components never touch SQL directly.

Tables owned by the engine:
  users            -- identity, password hash, role, second-factor config
  email_otp_codes  -- outstanding emailed codes (deletion = consumption)
  login_attempts   -- failed-login counters per identity with a fixed window

Transactions:
  Every public method runs in its own transaction unless the caller passes
  `conn` from `with store.transaction() as conn:`. That lets the engine commit
  several writes as one unit: an exception anywhere inside the block rolls all
  of them back. Network I/O (email) never runs inside one.

Concurrency:
  - increment_failures() is a single INSERT .. ON CONFLICT DO UPDATE and reads
    the new count back in the same transaction, so two simultaneous attempts
    for one identity never lose an increment and never see the same count.
  - consume_email_otp() is a single conditional DELETE; rowcount tells the
    caller whether *it* consumed the code. Two concurrent submissions of the
    same code cannot both succeed.

Errors:
  sqlalchemy OperationalError (DB unreachable, locked, disk I/O) is re-raised
  as core.errors.InfrastructureError. IntegrityError is left alone -- callers
  treat it as a conflict signal (duplicate email).

Security: all queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    case,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError

from auth.models import EmailOTPRecord, User
from core.errors import InfrastructureError

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),  # stored lower-cased
    Column("name", String(100), nullable=False, server_default=""),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(30), nullable=False, server_default="member"),
    Column("second_factor_enabled", Boolean, nullable=False, server_default="0"),
    Column("second_factor_method", String(10), nullable=False, server_default="none"),
    Column("totp_secret", String(255)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_email_otp_codes = Table(
    "email_otp_codes",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("code", String(10), nullable=False),
    Column("expires_at", Float, nullable=False),  # epoch seconds
    Column("generated_at", Float, nullable=False),
)

_login_attempts = Table(
    "login_attempts",
    _metadata,
    Column("identity", String(255), primary_key=True),
    Column("failures", Integer, nullable=False),
    Column("window_start", Float, nullable=False),  # epoch seconds of first failure in window
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign keys on every new connection.

    WAL lets readers proceed while a login writes its attempt counter.
    foreign_keys is needed for ON DELETE CASCADE on email_otp_codes; SQLite
    PRAGMAs are per-connection, so this runs on each pool checkout.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    return email.strip().lower()


@contextmanager
def _unavailable_on_error() -> Iterator[None]:
    try:
        yield
    except OperationalError as exc:
        raise InfrastructureError() from exc


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for users, email OTP records and login attempt counters.

    Usage:
        store = UserStore("sqlite:///tasklane_auth.db")
        user_id = store.create_user(User(email="a@x.com", hashed_password=hash_password("secret123")))
        user = store.get_by_email("A@X.com")
        store.close()
    """

    # Columns update_user() accepts. Anything else is a programming error.
    _MUTABLE_USER_FIELDS: set = {
        "name",
        "email",
        "hashed_password",
        "role",
        "second_factor_enabled",
        "second_factor_method",
        "totp_secret",
    }

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _configure_sqlite)
        with _unavailable_on_error():
            _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Open a transaction; commit on normal exit, roll back on any exception."""
        with _unavailable_on_error(), self.engine.begin() as conn:
            yield conn

    @contextmanager
    def _use(self, conn: Connection | None) -> Iterator[Connection]:
        if conn is not None:
            yield conn
        else:
            with self.transaction() as own:
                yield own

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except OperationalError:
            return False
        return True

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User, conn: Connection | None = None) -> str:
        """Insert a new user and return its generated id.

        Raises sqlalchemy.exc.IntegrityError if the email is already taken.
        """
        user_id = user.id or str(uuid.uuid4())
        now = _now_iso()
        with self._use(conn) as c:
            c.execute(
                _users.insert().values(
                    id=user_id,
                    email=normalize_email(user.email),
                    name=user.name,
                    hashed_password=user.hashed_password,
                    role=user.role,
                    second_factor_enabled=user.second_factor_enabled,
                    second_factor_method=user.second_factor_method,
                    totp_secret=user.totp_secret,
                    created_at=now,
                    updated_at=now,
                )
            )
        return user_id

    def get_by_email(self, email: str, conn: Connection | None = None) -> User | None:
        """Look up a user by email, case-insensitively. Returns None if not found."""
        with self._use(conn) as c:
            row = c.execute(
                _users.select().where(func.lower(_users.c.email) == normalize_email(email))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str, conn: Connection | None = None) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self._use(conn) as c:
            row = c.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: str, conn: Connection | None = None, **fields) -> bool:
        """Update mutable fields on an existing user.

        Returns True if a row was updated, False if user_id was not found.
        Unknown field names raise ValueError -- fail fast.
        """
        unknown = set(fields) - self._MUTABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "email" in fields:
            fields["email"] = normalize_email(fields["email"])
        fields["updated_at"] = _now_iso()
        with self._use(conn) as c:
            result = c.execute(_users.update().where(_users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    def delete_user(self, user_id: str, conn: Connection | None = None) -> bool:
        """Delete a user and any outstanding email codes. Returns True if deleted."""
        with self._use(conn) as c:
            c.execute(_email_otp_codes.delete().where(_email_otp_codes.c.user_id == user_id))
            result = c.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Email OTP records
    # ------------------------------------------------------------------

    def replace_email_otp(self, record: EmailOTPRecord, conn: Connection | None = None) -> EmailOTPRecord:
        """Delete every prior code for record.user_id, then insert record.

        Both statements run in one transaction so at most one live code exists
        per user once it commits.
        """
        record_id = record.id or str(uuid.uuid4())
        with self._use(conn) as c:
            c.execute(_email_otp_codes.delete().where(_email_otp_codes.c.user_id == record.user_id))
            c.execute(
                _email_otp_codes.insert().values(
                    id=record_id,
                    user_id=record.user_id,
                    code=record.code,
                    expires_at=record.expires_at,
                    generated_at=record.generated_at,
                )
            )
        return EmailOTPRecord(
            id=record_id,
            user_id=record.user_id,
            code=record.code,
            expires_at=record.expires_at,
            generated_at=record.generated_at,
        )

    def consume_email_otp(self, user_id: str, code: str, now: float, conn: Connection | None = None) -> bool:
        """Delete the matching unexpired code. True only for the caller that deleted it."""
        with self._use(conn) as c:
            result = c.execute(
                _email_otp_codes.delete().where(
                    (_email_otp_codes.c.user_id == user_id)
                    & (_email_otp_codes.c.code == code)
                    & (_email_otp_codes.c.expires_at > now)
                )
            )
        return result.rowcount > 0

    def get_email_otps(self, user_id: str, conn: Connection | None = None) -> list[EmailOTPRecord]:
        """Return every stored code for a user, newest first (expired included)."""
        with self._use(conn) as c:
            rows = c.execute(
                _email_otp_codes.select()
                .where(_email_otp_codes.c.user_id == user_id)
                .order_by(_email_otp_codes.c.generated_at.desc())
            ).fetchall()
        return [_row_to_otp(r) for r in rows]

    def delete_email_otps(self, user_id: str, conn: Connection | None = None) -> int:
        with self._use(conn) as c:
            result = c.execute(_email_otp_codes.delete().where(_email_otp_codes.c.user_id == user_id))
        return result.rowcount

    def purge_expired_email_otps(self, now: float) -> int:
        """Delete all codes past their expiry. Returns number of rows removed."""
        with self._use(None) as c:
            result = c.execute(_email_otp_codes.delete().where(_email_otp_codes.c.expires_at <= now))
        return result.rowcount

    # ------------------------------------------------------------------
    # Login attempt counters
    # ------------------------------------------------------------------

    def _insert(self):
        # Both dialects expose on_conflict_do_update with the same signature.
        if self.engine.dialect.name == "postgresql":
            return postgresql.insert(_login_attempts)
        return sqlite.insert(_login_attempts)

    def increment_failures(self, identity: str, now: float, window_seconds: int) -> int:
        """Atomically add one failure for identity and return the new count.

        A counter whose window started more than window_seconds ago restarts
        at 1 with a fresh window, all inside the same statement.
        """
        cutoff = now - window_seconds
        expired = _login_attempts.c.window_start <= cutoff
        stmt = (
            self._insert()
            .values(identity=identity, failures=1, window_start=now)
            .on_conflict_do_update(
                index_elements=[_login_attempts.c.identity],
                set_={
                    "failures": case((expired, 1), else_=_login_attempts.c.failures + 1),
                    "window_start": case((expired, now), else_=_login_attempts.c.window_start),
                },
            )
        )
        with self._use(None) as c:
            c.execute(stmt)
            count = c.execute(
                select(_login_attempts.c.failures).where(_login_attempts.c.identity == identity)
            ).scalar_one()
        return count

    def release_failure(self, identity: str) -> None:
        """Take back one increment. A counter that drops to zero is removed."""
        with self._use(None) as c:
            c.execute(
                _login_attempts.update()
                .where((_login_attempts.c.identity == identity) & (_login_attempts.c.failures > 0))
                .values(failures=_login_attempts.c.failures - 1)
            )
            c.execute(
                _login_attempts.delete().where(
                    (_login_attempts.c.identity == identity) & (_login_attempts.c.failures <= 0)
                )
            )

    def get_failures(self, identity: str, now: float, window_seconds: int) -> tuple[int, float | None]:
        """Return (failures, window_start) for a live window, or (0, None)."""
        with self._use(None) as c:
            row = c.execute(
                select(_login_attempts.c.failures, _login_attempts.c.window_start).where(
                    (_login_attempts.c.identity == identity) & (_login_attempts.c.window_start > now - window_seconds)
                )
            ).fetchone()
        if row is None:
            return 0, None
        return row.failures, row.window_start

    def reset_failures(self, identity: str) -> None:
        with self._use(None) as c:
            c.execute(_login_attempts.delete().where(_login_attempts.c.identity == identity))

    def purge_expired_attempts(self, now: float, window_seconds: int) -> int:
        with self._use(None) as c:
            result = c.execute(_login_attempts.delete().where(_login_attempts.c.window_start <= now - window_seconds))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        hashed_password=row.hashed_password,
        role=row.role,
        second_factor_enabled=bool(row.second_factor_enabled),
        second_factor_method=row.second_factor_method,
        totp_secret=row.totp_secret,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_otp(row) -> EmailOTPRecord:
    return EmailOTPRecord(
        id=row.id,
        user_id=row.user_id,
        code=row.code,
        expires_at=row.expires_at,
        generated_at=row.generated_at,
    )
