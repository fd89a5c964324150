"""SQLite-backed token store.

SQLite allows a single writer at a time, so the engine is capped to one
pooled connection: concurrent callers queue on the pool instead of fighting
over the database lock. Every connection runs with WAL journaling,
`synchronous=NORMAL` and foreign keys enabled.
"""
from __future__ import annotations

import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import Connection, Engine, create_engine, event, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.pool import QueuePool

from ..domain.errors import (
    DuplicateKeyError,
    MigrationError,
    PersistenceError,
    StoreConnectionError,
)
from ..domain.models import Token, TokenUsage, from_epoch, to_epoch
from ..logging_conf import get_logger

__all__ = ["DEFAULT_TIMEOUT", "MIGRATIONS", "SQLiteTokenStore", "to_sqlalchemy_url"]

logger = get_logger("store.sqlite")

DEFAULT_TIMEOUT = 5.0
CONNECTION_MAX_AGE = 3600
# SQLite VM instructions between deadline checks.
_PROGRESS_STEPS = 1000

MIGRATIONS: tuple[tuple[str, str], ...] = (
    (
        "m1_tokens",
        """
        CREATE TABLE IF NOT EXISTS tokens (
            id          TEXT PRIMARY KEY,
            is_revoked  INTEGER NOT NULL DEFAULT 0,
            issued_at   TEXT NOT NULL,
            expires_at  TEXT NOT NULL,
            updated_at  TEXT NOT NULL
        )
        """,
    ),
    (
        "m2_token_usages",
        """
        CREATE TABLE IF NOT EXISTS token_usages (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            token_id    TEXT NOT NULL REFERENCES tokens(id) ON DELETE CASCADE,
            used_at     TEXT NOT NULL,
            client_ip   TEXT,
            user_agent  TEXT
        )
        """,
    ),
    (
        "m3_token_usages_token_id_idx",
        "CREATE INDEX IF NOT EXISTS token_usages_token_id_idx ON token_usages (token_id)",
    ),
)

_TOKEN_COLUMNS = "id, is_revoked, issued_at, expires_at, updated_at"


def to_sqlalchemy_url(uri: str) -> str:
    """Accept a bare file path or a full `sqlite://` URL."""
    if "://" in uri:
        return uri
    return f"sqlite:///{uri}"


def _apply_pragmas(dbapi_connection: sqlite3.Connection, _record: Any) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


def _parse_epoch(value: Any, column: str) -> datetime:
    try:
        return from_epoch(int(value))
    except (TypeError, ValueError, OverflowError, OSError) as e:
        raise PersistenceError(f"failed to parse {column}: {value!r}") from e


def _row_to_token(row: Any) -> Token:
    return Token(
        id=row.id,
        is_revoked=bool(row.is_revoked),
        issued_at=_parse_epoch(row.issued_at, "issued_at"),
        expires_at=_parse_epoch(row.expires_at, "expires_at"),
        updated_at=_parse_epoch(row.updated_at, "updated_at"),
    )


class SQLiteTokenStore:
    """Durable token records on a single SQLite file.

    Build instances with `open()`. The store is safe to share across request
    threads; all statements funnel through the one pooled connection.
    """

    def __init__(self, engine: Engine | None = None, *, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._engine = engine
        self.timeout = timeout

    # ------------------------
    # Lifecycle
    # ------------------------
    @classmethod
    def open(cls, uri: str, *, timeout: float = DEFAULT_TIMEOUT) -> SQLiteTokenStore:
        """Open the database at `uri` and apply connection pragmas.

        Raises `StoreConnectionError` if the file cannot be opened or a pragma
        fails; the engine is disposed before raising.
        """
        url = to_sqlalchemy_url(uri)
        engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=1,
            max_overflow=0,
            pool_timeout=timeout,
            pool_recycle=CONNECTION_MAX_AGE,
            connect_args={"check_same_thread": False, "timeout": timeout},
        )
        event.listen(engine, "connect", _apply_pragmas)
        try:
            with engine.connect() as conn:
                mode = conn.exec_driver_sql("PRAGMA journal_mode").scalar()
        except (SQLAlchemyError, sqlite3.Error) as e:
            engine.dispose()
            raise StoreConnectionError(f"failed to open database {url}: {e}") from e
        logger.info("store.open", extra={"event": "store_open", "url": url, "journal_mode": mode})
        return cls(engine, timeout=timeout)

    def close(self) -> None:
        """Release the connection pool. Calling it twice is harmless."""
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        logger.info("store.close", extra={"event": "store_close"})

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise StoreConnectionError("store is closed")
        return self._engine

    @contextmanager
    def _deadline(self, conn: Connection, timeout: float | None) -> Iterator[None]:
        """Interrupt any statement on `conn` still running after `timeout` seconds."""
        budget = self.timeout if timeout is None else timeout
        expires = time.monotonic() + budget
        raw = conn.connection.dbapi_connection
        raw.set_progress_handler(lambda: int(time.monotonic() > expires), _PROGRESS_STEPS)
        try:
            yield
        finally:
            raw.set_progress_handler(None, 0)

    @contextmanager
    def _begin(self, timeout: float | None = None) -> Iterator[Connection]:
        try:
            with self.engine.begin() as conn, self._deadline(conn, timeout):
                yield conn
        except PoolTimeoutError as e:
            raise StoreConnectionError(f"timed out waiting for the database connection: {e}") from e
        except sqlite3.Error as e:
            raise StoreConnectionError(f"database connection failed: {e}") from e

    # ------------------------
    # Schema & health
    # ------------------------
    def migrate(self, timeout: float | None = None) -> None:
        """Create missing tables; existing tables are left untouched."""
        try:
            with self._begin(timeout) as conn:
                for name, statement in MIGRATIONS:
                    try:
                        conn.exec_driver_sql(statement)
                    except SQLAlchemyError as e:
                        raise MigrationError(f"failed to run migration {name}: {e}") from e
        except (SQLAlchemyError, StoreConnectionError) as e:
            raise MigrationError(f"failed to run migrations: {e}") from e
        logger.info("store.migrate", extra={"event": "store_migrate", "count": len(MIGRATIONS)})

    def ping(self, timeout: float | None = None) -> None:
        try:
            with self._begin(timeout) as conn:
                conn.exec_driver_sql("SELECT 1").scalar()
        except SQLAlchemyError as e:
            raise StoreConnectionError(f"database ping failed: {e}") from e

    # ------------------------
    # Tokens
    # ------------------------
    def create(self, token: Token, *, timeout: float | None = None) -> None:
        """Insert one token row. Raises `DuplicateKeyError` if the id exists."""
        params = {
            "id": token.id,
            "is_revoked": int(token.is_revoked),
            "issued_at": str(to_epoch(token.issued_at)),
            "expires_at": str(to_epoch(token.expires_at)),
            "updated_at": str(to_epoch(token.updated_at)),
        }
        try:
            with self._begin(timeout) as conn:
                conn.execute(
                    text(
                        f"INSERT INTO tokens ({_TOKEN_COLUMNS}) "
                        "VALUES (:id, :is_revoked, :issued_at, :expires_at, :updated_at)"
                    ),
                    params,
                )
        except IntegrityError as e:
            if "tokens.id" in str(e.orig):
                raise DuplicateKeyError(f"token {token.id} already exists") from e
            raise PersistenceError(f"failed to insert token {token.id}: {e}") from e
        except (SQLAlchemyError, StoreConnectionError) as e:
            raise PersistenceError(f"failed to insert token {token.id}: {e}") from e

    def list_tokens(self, *, timeout: float | None = None) -> list[Token]:
        """Every token, least recently updated first.

        A single unparsable row fails the whole read.
        """
        query = text(
            f"SELECT {_TOKEN_COLUMNS} FROM tokens "
            "ORDER BY CAST(updated_at AS INTEGER), id"
        )
        try:
            with self._begin(timeout) as conn:
                rows = conn.execute(query).all()
        except (SQLAlchemyError, StoreConnectionError) as e:
            raise PersistenceError(f"failed to query tokens: {e}") from e
        return [_row_to_token(row) for row in rows]

    def get(self, token_id: str, *, timeout: float | None = None) -> Token | None:
        try:
            with self._begin(timeout) as conn:
                row = conn.execute(
                    text(f"SELECT {_TOKEN_COLUMNS} FROM tokens WHERE id = :id"),
                    {"id": token_id},
                ).first()
        except (SQLAlchemyError, StoreConnectionError) as e:
            raise PersistenceError(f"failed to load token {token_id}: {e}") from e
        return _row_to_token(row) if row is not None else None

    def revoke(self, token_id: str, *, now: datetime, timeout: float | None = None) -> Token | None:
        """Flip `is_revoked` on; `updated_at` moves only on the first flip.

        Returns the stored record afterwards, or None for an unknown id.
        """
        try:
            with self._begin(timeout) as conn:
                conn.execute(
                    text(
                        "UPDATE tokens SET is_revoked = 1, updated_at = :now "
                        "WHERE id = :id AND is_revoked = 0"
                    ),
                    {"id": token_id, "now": str(to_epoch(now))},
                )
                row = conn.execute(
                    text(f"SELECT {_TOKEN_COLUMNS} FROM tokens WHERE id = :id"),
                    {"id": token_id},
                ).first()
        except (SQLAlchemyError, StoreConnectionError) as e:
            raise PersistenceError(f"failed to revoke token {token_id}: {e}") from e
        return _row_to_token(row) if row is not None else None

    def delete(self, token_id: str, *, timeout: float | None = None) -> bool:
        """Delete a token and, through the foreign key, its usage history."""
        try:
            with self._begin(timeout) as conn:
                result = conn.execute(text("DELETE FROM tokens WHERE id = :id"), {"id": token_id})
        except (SQLAlchemyError, StoreConnectionError) as e:
            raise PersistenceError(f"failed to delete token {token_id}: {e}") from e
        return result.rowcount > 0

    # ------------------------
    # Usages
    # ------------------------
    def record_usage(self, usage: TokenUsage, *, timeout: float | None = None) -> TokenUsage:
        try:
            with self._begin(timeout) as conn:
                result = conn.execute(
                    text(
                        "INSERT INTO token_usages (token_id, used_at, client_ip, user_agent) "
                        "VALUES (:token_id, :used_at, :client_ip, :user_agent)"
                    ),
                    {
                        "token_id": usage.token_id,
                        "used_at": str(to_epoch(usage.used_at)),
                        "client_ip": usage.client_ip,
                        "user_agent": usage.user_agent,
                    },
                )
        except (SQLAlchemyError, StoreConnectionError) as e:
            raise PersistenceError(f"failed to record usage of token {usage.token_id}: {e}") from e
        usage.id = result.lastrowid
        return usage

    def list_usages(self, token_id: str, *, timeout: float | None = None) -> list[TokenUsage]:
        try:
            with self._begin(timeout) as conn:
                rows = conn.execute(
                    text(
                        "SELECT id, token_id, used_at, client_ip, user_agent FROM token_usages "
                        "WHERE token_id = :token_id ORDER BY CAST(used_at AS INTEGER), id"
                    ),
                    {"token_id": token_id},
                ).all()
        except (SQLAlchemyError, StoreConnectionError) as e:
            raise PersistenceError(f"failed to query usages of token {token_id}: {e}") from e
        return [
            TokenUsage(
                id=row.id,
                token_id=row.token_id,
                used_at=_parse_epoch(row.used_at, "used_at"),
                client_ip=row.client_ip,
                user_agent=row.user_agent,
            )
            for row in rows
        ]
