"""SQLite-backed persistence for user records."""
from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

from .models import User


class StorageError(RuntimeError):
    """Raised when the underlying database rejects or fails an operation."""


class EmailConstraintError(StorageError):
    """Raised when a write would store an email address that is already taken."""


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "users.sqlite3").resolve(strict=False)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _is_email_constraint(exc: sqlite3.IntegrityError) -> bool:
    return "users.email" in str(exc)


class Database:
    """Wrapper around a single SQLite connection holding the users table.

    The connection is opened and closed explicitly by whoever owns the
    process lifecycle. Writes run inside :meth:`transaction`, which serialises
    writers behind a re-entrant lock and ``BEGIN IMMEDIATE`` so that a check
    followed by a write can be grouped into one atomic unit. Standalone reads
    share the lock but not the write transaction, so another process holding
    the write lock does not stall them.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._depth = 0

    @property
    def path(self) -> Path:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> None:
        with self._lock:
            if self._conn is not None:
                return
            _ensure_directory(self._path)
            try:
                conn = sqlite3.connect(self._path, check_same_thread=False, isolation_level=None)
            except sqlite3.Error as exc:
                raise StorageError(f"Unable to open database at {self._path}") from exc
            conn.row_factory = sqlite3.Row
            self._conn = conn

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None
            self._depth = 0

    def __enter__(self) -> "Database":
        self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def initialize(self) -> None:
        """Open the database if needed and create the users table."""

        self.open()
        with self._lock:
            conn = self._require_connection()
            try:
                conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS users (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL,
                        email TEXT NOT NULL UNIQUE,
                        age INTEGER CHECK (age IS NULL OR (age >= 0 AND age <= 150)),
                        created_at TEXT NOT NULL,
                        updated_at TEXT
                    );
                    """
                )
            except sqlite3.Error as exc:
                raise StorageError("Failed to initialise the users table") from exc

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed statements as one write transaction.

        Nested calls join the outermost transaction; only the outermost scope
        commits or rolls back. A failed rollback is reported as
        :class:`StorageError` chained to the driver error.
        """

        with self._lock:
            conn = self._require_connection()
            outermost = self._depth == 0
            if outermost:
                try:
                    conn.execute("BEGIN IMMEDIATE")
                except sqlite3.Error as exc:
                    raise StorageError("Unable to start a database transaction") from exc
            self._depth += 1
            try:
                yield conn
            except BaseException:
                self._depth -= 1
                if outermost:
                    self._rollback(conn)
                raise
            self._depth -= 1
            if outermost:
                try:
                    conn.commit()
                except sqlite3.Error as exc:
                    self._rollback(conn)
                    raise StorageError("Failed to commit database transaction") from exc

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        # Outside a transaction each SELECT runs in autocommit mode and only
        # takes a shared lock; inside one it joins the open write transaction.
        with self._lock:
            yield self._require_connection()

    def _rollback(self, conn: sqlite3.Connection) -> None:
        try:
            conn.rollback()
        except sqlite3.Error as exc:
            raise StorageError("Failed to roll back database transaction") from exc

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def find_by_id(self, user_id: int) -> Optional[User]:
        row = self._fetch_one("SELECT * FROM users WHERE id = ?", (user_id,))
        if row is None:
            return None
        return self._row_to_user(row)

    def find_by_email(self, email: str) -> Optional[User]:
        row = self._fetch_one("SELECT * FROM users WHERE email = ?", (email,))
        if row is None:
            return None
        return self._row_to_user(row)

    def exists_by_email(self, email: str) -> bool:
        row = self._fetch_one("SELECT 1 FROM users WHERE email = ?", (email,))
        return row is not None

    def exists_by_email_excluding_id(self, email: str, user_id: int) -> bool:
        row = self._fetch_one(
            "SELECT 1 FROM users WHERE email = ? AND id != ?",
            (email, user_id),
        )
        return row is not None

    def find_all(self) -> List[User]:
        with self._reading() as conn:
            try:
                rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
            except sqlite3.Error as exc:
                raise StorageError("Failed to list users") from exc
        return [self._row_to_user(row) for row in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def insert(self, name: str, email: str, age: Optional[int]) -> User:
        """Insert a new user and return it with its assigned id."""

        created_at = _current_timestamp()
        with self.transaction() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO users (name, email, age, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (name, email, age, _serialize_datetime(created_at)),
                )
            except sqlite3.IntegrityError as exc:
                if _is_email_constraint(exc):
                    raise EmailConstraintError(f"A user with email {email} already exists") from exc
                raise StorageError("Failed to create user") from exc
            except sqlite3.Error as exc:
                raise StorageError("Failed to create user") from exc
            user_id = cursor.lastrowid

        return User(id=int(user_id), name=name, email=email, age=age, created_at=created_at)

    def update(self, user: User) -> User:
        """Replace the mutable columns of an existing row in one statement."""

        updated_at = _current_timestamp()
        with self.transaction() as conn:
            try:
                cursor = conn.execute(
                    "UPDATE users SET name = ?, email = ?, age = ?, updated_at = ? WHERE id = ?",
                    (user.name, user.email, user.age, _serialize_datetime(updated_at), user.id),
                )
            except sqlite3.IntegrityError as exc:
                if _is_email_constraint(exc):
                    raise EmailConstraintError(f"A user with email {user.email} already exists") from exc
                raise StorageError(f"Failed to update user {user.id}") from exc
            except sqlite3.Error as exc:
                raise StorageError(f"Failed to update user {user.id}") from exc
            if cursor.rowcount == 0:
                raise StorageError(f"User {user.id} disappeared during update")

        return User(
            id=user.id,
            name=user.name,
            email=user.email,
            age=user.age,
            created_at=user.created_at,
            updated_at=updated_at,
        )

    def delete_by_id(self, user_id: int) -> bool:
        with self.transaction() as conn:
            try:
                cursor = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
            except sqlite3.Error as exc:
                raise StorageError(f"Failed to delete user {user_id}") from exc
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _require_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError("Database is not open")
        return self._conn

    def _fetch_one(self, query: str, params: tuple) -> Optional[sqlite3.Row]:
        with self._reading() as conn:
            try:
                return conn.execute(query, params).fetchone()
            except sqlite3.Error as exc:
                raise StorageError("Database query failed") from exc

    def _row_to_user(self, row: sqlite3.Row) -> User:
        updated_at = row["updated_at"]
        return User(
            id=int(row["id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            age=None if row["age"] is None else int(row["age"]),
            created_at=_parse_datetime(str(row["created_at"])),
            updated_at=_parse_datetime(str(updated_at)) if updated_at else None,
        )


__all__ = ["Database", "EmailConstraintError", "StorageError", "resolve_database_path"]
