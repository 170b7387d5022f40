"""SQLite-backed persistence for user records."""
from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

from .errors import ConflictError, StoreError
from .models import NewUser, StoreStats, User

logger = logging.getLogger("crudhub.database")

_ACTIVE_EMAIL_INDEX = "idx_users_active_email"


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the record database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "crudhub.sqlite3").resolve(strict=False)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _search_clause(search: Optional[str]) -> Tuple[str, Tuple[object, ...]]:
    if not search:
        return "", ()
    pattern = _like_pattern(search)
    return (
        " AND (name LIKE ? ESCAPE '\\' OR email LIKE ? ESCAPE '\\')",
        (pattern, pattern),
    )


class Database:
    """Simple wrapper around SQLite for persisting user records."""

    def __init__(self, path: Path, *, timeout: float = 5.0) -> None:
        _ensure_directory(path)
        self._path = path
        self._timeout = timeout

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, timeout=self._timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection whose work is committed on success.

        Integrity errors are re-raised untouched so callers can map them to
        conflicts; every other SQLite failure becomes a :class:`StoreError`.
        """

        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StoreError(f"Unable to open database at {self._path}") from exc
        try:
            with conn:
                yield conn
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as exc:
            raise StoreError(f"Database operation failed: {exc}") from exc
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self._transaction() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL,
                    age INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );
                """
            )

            columns = {
                row["name"]
                for row in conn.execute("PRAGMA table_info(users)").fetchall()
            }
            if "phone" not in columns:
                conn.execute("ALTER TABLE users ADD COLUMN phone TEXT")
            if "updated_at" not in columns:
                conn.execute("ALTER TABLE users ADD COLUMN updated_at TEXT")
            if "is_active" not in columns:
                conn.execute("ALTER TABLE users ADD COLUMN is_active INTEGER NOT NULL DEFAULT 1")

            conn.executescript(
                f"""
                CREATE UNIQUE INDEX IF NOT EXISTS {_ACTIVE_EMAIL_INDEX}
                    ON users(email) WHERE is_active = 1;
                CREATE INDEX IF NOT EXISTS idx_users_is_active ON users(is_active);
                """
            )

    def ping(self) -> bool:
        """Return ``True`` when the database answers a trivial query."""

        try:
            with self._transaction() as conn:
                conn.execute("SELECT 1").fetchone()
        except StoreError:
            logger.warning("Database at %s is not reachable", self._path)
            return False
        return True

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def insert_user(self, record: NewUser) -> User:
        """Persist a validated record and return it with its assigned id."""

        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO users (name, email, age, phone, created_at, updated_at, is_active)
                    VALUES (?, ?, ?, ?, ?, NULL, ?)
                    """,
                    (
                        record.name,
                        record.email,
                        record.age,
                        record.phone,
                        _serialize_datetime(record.created_at),
                        int(record.is_active),
                    ),
                )
                user_id = int(cursor.lastrowid)
        except sqlite3.IntegrityError as exc:
            raise ConflictError("A user with that email already exists") from exc

        return User(
            id=user_id,
            name=record.name,
            email=record.email,
            age=record.age,
            phone=record.phone,
            created_at=record.created_at,
            updated_at=None,
            is_active=record.is_active,
        )

    def update_user(self, user: User) -> Optional[User]:
        """Write every mutable column of ``user``; ``None`` if the id is unknown."""

        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    """
                    UPDATE users
                       SET name = ?, email = ?, age = ?, phone = ?, updated_at = ?, is_active = ?
                     WHERE id = ?
                    """,
                    (
                        user.name,
                        user.email,
                        user.age,
                        user.phone,
                        _serialize_datetime(user.updated_at) if user.updated_at else None,
                        int(user.is_active),
                        user.id,
                    ),
                )
                if cursor.rowcount == 0:
                    return None
        except sqlite3.IntegrityError as exc:
            raise ConflictError("A user with that email already exists") from exc

        return self.get_user(user.id, include_inactive=True)

    def deactivate_user(self, user_id: int, updated_at: datetime) -> bool:
        """Soft delete an active record. Returns ``False`` if none matched."""

        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE users SET is_active = 0, updated_at = ? WHERE id = ? AND is_active = 1",
                (_serialize_datetime(updated_at), user_id),
            )
            return cursor.rowcount > 0

    def reset(self, records: Sequence[NewUser]) -> List[User]:
        """Purge every record and install ``records`` with ids starting at 1."""

        with self._transaction() as conn:
            conn.execute("DELETE FROM users")
            conn.execute("DELETE FROM sqlite_sequence WHERE name = 'users'")
            conn.executemany(
                """
                INSERT INTO users (name, email, age, phone, created_at, updated_at, is_active)
                VALUES (?, ?, ?, ?, ?, NULL, ?)
                """,
                [
                    (
                        record.name,
                        record.email,
                        record.age,
                        record.phone,
                        _serialize_datetime(record.created_at),
                        int(record.is_active),
                    )
                    for record in records
                ],
            )
            rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
        return [self._row_to_user(row) for row in rows]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_user(self, user_id: int, *, include_inactive: bool = False) -> Optional[User]:
        query = "SELECT * FROM users WHERE id = ?"
        if not include_inactive:
            query += " AND is_active = 1"
        with self._transaction() as conn:
            row = conn.execute(query, (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def find_active_by_email(self, email: str) -> Optional[User]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ? AND is_active = 1",
                (email,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def list_users(
        self,
        *,
        search: Optional[str] = None,
        offset: int = 0,
        limit: int = 10,
    ) -> List[User]:
        clause, params = _search_clause(search)
        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT * FROM users WHERE is_active = 1{clause} ORDER BY id LIMIT ? OFFSET ?",
                (*params, limit, offset),
            ).fetchall()
        return [self._row_to_user(row) for row in rows]

    def count_users(self, *, search: Optional[str] = None, include_inactive: bool = False) -> int:
        clause, params = _search_clause(search)
        where = "1 = 1" if include_inactive else "is_active = 1"
        with self._transaction() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) AS total FROM users WHERE {where}{clause}",
                params,
            ).fetchone()
        return int(row["total"])

    def search_users(self, term: str, *, limit: int = 10) -> List[User]:
        return self.list_users(search=term, offset=0, limit=limit)

    def stats(self) -> StoreStats:
        with self._transaction() as conn:
            counts = conn.execute(
                """
                SELECT COUNT(*) AS total,
                       COALESCE(SUM(CASE WHEN is_active = 1 THEN 1 ELSE 0 END), 0) AS active
                  FROM users
                """
            ).fetchone()
            last = conn.execute(
                "SELECT id, created_at FROM users ORDER BY id DESC LIMIT 1"
            ).fetchone()

        return StoreStats(
            total_users=int(counts["total"]),
            active_users=int(counts["active"]),
            last_user_id=int(last["id"]) if last is not None else None,
            last_user_created_at=(
                _parse_datetime(str(last["created_at"])) if last is not None else None
            ),
            database_path=str(self._path),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _row_to_user(self, row: sqlite3.Row) -> User:
        updated_at = row["updated_at"]
        return User(
            id=int(row["id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            age=int(row["age"]),
            phone=row["phone"],
            created_at=_parse_datetime(str(row["created_at"])),
            updated_at=_parse_datetime(str(updated_at)) if updated_at else None,
            is_active=bool(row["is_active"]),
        )


__all__ = ["Database", "resolve_database_path"]
