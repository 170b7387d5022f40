"""Record operations tying validation, persistence and notifications together."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, List, Mapping, Optional

from . import lifecycle
from .broadcaster import (
    DATABASE_RESET,
    USER_ADDED,
    USER_DELETED,
    USER_UPDATED,
    Broadcaster,
)
from .database import Database
from .errors import ConflictError, NotFoundError
from .models import Page, StoreStats, User

logger = logging.getLogger("crudhub.service")

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
MAX_SEARCH_LIMIT = 100

# Largest value SQLite stores in an INTEGER column.
MAX_RECORD_ID = 2**63 - 1


class RecordService:
    """Create, read, update and soft delete user records.

    Mutations run under a single lock covering the conflict check, the store
    write and the publish call. That keeps concurrent creates with the same
    email from both succeeding and makes listeners observe events in commit
    order. Reads are not serialized.
    """

    def __init__(
        self,
        database: Database,
        broadcaster: Broadcaster,
        *,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
        max_search_limit: int = MAX_SEARCH_LIMIT,
        clock: Callable[[], Any] = lifecycle.utcnow,
    ) -> None:
        self._database = database
        self._broadcaster = broadcaster
        self._default_page_size = default_page_size
        self._max_page_size = max_page_size
        self._max_search_limit = max_search_limit
        self._clock = clock
        self._write_lock = threading.Lock()

    @property
    def database(self) -> Database:
        return self._database

    @property
    def broadcaster(self) -> Broadcaster:
        return self._broadcaster

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get(self, user_id: int) -> User:
        user = None
        if 1 <= user_id <= MAX_RECORD_ID:
            user = self._database.get_user(user_id)
        if user is None:
            logger.warning("User %s not found", user_id)
            raise NotFoundError(f"User {user_id} not found")
        return user

    def list(
        self,
        *,
        search: Optional[str] = None,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> Page:
        size = page_size if page_size is not None else self._default_page_size
        size = min(max(size, 1), self._max_page_size)
        # Keep the row offset inside the range SQLite accepts.
        current_page = min(max(page or 1, 1), MAX_RECORD_ID // size)
        term = search.strip() if search else None

        total = self._database.count_users(search=term)
        items = self._database.list_users(
            search=term,
            offset=(current_page - 1) * size,
            limit=size,
        )
        return Page(items=tuple(items), page=current_page, page_size=size, total_count=total)

    def search(self, term: Optional[str], *, limit: Optional[int] = None) -> List[User]:
        query = lifecycle.normalise_search_term(term)
        bounded = limit if limit is not None else self._default_page_size
        bounded = min(max(bounded, 1), self._max_search_limit)
        return self._database.search_users(query, limit=bounded)

    def stats(self) -> StoreStats:
        return self._database.stats()

    def is_healthy(self) -> bool:
        return self._database.ping()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def create(
        self,
        *,
        name: Any,
        email: Any,
        age: Any,
        phone: Any = None,
    ) -> User:
        record = lifecycle.prepare_create(
            name=name, email=email, age=age, phone=phone, now=self._clock()
        )

        with self._write_lock:
            if self._database.find_active_by_email(record.email) is not None:
                logger.warning("Rejected new user: email %s is already in use", record.email)
                raise ConflictError("A user with that email already exists")
            user = self._database.insert_user(record)
            self._broadcaster.publish(USER_ADDED, user.to_payload())

        logger.info("Created user %s <%s>", user.id, user.email)
        return user

    def update(self, user_id: int, changes: Mapping[str, Any]) -> User:
        with self._write_lock:
            existing = self.get(user_id)
            updated = lifecycle.apply_update(existing, changes, now=self._clock())

            if updated.email != existing.email:
                holder = self._database.find_active_by_email(updated.email)
                if holder is not None and holder.id != user_id:
                    logger.warning(
                        "Rejected update of user %s: email %s is already in use",
                        user_id,
                        updated.email,
                    )
                    raise ConflictError("A user with that email already exists")

            stored = self._database.update_user(updated)
            if stored is None:
                raise NotFoundError(f"User {user_id} not found")
            self._broadcaster.publish(USER_UPDATED, stored.to_payload())

        logger.info("Updated user %s", user_id)
        return stored

    def delete(self, user_id: int) -> User:
        with self._write_lock:
            existing = self.get(user_id)
            deactivated = lifecycle.deactivate(existing, now=self._clock())
            if not self._database.deactivate_user(user_id, deactivated.updated_at):
                raise NotFoundError(f"User {user_id} not found")
            self._broadcaster.publish(USER_DELETED, user_id)

        logger.info("Deactivated user %s", user_id)
        return deactivated

    def reset(self) -> List[User]:
        """Replace every record with the seed set. Not reversible."""

        with self._write_lock:
            users = self._database.reset(lifecycle.seed_records(self._clock()))
            self._broadcaster.publish(DATABASE_RESET)

        logger.warning("Database reset to %d seed user(s)", len(users))
        return users

    def seed_if_empty(self) -> bool:
        """Install the seed set when the table holds no records at all."""

        with self._write_lock:
            if self._database.count_users(include_inactive=True) > 0:
                return False
            users = self._database.reset(lifecycle.seed_records(self._clock()))

        logger.info("Seeded empty database with %d user(s)", len(users))
        return True


__all__ = ["RecordService"]
