"""Domain models for the record service."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Violation:
    """A single failed field constraint."""

    field: str
    message: str


@dataclass(frozen=True)
class NewUser:
    """A validated record that has not been assigned an id yet."""

    name: str
    email: str
    age: int
    phone: Optional[str]
    created_at: datetime
    is_active: bool = True


@dataclass(frozen=True)
class User:
    """Represents a user record stored in the database."""

    id: int
    name: str
    email: str
    age: int
    phone: Optional[str]
    created_at: datetime
    updated_at: Optional[datetime] = None
    is_active: bool = True

    def to_payload(self) -> Dict[str, Any]:
        """Return the JSON-friendly form used in broadcasts and responses."""

        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "age": self.age,
            "phone": self.phone,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
            "isActive": self.is_active,
        }


@dataclass(frozen=True)
class Page:
    """One page of active records plus the metadata needed to navigate."""

    items: tuple[User, ...]
    page: int
    page_size: int
    total_count: int

    @property
    def total_pages(self) -> int:
        if self.total_count == 0:
            return 0
        return (self.total_count + self.page_size - 1) // self.page_size

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


@dataclass(frozen=True)
class StoreStats:
    """Summary figures about the record table."""

    total_users: int
    active_users: int
    last_user_id: Optional[int]
    last_user_created_at: Optional[datetime]
    database_path: str
    database_provider: str = "sqlite3"


__all__ = ["NewUser", "Page", "StoreStats", "User", "Violation"]
