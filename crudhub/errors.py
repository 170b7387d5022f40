"""Error taxonomy shared by the store, lifecycle and HTTP layers."""
from __future__ import annotations

from typing import Iterable, List, Tuple

from .models import Violation


class RecordError(RuntimeError):
    """Base class for failures raised while handling user records."""


class ValidationError(RecordError):
    """Raised when one or more field constraints are violated."""

    def __init__(self, violations: Iterable[Violation]) -> None:
        self.violations: Tuple[Violation, ...] = tuple(violations)
        fields = ", ".join(sorted({violation.field for violation in self.violations}))
        super().__init__(f"Invalid user data: {fields}" if fields else "Invalid user data")

    def as_list(self) -> List[dict[str, str]]:
        return [{"field": v.field, "message": v.message} for v in self.violations]


class ConflictError(RecordError):
    """Raised when an email address is already held by an active record."""


class NotFoundError(RecordError):
    """Raised when an id does not reference an active record."""


class StoreError(RecordError):
    """Raised when the SQLite store is unreachable or an operation fails."""


class BroadcastError(RecordError):
    """Raised when an event could not be delivered to a listener."""


__all__ = [
    "BroadcastError",
    "ConflictError",
    "NotFoundError",
    "RecordError",
    "StoreError",
    "ValidationError",
]
