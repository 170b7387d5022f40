"""Field validation and lifecycle transitions applied before records are stored."""

from __future__ import annotations

import re
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, List, Mapping, Optional, Tuple

from .errors import ValidationError
from .models import NewUser, User, Violation

MAX_NAME_LENGTH = 100
MAX_EMAIL_LENGTH = 150
MAX_PHONE_LENGTH = 20
MIN_AGE = 0
MAX_AGE = 150
MIN_SEARCH_LENGTH = 2

_EMAIL_PATTERN = re.compile(
    r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)+$"
)

_UPDATABLE_FIELDS = ("name", "email", "age", "phone")
_KEEP_WHEN_BLANK = ("name", "email")

# (name, email, age) installed by a reset, in id order.
SEED_USERS: Tuple[Tuple[str, str, int], ...] = (
    ("João Silva", "joao@email.com", 30),
    ("Maria Santos", "maria@email.com", 25),
    ("Pedro Oliveira", "pedro@email.com", 35),
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clean(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip()
    return value


def _clean_phone(value: Any) -> Optional[str]:
    cleaned = _clean(value)
    if cleaned is None or cleaned == "":
        return None
    return cleaned


def validate_fields(name: Any, email: Any, age: Any, phone: Any) -> List[Violation]:
    """Return every violated constraint for the candidate field values.

    Each rule is evaluated on its own so callers can report all problems at
    once instead of failing on the first one.
    """

    violations: List[Violation] = []

    if not isinstance(name, str) or not name.strip():
        violations.append(Violation("name", "Name is required"))
    elif len(name.strip()) > MAX_NAME_LENGTH:
        violations.append(Violation("name", f"Name must be {MAX_NAME_LENGTH} characters or fewer"))

    if not isinstance(email, str) or not email.strip():
        violations.append(Violation("email", "Email is required"))
    else:
        stripped = email.strip()
        if not _EMAIL_PATTERN.fullmatch(stripped):
            violations.append(Violation("email", "Email must be a valid email address"))
        if len(stripped) > MAX_EMAIL_LENGTH:
            violations.append(
                Violation("email", f"Email must be {MAX_EMAIL_LENGTH} characters or fewer")
            )

    if age is None:
        violations.append(Violation("age", "Age is required"))
    elif isinstance(age, bool) or not isinstance(age, int):
        violations.append(Violation("age", "Age must be an integer"))
    elif not MIN_AGE <= age <= MAX_AGE:
        violations.append(Violation("age", f"Age must be between {MIN_AGE} and {MAX_AGE}"))

    if phone is not None:
        if not isinstance(phone, str):
            violations.append(Violation("phone", "Phone must be a string"))
        elif len(phone.strip()) > MAX_PHONE_LENGTH:
            violations.append(
                Violation("phone", f"Phone must be {MAX_PHONE_LENGTH} characters or fewer")
            )

    return violations


def prepare_create(
    *,
    name: Any,
    email: Any,
    age: Any,
    phone: Any = None,
    now: Optional[datetime] = None,
) -> NewUser:
    """Validate a create request and stamp the creation metadata."""

    violations = validate_fields(name, email, age, phone)
    if violations:
        raise ValidationError(violations)

    return NewUser(
        name=name.strip(),
        email=email.strip(),
        age=age,
        phone=_clean_phone(phone),
        created_at=now or utcnow(),
        is_active=True,
    )


def _stamp_after(now: datetime, *floors: Optional[datetime]) -> datetime:
    """Return ``now`` moved forward so it is strictly later than every floor."""

    stamp = now
    for floor in floors:
        if floor is not None and stamp <= floor:
            stamp = floor + timedelta(microseconds=1)
    return stamp


def apply_update(
    existing: User,
    changes: Mapping[str, Any],
    *,
    now: Optional[datetime] = None,
) -> User:
    """Merge the supplied fields into ``existing`` and re-validate the result.

    Keys missing from ``changes`` (or mapped to ``None``) keep their stored
    values, as do blank names and emails. An empty phone string clears the
    phone number.
    """

    supplied = {
        key: value
        for key, value in changes.items()
        if key in _UPDATABLE_FIELDS and value is not None
    }
    for key in _KEEP_WHEN_BLANK:
        value = supplied.get(key)
        if isinstance(value, str) and not value.strip():
            del supplied[key]

    name = supplied.get("name", existing.name)
    email = supplied.get("email", existing.email)
    age = supplied.get("age", existing.age)
    phone = supplied["phone"] if "phone" in supplied else existing.phone

    violations = validate_fields(name, email, age, phone)
    if violations:
        raise ValidationError(violations)

    return replace(
        existing,
        name=name.strip(),
        email=email.strip(),
        age=age,
        phone=_clean_phone(phone),
        updated_at=_stamp_after(now or utcnow(), existing.created_at, existing.updated_at),
    )


def deactivate(existing: User, *, now: Optional[datetime] = None) -> User:
    """Return the soft-deleted form of ``existing``."""

    return replace(
        existing,
        is_active=False,
        updated_at=_stamp_after(now or utcnow(), existing.created_at, existing.updated_at),
    )


def seed_records(now: Optional[datetime] = None) -> List[NewUser]:
    """Build the fixed seed set installed by a reset."""

    created_at = now or utcnow()
    return [
        NewUser(name=name, email=email, age=age, phone=None, created_at=created_at)
        for name, email, age in SEED_USERS
    ]


def normalise_search_term(term: Optional[str]) -> str:
    value = (term or "").strip()
    if len(value) < MIN_SEARCH_LENGTH:
        raise ValidationError(
            [Violation("q", f"Search term must be at least {MIN_SEARCH_LENGTH} characters")]
        )
    return value


__all__ = [
    "MAX_AGE",
    "MAX_EMAIL_LENGTH",
    "MAX_NAME_LENGTH",
    "MAX_PHONE_LENGTH",
    "MIN_AGE",
    "MIN_SEARCH_LENGTH",
    "SEED_USERS",
    "apply_update",
    "deactivate",
    "normalise_search_term",
    "prepare_create",
    "seed_records",
    "utcnow",
    "validate_fields",
]
