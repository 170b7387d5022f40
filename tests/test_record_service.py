from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, List, Tuple

import pytest

from crudhub.broadcaster import DATABASE_RESET, USER_ADDED, USER_DELETED, USER_UPDATED
from crudhub.database import Database
from crudhub.errors import ConflictError, NotFoundError, ValidationError
from crudhub.service import RecordService


class RecordingBroadcaster:
    """Stands in for the broadcaster and keeps every publish call."""

    def __init__(self) -> None:
        self.published: List[Tuple[str, Any]] = []

    def publish(self, name: str, payload: Any = None) -> None:
        self.published.append((name, payload))

    def listener_count(self) -> int:
        return 0


class SteppingClock:
    def __init__(self, start: datetime) -> None:
        self._now = start

    def __call__(self) -> datetime:
        current = self._now
        self._now += timedelta(seconds=1)
        return current


T0 = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)


@pytest.fixture()
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture()
def service(tmp_path: Path, broadcaster: RecordingBroadcaster) -> RecordService:
    database = Database(tmp_path / "crudhub.sqlite3")
    database.initialize()
    return RecordService(database, broadcaster, clock=SteppingClock(T0))


def test_create_update_delete_lifecycle(service: RecordService, broadcaster: RecordingBroadcaster) -> None:
    ana = service.create(name="Ana", email="ana@x.com", age=30)
    assert ana.id == 1
    assert ana.created_at == T0
    assert ana.updated_at is None
    assert ana.is_active is True

    updated = service.update(ana.id, {"age": 31})
    assert updated.age == 31
    assert updated.name == "Ana"
    assert updated.email == "ana@x.com"
    assert updated.updated_at > updated.created_at

    service.delete(ana.id)
    with pytest.raises(NotFoundError):
        service.get(ana.id)
    assert service.list().total_count == 0

    assert [name for name, _ in broadcaster.published] == [USER_ADDED, USER_UPDATED, USER_DELETED]
    assert broadcaster.published[0][1] == ana.to_payload()
    assert broadcaster.published[1][1] == updated.to_payload()
    assert broadcaster.published[2][1] == ana.id


def test_duplicate_email_is_a_conflict(service: RecordService, broadcaster: RecordingBroadcaster) -> None:
    service.create(name="Ana", email="ana@x.com", age=30)

    with pytest.raises(ConflictError):
        service.create(name="Another Ana", email="ana@x.com", age=22)

    assert len(broadcaster.published) == 1
    assert service.list().total_count == 1


def test_email_is_reusable_after_soft_delete(service: RecordService) -> None:
    first = service.create(name="Ana", email="ana@x.com", age=30)
    service.delete(first.id)

    second = service.create(name="Ana Again", email="ana@x.com", age=31)

    assert second.id == first.id + 1


def test_update_to_taken_email_conflicts(service: RecordService) -> None:
    service.create(name="Ana", email="ana@x.com", age=30)
    bia = service.create(name="Bia", email="bia@x.com", age=28)

    with pytest.raises(ConflictError):
        service.update(bia.id, {"email": "ana@x.com"})

    assert service.get(bia.id).email == "bia@x.com"


def test_invalid_update_leaves_record_untouched(
    service: RecordService, broadcaster: RecordingBroadcaster
) -> None:
    ana = service.create(name="Ana", email="ana@x.com", age=30)

    with pytest.raises(ValidationError) as excinfo:
        service.update(ana.id, {"age": 200, "email": "broken"})

    assert {violation.field for violation in excinfo.value.violations} == {"age", "email"}
    assert service.get(ana.id) == ana
    assert len(broadcaster.published) == 1


def test_invalid_create_is_never_persisted(service: RecordService) -> None:
    with pytest.raises(ValidationError):
        service.create(name="", email="ana@x.com", age=30)

    assert service.database.count_users(include_inactive=True) == 0


def test_missing_records(service: RecordService) -> None:
    with pytest.raises(NotFoundError):
        service.update(42, {"age": 1})
    with pytest.raises(NotFoundError):
        service.delete(42)

    ana = service.create(name="Ana", email="ana@x.com", age=30)
    service.delete(ana.id)
    with pytest.raises(NotFoundError):
        service.delete(ana.id)
    with pytest.raises(NotFoundError):
        service.update(ana.id, {"age": 31})


def test_pagination_metadata_and_clamping(service: RecordService) -> None:
    for index in range(12):
        service.create(name=f"User {index}", email=f"user{index}@x.com", age=20 + index)

    first = service.list(page=1, page_size=5)
    assert [user.id for user in first.items] == [1, 2, 3, 4, 5]
    assert (first.total_count, first.total_pages) == (12, 3)
    assert (first.has_previous, first.has_next) == (False, True)

    last = service.list(page=3, page_size=5)
    assert [user.id for user in last.items] == [11, 12]
    assert (last.has_previous, last.has_next) == (True, False)

    clamped = service.list(page=0, page_size=1000)
    assert clamped.page == 1
    assert clamped.page_size == 100

    beyond = service.list(page=9, page_size=5)
    assert beyond.items == ()
    assert beyond.has_next is False


def test_search(service: RecordService) -> None:
    service.create(name="Maria Santos", email="maria@email.com", age=25)
    service.create(name="Pedro", email="pedro@email.com", age=35)

    assert [user.name for user in service.search("maria")] == ["Maria Santos"]
    assert len(service.search("email", limit=1)) == 1
    with pytest.raises(ValidationError):
        service.search("m")


def test_reset_installs_seed_data(service: RecordService, broadcaster: RecordingBroadcaster) -> None:
    for index in range(5):
        service.create(name=f"User {index}", email=f"user{index}@x.com", age=40)
    service.delete(2)

    users = service.reset()

    assert [user.id for user in users] == [1, 2, 3]
    assert [user.name for user in users] == ["João Silva", "Maria Santos", "Pedro Oliveira"]
    assert service.list().total_count == 3
    assert broadcaster.published[-1] == (DATABASE_RESET, None)


def test_seed_if_empty_only_seeds_an_empty_table(service: RecordService) -> None:
    assert service.seed_if_empty() is True
    assert service.seed_if_empty() is False
    assert service.list().total_count == 3


def test_concurrent_creates_with_distinct_emails_get_distinct_ids(service: RecordService) -> None:
    def create(index: int):
        return service.create(name=f"User {index}", email=f"user{index}@x.com", age=30)

    with ThreadPoolExecutor(max_workers=8) as pool:
        users = list(pool.map(create, range(20)))

    assert len({user.id for user in users}) == 20


def test_concurrent_creates_with_same_email_yield_one_success(
    service: RecordService, broadcaster: RecordingBroadcaster
) -> None:
    def create(index: int) -> str:
        try:
            service.create(name=f"Racer {index}", email="race@x.com", age=30)
        except ConflictError:
            return "conflict"
        return "created"

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(create, range(10)))

    assert outcomes.count("created") == 1
    assert outcomes.count("conflict") == 9
    assert len(broadcaster.published) == 1


def test_out_of_range_ids_and_pages(service: RecordService, broadcaster: RecordingBroadcaster) -> None:
    service.create(name="Ana", email="ana@x.com", age=30)
    huge = 10**20

    with pytest.raises(NotFoundError):
        service.get(huge)
    with pytest.raises(NotFoundError):
        service.update(huge, {"age": 31})
    with pytest.raises(NotFoundError):
        service.delete(huge)
    with pytest.raises(NotFoundError):
        service.get(0)

    page = service.list(page=huge, page_size=10)
    assert page.items == ()
    assert page.total_count == 1
    assert len(broadcaster.published) == 1
