from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from crudhub.database import Database, resolve_database_path
from crudhub.errors import ConflictError, StoreError
from crudhub.lifecycle import seed_records
from crudhub.models import NewUser


T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db_path = tmp_path / "crudhub.sqlite3"
    db = Database(db_path)
    db.initialize()
    return db


def _record(name: str, email: str, age: int = 30, phone: str | None = None) -> NewUser:
    return NewUser(name=name, email=email, age=age, phone=phone, created_at=T0)


def test_insert_assigns_increasing_ids(database: Database) -> None:
    first = database.insert_user(_record("Ana", "ana@x.com"))
    second = database.insert_user(_record("Bia", "bia@x.com", phone="555"))

    assert (first.id, second.id) == (1, 2)
    assert second.phone == "555"
    assert second.updated_at is None

    loaded = database.get_user(second.id)
    assert loaded == second


def test_initialize_is_idempotent(database: Database) -> None:
    database.insert_user(_record("Ana", "ana@x.com"))
    database.initialize()

    assert database.count_users() == 1


def test_active_email_is_unique(database: Database) -> None:
    database.insert_user(_record("Ana", "ana@x.com"))

    with pytest.raises(ConflictError):
        database.insert_user(_record("Other Ana", "ana@x.com"))


def test_email_comparison_is_case_sensitive(database: Database) -> None:
    database.insert_user(_record("Ana", "ana@x.com"))
    other = database.insert_user(_record("Ana Upper", "Ana@x.com"))

    assert other.id == 2
    assert database.find_active_by_email("ana@x.com").id == 1


def test_soft_delete_hides_record_and_frees_email(database: Database) -> None:
    ana = database.insert_user(_record("Ana", "ana@x.com"))

    assert database.deactivate_user(ana.id, T0 + timedelta(hours=1)) is True
    assert database.deactivate_user(ana.id, T0 + timedelta(hours=2)) is False

    assert database.get_user(ana.id) is None
    stored = database.get_user(ana.id, include_inactive=True)
    assert stored is not None
    assert stored.is_active is False
    assert stored.updated_at == T0 + timedelta(hours=1)

    assert database.find_active_by_email("ana@x.com") is None
    reused = database.insert_user(_record("New Ana", "ana@x.com"))
    assert reused.id == 2


def test_ids_are_not_reused_after_soft_delete(database: Database) -> None:
    ana = database.insert_user(_record("Ana", "ana@x.com"))
    bia = database.insert_user(_record("Bia", "bia@x.com"))
    database.deactivate_user(bia.id, T0)

    carla = database.insert_user(_record("Carla", "carla@x.com"))

    assert carla.id > bia.id > ana.id


def test_update_user_persists_every_mutable_column(database: Database) -> None:
    ana = database.insert_user(_record("Ana", "ana@x.com"))
    changed = replace(ana, age=31, phone="555", updated_at=T0 + timedelta(minutes=1))

    stored = database.update_user(changed)

    assert stored == changed
    assert database.update_user(replace(changed, id=99)) is None


def test_update_user_maps_email_collision_to_conflict(database: Database) -> None:
    database.insert_user(_record("Ana", "ana@x.com"))
    bia = database.insert_user(_record("Bia", "bia@x.com"))

    with pytest.raises(ConflictError):
        database.update_user(replace(bia, email="ana@x.com"))


def test_list_and_count_only_active_records(database: Database) -> None:
    for index in range(5):
        database.insert_user(_record(f"User {index}", f"user{index}@x.com"))
    database.deactivate_user(2, T0)

    assert database.count_users() == 4
    assert database.count_users(include_inactive=True) == 5
    page = database.list_users(offset=1, limit=2)
    assert [user.id for user in page] == [3, 4]


def test_search_matches_name_or_email_substring(database: Database) -> None:
    database.insert_user(_record("Maria Santos", "maria@email.com"))
    database.insert_user(_record("Pedro", "pedro@santos.org"))
    database.insert_user(_record("Joao", "joao@email.com"))
    database.insert_user(_record("Percent", "100%off@deal.com"))

    assert {user.name for user in database.search_users("santos")} == {"Maria Santos", "Pedro"}
    assert database.count_users(search="email.com") == 2
    assert [user.name for user in database.search_users("0%", limit=5)] == ["Percent"]
    assert database.search_users("_") == []


def test_reset_replaces_everything_with_ids_from_one(database: Database) -> None:
    for index in range(4):
        database.insert_user(_record(f"User {index}", f"user{index}@x.com"))

    users = database.reset(seed_records(T0))

    assert [user.id for user in users] == [1, 2, 3]
    assert database.count_users(include_inactive=True) == 3
    follow_up = database.insert_user(_record("Next", "next@x.com"))
    assert follow_up.id == 4


def test_stats_reports_counts(database: Database) -> None:
    empty = database.stats()
    assert empty.total_users == 0
    assert empty.last_user_id is None

    database.insert_user(_record("Ana", "ana@x.com"))
    database.insert_user(_record("Bia", "bia@x.com"))
    database.deactivate_user(1, T0)

    stats = database.stats()
    assert stats.total_users == 2
    assert stats.active_users == 1
    assert stats.last_user_id == 2
    assert stats.last_user_created_at == T0
    assert stats.database_path == str(database.path)


def test_ping_and_store_errors(tmp_path: Path) -> None:
    db = Database(tmp_path / "db.sqlite3")
    db.initialize()
    assert db.ping() is True

    broken = Database(tmp_path / "uninitialised.sqlite3")
    with pytest.raises(StoreError):
        broken.count_users()


def test_resolve_database_path(tmp_path: Path) -> None:
    explicit = resolve_database_path(str(tmp_path / "custom.sqlite3"))
    assert explicit == (tmp_path / "custom.sqlite3").resolve()

    default = resolve_database_path(None)
    assert default.name == "crudhub.sqlite3"
    assert default.parent.name == "data"
