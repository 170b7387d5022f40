"""Tests for the create_user helper script."""

from __future__ import annotations

from pathlib import Path

from crudhub.database import Database
from scripts.create_user import main


def test_creates_a_user(tmp_path: Path, capsys) -> None:
    db_path = tmp_path / "script.sqlite3"

    exit_code = main(["Ana", "ana@x.com", "30", "--phone", "555-0100", "--db", str(db_path)])

    assert exit_code == 0
    assert "Created user #1: Ana <ana@x.com>" in capsys.readouterr().out
    stored = Database(db_path).get_user(1)
    assert stored is not None
    assert stored.phone == "555-0100"


def test_reports_violations(tmp_path: Path, capsys) -> None:
    exit_code = main(["", "not-an-email", "200", "--db", str(tmp_path / "script.sqlite3")])

    assert exit_code == 1
    errors = capsys.readouterr().err
    assert "name: Name is required" in errors
    assert "email:" in errors
    assert "age:" in errors


def test_reports_conflicts(tmp_path: Path, capsys) -> None:
    db_path = str(tmp_path / "script.sqlite3")
    assert main(["Ana", "ana@x.com", "30", "--db", db_path]) == 0

    exit_code = main(["Other Ana", "ana@x.com", "41", "--db", db_path])

    assert exit_code == 1
    assert "Error:" in capsys.readouterr().err
