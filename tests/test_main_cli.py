from __future__ import annotations

from pathlib import Path
from typing import Iterable

import pytest

import main
from main import _parse_args, _run_admin_cli
from userservice.database import Database
from userservice.users import UserManager


def _feed(monkeypatch: pytest.MonkeyPatch, answers: Iterable[str]) -> None:
    remaining = iter(answers)

    def fake_input(prompt: str = "") -> str:
        try:
            return next(remaining)
        except StopIteration:
            raise EOFError from None

    monkeypatch.setattr("builtins.input", fake_input)


def test_default_command_invokes_serve() -> None:
    args = _parse_args([])
    assert args.command == "serve"


def test_default_command_accepts_options_without_subcommand() -> None:
    args = _parse_args(["--host", "0.0.0.0", "--port", "8080"])
    assert args.command == "serve"
    assert args.host == "0.0.0.0"
    assert args.port == 8080


def test_admin_subcommand_accepts_config() -> None:
    args = _parse_args(["admin", "--config", "settings.yaml"])
    assert args.command == "admin"
    assert args.config == "settings.yaml"


def test_console_create_list_and_exit(
    manager: UserManager, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    _feed(monkeypatch, ["1", "Ann", "ann@x.com", "30", "4", "0"])

    _run_admin_cli(manager)

    output = capsys.readouterr().out
    assert "Created user #1  Ann <ann@x.com>  age: 30" in output
    assert "1 user(s) found:" in output
    assert "Goodbye!" in output


def test_console_reprompts_malformed_age(
    manager: UserManager, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    _feed(monkeypatch, ["1", "Ann", "ann@x.com", "thirty", "30", "0"])

    _run_admin_cli(manager)

    output = capsys.readouterr().out
    assert "Please enter a valid whole number." in output
    assert manager.get_by_email("ann@x.com").age == 30


def test_console_abandons_after_repeated_bad_input(
    manager: UserManager, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    _feed(monkeypatch, ["2", "x", "y", "z", "0"])

    _run_admin_cli(manager)

    output = capsys.readouterr().out
    assert "Too many invalid attempts. Returning to the menu." in output
    assert "Goodbye!" in output


def test_console_reports_service_errors_and_continues(
    manager: UserManager, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    manager.create("Ann", "ann@x.com", 30)
    _feed(monkeypatch, ["1", "Bea", "ann@x.com", "", "1", "Bea", "broken", "", "0"])

    _run_admin_cli(manager)

    output = capsys.readouterr().out
    assert "Error: User with email ann@x.com already exists" in output
    assert "Error: Invalid email format: broken" in output
    assert "Goodbye!" in output
    assert len(manager.list_all()) == 1


def test_console_reprompts_blank_name_and_email(
    manager: UserManager, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    _feed(monkeypatch, ["1", "", "Ann", "", "ann@x.com", "", "0"])

    _run_admin_cli(manager)

    output = capsys.readouterr().out
    assert output.count("This field cannot be empty.") == 2
    assert "Created user #1  Ann <ann@x.com>" in output
    assert [user.name for user in manager.list_all()] == ["Ann"]


def test_console_abandons_create_after_repeated_blank_names(
    manager: UserManager, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    _feed(monkeypatch, ["1", "", " ", "", "0"])

    _run_admin_cli(manager)

    output = capsys.readouterr().out
    assert "Too many invalid attempts. Returning to the menu." in output
    assert "Goodbye!" in output
    assert manager.list_all() == []


def test_console_lookup_by_email_reprompts_blank(
    manager: UserManager, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    manager.create("Ann", "ann@x.com", 30)
    _feed(monkeypatch, ["3", "", "ann@x.com", "0"])

    _run_admin_cli(manager)

    output = capsys.readouterr().out
    assert "This field cannot be empty." in output
    assert "Error:" not in output
    assert "#1  Ann <ann@x.com>  age: 30" in output


def test_console_update_keeps_blank_fields(
    manager: UserManager, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    user = manager.create("Ann", "ann@x.com", 30)
    _feed(monkeypatch, ["5", str(user.id), "", "bea@x.com", "", "0"])

    _run_admin_cli(manager)

    updated = manager.get_by_id(user.id)
    assert (updated.name, updated.email, updated.age) == ("Ann", "bea@x.com", 30)
    assert "Updated user" in capsys.readouterr().out


def test_console_delete_requires_confirmation(
    manager: UserManager, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    user = manager.create("Ann", "ann@x.com", 30)
    _feed(monkeypatch, ["6", str(user.id), "n", "6", str(user.id), "y", "0"])

    _run_admin_cli(manager)

    output = capsys.readouterr().out
    assert "Deletion cancelled." in output
    assert "User deleted successfully." in output
    assert manager.get_by_id(user.id) is None


def test_console_search_by_age_range(
    manager: UserManager, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    manager.create("Ann", "ann@x.com", 25)
    manager.create("Bea", "bea@x.com", None)
    manager.create("Cid", "cid@x.com", 35)
    _feed(monkeypatch, ["7", "2", "20", "30", "0"])

    _run_admin_cli(manager)

    output = capsys.readouterr().out
    assert "1 user(s) found:" in output
    assert "ann@x.com" in output.split("1 user(s) found:")[1]
    assert "cid@x.com" not in output.split("1 user(s) found:")[1]


def test_console_exits_cleanly_on_eof(
    manager: UserManager, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    _feed(monkeypatch, [])

    _run_admin_cli(manager)

    assert "Exiting administration console." in capsys.readouterr().out


def test_init_db_creates_database_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    db_path = tmp_path / "state" / "users.sqlite3"
    config_file = tmp_path / "userservice.yaml"
    config_file.write_text(f"database_path: {db_path}\n", encoding="utf-8")

    main.main(["init-db", "--config", str(config_file)])

    assert db_path.exists()
    assert "Database initialisation complete." in capsys.readouterr().out
    with Database(db_path) as db:
        assert db.find_all() == []
