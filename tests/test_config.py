from __future__ import annotations

from pathlib import Path

import pytest

from userservice.config import ServiceConfig, load_service_config, resolve_config_path


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_load_from_yaml_resolves_relative_database_path(tmp_path: Path) -> None:
    config_file = _write(
        tmp_path / "userservice.yaml",
        "database_path: data/users.sqlite3\nport: 9000\nwebhook_url: https://hooks.example.com\nlog_level: debug\n",
    )

    config = load_service_config(config_file, environ={})

    assert config.database_path == (tmp_path / "data" / "users.sqlite3").resolve()
    assert config.port == 9000
    assert config.host == "127.0.0.1"
    assert config.webhook_url == "https://hooks.example.com"
    assert config.log_level == "DEBUG"


def test_environment_overrides_file_values(tmp_path: Path) -> None:
    config_file = _write(tmp_path / "userservice.yaml", "webhook_url: https://hooks.example.com\n")
    db_path = tmp_path / "override.sqlite3"

    config = load_service_config(
        config_file,
        environ={
            "USERSERVICE_DB_PATH": str(db_path),
            "USERSERVICE_WEBHOOK_URL": "",
            "USERSERVICE_LOG_LEVEL": "warning",
        },
    )

    assert config.database_path == db_path.resolve()
    assert config.webhook_url is None
    assert config.log_level == "WARNING"


def test_config_file_from_environment(tmp_path: Path) -> None:
    config_file = _write(tmp_path / "custom.yaml", "port: 8100\n")

    config = load_service_config(environ={"USERSERVICE_CONFIG": str(config_file)})

    assert config.port == 8100


@pytest.mark.parametrize(
    "text",
    [
        "unexpected: 1\n",
        "port: not-a-number\n",
        "port: 70000\n",
        "log_level: chatty\n",
        "- just\n- a list\n",
    ],
)
def test_invalid_configuration_is_rejected(tmp_path: Path, text: str) -> None:
    config_file = _write(tmp_path / "userservice.yaml", text)

    with pytest.raises(ValueError):
        load_service_config(config_file, environ={})


def test_explicit_missing_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        load_service_config(tmp_path / "missing.yaml", environ={})


def test_empty_mapping_uses_defaults(tmp_path: Path) -> None:
    config = ServiceConfig.from_dict({})

    assert config.database_path.name == "users.sqlite3"
    assert config.port == 8000
    assert config.webhook_url is None


def test_resolve_config_path_default() -> None:
    path = resolve_config_path(None)
    assert path.name == "userservice.yaml"
    assert path.parent.name == "config"
