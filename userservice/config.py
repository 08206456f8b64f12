"""Configuration management for the user management service."""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from .database import resolve_database_path

_KNOWN_KEYS = {"database_path", "host", "port", "webhook_url", "webhook_timeout", "log_level"}
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class ServiceConfig:
    """Runtime settings for the API server, console and notifier."""

    database_path: Path
    host: str = "127.0.0.1"
    port: int = 8000
    webhook_url: Optional[str] = None
    webhook_timeout: float = 5.0
    log_level: str = "INFO"

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "ServiceConfig":
        """Create a :class:`ServiceConfig` from raw dictionary data."""
        unknown = set(data.keys()) - _KNOWN_KEYS
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        raw_db_path = data.get("database_path")
        if raw_db_path:
            candidate = Path(str(raw_db_path)).expanduser()
            if not candidate.is_absolute() and base_path is not None:
                candidate = base_path / candidate
            database_path = candidate.resolve(strict=False)
        else:
            database_path = resolve_database_path(None)

        try:
            port = int(data.get("port", 8000))  # type: ignore[arg-type]
            webhook_timeout = float(data.get("webhook_timeout", 5.0))  # type: ignore[arg-type]
        except (TypeError, ValueError) as exc:
            raise ValueError("port and webhook_timeout must be numeric") from exc
        if not 1 <= port <= 65535:
            raise ValueError(f"Invalid port {port}")
        if webhook_timeout <= 0:
            raise ValueError("webhook_timeout must be positive")

        raw_webhook = data.get("webhook_url")
        webhook_url = str(raw_webhook).strip() if raw_webhook is not None else ""
        return ServiceConfig(
            database_path=database_path,
            host=str(data.get("host", "127.0.0.1")),
            port=port,
            webhook_url=webhook_url or None,
            webhook_timeout=webhook_timeout,
            log_level=_normalize_log_level(data.get("log_level", "INFO")),
        )


def _normalize_log_level(value: object) -> str:
    level = str(value).strip().upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"Unsupported log level {value!r}")
    return level


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""
    if env_value:
        candidate = Path(env_value).expanduser().resolve(strict=False)
    else:
        candidate = (Path(__file__).resolve().parent.parent / "config" / "userservice.yaml").resolve(strict=False)
    return candidate


def _apply_env_overrides(config: ServiceConfig, environ: Mapping[str, str]) -> ServiceConfig:
    overrides: Dict[str, object] = {}
    db_path = environ.get("USERSERVICE_DB_PATH")
    if db_path:
        overrides["database_path"] = resolve_database_path(db_path)
    webhook_url = environ.get("USERSERVICE_WEBHOOK_URL")
    if webhook_url is not None:
        overrides["webhook_url"] = webhook_url.strip() or None
    log_level = environ.get("USERSERVICE_LOG_LEVEL")
    if log_level:
        overrides["log_level"] = _normalize_log_level(log_level)
    if not overrides:
        return config
    return replace(config, **overrides)


def load_service_config(
    config_path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> ServiceConfig:
    """Load settings from YAML, then apply environment overrides.

    An explicitly requested file must exist; the default location is optional.
    """
    env = os.environ if environ is None else environ
    explicit = config_path is not None or bool(env.get("USERSERVICE_CONFIG"))
    path = config_path if config_path is not None else resolve_config_path(env.get("USERSERVICE_CONFIG"))

    raw: object = {}
    if path.exists():
        with path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
    elif explicit:
        raise ValueError(f"Configuration file {path} does not exist")

    if not isinstance(raw, dict):
        raise ValueError("Configuration file must contain a mapping at the top level")

    config = ServiceConfig.from_dict(raw, base_path=path.parent)
    return _apply_env_overrides(config, env)


__all__ = ["ServiceConfig", "load_service_config", "resolve_config_path"]
