"""Configuration management for the record service."""
from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .database import resolve_database_path


class ConfigError(ValueError):
    """Raised when a configuration file or environment value is invalid."""


def _env_bool(value: str, name: str) -> bool:
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ConfigError(f"Invalid boolean value {value!r} for {name}")


def _env_int(value: str, name: str) -> int:
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigError(f"Invalid integer value {value!r} for {name}") from exc


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the HTTP service and its collaborators."""

    database_path: Path
    host: str = "0.0.0.0"
    port: int = 8000
    default_page_size: int = 10
    max_page_size: int = 100
    max_search_limit: int = 100
    listener_queue_size: int = 100
    seed_on_empty: bool = True
    log_level: str = "INFO"

    @staticmethod
    def from_dict(data: Mapping[str, Any], base_path: Path | None = None) -> "Settings":
        """Create :class:`Settings` from raw dictionary data."""

        known = {field.name for field in fields(Settings)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        raw_path = data.get("database_path")
        if raw_path:
            candidate = Path(str(raw_path)).expanduser()
            if not candidate.is_absolute() and base_path is not None:
                candidate = base_path / candidate
            database_path = candidate.resolve(strict=False)
        else:
            database_path = resolve_database_path(None)

        values: Dict[str, Any] = {"database_path": database_path}
        for key in ("host", "log_level"):
            if key in data:
                values[key] = str(data[key])
        for key in (
            "port",
            "default_page_size",
            "max_page_size",
            "max_search_limit",
            "listener_queue_size",
        ):
            if key in data:
                try:
                    values[key] = int(data[key])
                except (TypeError, ValueError) as exc:
                    raise ConfigError(f"Configuration value {key!r} must be an integer") from exc
        if "seed_on_empty" in data:
            raw_seed = data["seed_on_empty"]
            if isinstance(raw_seed, str):
                values["seed_on_empty"] = _env_bool(raw_seed, "seed_on_empty")
            else:
                values["seed_on_empty"] = bool(raw_seed)

        settings = Settings(**values)
        settings.validate()
        return settings

    def validate(self) -> None:
        if not 0 < self.port < 65536:
            raise ConfigError("port must be between 1 and 65535")
        if self.max_page_size < 1:
            raise ConfigError("max_page_size must be at least 1")
        if not 1 <= self.default_page_size <= self.max_page_size:
            raise ConfigError("default_page_size must be between 1 and max_page_size")
        if self.max_search_limit < 1:
            raise ConfigError("max_search_limit must be at least 1")
        if self.listener_queue_size < 1:
            raise ConfigError("listener_queue_size must be at least 1")


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""
    if env_value:
        candidate = Path(env_value).expanduser().resolve(strict=False)
    else:
        candidate = (Path(__file__).resolve().parent.parent / "config" / "crudhub.yaml").resolve(strict=False)
    return candidate


def _apply_environment(settings: Settings, environ: Mapping[str, str]) -> Settings:
    overrides: Dict[str, Any] = {}

    if environ.get("CRUDHUB_DB_PATH"):
        overrides["database_path"] = resolve_database_path(environ["CRUDHUB_DB_PATH"])
    if environ.get("CRUDHUB_HOST"):
        overrides["host"] = environ["CRUDHUB_HOST"].strip()
    if environ.get("CRUDHUB_LOG_LEVEL"):
        overrides["log_level"] = environ["CRUDHUB_LOG_LEVEL"].strip().upper()
    if environ.get("CRUDHUB_SEED_ON_EMPTY"):
        overrides["seed_on_empty"] = _env_bool(environ["CRUDHUB_SEED_ON_EMPTY"], "CRUDHUB_SEED_ON_EMPTY")

    integer_settings = {
        "CRUDHUB_PORT": "port",
        "CRUDHUB_PAGE_SIZE": "default_page_size",
        "CRUDHUB_MAX_PAGE_SIZE": "max_page_size",
        "CRUDHUB_LISTENER_QUEUE_SIZE": "listener_queue_size",
    }
    for env_name, attribute in integer_settings.items():
        raw = environ.get(env_name)
        if raw is not None and raw.strip() != "":
            overrides[attribute] = _env_int(raw, env_name)

    if not overrides:
        return settings
    updated = replace(settings, **overrides)
    updated.validate()
    return updated


def load_settings(
    config_path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from a YAML file (if present) and the environment.

    Environment variables prefixed with ``CRUDHUB_`` take precedence over the
    file. A missing file is not an error; the defaults apply instead.
    """

    env = os.environ if environ is None else environ
    path = config_path or resolve_config_path(env.get("CRUDHUB_CONFIG"))

    raw: Mapping[str, Any] = {}
    if path.exists():
        with path.open("r", encoding="utf-8") as handle:
            try:
                loaded = yaml.safe_load(handle) or {}
            except yaml.YAMLError as exc:
                raise ConfigError(f"Configuration file {path} is not valid YAML") from exc
        if not isinstance(loaded, dict):
            raise ConfigError(f"Configuration file {path} must contain a mapping")
        raw = loaded

    settings = Settings.from_dict(raw, base_path=path.parent)
    return _apply_environment(settings, env)


__all__ = ["ConfigError", "Settings", "load_settings", "resolve_config_path"]
