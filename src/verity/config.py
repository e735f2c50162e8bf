"""Configuration loading and validation."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .autoreply import HeaderRule
from .types import Mailbox

DEFAULT_CONFIG_PATH = Path("~/.config/verity/config.yaml")
DEFAULT_ROOT_DIR = Path("~/.local/lib/verity")
DEFAULT_LOG_LEVEL = "info"
DEFAULT_WATCH_INTERVAL = 300.0
DEFAULT_WATCH_DEBOUNCE = 1.0
CONFIG_ENV_VAR = "VERITY_CONFIG"


class ConfigError(ValueError):
    """Raised when configuration is invalid or missing."""


@dataclass(frozen=True)
class LoggingConfig:
    """Logging-related configuration."""

    level: str = DEFAULT_LOG_LEVEL
    debug_file: bool = False


@dataclass(frozen=True)
class WatchConfig:
    """Timing for the ``watch`` command."""

    interval_seconds: float = DEFAULT_WATCH_INTERVAL
    debounce_seconds: float = DEFAULT_WATCH_DEBOUNCE


@dataclass(frozen=True)
class Config:
    """Fully parsed configuration."""

    root_dir: Path
    mailboxes: list[Mailbox]
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    extra_rules: tuple[HeaderRule, ...] = ()
    ingest_log: bool = True


def load_config(path: Path | str | None = None) -> Config:
    """Load and validate configuration from YAML."""

    config_path = resolve_config_path(path)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError("Configuration root must be a mapping.")

    return _parse_config(raw)


def resolve_config_path(explicit: Path | str | None) -> Path:
    if explicit:
        return Path(explicit).expanduser()
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH.expanduser()


def _parse_config(raw: dict[str, Any]) -> Config:
    root_dir = Path(raw.get("root_dir") or raw.get("rootdir") or DEFAULT_ROOT_DIR).expanduser()
    return Config(
        root_dir=root_dir,
        mailboxes=_parse_mailboxes(raw.get("mailboxes")),
        logging=_parse_logging(raw.get("logging")),
        watch=_parse_watch(raw.get("watch")),
        extra_rules=_parse_auto_reply(raw.get("auto_reply")),
        ingest_log=bool(raw.get("ingest_log", True)),
    )


def _parse_mailboxes(value: Any) -> list[Mailbox]:
    if value is None:
        raise ConfigError("At least one mailbox must be configured.")
    if not isinstance(value, list):
        raise ConfigError("mailboxes must be a list.")
    if not value:
        raise ConfigError("At least one mailbox must be configured.")

    mailboxes: list[Mailbox] = []
    seen: set[str] = set()
    for idx, entry in enumerate(value, start=1):
        if not isinstance(entry, dict):
            raise ConfigError(f"mailboxes[{idx}] must be a mapping.")
        name = entry.get("name")
        path = entry.get("path")
        if not name or not path:
            raise ConfigError(f"mailboxes[{idx}] requires 'name' and 'path'.")
        name = str(name)
        if name in seen:
            raise ConfigError(f"mailboxes[{idx}] reuses the name '{name}'.")
        seen.add(name)
        mailboxes.append(
            Mailbox(
                name=name,
                path=Path(path).expanduser(),
                envelope_headers=_parse_header_names(
                    entry.get("envelope_headers"), f"mailboxes[{idx}].envelope_headers"
                ),
            )
        )
    return mailboxes


def _parse_header_names(value: Any, field_name: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list):
        raise ConfigError(f"{field_name} must be a list of header names.")
    names: list[str] = []
    for idx, entry in enumerate(value, start=1):
        if not isinstance(entry, str) or not entry.strip():
            raise ConfigError(f"{field_name}[{idx}] must be a non-empty string.")
        names.append(entry.strip())
    return tuple(names)


def _parse_auto_reply(value: Any) -> tuple[HeaderRule, ...]:
    if value is None:
        return ()
    if not isinstance(value, dict):
        raise ConfigError("auto_reply must be a mapping.")
    extra = value.get("extra_rules")
    if extra is None:
        return ()
    if not isinstance(extra, list):
        raise ConfigError("auto_reply.extra_rules must be a list.")
    return tuple(
        _parse_rule(entry, f"auto_reply.extra_rules[{idx}]")
        for idx, entry in enumerate(extra, start=1)
    )


def _parse_rule(entry: Any, field_name: str) -> HeaderRule:
    if not isinstance(entry, dict):
        raise ConfigError(f"{field_name} must be a mapping.")
    header = entry.get("header")
    if not isinstance(header, str) or not header.strip():
        raise ConfigError(f"{field_name} requires a 'header' name.")
    header = header.strip()
    equals = entry.get("equals")
    contains = entry.get("contains")
    if equals is not None and contains is not None:
        raise ConfigError(f"{field_name} cannot define both 'equals' and 'contains'.")
    if equals is not None:
        return HeaderRule.equals(header, *_string_list(equals, f"{field_name}.equals"))
    if contains is not None:
        return HeaderRule.contains(header, *_string_list(contains, f"{field_name}.contains"))
    return HeaderRule.present(header)


def _string_list(value: Any, field_name: str) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not value:
        raise ConfigError(f"{field_name} must be a string or a non-empty list of strings.")
    items: list[str] = []
    for entry in value:
        if not isinstance(entry, str) or not entry.strip():
            raise ConfigError(f"{field_name} entries must be non-empty strings.")
        items.append(entry)
    return items


def _parse_watch(value: Any) -> WatchConfig:
    if value is None:
        return WatchConfig()
    if not isinstance(value, dict):
        raise ConfigError("watch must be a mapping.")
    interval = _positive_float(
        value.get("interval_seconds", DEFAULT_WATCH_INTERVAL), "watch.interval_seconds"
    )
    debounce = _positive_float(
        value.get("debounce_seconds", DEFAULT_WATCH_DEBOUNCE),
        "watch.debounce_seconds",
        allow_zero=True,
    )
    return WatchConfig(interval_seconds=interval, debounce_seconds=debounce)


def _positive_float(value: Any, field_name: str, *, allow_zero: bool = False) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{field_name} must be a number.") from exc
    if number < 0 or (number == 0 and not allow_zero):
        raise ConfigError(f"{field_name} must be positive.")
    return number


def _parse_logging(value: Any) -> LoggingConfig:
    if value is None:
        return LoggingConfig()
    if not isinstance(value, dict):
        raise ConfigError("logging must be a mapping.")
    level = str(value.get("level", DEFAULT_LOG_LEVEL)).lower()
    debug_file = bool(value.get("debug_file", False))
    return LoggingConfig(level=level, debug_file=debug_file)


__all__ = [
    "CONFIG_ENV_VAR",
    "Config",
    "ConfigError",
    "LoggingConfig",
    "WatchConfig",
    "load_config",
    "resolve_config_path",
]
