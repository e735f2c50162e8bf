"""Logging setup for the Verity command-line tools."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import ConfigError, LoggingConfig

FILE_FORMAT = "%(asctime)s %(levelname)s [%(mailbox)s] %(name)s: %(message)s"
CONSOLE_FORMAT = "%(levelname)s [%(mailbox)s] %(message)s"
MAIN_LOG_NAME = "verity.log"
DEBUG_LOG_NAME = "debug.log"
LOG_MAX_BYTES = 5_000_000
LOG_BACKUPS = 5
NO_MAILBOX = "-"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class MailboxContextFilter(logging.Filter):
    """Give every record a ``mailbox`` attribute for the formats above.

    The ingester logs through an adapter that sets it; records from anywhere
    else get ``-``.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "mailbox", None):
            record.mailbox = NO_MAILBOX
        return True


def configure_logging(logging_config: LoggingConfig, root_dir: Path) -> Path:
    """Route logs to ``<root_dir>/logs`` and stderr; return the log directory.

    ``verity.log`` receives INFO and above from every logger. With
    ``debug_file`` enabled, ``debug.log`` additionally receives every record
    from the ``verity`` loggers, which traces each per-message decision.
    """

    level = level_from_string(logging_config.level)
    log_dir = (root_dir / "logs").expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)

    context = MailboxContextFilter()
    handlers: list[logging.Handler] = [
        _file_handler(log_dir / MAIN_LOG_NAME, logging.INFO, context),
        _console_handler(context),
    ]
    if logging_config.debug_file:
        debug_handler = _file_handler(log_dir / DEBUG_LOG_NAME, logging.DEBUG, context)
        debug_handler.addFilter(logging.Filter("verity"))
        handlers.append(debug_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    return log_dir


def level_from_string(level: str) -> int:
    try:
        return _LEVELS[level.strip().upper()]
    except KeyError as exc:
        raise ConfigError(f"Unknown log level: {level}") from exc


def _file_handler(path: Path, level: int, context: logging.Filter) -> logging.Handler:
    # Header text from mail can still hold characters the file cannot take.
    handler = RotatingFileHandler(
        path,
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUPS,
        encoding="utf-8",
        errors="backslashreplace",
    )
    handler.setLevel(level)
    handler.addFilter(context)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def _console_handler(context: logging.Filter) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(context)
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    return handler


__all__ = ["MailboxContextFilter", "configure_logging", "level_from_string"]
