from __future__ import annotations

import logging

import pytest

from verity.config import ConfigError, LoggingConfig
from verity.logging import configure_logging, level_from_string


def _flush() -> None:
    for handler in logging.getLogger().handlers:
        handler.flush()


def test_configure_logging_creates_log_files(tmp_path):
    configure_logging(LoggingConfig(level="debug", debug_file=True), tmp_path)

    logging.getLogger("verity.test").info("hello")

    assert logging.getLogger().level == logging.DEBUG
    assert (tmp_path / "logs" / "verity.log").exists()
    assert (tmp_path / "logs" / "debug.log").exists()


def test_records_carry_their_mailbox(tmp_path):
    log_dir = configure_logging(LoggingConfig(level="info"), tmp_path)

    adapter = logging.LoggerAdapter(logging.getLogger("verity.ingest"), {"mailbox": "desk"})
    adapter.info("from the desk")
    logging.getLogger("verity.cli").info("no mailbox here")
    _flush()

    lines = (log_dir / "verity.log").read_text(encoding="utf-8").splitlines()
    assert any("[desk] verity.ingest: from the desk" in line for line in lines)
    assert any("[-] verity.cli: no mailbox here" in line for line in lines)


def test_debug_log_only_holds_verity_records(tmp_path):
    log_dir = configure_logging(LoggingConfig(level="debug", debug_file=True), tmp_path)

    logging.getLogger("verity.maildir").debug("reading new/1")
    logging.getLogger("watchdog.observers").debug("inotify event")
    _flush()

    debug_text = (log_dir / "debug.log").read_text(encoding="utf-8")
    main_text = (log_dir / "verity.log").read_text(encoding="utf-8")
    assert "reading new/1" in debug_text
    assert "inotify event" not in debug_text
    assert "reading new/1" not in main_text


def test_unencodable_message_text_is_still_written(tmp_path):
    log_dir = configure_logging(LoggingConfig(level="info"), tmp_path)

    logging.getLogger("verity.ingest").info("Subject %s", "R\udce9ponse")
    _flush()

    assert "R\\udce9ponse" in (log_dir / "verity.log").read_text(encoding="utf-8")


def test_unknown_level_is_a_config_error():
    with pytest.raises(ConfigError):
        level_from_string("chatty")
