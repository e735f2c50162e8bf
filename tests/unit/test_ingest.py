from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

import pytest

from verity.headers import HeaderLookup
from verity.ingest import (
    OUTCOME_AUTO_REPLY,
    OUTCOME_RECORDED,
    OUTCOME_UNMATCHED,
    FactCheckIngester,
)
from verity.store import IngestLog
from verity.types import Action, DeleteIntent, Edition, EditionState, Message

FIXED = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeSource:
    """In-memory mail source recording what it was asked to delete."""

    def __init__(self, *messages: Message) -> None:
        self.messages = list(messages)
        self.fetched: list[Message] = []
        self.deleted: list[Message] = []
        self.expunge_calls = 0

    def fetch(self):
        for message in self.messages:
            self.fetched.append(message)
            yield message

    def expunge(self) -> int:
        self.expunge_calls += 1
        self.deleted = [message for message in self.fetched if message.pending_delete]
        return len(self.deleted)


class MemoryEditions:
    def __init__(self, *editions: Edition, fail_on: str | None = None) -> None:
        self.by_address = {edition.fact_check_email_address: edition for edition in editions}
        self.fail_on = fail_on

    def find_by_fact_check_address(self, address: str) -> Edition | None:
        return self.by_address.get(address)

    def append_action(self, edition: Edition, action: Action) -> None:
        if action.comment == self.fail_on:
            raise OSError("disk full")
        edition.actions.append(action)

    def set_state(self, edition: Edition, state: EditionState) -> None:
        edition.state = state


def _reply(to: str, body: str, **headers: str) -> Message:
    items = [(name.replace("_", "-"), value) for name, value in headers.items()]
    return Message(
        headers=HeaderLookup(items),
        to={to},
        subject=headers.get("Subject", ""),
        body=body,
        message_id=f"<{body}@example.com>",
    )


@pytest.fixture
def editions():
    return MemoryEditions(
        Edition("guide-1", "factcheck+1@example.com", state=EditionState.FACT_CHECK),
        Edition("guide-2", "factcheck+2@example.com", state=EditionState.FACT_CHECK),
    )


def test_genuine_reply_is_recorded_and_deleted(editions):
    message = _reply("factcheck+1@example.com", "all good")
    source = FakeSource(message)

    metrics = FactCheckIngester(editions, clock=lambda: FIXED).process(source)

    edition = editions.by_address["factcheck+1@example.com"]
    assert edition.state is EditionState.FACT_CHECK_RECEIVED
    assert [action.comment for action in edition.actions] == ["all good"]
    assert edition.actions[0].created_at == FIXED
    assert source.deleted == [message]
    assert metrics.processed == 1
    assert metrics.recorded == 1
    assert metrics.deleted == 1


def test_auto_reply_is_ignored_but_still_deleted(editions):
    message = _reply("factcheck+1@example.com", "away", X_Autoreply="yes")
    source = FakeSource(message)

    metrics = FactCheckIngester(editions).process(source)

    edition = editions.by_address["factcheck+1@example.com"]
    assert edition.actions == []
    assert edition.state is EditionState.FACT_CHECK
    assert message.delete_intent is DeleteIntent.UNSET
    assert source.deleted == [message]
    assert metrics.auto_replies == 1


def test_unmatched_message_is_kept(editions):
    message = _reply("someone-else@example.com", "hello")
    source = FakeSource(message)

    metrics = FactCheckIngester(editions).process(source)

    assert message.delete_intent is DeleteIntent.KEEP
    assert source.deleted == []
    assert metrics.unmatched == 1
    assert metrics.deleted == 0


def test_interleaved_replies_land_on_their_own_editions(editions):
    source = FakeSource(
        _reply("factcheck+1@example.com", "one-a"),
        _reply("factcheck+2@example.com", "two-a"),
        _reply("factcheck+1@example.com", "one-b"),
    )

    FactCheckIngester(editions).process(source)

    first = editions.by_address["factcheck+1@example.com"]
    second = editions.by_address["factcheck+2@example.com"]
    assert [action.comment for action in first.actions] == ["one-a", "one-b"]
    assert [action.comment for action in second.actions] == ["two-a"]


def test_callback_runs_once_per_message_with_result(editions):
    source = FakeSource(
        _reply("factcheck+1@example.com", "recorded"),
        _reply("factcheck+1@example.com", "auto", Precedence="bulk"),
        _reply("nobody@example.com", "stray"),
    )
    seen: list[tuple[str, str]] = []

    FactCheckIngester(editions).process(
        source, on_each=lambda message, result: seen.append((message.body, result.outcome))
    )

    assert seen == [
        ("recorded", OUTCOME_RECORDED),
        ("auto", OUTCOME_AUTO_REPLY),
        ("stray", OUTCOME_UNMATCHED),
    ]


def test_empty_batch_still_expunges(editions):
    source = FakeSource()

    metrics = FactCheckIngester(editions).process(source)

    assert source.expunge_calls == 1
    assert metrics.processed == 0


def test_failure_keeps_failing_message_and_expunges_earlier_ones():
    editions = MemoryEditions(
        Edition("guide-1", "factcheck+1@example.com"),
        fail_on="second",
    )
    first = _reply("factcheck+1@example.com", "first")
    second = _reply("factcheck+1@example.com", "second")
    third = _reply("factcheck+1@example.com", "third")
    source = FakeSource(first, second, third)

    with pytest.raises(OSError):
        FactCheckIngester(editions).process(source)

    assert source.expunge_calls == 1
    assert source.deleted == [first]
    assert second.delete_intent is DeleteIntent.KEEP
    assert third not in source.fetched


def test_outcomes_are_written_to_ingest_log(tmp_path, editions):
    log = IngestLog(tmp_path / "logs" / "ingest.log")
    source = FakeSource(
        _reply("factcheck+2@example.com", "thanks"),
        _reply("factcheck+2@example.com", "ooo", Subject="Out of Office"),
    )

    FactCheckIngester(editions, ingest_log=log, mailbox="desk", clock=lambda: FIXED).process(
        source
    )

    lines = log.path.read_text(encoding="utf-8").splitlines()
    entries = [json.loads(line) for line in lines]
    assert [entry["outcome"] for entry in entries] == [OUTCOME_RECORDED, OUTCOME_AUTO_REPLY]
    assert entries[0]["edition_id"] == "guide-2"
    assert entries[0]["mailbox"] == "desk"
    assert entries[1]["reason"] == "Subject contains out of office"
    assert entries[1]["subject"] == "Out of Office"


class UnwritableLog:
    def __init__(self, error: Exception) -> None:
        self.error = error
        self.attempts = 0

    def append(self, _record) -> None:
        self.attempts += 1
        raise self.error


@pytest.mark.parametrize(
    "error",
    [
        OSError("read-only file system"),
        UnicodeEncodeError("utf-8", "R\udce9ponse", 1, 2, "surrogates not allowed"),
    ],
)
def test_failed_ingest_log_write_does_not_abort_pass(editions, error):
    log = UnwritableLog(error)
    stray = _reply("nobody@example.com", "stray")
    reply = _reply("factcheck+1@example.com", "still recorded")
    source = FakeSource(stray, reply)

    metrics = FactCheckIngester(editions, ingest_log=log).process(source)

    assert log.attempts == 2
    assert metrics.processed == 2
    assert metrics.recorded == 1
    assert source.deleted == [reply]


def test_return_path_alone_is_discarded_with_warning(editions, caplog):
    message = _reply("factcheck+1@example.com", "real answer", Return_Path="<reviewer@example.org>")
    source = FakeSource(message)

    with caplog.at_level(logging.WARNING, logger="verity.ingest"):
        metrics = FactCheckIngester(editions, mailbox="desk").process(source)

    assert metrics.auto_replies == 1
    warnings = [record for record in caplog.records if record.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert "Return-Path alone" in warnings[0].getMessage()
    assert warnings[0].mailbox == "desk"


def test_return_path_with_other_markers_is_not_flagged(editions, caplog):
    message = _reply(
        "factcheck+1@example.com",
        "away",
        Return_Path="<reviewer@example.org>",
        Auto_Submitted="auto-replied",
    )

    with caplog.at_level(logging.WARNING, logger="verity.ingest"):
        FactCheckIngester(editions).process(FakeSource(message))

    assert not [record for record in caplog.records if record.levelno == logging.WARNING]
