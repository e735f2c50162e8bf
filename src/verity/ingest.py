"""Ingestion loop turning fact-check replies into edition actions."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from .autoreply import AUTO_REPLY_RULES, HeaderRule, classify, return_path_only
from .recipients import resolve
from .recorder import EditionRepository, record, utc_now
from .store import IngestLog, IngestRecord
from .types import Message

LOGGER = logging.getLogger(__name__)

OUTCOME_RECORDED = "recorded"
OUTCOME_AUTO_REPLY = "auto_reply"
OUTCOME_UNMATCHED = "unmatched"


class MailSource(Protocol):
    """Batch of inbound mail with deferred deletion.

    ``fetch`` hands out messages whose delete intent is unset. ``expunge``
    deletes every handed-out message still pending delete, keeps the rest
    and returns the number deleted.
    """

    def fetch(self) -> Iterator[Message]:
        ...

    def expunge(self) -> int:
        ...


@dataclass(frozen=True)
class IngestResult:
    """How a single message was handled."""

    outcome: str
    edition_id: str | None = None
    reason: str | None = None
    message_id: str | None = None


@dataclass
class IngestMetrics:
    """Counters for one or more ingestion passes."""

    processed: int = 0
    recorded: int = 0
    auto_replies: int = 0
    unmatched: int = 0
    deleted: int = 0

    def add(self, other: IngestMetrics) -> None:
        self.processed += other.processed
        self.recorded += other.recorded
        self.auto_replies += other.auto_replies
        self.unmatched += other.unmatched
        self.deleted += other.deleted


MessageCallback = Callable[[Message, IngestResult], None]


class FactCheckIngester:
    """Run ingestion passes against an edition repository."""

    def __init__(
        self,
        editions: EditionRepository,
        *,
        rules: Iterable[HeaderRule] = AUTO_REPLY_RULES,
        clock: Callable[[], datetime] = utc_now,
        ingest_log: IngestLog | None = None,
        mailbox: str | None = None,
    ) -> None:
        self._editions = editions
        self._rules = tuple(rules)
        self._clock = clock
        self._ingest_log = ingest_log
        self._mailbox = mailbox
        self._log = logging.LoggerAdapter(LOGGER, {"mailbox": mailbox or "-"})

    def process(self, source: MailSource, on_each: MessageCallback | None = None) -> IngestMetrics:
        """Handle every message ``source`` yields, then let it expunge.

        If recording fails the failing message is kept, messages handled
        before it are still expunged and the error propagates.
        """

        metrics = IngestMetrics()
        try:
            for message in source.fetch():
                try:
                    result = self.handle(message)
                except Exception:
                    message.pending_delete = False
                    raise
                metrics.processed += 1
                self._count(metrics, result)
                self._log_result(message, result)
                if on_each is not None:
                    on_each(message, result)
        except Exception:
            self._log.exception("Ingestion pass aborted after %s message(s)", metrics.processed)
            raise
        finally:
            metrics.deleted = source.expunge()

        self._log.info(
            "Ingestion pass: processed=%s recorded=%s auto_replies=%s unmatched=%s deleted=%s",
            metrics.processed,
            metrics.recorded,
            metrics.auto_replies,
            metrics.unmatched,
            metrics.deleted,
        )
        return metrics

    def handle(self, message: Message) -> IngestResult:
        """Resolve, classify and record a single message."""

        edition = resolve(message, self._editions)
        if edition is None:
            message.pending_delete = False
            self._log.debug(
                "Keeping %s: no edition for recipients %s",
                _describe(message),
                ", ".join(sorted(message.to | message.cc | message.bcc)) or "<none>",
            )
            return IngestResult(outcome=OUTCOME_UNMATCHED, message_id=message.message_id)

        verdict = classify(message.headers, self._rules)
        if verdict.ignore:
            self._log.debug(
                "Ignoring automatic reply %s for edition %s (%s)",
                _describe(message),
                edition.edition_id,
                verdict.reason,
            )
            if return_path_only(message.headers, self._rules):
                self._log.warning(
                    "Discarding %s for edition %s on Return-Path alone",
                    _describe(message),
                    edition.edition_id,
                )
            return IngestResult(
                outcome=OUTCOME_AUTO_REPLY,
                edition_id=edition.edition_id,
                reason=verdict.reason,
                message_id=message.message_id,
            )

        record(self._editions, edition, message.body, clock=self._clock)
        self._log.info(
            "Recorded fact check for edition %s from %s", edition.edition_id, _describe(message)
        )
        return IngestResult(
            outcome=OUTCOME_RECORDED,
            edition_id=edition.edition_id,
            message_id=message.message_id,
        )

    def _count(self, metrics: IngestMetrics, result: IngestResult) -> None:
        if result.outcome == OUTCOME_RECORDED:
            metrics.recorded += 1
        elif result.outcome == OUTCOME_AUTO_REPLY:
            metrics.auto_replies += 1
        else:
            metrics.unmatched += 1

    def _log_result(self, message: Message, result: IngestResult) -> None:
        if self._ingest_log is None:
            return
        entry = IngestRecord(
            timestamp=self._clock(),
            mailbox=self._mailbox,
            message_id=message.message_id,
            outcome=result.outcome,
            edition_id=result.edition_id,
            reason=result.reason,
            subject=message.subject or None,
        )
        try:
            self._ingest_log.append(entry)
        except (OSError, ValueError):
            self._log.exception("Failed to write ingest log entry for %s", _describe(message))


def _describe(message: Message) -> str:
    return message.message_id or message.source_key or "<message>"


__all__ = [
    "FactCheckIngester",
    "IngestMetrics",
    "IngestResult",
    "MailSource",
    "MessageCallback",
    "OUTCOME_AUTO_REPLY",
    "OUTCOME_RECORDED",
    "OUTCOME_UNMATCHED",
]
