"""Core data structures used throughout Verity."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from .headers import HeaderLookup

RECEIVE_FACT_CHECK = "receive_fact_check"


class EditionState(str, Enum):
    """Editorial workflow states an edition can be in."""

    DRAFT = "draft"
    IN_REVIEW = "in_review"
    AMENDS_NEEDED = "amends_needed"
    FACT_CHECK = "fact_check"
    FACT_CHECK_RECEIVED = "fact_check_received"
    READY = "ready"
    SCHEDULED_FOR_PUBLISHING = "scheduled_for_publishing"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class DeleteIntent(str, Enum):
    """What the mail source should do with a message once the batch ends.

    ``UNSET`` is the state every message is handed out in and means delete:
    mail addressed to us is consumed unless the ingester opts out with
    ``KEEP``.
    """

    UNSET = "unset"
    KEEP = "keep"
    DELETE = "delete"


@dataclass
class Message:
    """An inbound message as handed out by a mail source."""

    headers: HeaderLookup = field(default_factory=HeaderLookup)
    to: frozenset[str] = frozenset()
    cc: frozenset[str] = frozenset()
    bcc: frozenset[str] = frozenset()
    subject: str = ""
    body: str = ""
    message_id: str | None = None
    source_key: str | None = None
    delete_intent: DeleteIntent = DeleteIntent.UNSET

    def __post_init__(self) -> None:
        self.to = _address_set(self.to)
        self.cc = _address_set(self.cc)
        self.bcc = _address_set(self.bcc)

    @property
    def pending_delete(self) -> bool:
        return self.delete_intent is not DeleteIntent.KEEP

    @pending_delete.setter
    def pending_delete(self, value: bool) -> None:
        self.delete_intent = DeleteIntent.DELETE if value else DeleteIntent.KEEP


@dataclass(frozen=True)
class Action:
    """Immutable entry in an edition's review history."""

    request_type: str
    comment: str
    created_at: datetime


@dataclass
class Edition:
    """A piece of content under editorial review."""

    edition_id: str
    fact_check_email_address: str
    state: EditionState = EditionState.DRAFT
    title: str = ""
    actions: list[Action] = field(default_factory=list)


@dataclass(frozen=True)
class ClassificationResult:
    """Outcome of the auto-reply classifier."""

    ignore: bool
    reason: str | None = None


@dataclass(frozen=True)
class Mailbox:
    """Configured maildir that receives fact-check replies."""

    name: str
    path: Path
    envelope_headers: tuple[str, ...] = ()


def _address_set(value: Iterable[str] | None) -> frozenset[str]:
    if not value:
        return frozenset()
    return frozenset(address.strip() for address in value if address and address.strip())


__all__ = [
    "RECEIVE_FACT_CHECK",
    "Action",
    "ClassificationResult",
    "DeleteIntent",
    "Edition",
    "EditionState",
    "Mailbox",
    "Message",
]
