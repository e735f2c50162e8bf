"""Maildir-backed mail source and RFC822 to :class:`Message` conversion."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from pathlib import Path

from .body import extract_body
from .headers import HeaderLookup, repair_raw_text
from .recipients import parse_addresses
from .types import Mailbox, Message

LOGGER = logging.getLogger(__name__)

MAILDIR_SUBDIRS = ("cur", "new", "tmp")
READ_SUBDIRS = ("new", "cur")


class MaildirError(RuntimeError):
    """Raised when maildir operations fail."""


def ensure_maildir_structure(maildir: Path) -> None:
    """Ensure the cur/, new/ and tmp/ subdirectories exist."""

    root = maildir.expanduser()
    _ensure_dir(root)
    for subdir in MAILDIR_SUBDIRS:
        _ensure_dir(root / subdir)


def read_message(path: Path) -> EmailMessage:
    """Parse a message file into an EmailMessage instance."""

    file_path = Path(path)
    if not file_path.is_file():
        raise MaildirError(f"Message file does not exist: {file_path}")
    parser = BytesParser(policy=policy.default)
    try:
        with file_path.open("rb") as handle:
            return parser.parse(handle)
    except OSError as exc:
        raise MaildirError(f"Failed to read message {file_path}: {exc}") from exc


def to_message(
    parsed: EmailMessage,
    *,
    envelope_headers: Iterable[str] = (),
    source_key: str | None = None,
) -> Message:
    """Convert a parsed RFC822 message into a :class:`Message`.

    Headers are read from their raw form so malformed values never raise.
    Addresses found in ``envelope_headers`` (for example ``X-Original-To``
    added by the delivery agent) are merged into ``bcc``.
    """

    raw_items = [(str(name), str(value)) for name, value in parsed.raw_items()]
    headers = HeaderLookup(raw_items)
    bcc_sources = ["Bcc", *envelope_headers]
    message_id = (headers.get("Message-ID") or "").strip() or None
    return Message(
        headers=headers,
        to=parse_addresses(_raw_values(raw_items, "To")),
        cc=parse_addresses(_raw_values(raw_items, "Cc")),
        bcc=parse_addresses(
            value for name in bcc_sources for value in _raw_values(raw_items, name)
        ),
        subject=headers.get("Subject") or "",
        body=extract_body(parsed),
        message_id=message_id,
        source_key=source_key,
    )


class MaildirMailSource:
    """Hands out the messages of a maildir and deletes them on request.

    Messages from ``new/`` and ``cur/`` are yielded lazily in delivery order,
    taken from the timestamp and unique part of the maildir filename.
    :meth:`expunge` removes every handed-out message that is still pending
    delete; with ``dry_run`` nothing is removed.
    """

    def __init__(self, mailbox: Mailbox, *, dry_run: bool = False) -> None:
        self._mailbox = mailbox
        self._root = mailbox.path.expanduser()
        self._dry_run = dry_run
        self._handed_out: list[tuple[Path, Message]] = []

    @property
    def name(self) -> str:
        return self._mailbox.name

    @property
    def path(self) -> Path:
        return self._root

    def fetch(self) -> Iterator[Message]:
        ensure_maildir_structure(self._root)
        for path in self._list_messages():
            try:
                parsed = read_message(path)
            except MaildirError as exc:
                LOGGER.error("Skipping unreadable message %s: %s", path, exc)
                continue
            message = to_message(
                parsed,
                envelope_headers=self._mailbox.envelope_headers,
                source_key=str(path),
            )
            self._handed_out.append((path, message))
            yield message

    def expunge(self) -> int:
        handed_out, self._handed_out = self._handed_out, []
        deleted = 0
        for path, message in handed_out:
            if not message.pending_delete:
                continue
            if self._dry_run:
                LOGGER.info("Dry-run: would delete %s from '%s'", path.name, self.name)
                continue
            try:
                path.unlink()
            except FileNotFoundError:
                LOGGER.warning("Message %s vanished before deletion", path)
                continue
            except OSError as exc:
                raise MaildirError(f"Failed to delete message {path}: {exc}") from exc
            deleted += 1
        if deleted:
            LOGGER.debug("Deleted %s message(s) from '%s'", deleted, self.name)
        return deleted

    def count(self) -> int:
        """Return how many messages are waiting in the maildir."""

        return sum(1 for _ in self._list_messages())

    def _list_messages(self) -> list[Path]:
        paths: list[Path] = []
        for subdir in READ_SUBDIRS:
            directory = self._root / subdir
            if not directory.is_dir():
                continue
            paths.extend(
                entry
                for entry in directory.iterdir()
                if entry.is_file() and not entry.name.startswith(".")
            )
        return sorted(paths, key=delivery_key)


def delivery_key(path: Path) -> tuple[int, str]:
    """Sort key placing maildir files in delivery order across subfolders.

    The info suffix after ``:`` changes when a client marks mail as seen, so
    only the unique part before it counts. Names without a leading timestamp
    sort first, by name.
    """

    unique = path.name.split(":", 1)[0]
    stamp = unique.split(".", 1)[0]
    return (int(stamp) if stamp.isdigit() else -1, unique)


def _raw_values(raw_items: list[tuple[str, str]], name: str) -> list[str]:
    wanted = name.strip().lower()
    return [
        " ".join(repair_raw_text(value).splitlines())
        for header, value in raw_items
        if header.strip().lower() == wanted
    ]


def _ensure_dir(path: Path) -> None:
    """Create a directory tree and log when it did not already exist."""

    try:
        path.mkdir(parents=True, exist_ok=False)
    except FileExistsError:
        return
    LOGGER.info("Created maildir folder %s", path)


__all__ = [
    "MAILDIR_SUBDIRS",
    "MaildirError",
    "MaildirMailSource",
    "delivery_key",
    "ensure_maildir_structure",
    "read_message",
    "to_message",
]
