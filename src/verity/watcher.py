"""Filesystem watcher that reports new mail in configured maildirs."""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable, Iterable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler, FileSystemMovedEvent
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from .maildir import READ_SUBDIRS, ensure_maildir_structure
from .types import Mailbox

LOGGER = logging.getLogger(__name__)


class MailboxWatcher:
    """Watch the ``new/`` and ``cur/`` folders of each mailbox.

    Callbacks receive the mailbox name; they run on the observer thread and
    should only schedule work.
    """

    def __init__(
        self,
        mailboxes: Iterable[Mailbox],
        *,
        observer_factory: Callable[[], BaseObserver] | None = None,
    ) -> None:
        self._mailboxes = list(mailboxes)
        self._observer_factory = observer_factory or Observer
        self._observer: BaseObserver | None = None
        self._callbacks: list[Callable[[str], None]] = []
        self._lock = threading.Lock()

    def on_new_mail(self, callback: Callable[[str], None]) -> None:
        self._callbacks.append(callback)

    def start(self) -> None:
        with self._lock:
            if self._observer is not None:
                return
            observer = self._observer_factory()
            for mailbox in self._mailboxes:
                root = mailbox.path.expanduser()
                ensure_maildir_structure(root)
                handler = _MailboxEventHandler(mailbox.name, self._emit)
                for subdir in READ_SUBDIRS:
                    observer.schedule(handler, str(root / subdir), recursive=False)
            observer.start()
            self._observer = observer

    def stop(self) -> None:
        with self._lock:
            observer = self._observer
            if observer is None:
                return
            observer.stop()
            try:
                observer.join(timeout=5)
            except RuntimeError:  # pragma: no cover - watchdog internals
                LOGGER.warning("Failed to join mailbox observer thread")
            self._observer = None

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def _emit(self, mailbox: str) -> None:
        for callback in list(self._callbacks):
            try:
                callback(mailbox)
            except Exception:  # pragma: no cover
                LOGGER.exception("New mail callback failed for mailbox '%s'", mailbox)


class _MailboxEventHandler(FileSystemEventHandler):
    def __init__(self, mailbox: str, emit: Callable[[str], None]) -> None:
        super().__init__()
        self._mailbox = mailbox
        self._emit = emit

    def on_created(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._handle(_event_path(event.src_path))

    def on_moved(self, event: FileSystemMovedEvent) -> None:
        if event.is_directory:
            return
        self._handle(_event_path(event.dest_path))

    def _handle(self, path: Path) -> None:
        # Maildir readers skip dotfiles too.
        if path.name.startswith("."):
            return
        LOGGER.debug("New mail %s in mailbox '%s'", path.name, self._mailbox)
        self._emit(self._mailbox)


def _event_path(value: str | bytes) -> Path:
    if isinstance(value, bytes):
        return Path(os.fsdecode(value))
    return Path(value)


__all__ = ["MailboxWatcher"]
