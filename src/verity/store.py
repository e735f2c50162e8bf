"""Persistence for editions and the ingestion audit log."""

from __future__ import annotations

import json
import logging
import re
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from .types import Action, Edition, EditionState

LOGGER = logging.getLogger(__name__)
EDITIONS_DIRNAME = "editions"
EDITION_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class StoreError(RuntimeError):
    """Raised when edition data cannot be read or written."""


class EditionStore:
    """Edition repository keeping one JSON document per edition.

    Every write re-reads the edition from disk, applies the change and
    replaces the file atomically, so appends for the same edition made within
    a process land in call order. The address index is an owned cache; call
    :meth:`refresh` after editions are changed by another process.
    """

    def __init__(self, root_dir: Path) -> None:
        self.root_dir = root_dir.expanduser()
        self._editions_dir = self.root_dir / EDITIONS_DIRNAME
        self._editions_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._index: dict[str, str] | None = None

    @property
    def editions_dir(self) -> Path:
        return self._editions_dir

    def add(self, edition: Edition) -> Edition:
        """Persist a new edition, rejecting duplicate ids and addresses."""

        with self._lock:
            path = self._edition_path(edition.edition_id)
            if path.exists():
                raise StoreError(f"Edition '{edition.edition_id}' already exists.")
            owner = self._address_index().get(edition.fact_check_email_address)
            if owner is not None:
                raise StoreError(
                    f"Fact-check address {edition.fact_check_email_address} "
                    f"already belongs to edition '{owner}'."
                )
            self._write(edition)
            self._address_index()[edition.fact_check_email_address] = edition.edition_id
            return edition

    def get(self, edition_id: str) -> Edition | None:
        with self._lock:
            path = self._edition_path(edition_id)
            if not path.exists():
                return None
            return self._read(path)

    def all(self) -> list[Edition]:
        """Return every readable edition ordered by id."""

        with self._lock:
            editions: list[Edition] = []
            for path in sorted(self._editions_dir.glob("*.json")):
                try:
                    editions.append(self._read(path))
                except StoreError as exc:
                    LOGGER.warning("Skipping unreadable edition %s: %s", path, exc)
            return editions

    def find_by_fact_check_address(self, address: str) -> Edition | None:
        with self._lock:
            edition_id = self._address_index().get(address)
            if edition_id is None:
                return None
            edition = self.get(edition_id)
            if edition is None or edition.fact_check_email_address != address:
                # The document changed underneath the index; rebuild once.
                self.refresh()
                edition_id = self._address_index().get(address)
                return self.get(edition_id) if edition_id else None
            return edition

    def append_action(self, edition: Edition, action: Action) -> None:
        with self._lock:
            current = self._load_existing(edition.edition_id)
            current.actions.append(action)
            self._write(current)
            edition.actions.append(action)

    def set_state(self, edition: Edition, state: EditionState) -> None:
        with self._lock:
            current = self._load_existing(edition.edition_id)
            current.state = state
            self._write(current)
            edition.state = state

    def refresh(self) -> None:
        """Drop the address index so it is rebuilt from disk on next lookup."""

        with self._lock:
            self._index = None

    def _address_index(self) -> dict[str, str]:
        if self._index is None:
            index: dict[str, str] = {}
            for edition in self.all():
                existing = index.get(edition.fact_check_email_address)
                if existing is not None:
                    LOGGER.warning(
                        "Fact-check address %s is shared by editions '%s' and '%s'; using '%s'",
                        edition.fact_check_email_address,
                        existing,
                        edition.edition_id,
                        existing,
                    )
                    continue
                index[edition.fact_check_email_address] = edition.edition_id
            self._index = index
        return self._index

    def _load_existing(self, edition_id: str) -> Edition:
        edition = self.get(edition_id)
        if edition is None:
            raise StoreError(f"Edition '{edition_id}' does not exist.")
        return edition

    def _edition_path(self, edition_id: str) -> Path:
        if not EDITION_ID_RE.match(edition_id or ""):
            raise StoreError(f"Invalid edition id: {edition_id!r}")
        return self._editions_dir / f"{edition_id}.json"

    def _read(self, path: Path) -> Edition:
        try:
            with path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
            return edition_from_dict(payload)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise StoreError(f"Failed to load edition from {path}: {exc}") from exc

    def _write(self, edition: Edition) -> None:
        target = self._edition_path(edition.edition_id)
        encoded = json.dumps(edition_to_dict(edition), indent=2, ensure_ascii=False)

        def _writer(tmp_path: Path) -> None:
            with tmp_path.open("w", encoding="utf-8") as handle:
                handle.write(encoded)
                handle.write("\n")

        try:
            _atomic_write(target, _writer)
        except OSError as exc:
            raise StoreError(f"Failed to write edition {target}: {exc}") from exc


class DryRunEditions:
    """Wraps an :class:`EditionStore` so writes are logged instead of saved."""

    def __init__(self, store: EditionStore) -> None:
        self._store = store

    def find_by_fact_check_address(self, address: str) -> Edition | None:
        return self._store.find_by_fact_check_address(address)

    def append_action(self, edition: Edition, action: Action) -> None:
        LOGGER.info(
            "Dry-run: would append %s action to edition %s",
            action.request_type,
            edition.edition_id,
        )
        edition.actions.append(action)

    def set_state(self, edition: Edition, state: EditionState) -> None:
        LOGGER.info("Dry-run: would set edition %s to %s", edition.edition_id, state.value)
        edition.state = state


def edition_to_dict(edition: Edition) -> dict[str, Any]:
    return {
        "edition_id": edition.edition_id,
        "title": edition.title,
        "fact_check_email_address": edition.fact_check_email_address,
        "state": edition.state.value,
        "actions": [
            {
                "request_type": action.request_type,
                "comment": action.comment,
                "created_at": action.created_at.isoformat(),
            }
            for action in edition.actions
        ],
    }


def edition_from_dict(payload: dict[str, Any]) -> Edition:
    return Edition(
        edition_id=str(payload["edition_id"]),
        title=str(payload.get("title") or ""),
        fact_check_email_address=str(payload["fact_check_email_address"]),
        state=EditionState(payload.get("state", EditionState.DRAFT.value)),
        actions=[
            Action(
                request_type=str(raw["request_type"]),
                comment=str(raw.get("comment") or ""),
                created_at=datetime.fromisoformat(raw["created_at"]),
            )
            for raw in payload.get("actions") or []
        ],
    )


def _atomic_write(target: Path, writer: Callable[[Path], None]) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp_name = f".{target.name}.{uuid.uuid4().hex}.tmp"
    tmp_path = target.with_name(tmp_name)
    try:
        writer(tmp_path)
        tmp_path.replace(target)
    finally:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)


@dataclass(frozen=True)
class IngestRecord:
    """JSON serialisable record of how one message was handled."""

    timestamp: datetime
    mailbox: str | None
    message_id: str | None
    outcome: str
    edition_id: str | None
    reason: str | None
    subject: str | None

    def to_json(self) -> str:
        payload = {
            "timestamp": self.timestamp.isoformat(),
            "mailbox": self.mailbox,
            "message_id": self.message_id,
            "outcome": self.outcome,
            "edition_id": self.edition_id,
            "reason": self.reason,
            "subject": self.subject,
        }
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


class IngestLog:
    """JSON-lines audit log of ingestion outcomes with coarse rotation."""

    def __init__(self, path: Path, *, max_bytes: int = 5_000_000, backups: int = 3) -> None:
        self._path = path
        self._max_bytes = max_bytes
        self._backups = backups
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def append(self, record: IngestRecord) -> None:
        encoded = record.to_json() + "\n"
        data_size = len(encoded.encode("utf-8"))
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            if self._should_rotate(data_size):
                self._rotate()
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(encoded)

    def _should_rotate(self, incoming: int) -> bool:
        if not self._path.exists():
            return False
        try:
            current_size = self._path.stat().st_size
        except OSError:
            return False
        return current_size + incoming > self._max_bytes

    def _rotate(self) -> None:
        oldest = self._backup_path(self._backups)
        if oldest.exists():
            oldest.unlink()
        for index in range(self._backups, 0, -1):
            source = self._path if index == 1 else self._backup_path(index - 1)
            destination = self._backup_path(index)
            if source.exists():
                source.replace(destination)

    def _backup_path(self, index: int) -> Path:
        return self._path.with_name(f"{self._path.name}.{index}")


def ingest_log_path(root_dir: Path) -> Path:
    return root_dir.expanduser() / "logs" / "ingest.log"


__all__ = [
    "DryRunEditions",
    "EditionStore",
    "IngestLog",
    "IngestRecord",
    "StoreError",
    "edition_from_dict",
    "edition_to_dict",
    "ingest_log_path",
]
