from __future__ import annotations

import itertools
import time
import uuid
from email.message import EmailMessage
from pathlib import Path

import pytest

from verity.maildir import ensure_maildir_structure
from verity.store import EditionStore
from verity.types import Mailbox

_SEQUENCE = itertools.count()


def deliver(
    maildir: Path,
    *,
    to: str | None = None,
    cc: str | None = None,
    bcc: str | None = None,
    subject: str = "This is a fact check response",
    body: str = "I like it. Good work!",
    headers: dict[str, str] | None = None,
) -> Path:
    """Write a reply into ``maildir/new`` the way a delivery agent would."""

    message = EmailMessage()
    message["From"] = "foo@example.com"
    if to is not None:
        message["To"] = to
    if cc is not None:
        message["Cc"] = cc
    if bcc is not None:
        message["Bcc"] = bcc
    message["Subject"] = subject
    message["Message-ID"] = f"<{uuid.uuid4().hex}@example.com>"
    for name, value in (headers or {}).items():
        message[name] = value
    message.set_content(body)

    unique = f"{time.time_ns()}.{next(_SEQUENCE):06d}.{uuid.uuid4().hex}.verity"
    target = maildir / "new" / unique
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(message.as_bytes())
    return target


@pytest.fixture
def mailbox(tmp_path) -> Mailbox:
    path = tmp_path / "Maildir"
    ensure_maildir_structure(path)
    return Mailbox(name="factcheck", path=path)


@pytest.fixture
def store(tmp_path) -> EditionStore:
    return EditionStore(tmp_path / "state")


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Automatically mark tests in this package as integration."""

    package_root = Path(__file__).resolve().parent
    integration_mark = pytest.mark.integration
    for item in items:
        try:
            path = Path(item.fspath).resolve()
        except OSError:
            continue
        if package_root in path.parents:
            item.add_marker(integration_mark)
