"""PID-based lock so only one ingestion process works on a root directory."""

from __future__ import annotations

import os
from pathlib import Path

DEFAULT_LOCK_NAME = "verity.pid"


class LockError(RuntimeError):
    """Raised when another live process already holds the ingestion lock."""


def lock_path(root_dir: Path) -> Path:
    return root_dir.expanduser() / DEFAULT_LOCK_NAME


def read_pid(path: Path) -> int | None:
    """Return the PID recorded in ``path``, or None when missing or garbled."""

    try:
        contents = path.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    try:
        return int(contents) if contents else None
    except ValueError:
        return None


def pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class IngestLock:
    """Context manager holding the lock file for the duration of a run.

    A lock left behind by a dead process is reclaimed; a lock held by a
    live process raises :class:`LockError`.
    """

    def __init__(self, path: Path) -> None:
        self.path = path.expanduser()
        self.pid: int | None = None

    def __enter__(self) -> IngestLock:
        self.acquire()
        return self

    def __exit__(self, _exc_type, _exc, _tb) -> None:
        self.release()

    def acquire(self) -> int:
        """Claim the lock file atomically and record our PID in it.

        The PID is written to a private file first and then hard-linked into
        place, so the lock file never exists without its PID and two
        processes cannot both create it.
        """

        self.path.parent.mkdir(parents=True, exist_ok=True)
        pid = os.getpid()
        staged = self.path.with_name(f".{self.path.name}.{pid}.tmp")
        staged.write_text(str(pid), encoding="utf-8")
        try:
            for _attempt in range(2):
                try:
                    os.link(staged, self.path)
                except FileExistsError:
                    holder = read_pid(self.path)
                    if holder is not None and holder != pid and pid_alive(holder):
                        raise LockError(
                            f"Another Verity process is running (PID {holder})."
                        ) from None
                    # Holder is gone; reclaim the file.
                    self.path.unlink(missing_ok=True)
                    continue
                self.pid = pid
                return pid
            raise LockError(f"Could not claim lock file {self.path}.")
        finally:
            staged.unlink(missing_ok=True)

    def release(self) -> None:
        if self.pid is None:
            return
        if read_pid(self.path) == self.pid:
            self.path.unlink(missing_ok=True)
        self.pid = None


__all__ = ["IngestLock", "LockError", "lock_path", "pid_alive", "read_pid"]
