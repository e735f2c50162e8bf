"""Long-running loop behind ``verity watch``."""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable
from types import FrameType
from typing import Any, Protocol

SignalHandler = Callable[[int, FrameType | None], Any] | int | signal.Handlers | None
PassRunner = Callable[[list[str] | None], Any]

LOGGER = logging.getLogger(__name__)
SIG_USR1 = getattr(signal, "SIGUSR1", None)


class Watcher(Protocol):
    def on_new_mail(self, callback: Callable[[str], None]) -> None:
        ...

    def start(self) -> None:
        ...

    def stop(self) -> None:
        ...


class WatchRuntime:
    """Run ingestion passes when mail arrives and on a fallback interval.

    Passes always run on the thread that called :meth:`run`, one at a time.
    ``run_pass`` receives the names of mailboxes with new mail, or ``None``
    when every mailbox should be processed.
    """

    def __init__(
        self,
        run_pass: PassRunner,
        watcher: Watcher,
        *,
        interval_seconds: float,
        debounce_seconds: float = 1.0,
        poll_seconds: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._run_pass = run_pass
        self._watcher = watcher
        self._interval = interval_seconds
        self._debounce = max(0.0, debounce_seconds)
        self._poll = poll_seconds
        self._clock = clock
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._pending: set[str] = set()
        self._pending_since: float | None = None
        self._pending_lock = threading.Lock()
        self._last_full_pass: float | None = None
        self._installed_signals: dict[int, SignalHandler] = {}
        self.passes = 0
        self.failures = 0
        self._watcher.on_new_mail(self.request)

    def run(self) -> None:
        self._install_signal_handlers()
        try:
            self._watcher.start()
            self._run(None)
            while not self._stop_event.is_set():
                try:
                    self._wake_event.wait(timeout=self._poll)
                    self._wake_event.clear()
                    self.tick()
                except KeyboardInterrupt:
                    LOGGER.info("Interrupt received; shutting down Verity watcher.")
                    self._stop_event.set()
        finally:
            self._watcher.stop()
            self._restore_signal_handlers()

    def stop(self) -> None:
        self._stop_event.set()
        self._wake_event.set()

    def request(self, mailbox: str) -> None:
        """Schedule a pass for ``mailbox``; safe to call from any thread."""

        with self._pending_lock:
            if not self._pending:
                self._pending_since = self._clock()
            self._pending.add(mailbox)
        self._wake_event.set()

    def tick(self) -> bool:
        """Run a pass if one is due and return whether it ran."""

        now = self._clock()
        if self._last_full_pass is None or now - self._last_full_pass >= self._interval:
            self._take_pending()
            self._run(None)
            return True
        with self._pending_lock:
            due = self._pending_since is not None and now - self._pending_since >= self._debounce
        if not due:
            return False
        mailboxes = self._take_pending()
        if not mailboxes:
            return False
        self._run(mailboxes)
        return True

    def _take_pending(self) -> list[str]:
        with self._pending_lock:
            mailboxes = sorted(self._pending)
            self._pending.clear()
            self._pending_since = None
        return mailboxes

    def _run(self, mailboxes: list[str] | None) -> None:
        if mailboxes is None:
            self._last_full_pass = self._clock()
        try:
            self._run_pass(mailboxes)
        except Exception:
            self.failures += 1
            LOGGER.exception("Ingestion pass failed; will retry on next trigger")
        finally:
            self.passes += 1

    def _install_signal_handlers(self) -> None:
        interested = tuple(
            sig for sig in (signal.SIGTERM, signal.SIGINT, SIG_USR1) if sig is not None
        )
        for sig in interested:
            try:
                previous = signal.getsignal(sig)
                signal.signal(sig, self._handle_signal)
            except ValueError:
                # Not on the main thread.
                continue
            self._installed_signals[sig] = previous

    def _restore_signal_handlers(self) -> None:
        for sig, handler in self._installed_signals.items():
            try:
                signal.signal(sig, handler)
            except ValueError:  # pragma: no cover - not on the main thread
                continue
        self._installed_signals.clear()

    def _handle_signal(self, signum: int, _frame: FrameType | None) -> None:
        if signum in (signal.SIGTERM, signal.SIGINT):
            LOGGER.info("Signal %s received; initiating shutdown.", signum)
            self.stop()
        elif SIG_USR1 is not None and signum == SIG_USR1:
            LOGGER.info("SIGUSR1 received; scheduling a full ingestion pass.")
            self._last_full_pass = None
            self._wake_event.set()


__all__ = ["WatchRuntime"]
