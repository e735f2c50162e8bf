from __future__ import annotations

from verity.runtime import WatchRuntime


class StubWatcher:
    def __init__(self) -> None:
        self.started = False
        self.callback = None

    def on_new_mail(self, callback) -> None:
        self.callback = callback

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.started = False


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _runtime(passes: list, clock: FakeClock, **kwargs) -> tuple[WatchRuntime, StubWatcher]:
    watcher = StubWatcher()
    runtime = WatchRuntime(
        passes.append,
        watcher,
        interval_seconds=kwargs.pop("interval_seconds", 300.0),
        debounce_seconds=kwargs.pop("debounce_seconds", 1.0),
        clock=clock,
    )
    return runtime, watcher


def test_first_tick_runs_full_pass():
    passes: list = []
    runtime, _watcher = _runtime(passes, FakeClock())

    assert runtime.tick() is True
    assert passes == [None]
    assert runtime.tick() is False


def test_new_mail_runs_after_debounce():
    passes: list = []
    clock = FakeClock()
    runtime, watcher = _runtime(passes, clock)
    runtime.tick()

    watcher.callback("desk")
    watcher.callback("archive")
    watcher.callback("desk")
    assert runtime.tick() is False

    clock.now += 1.5
    assert runtime.tick() is True
    assert passes == [None, ["archive", "desk"]]
    assert runtime.tick() is False


def test_interval_forces_full_pass_and_absorbs_pending():
    passes: list = []
    clock = FakeClock()
    runtime, watcher = _runtime(passes, clock, interval_seconds=60.0)
    runtime.tick()

    watcher.callback("desk")
    clock.now += 61
    runtime.tick()
    clock.now += 5

    assert passes == [None, None]
    assert runtime.tick() is False


def test_failed_pass_is_counted_and_not_raised():
    clock = FakeClock()
    watcher = StubWatcher()

    def _boom(_mailboxes):
        raise RuntimeError("maildir unavailable")

    runtime = WatchRuntime(_boom, watcher, interval_seconds=10.0, clock=clock)

    assert runtime.tick() is True
    assert runtime.failures == 1
    assert runtime.passes == 1


def test_run_stops_when_requested():
    passes: list = []
    clock = FakeClock()
    watcher = StubWatcher()
    runtime = WatchRuntime(
        lambda mailboxes: (passes.append(mailboxes), runtime.stop()),
        watcher,
        interval_seconds=300.0,
        poll_seconds=0.01,
        clock=clock,
    )

    runtime.run()

    assert passes == [None]
    assert watcher.started is False
