"""Unit tests for persistent_serial._watcher."""

import threading
import time

from persistent_serial import _watcher

from conftest import FAST_OPTS


class Harness:
    """Callables for a WatcherLoop, recording what it does"""

    def __init__(self, *, error=True, reopen_ok=True):
        self.error = error
        self.reopen_ok = reopen_ok
        self.exit = threading.Event()
        self.calls: list[str] = []

    def has_error(self) -> bool:
        return self.error

    def should_exit(self, timeout: float | int) -> bool:
        return self.exit.wait(timeout)

    def close(self) -> None:
        self.calls.append("close")

    def reopen(self) -> bool:
        self.calls.append("reopen")
        if self.reopen_ok:
            self.error = False
        return self.reopen_ok

    def make(self, opts=FAST_OPTS) -> _watcher.WatcherLoop:
        return _watcher.WatcherLoop(
            "fake0",
            opts=opts,
            has_error=self.has_error,
            should_exit=self.should_exit,
            close=self.close,
            reopen=self.reopen,
        )


def test_watcher_reopens_on_error(until):
    harness = Harness()
    watcher = harness.make()
    watcher.start()

    assert until(lambda: "reopen" in harness.calls)
    time.sleep(FAST_OPTS.watch_interval * 3)
    assert harness.calls == ["close", "reopen"]

    harness.exit.set()
    assert watcher.join(timeout=1)


def test_watcher_retries_failed_reopen(until):
    harness = Harness(reopen_ok=False)
    watcher = harness.make()
    watcher.start()

    assert until(lambda: harness.calls.count("reopen") >= 3)
    assert harness.calls[:4] == ["close", "reopen", "close", "reopen"]

    harness.exit.set()
    assert watcher.join(timeout=1)


def test_watcher_idle_while_healthy():
    harness = Harness(error=False)
    watcher = harness.make()
    watcher.start()
    time.sleep(FAST_OPTS.watch_interval * 3)
    assert harness.calls == []

    harness.exit.set()
    assert watcher.join(timeout=1)


def test_watcher_skips_reopen_after_exit_request(until):
    slow = FAST_OPTS.model_copy(update={"reopen_delay": 30})
    harness = Harness()
    watcher = harness.make(slow)
    watcher.start()
    assert until(lambda: harness.calls == ["close"])

    harness.exit.set()
    assert watcher.join(timeout=1)
    assert harness.calls == ["close"]


def test_watcher_exits_immediately_if_requested():
    harness = Harness()
    harness.exit.set()
    watcher = harness.make()
    watcher.start()
    assert watcher.join(timeout=1)
    assert harness.calls == []
