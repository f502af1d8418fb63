import logging
import threading
from typing import Callable

from persistent_serial import _config

log = logging.getLogger("persistent_serial.watcher")


class WatcherLoop:
    """Background thread that turns the error flag into close/reopen cycles.

    should_exit(timeout) blocks for up to timeout seconds and returns True
    as soon as the watcher must stop (disconnect requested or superseded).
    Reopen failures are retried every cycle with no backoff or retry cap.
    """

    def __init__(
        self,
        port: str,
        *,
        opts: _config.LinkOptions,
        has_error: Callable[[], bool],
        should_exit: Callable[[float | int], bool],
        close: Callable[[], None],
        reopen: Callable[[], bool],
        logger: logging.Logger = log,
    ):
        self._opts = opts
        self._has_error = has_error
        self._should_exit = should_exit
        self._close = close
        self._reopen = reopen
        self._log = logger
        self._thread = threading.Thread(
            target=self._run, name=f"{port} watcher", daemon=True
        )

    def __repr__(self) -> str:
        return f"WatcherLoop({self._thread.name!r})"

    def start(self) -> None:
        self._thread.start()

    def join(self, timeout: float | int | None = None) -> bool:
        if self._thread.ident is not None:
            self._thread.join(timeout=timeout)
        return not self._thread.is_alive()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def _run(self) -> None:
        self._log.debug("Starting watcher")
        while not self._should_exit(0):
            if self._has_error():
                self._log.debug("Connection error, closing")
                self._close()
                if self._should_exit(self._opts.reopen_delay):
                    break
                if not self._reopen():
                    self._log.debug(
                        "Reopen failed, retry in %.1fs",
                        self._opts.watch_interval,
                    )

            if self._should_exit(self._opts.watch_interval):
                break

        self._log.debug("Watcher exiting")
