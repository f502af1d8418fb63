import logging
import threading
from typing import Callable

from persistent_serial import _config
from persistent_serial import _device
from persistent_serial import _events

log = logging.getLogger("persistent_serial.reader")


class ReaderLoop:
    """Background thread that polls a device and publishes what arrives.

    The loop runs while the stop token is clear and is_connected() holds.
    Any I/O failure is reported once through on_failure(), after which the
    loop waits out the cooldown and exits; recovery is someone else's job.
    """

    def __init__(
        self,
        port: str,
        device: _device.SerialDevice,
        *,
        opts: _config.LinkOptions,
        is_connected: Callable[[], bool],
        on_failure: Callable[[OSError], None],
        publish: Callable[[_events.LinkEvent], None],
        logger: logging.Logger = log,
    ):
        self._device = device
        self._opts = opts
        self._is_connected = is_connected
        self._on_failure = on_failure
        self._publish = publish
        self._log = logger
        self._data_log = logger.getChild("data")
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._run, name=f"{port} reader", daemon=True
        )

    def __repr__(self) -> str:
        return f"ReaderLoop({self._thread.name!r})"

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        """Requests termination and interrupts any read in progress"""

        self._stop.set()
        self._device.cancel_read()

    def join(self, timeout: float | int | None = None) -> bool:
        """Waits for the thread to exit; False if it is still running"""

        if self._thread.ident is not None:
            self._thread.join(timeout=timeout)
        return not self._thread.is_alive()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def _run(self) -> None:
        self._log.debug("Starting reader")
        while not self._stop.is_set() and self._is_connected():
            try:
                waiting = self._device.bytes_waiting()
                if waiting <= 0:
                    self._stop.wait(self._opts.poll_interval)
                    continue
                data = self._device.read(waiting)
            except OSError as ex:
                if self._stop.is_set():
                    break  # cancelled by stop()
                self._log.warning("%s", ex, exc_info=True)
                self._on_failure(ex)
                self._stop.wait(self._opts.read_error_cooldown)
                break

            if self._stop.is_set() or not self._is_connected():
                self._log.debug("Dropping %db read after stop", len(data))
                break

            self._data_log.debug("Read %db", len(data))
            self._publish(_events.ReceivedMessage(data=bytes(data)))

        self._log.debug("Reader exiting")
