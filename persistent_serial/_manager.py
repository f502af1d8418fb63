import contextlib
import functools
import logging
import threading

import pydantic

from persistent_serial import _config
from persistent_serial import _device
from persistent_serial import _events
from persistent_serial import _exceptions
from persistent_serial import _reader
from persistent_serial import _watcher

log = logging.getLogger("persistent_serial.manager")


class _LinkState:
    """Connection flags shared by the manager, reader and watcher.

    Every field is read and written with monitor held, and every change is
    announced with notify_all() so waiting loops notice promptly.
    """

    def __init__(self, config: _config.PortConfig):
        self.monitor = threading.Condition()
        self.config = config
        self.device: _device.SerialDevice | None = None
        self.has_error = True
        self.disconnect_requested = False
        self.epoch = 0

    def is_connected(self) -> bool:
        with self.monitor:
            return (
                self.device is not None
                and not self.has_error
                and not self.disconnect_requested
            )

    def has_error_now(self) -> bool:
        with self.monitor:
            return self.has_error

    def mark_error(self, device: _device.SerialDevice | None = None) -> None:
        with self.monitor:
            if device is None or device is self.device:
                self.has_error = True
                self.monitor.notify_all()

    def wait_for_exit(self, epoch: int, timeout: float | int) -> bool:
        with self.monitor:
            return self.monitor.wait_for(
                lambda: self.disconnect_requested or self.epoch != epoch,
                timeout=timeout,
            )


class SerialConnectionManager(contextlib.AbstractContextManager):
    """Keeps a serial port connected, reconnecting whenever the link fails.

    connect() opens the port and starts a watcher thread that closes and
    reopens the port whenever the connection is in error. While connected,
    a reader thread publishes incoming bytes to message listeners and
    subscriptions; connection changes go to status listeners.

    No runtime failure escapes the public methods: outcomes are reported
    as return values, is_connected, events and log records.
    """

    def __init__(
        self,
        port: str | _config.PortConfig = "",
        opts: _config.LinkOptions = _config.LinkOptions(),
        *,
        device_factory: _device.DeviceFactory = _device.PySerialDevice,
        logger: logging.Logger | None = None,
    ):
        config = _to_config(port)
        self._opts = opts
        self._device_factory = device_factory
        self._log = logger or log
        self._data_log = self._log.getChild("data")
        self._state = _LinkState(config)
        self._lock = threading.RLock()
        self._disconnect_lock = threading.Lock()
        self._reader: _reader.ReaderLoop | None = None
        self._watcher: _watcher.WatcherLoop | None = None
        self._events = _events.EventHub(
            config.name or "serial", logger=self._log.getChild("events")
        )

    def __del__(self) -> None:
        if hasattr(self, "_events"):
            self._events.close(timeout=0)

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SerialConnectionManager({self.port.name!r})"

    @property
    def port(self) -> _config.PortConfig:
        with self._state.monitor:
            return self._state.config

    @property
    def is_connected(self) -> bool:
        return self._state.is_connected()

    def connect(self) -> bool:
        with self._state.monitor:
            if self._state.disconnect_requested:
                self._log.debug("Disconnect in progress, not connecting")
                return False

        with self._lock:
            self._open()
            with self._state.monitor:
                epoch = self._state.epoch
                if self._state.disconnect_requested:
                    return False
            if not (self._watcher and self._watcher.is_alive()):
                self._watcher = _watcher.WatcherLoop(
                    self.port.name,
                    opts=self._opts,
                    has_error=self._state.has_error_now,
                    should_exit=functools.partial(self._state.wait_for_exit, epoch),
                    close=self._close,
                    reopen=functools.partial(self._open, epoch),
                    logger=self._log.getChild("watcher"),
                )
                self._watcher.start()

        return self.is_connected

    def disconnect(self) -> None:
        if not self._disconnect_lock.acquire(blocking=False):
            self._log.debug("Disconnect already in progress")
            return

        try:
            with self._state.monitor:
                self._state.disconnect_requested = True
                self._state.epoch += 1
                self._state.monitor.notify_all()

            with self._lock:
                self._close()
                watcher, self._watcher = self._watcher, None

            if watcher and not watcher.join(self._opts.join_timeout):
                self._log.warning(
                    "%r didn't stop in %.1fs, abandoning",
                    watcher,
                    self._opts.join_timeout,
                )
        finally:
            with self._state.monitor:
                self._state.disconnect_requested = False
                self._state.monitor.notify_all()
            self._disconnect_lock.release()

    def close(self) -> None:
        """Disconnects and stops event delivery for good"""

        self.disconnect()
        self._events.close(timeout=self._opts.join_timeout)

    def set_port(
        self,
        port: str | _config.PortConfig,
        baud: int | None = None,
        stop_bits: _config.StopBits | None = None,
        parity: _config.Parity | None = None,
    ) -> None:
        """Replaces the port settings used by the next (re)open.

        Settings left as None take PortConfig defaults. A PortConfig
        carries its own settings and can't be combined with them.

        A different port name flags the connection as failed, so the
        watcher reconnects on its next cycle. Other changes wait for the
        next reconnect.
        """

        settings = dict(baud=baud, stop_bits=stop_bits, parity=parity)
        settings = {k: v for k, v in settings.items() if v is not None}
        if isinstance(port, _config.PortConfig) and settings:
            message = f"Settings {sorted(settings)} given with a PortConfig"
            raise _exceptions.SerialConfigInvalid(message)

        config = _to_config(port, **settings)
        with self._state.monitor:
            previous, self._state.config = self._state.config, config
            if config.name != previous.name:
                self._log.info("Port %s -> %s", previous, config)
                self._state.has_error = True
                self._state.monitor.notify_all()
            else:
                self._log.debug("Port settings %s (on next reopen)", config)

    @pydantic.validate_call
    def send_message(self, data: bytes) -> bool:
        if not self.is_connected:
            self._log.debug("Not connected, dropping %db", len(data))
            return False

        with self._lock:
            with self._state.monitor:
                device = self._state.device
            if device is None or not self.is_connected:
                return False

            try:
                device.write(data)
            except OSError as ex:
                self._log.warning("Write failed (%s)", ex)
                if self._opts.reconnect_on_write_error:
                    self._state.mark_error(device)
                return False

        self._data_log.debug("Wrote %db: %r", len(data), data)
        return True

    def add_status_listener(self, listener: _events.StatusListener) -> None:
        self._events.add_status_listener(listener)

    def remove_status_listener(self, listener: _events.StatusListener) -> None:
        self._events.remove_status_listener(listener)

    def add_message_listener(self, listener: _events.MessageListener) -> None:
        self._events.add_message_listener(listener)

    def remove_message_listener(self, listener: _events.MessageListener) -> None:
        self._events.remove_message_listener(listener)

    def subscribe(self) -> _events.EventSubscription:
        return self._events.subscribe()

    def _open(self, epoch: int | None = None) -> bool:
        with self._lock:
            with self._state.monitor:
                if self._state.disconnect_requested:
                    return False
                if epoch is not None and epoch != self._state.epoch:
                    return False
                config = self._state.config

            self._close()
            try:
                device = self._device_factory(config, self._opts)
                device.add_error_listener(self._on_hardware_error)
                with self._state.monitor:
                    self._state.device = device
                device.open()
            except (OSError, ValueError) as ex:
                self._log.warning("Can't open %s (%s)", config.name, ex)
                self._close()
                return False

            self._log.info("Connected: %s", config)
            with self._state.monitor:
                self._state.has_error = False
                self._state.monitor.notify_all()

            # Published before the reader starts, so it precedes any data
            self._events.publish(_events.ConnectionEvent(connected=True))
            self._reader = _reader.ReaderLoop(
                config.name,
                device,
                opts=self._opts,
                is_connected=functools.partial(self._is_current, device),
                on_failure=functools.partial(self._on_read_failure, device),
                publish=self._events.publish,
                logger=self._log.getChild("reader"),
            )
            self._reader.start()
            return True

    def _close(self) -> None:
        with self._lock:
            reader, self._reader = self._reader, None
            if reader:
                reader.stop()
                if not reader.join(self._opts.join_timeout):
                    self._log.warning(
                        "%r didn't stop in %.1fs, abandoning",
                        reader,
                        self._opts.join_timeout,
                    )

            with self._state.monitor:
                device = self._state.device

            if device is not None:
                device.remove_error_listener(self._on_hardware_error)
                if device.is_open():
                    try:
                        device.close()
                    except OSError as ex:
                        self._log.warning("Error closing %r (%s)", device, ex)
                    self._log.info("Disconnected: %r", device)
                    self._events.publish(_events.ConnectionEvent(connected=False))

            with self._state.monitor:
                self._state.device = None
                self._state.has_error = True
                self._state.monitor.notify_all()

    def _is_current(self, device: _device.SerialDevice) -> bool:
        with self._state.monitor:
            return device is self._state.device and self._state.is_connected()

    def _on_read_failure(self, device: _device.SerialDevice, ex: OSError) -> None:
        self._log.debug("Read failed on %r, flagging error", device)
        self._state.mark_error(device)

    def _on_hardware_error(self, message: str) -> None:
        self._log.warning("Hardware error: %s", message)
        if self._opts.reconnect_on_hardware_error:
            self._state.mark_error()


def _to_config(
    port: str | _config.PortConfig, **settings
) -> _config.PortConfig:
    if isinstance(port, _config.PortConfig):
        return port
    try:
        return _config.PortConfig(name=port, **settings)
    except pydantic.ValidationError as ex:
        raise _exceptions.SerialConfigInvalid(f"Bad port config: {ex}") from ex
