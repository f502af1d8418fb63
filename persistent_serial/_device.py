import errno
import logging
import threading
import typing
from typing import Callable

import serial

from persistent_serial import _config
from persistent_serial import _exceptions

log = logging.getLogger("persistent_serial.device")

ErrorListener = Callable[[str], None]

_PARITY = {
    "none": serial.PARITY_NONE,
    "odd": serial.PARITY_ODD,
    "even": serial.PARITY_EVEN,
    "mark": serial.PARITY_MARK,
    "space": serial.PARITY_SPACE,
}

_STOP_BITS = {
    "one": serial.STOPBITS_ONE,
    "one_point_five": serial.STOPBITS_ONE_POINT_FIVE,
    "two": serial.STOPBITS_TWO,
}


@typing.runtime_checkable
class SerialDevice(typing.Protocol):
    """The device handle operations SerialConnectionManager relies on.

    Implementations raise persistent_serial exceptions (SerialOpenException
    from open(), SerialIoException from I/O) and report out-of-band driver
    errors to listeners added with add_error_listener().
    """

    def open(self) -> None: ...

    def close(self) -> None: ...

    def is_open(self) -> bool: ...

    def bytes_waiting(self) -> int: ...

    def read(self, size: int) -> bytes: ...

    def write(self, data: bytes) -> None: ...

    def cancel_read(self) -> None: ...

    def add_error_listener(self, listener: ErrorListener) -> None: ...

    def remove_error_listener(self, listener: ErrorListener) -> None: ...


DeviceFactory = Callable[[_config.PortConfig, _config.LinkOptions], SerialDevice]


class PySerialDevice:
    """SerialDevice backed by a pyserial serial.Serial instance"""

    def __init__(
        self,
        config: _config.PortConfig,
        opts: _config.LinkOptions = _config.LinkOptions(),
    ):
        self.port = config.name
        self._listeners: list[ErrorListener] = []
        self._listeners_lock = threading.Lock()

        # port=None keeps pyserial from opening in the constructor
        self._pyserial = serial.Serial(
            port=None,
            baudrate=config.baud,
            parity=_PARITY[config.parity],
            stopbits=_STOP_BITS[config.stop_bits],
            timeout=opts.read_timeout,
            write_timeout=opts.write_timeout,
        )
        self._pyserial.port = config.name or None

    def __repr__(self) -> str:
        return f"PySerialDevice({self.port!r})"

    def open(self) -> None:
        log.debug("Opening %s", self.port)
        try:
            self._pyserial.open()
        except OSError as ex:
            if ex.errno == errno.EBUSY:
                message = "Serial port busy (EBUSY)"
                raise _exceptions.SerialOpenBusy(message, self.port) from ex
            else:
                message = "Serial port open error"
                raise _exceptions.SerialOpenException(message, self.port) from ex
        except ValueError as ex:
            message = "Serial port parameters rejected"
            raise _exceptions.SerialOpenException(message, self.port) from ex

    def close(self) -> None:
        if self._pyserial.is_open:
            log.debug("Closing %s", self.port)
        self._pyserial.close()

    def is_open(self) -> bool:
        return self._pyserial.is_open

    def bytes_waiting(self) -> int:
        try:
            return self._pyserial.in_waiting
        except OSError as ex:
            self._check_driver_error(ex)
            message = "Serial status error"
            raise _exceptions.SerialIoException(message, self.port) from ex

    def read(self, size: int) -> bytes:
        try:
            data = self._pyserial.read(size)
        except OSError as ex:
            self._check_driver_error(ex)
            message = "Serial read error"
            raise _exceptions.SerialIoException(message, self.port) from ex

        if len(data) < size:
            message = f"Serial read timed out ({len(data)}/{size}b)"
            raise _exceptions.SerialIoTimeout(message, self.port)
        return data

    def write(self, data: bytes) -> None:
        try:
            self._pyserial.write(data)
        except serial.SerialTimeoutException as ex:
            message = "Serial write timed out"
            raise _exceptions.SerialIoTimeout(message, self.port) from ex
        except OSError as ex:
            self._check_driver_error(ex)
            message = "Serial write error"
            raise _exceptions.SerialIoException(message, self.port) from ex

    def cancel_read(self) -> None:
        if not self._pyserial.is_open:
            return
        try:
            self._pyserial.cancel_read()
            log.debug("Cancelled %s read", self.port)
        except OSError:
            log.warning("Can't cancel %s read", self.port, exc_info=True)

    def add_error_listener(self, listener: ErrorListener) -> None:
        with self._listeners_lock:
            self._listeners.append(listener)

    def remove_error_listener(self, listener: ErrorListener) -> None:
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _check_driver_error(self, ex: OSError) -> None:
        # pyserial has no out-of-band error callback; SerialException is
        # as close as it gets to a driver-reported fault
        if isinstance(ex, serial.SerialException):
            with self._listeners_lock:
                listeners = list(self._listeners)
            for listener in listeners:
                listener(str(ex))
