"""
Persistent serial port connection (PySerial based) with supervised
reconnection and asynchronous delivery of incoming data.
"""

from beartype.claw import beartype_this_package as _beartype_me

# ruff: noqa: E402
_beartype_me()

from persistent_serial._config import (
    LinkOptions,
    Parity,
    PortConfig,
    StopBits,
)

from persistent_serial._device import (
    PySerialDevice,
    SerialDevice,
)

from persistent_serial._events import (
    ConnectionEvent,
    EventSubscription,
    LinkEvent,
    ReceivedMessage,
)

from persistent_serial._exceptions import (
    SerialConfigInvalid,
    SerialException,
    SerialIoException,
    SerialIoTimeout,
    SerialOpenBusy,
    SerialOpenException,
)

from persistent_serial._manager import SerialConnectionManager

__all__ = [n for n in dir() if not n.startswith("_")]
