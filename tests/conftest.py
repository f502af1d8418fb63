import contextlib
import io
import ok_logging_setup
import os
import pty
import pytest
import threading
import time
import typing

import persistent_serial

ok_logging_setup.install(
    {
        "OK_LOGGING_LEVEL": "persistent_serial=DEBUG,WARNING",
        "OK_LOGGING_OUTPUT": "stdout",
    }
)

FAST_OPTS = persistent_serial.LinkOptions(
    poll_interval=0.01,
    read_error_cooldown=0.05,
    watch_interval=0.05,
    reopen_delay=0.05,
    join_timeout=2.0,
    read_timeout=0.2,
    write_timeout=0.5,
)


class PseudoTtySerial(typing.NamedTuple):
    path: str
    control: io.FileIO
    simulated: io.FileIO


@pytest.fixture
def pty_serial():
    with contextlib.ExitStack() as cleanup:
        ctrl_fd, sim_fd = pty.openpty()
        path = os.ttyname(sim_fd)
        ctrl = cleanup.enter_context(os.fdopen(ctrl_fd, "r+b", buffering=0))
        sim = cleanup.enter_context(os.fdopen(sim_fd, "r+b", buffering=0))
        yield PseudoTtySerial(path=path, control=ctrl, simulated=sim)


class FakeDevice:
    """In-memory SerialDevice attached to a FakeLine"""

    def __init__(
        self,
        line: "FakeLine",
        config: persistent_serial.PortConfig,
        opts: persistent_serial.LinkOptions,
    ):
        self.line = line
        self.config = config
        self.port = config.name
        self.opened = False
        self.close_count = 0
        self.listeners = []

    def __repr__(self) -> str:
        return f"FakeDevice({self.port!r})"

    def open(self) -> None:
        with self.line.lock:
            self.line.open_attempts += 1
            if self.line.fail_open:
                raise persistent_serial.SerialOpenException("Simulated", self.port)
            self.opened = True

    def close(self) -> None:
        self.close_count += 1
        self.opened = False

    def is_open(self) -> bool:
        return self.opened

    def bytes_waiting(self) -> int:
        with self.line.lock:
            if self.line.fail_reads:
                raise persistent_serial.SerialIoException("Simulated", self.port)
            return len(self.line.incoming)

    def read(self, size: int) -> bytes:
        with self.line.lock:
            data = bytes(self.line.incoming[:size])
            del self.line.incoming[:size]
        return data

    def write(self, data: bytes) -> None:
        with self.line.lock:
            if self.line.fail_writes:
                raise persistent_serial.SerialIoException("Simulated", self.port)
            self.line.outgoing.extend(data)

    def cancel_read(self) -> None:
        pass

    def add_error_listener(self, listener) -> None:
        self.listeners.append(listener)

    def remove_error_listener(self, listener) -> None:
        self.listeners.remove(listener)

    def report_error(self, message: str) -> None:
        for listener in list(self.listeners):
            listener(message)


class FakeLine:
    """Simulated link shared by every FakeDevice opened through factory()"""

    def __init__(self):
        self.lock = threading.Lock()
        self.incoming = bytearray()
        self.outgoing = bytearray()
        self.fail_open = False
        self.fail_reads = False
        self.fail_writes = False
        self.open_attempts = 0
        self.devices: list[FakeDevice] = []

    def factory(
        self,
        config: persistent_serial.PortConfig,
        opts: persistent_serial.LinkOptions,
    ) -> FakeDevice:
        device = FakeDevice(self, config, opts)
        self.devices.append(device)
        return device

    def feed(self, data: bytes) -> None:
        with self.lock:
            self.incoming.extend(data)

    @property
    def device(self) -> FakeDevice:
        return self.devices[-1]


@pytest.fixture
def fake_line():
    return FakeLine()


@pytest.fixture
def manager(fake_line):
    mgr = persistent_serial.SerialConnectionManager(
        "fake0", FAST_OPTS, device_factory=fake_line.factory
    )
    with mgr:
        yield mgr


def wait_until(predicate, timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            return False
        time.sleep(0.005)
    return True


@pytest.fixture
def until():
    return wait_until
