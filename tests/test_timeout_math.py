"""Unit tests for persistent_serial._timeout_math."""

import time

from persistent_serial import _timeout_math


def test_timeout_to_deadline(mocker):
    TMAX = _timeout_math.TIMEOUT_MAX
    mocker.patch("time.monotonic")
    time.monotonic.return_value = 1000.0

    assert _timeout_math.to_deadline(-1) == 0
    assert _timeout_math.to_deadline(0) == 0
    assert _timeout_math.to_deadline(2.5) == 1002.5
    assert _timeout_math.to_deadline(None) == TMAX
    assert _timeout_math.to_deadline(TMAX) == TMAX


def test_timeout_from_deadline(mocker):
    TMAX = _timeout_math.TIMEOUT_MAX
    mocker.patch("time.monotonic")
    time.monotonic.return_value = 1000.0

    assert _timeout_math.from_deadline(0) == 0
    assert _timeout_math.from_deadline(999) == 0
    assert _timeout_math.from_deadline(1002.5) == 2.5
    assert _timeout_math.from_deadline(TMAX) == TMAX
    assert _timeout_math.from_deadline(TMAX + 1) == TMAX


def test_expired_timeouts_are_floats(mocker):
    mocker.patch("time.monotonic")
    time.monotonic.return_value = 1000.0

    assert type(_timeout_math.to_deadline(0)) is float
    assert type(_timeout_math.to_deadline(-5)) is float
    assert type(_timeout_math.from_deadline(0)) is float
    assert type(_timeout_math.from_deadline(1000)) is float
