#!/usr/bin/env python3

"""CLI tool to keep a serial port connected and talk through it"""

import argparse
import logging
import sys
import typing

import ok_logging_setup

import persistent_serial

ok_logging_setup.skip_traceback_for(persistent_serial.SerialConfigInvalid)


def main():
    parser = argparse.ArgumentParser(
        description="Hold a serial port open, reconnecting as needed."
    )
    parser.add_argument("port", help="serial device (eg. /dev/ttyUSB0, COM3)")
    parser.add_argument(
        "--baud", "-b", type=int, default=115200, help="baud rate"
    )
    parser.add_argument(
        "--parity",
        choices=typing.get_args(persistent_serial.Parity),
        default="none",
    )
    parser.add_argument(
        "--stop-bits",
        choices=typing.get_args(persistent_serial.StopBits),
        default="one",
    )
    parser.add_argument(
        "--hex", "-x", action="store_true", help="print received data as hex"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="log all data traffic"
    )

    args = parser.parse_args()
    level = "persistent_serial=DEBUG,INFO" if args.verbose else "info"
    ok_logging_setup.install({"OK_LOGGING_LEVEL": level})

    manager = persistent_serial.SerialConnectionManager(args.port)
    manager.set_port(
        args.port,
        baud=args.baud,
        stop_bits=args.stop_bits,
        parity=args.parity,
    )

    with manager:
        manager.add_status_listener(print_status)
        manager.add_message_listener(print_hex if args.hex else print_raw)
        if not manager.connect():
            logging.info("⏳ Waiting for %s...", args.port)

        for line in sys.stdin.buffer:
            if not manager.send_message(line):
                logging.warning("🚫 Not connected, dropped %db", len(line))


def print_status(connected: bool) -> None:
    if connected:
        logging.info("🔌 Connected")
    else:
        logging.info("❌ Disconnected")


def print_raw(data: bytes) -> None:
    sys.stdout.buffer.write(data)
    sys.stdout.buffer.flush()


def print_hex(data: bytes) -> None:
    print(data.hex(" "), flush=True)


if __name__ == "__main__":
    main()
