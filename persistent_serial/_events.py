import asyncio
import collections
import contextlib
import logging
import queue
import threading
from typing import Callable

import msgspec

from persistent_serial import _timeout_math

log = logging.getLogger("persistent_serial.events")

StatusListener = Callable[[bool], None]
MessageListener = Callable[[bytes], None]


class ConnectionEvent(msgspec.Struct, frozen=True):
    connected: bool


class ReceivedMessage(msgspec.Struct, frozen=True):
    data: bytes


LinkEvent = ConnectionEvent | ReceivedMessage


class EventHub:
    """Fans published events out to listener callbacks and subscriptions.

    Producers (reader, watcher, manager) only enqueue. Callbacks run on a
    dispatcher thread in publication order, so a slow listener delays other
    listeners but never the producers. The dispatcher starts with the first
    event that has a listener to go to.
    """

    def __init__(self, name: str, logger: logging.Logger = log):
        self._log = logger
        self._lock = threading.Lock()
        self._status_listeners: list[StatusListener] = []
        self._message_listeners: list[MessageListener] = []
        self._subscriptions: list[EventSubscription] = []
        self._queue: queue.SimpleQueue[LinkEvent | None] = queue.SimpleQueue()
        self._closed = False
        self._name = name
        self._thread: threading.Thread | None = None

    def add_status_listener(self, listener: StatusListener) -> None:
        with self._lock:
            self._status_listeners.append(listener)

    def remove_status_listener(self, listener: StatusListener) -> None:
        with self._lock:
            if listener in self._status_listeners:
                self._status_listeners.remove(listener)

    def add_message_listener(self, listener: MessageListener) -> None:
        with self._lock:
            self._message_listeners.append(listener)

    def remove_message_listener(self, listener: MessageListener) -> None:
        with self._lock:
            if listener in self._message_listeners:
                self._message_listeners.remove(listener)

    def subscribe(self) -> "EventSubscription":
        sub = EventSubscription(self)
        with self._lock:
            if self._closed:
                with sub._monitor:
                    sub._close_locked()
            else:
                self._subscriptions.append(sub)
        return sub

    def unsubscribe(self, sub: "EventSubscription") -> None:
        with self._lock:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

    def publish(self, event: LinkEvent) -> None:
        with self._lock:
            if self._closed:
                self._log.debug("Dropping %r (events closed)", event)
                return
            if self._status_listeners or self._message_listeners:
                self._start_dispatch_locked()
                self._queue.put(event)
            for sub in self._subscriptions:
                sub._put(event)

    def close(self, timeout: float | int | None = None) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            subscriptions, self._subscriptions = self._subscriptions, []
            thread = self._thread
            if thread:
                self._queue.put(None)

        for sub in subscriptions:
            sub.close()

        if thread and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if timeout != 0 and thread.is_alive():
                self._log.warning("Event dispatch didn't stop in %ss", timeout)

    def _start_dispatch_locked(self) -> None:
        if self._thread is None:
            self._thread = threading.Thread(
                target=self._dispatch_loop,
                name=f"{self._name} events",
                daemon=True,
            )
            self._thread.start()

    def _dispatch_loop(self) -> None:
        while (event := self._queue.get()) is not None:
            with self._lock:
                if isinstance(event, ConnectionEvent):
                    calls = [(f, event.connected) for f in self._status_listeners]
                else:
                    calls = [(f, event.data) for f in self._message_listeners]

            for listener, arg in calls:
                try:
                    listener(arg)
                except Exception:
                    self._log.exception("Event listener %r failed", listener)


class EventSubscription(contextlib.AbstractContextManager):
    """A buffered channel of every event published after subscribing"""

    def __init__(self, hub: EventHub):
        self._hub = hub
        self._monitor = threading.Condition()
        self._events: collections.deque[LinkEvent] = collections.deque()
        self._waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Future]] = []
        self._closed = False

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def close(self) -> None:
        self._hub.unsubscribe(self)
        with self._monitor:
            self._close_locked()

    def pending(self) -> int:
        with self._monitor:
            return len(self._events)

    def get_sync(self, timeout: float | int | None = None) -> LinkEvent | None:
        """Next event, or None on timeout or once closed and drained"""

        deadline = _timeout_math.to_deadline(timeout)
        with self._monitor:
            while True:
                if self._events:
                    return self._events.popleft()
                elif self._closed:
                    return None
                wait = _timeout_math.from_deadline(deadline)
                if wait <= 0:
                    return None
                self._monitor.wait(timeout=wait)

    async def get_async(self) -> LinkEvent | None:
        """Next event, or None once closed and drained"""

        loop = asyncio.get_running_loop()
        while True:
            with self._monitor:
                if self._events:
                    return self._events.popleft()
                elif self._closed:
                    return None
                future = loop.create_future()
                self._waiters.append((loop, future))
            await future

    def _put(self, event: LinkEvent) -> None:
        with self._monitor:
            if self._closed:
                return
            self._events.append(event)
            self._wake_locked()

    def _close_locked(self) -> None:
        """Must be run with self._monitor held."""

        self._closed = True
        self._wake_locked()

    def _wake_locked(self) -> None:
        self._monitor.notify_all()
        waiters, self._waiters = self._waiters, []
        for loop, future in waiters:
            if not loop.is_closed():
                loop.call_soon_threadsafe(_resolve_future, future)


def _resolve_future(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)
