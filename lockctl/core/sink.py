"""Message sinks receiving notification text and connection status events."""

from __future__ import annotations

import queue
import threading
from collections.abc import Iterable
from typing import Protocol

from lockctl.core.model import SinkEvent


class MessageSink(Protocol):
    def append(self, event: SinkEvent) -> None:
        """Append one event. Implementations must not block the caller."""


class MessageLog:
    """In-memory append-only log, the display surface of the original app."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[SinkEvent] = []

    def append(self, event: SinkEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> tuple[SinkEvent, ...]:
        with self._lock:
            return tuple(self._events)

    @property
    def lines(self) -> list[str]:
        return [event.text for event in self.events]

    @property
    def text(self) -> str:
        return "".join(event.line for event in self.events)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class QueueSink:
    """Hands events across threads; the consumer drains from its own context."""

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: queue.Queue[SinkEvent] = queue.Queue(maxsize=maxsize)

    def append(self, event: SinkEvent) -> None:
        self._queue.put_nowait(event)

    def get(self, timeout: float | None = None) -> SinkEvent | None:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[SinkEvent]:
        drained: list[SinkEvent] = []
        while True:
            try:
                drained.append(self._queue.get_nowait())
            except queue.Empty:
                return drained


class FanOutSink:
    def __init__(self, sinks: Iterable[MessageSink]) -> None:
        self._sinks = tuple(sinks)

    def append(self, event: SinkEvent) -> None:
        for sink in self._sinks:
            sink.append(event)
