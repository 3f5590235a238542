"""Routing of characteristic data to the message sink."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from lockctl.core.model import NotificationEvent
from lockctl.core.sink import MessageSink

LOGGER = logging.getLogger(__name__)


class NotificationRouter:
    """Decodes characteristic payloads as text and appends them to the sink.

    Reads and change notifications share this path. Events reach the sink in
    the order the radio link delivers them; nothing is buffered or deduplicated.
    """

    def __init__(self, sink: MessageSink, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._sink = sink
        self._clock = clock

    def on_characteristic_data(self, data: bytes, *, solicited: bool = False) -> NotificationEvent:
        try:
            text = bytes(data).decode("utf-8")
        except UnicodeDecodeError:
            LOGGER.warning("Non-text payload from peripheral: %s", bytes(data).hex())
            text = bytes(data).decode("utf-8", errors="replace")

        event = NotificationEvent(text=text, received_at=self._clock(), solicited=solicited)
        LOGGER.debug("%s received: %s", "Read" if solicited else "Notification", text)
        self._sink.append(event)
        return event
