"""Session layer used by the CLI, the public API, and future UI frontends."""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable
from typing import Any, Optional

from lockctl.core.connection import ConnectionStateMachine
from lockctl.core.dispatcher import CommandDispatcher
from lockctl.core.model import Command, ConnectionState, PeripheralConfig, StatusEvent
from lockctl.core.reconnect import ReconnectPolicy
from lockctl.core.router import NotificationRouter
from lockctl.core.sink import FanOutSink, MessageLog, MessageSink
from lockctl.transports.base import RadioLink
from lockctl.transports.ble_gatt import BleakRadioLink

LOGGER = logging.getLogger(__name__)

_SETTLED = (ConnectionState.READY, ConnectionState.DISCONNECTED, ConnectionState.FAILED)


class DoorSession:
    """Wires one peripheral profile to a radio link and a message sink.

    Every event is kept in ``messages``; an extra ``sink`` (for example a
    ``QueueSink`` drained by a UI thread) receives the same events.
    """

    def __init__(
        self,
        config: PeripheralConfig,
        *,
        link: RadioLink | None = None,
        sink: MessageSink | None = None,
        clock: Callable[[], float] = time.monotonic,
        timer_factory: Callable[..., Any] = threading.Timer,
        random_source: random.Random | None = None,
    ) -> None:
        self.config = config
        self.link = link or BleakRadioLink()
        self.messages = MessageLog()
        self.sink: MessageSink = FanOutSink((self.messages, sink)) if sink is not None else self.messages
        self.router = NotificationRouter(self.sink, clock=clock)
        self.state_machine = ConnectionStateMachine(self.link, self.sink, self.router, config)
        self.dispatcher = CommandDispatcher(self.state_machine, self.link, config)
        self._policy = ReconnectPolicy(config.reconnect, random_source=random_source)
        self._timer_factory = timer_factory
        self._retry_timer: Optional[Any] = None
        self._retry_lock = threading.Lock()
        self._settled = threading.Condition()
        self.state_machine.add_listener(self._on_status)

    def __enter__(self) -> DoorSession:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.disconnect()

    @property
    def state(self) -> ConnectionState:
        return self.state_machine.state

    @property
    def is_ready(self) -> bool:
        return self.state_machine.is_ready

    def connect(self) -> bool:
        self._cancel_retry()
        self._policy.reset()
        return self.state_machine.connect()

    def disconnect(self) -> None:
        self._cancel_retry()
        self.state_machine.disconnect()

    def wait_until_settled(self, timeout_s: float) -> ConnectionState:
        """Block until READY, DISCONNECTED, or FAILED; returns the state at timeout otherwise."""
        with self._settled:
            self._settled.wait_for(lambda: self.state in _SETTLED, timeout=timeout_s)
        return self.state

    def send(self, command: Command) -> None:
        self.dispatcher.send(command)

    def send_intent(self, intent: str) -> Command:
        return self.dispatcher.send_intent(intent)

    def open(self) -> Command:
        return self.send_intent("open")

    def close_door(self) -> Command:
        return self.send_intent("close")

    def read(self) -> None:
        self.dispatcher.request_read()

    def clear(self) -> None:
        self.messages.clear()

    def _on_status(self, status: StatusEvent) -> None:
        with self._settled:
            self._settled.notify_all()

        if status.state is ConnectionState.READY:
            self._policy.reset()
            return
        if not self.config.reconnect.enabled:
            return
        dropped = status.state is ConnectionState.DISCONNECTED and status.reason is not None
        retry_failed = status.state is ConnectionState.FAILED and self._policy.attempt_count > 0
        if dropped or retry_failed:
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        delay = self._policy.next_attempt()
        if delay is None:
            LOGGER.warning(
                "Giving up on %s after %d reconnect attempts",
                self.config.address,
                self._policy.attempt_count,
            )
            return
        LOGGER.info(
            "Reconnecting to %s in %.2fs (attempt %d/%d)",
            self.config.address,
            delay,
            self._policy.attempt_count,
            self.config.reconnect.max_retries,
        )
        with self._retry_lock:
            timer = self._timer_factory(delay, self.state_machine.connect)
            timer.daemon = True
            self._retry_timer = timer
        timer.start()

    def _cancel_retry(self) -> None:
        with self._retry_lock:
            timer, self._retry_timer = self._retry_timer, None
        if timer is not None:
            timer.cancel()
