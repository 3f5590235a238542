"""Connection lifecycle for the door lock peripheral."""

from __future__ import annotations

import logging
from collections.abc import Callable
from threading import RLock
from typing import Optional

from lockctl.core.errors import (
    DiscoveryFailureError,
    LinkDroppedError,
    LockctlError,
    RadioUnavailableError,
    TransportError,
)
from lockctl.core.model import (
    GATT_SUCCESS,
    LINK_RADIO_UNAVAILABLE,
    LINK_TIMEOUT,
    CharacteristicChanged,
    CharacteristicHandle,
    CharacteristicRead,
    ConnectionState,
    LinkEvent,
    LinkStateChanged,
    PeripheralConfig,
    ServicesDiscovered,
    StatusEvent,
    WriteCompleted,
)
from lockctl.core.router import NotificationRouter
from lockctl.core.sink import MessageSink
from lockctl.transports.base import RadioLink

LOGGER = logging.getLogger(__name__)

StateListener = Callable[[StatusEvent], None]

_VALID_TRANSITIONS = {
    ConnectionState.IDLE: {
        ConnectionState.CONNECTING,
        ConnectionState.FAILED,
        ConnectionState.DISCONNECTED,
    },
    ConnectionState.CONNECTING: {
        ConnectionState.DISCOVERING_SERVICES,
        ConnectionState.FAILED,
        ConnectionState.DISCONNECTED,
    },
    ConnectionState.DISCOVERING_SERVICES: {
        ConnectionState.READY,
        ConnectionState.FAILED,
        ConnectionState.DISCONNECTED,
    },
    ConnectionState.READY: {
        ConnectionState.DISCONNECTED,
        ConnectionState.FAILED,
    },
    ConnectionState.DISCONNECTED: {ConnectionState.IDLE},
    ConnectionState.FAILED: {ConnectionState.IDLE, ConnectionState.DISCONNECTED},
}

_INACTIVE = (ConnectionState.IDLE, ConnectionState.DISCONNECTED, ConnectionState.FAILED)


class ConnectionStateMachine:
    """Owns the connection state and the resolved characteristic handle.

    Link events may arrive from the adapter's own thread, so every transition
    happens under a single reentrant lock. Status events are appended to the
    sink as part of the transition; state listeners run after the lock is
    released.
    """

    def __init__(
        self,
        link: RadioLink,
        sink: MessageSink,
        router: NotificationRouter,
        config: PeripheralConfig,
    ) -> None:
        self._link = link
        self._sink = sink
        self._router = router
        self._config = config
        self._lock = RLock()
        self._state = ConnectionState.IDLE
        self._handle: Optional[CharacteristicHandle] = None
        self._last_error: Optional[LockctlError] = None
        self._listeners: list[StateListener] = []
        self._handlers: dict[str, Callable[[LinkEvent], Optional[StatusEvent]]] = {
            "link_state": self._on_link_state,
            "services_discovered": self._on_services_discovered,
            "characteristic_read": self._on_characteristic_read,
            "characteristic_changed": self._on_characteristic_changed,
            "write_completed": self._on_write_completed,
        }

    @property
    def config(self) -> PeripheralConfig:
        return self._config

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def handle(self) -> Optional[CharacteristicHandle]:
        with self._lock:
            return self._handle

    @property
    def last_error(self) -> Optional[LockctlError]:
        with self._lock:
            return self._last_error

    @property
    def is_ready(self) -> bool:
        return self.ready_handle() is not None

    def ready_handle(self) -> Optional[CharacteristicHandle]:
        """Return the handle only while READY, read atomically with the state."""
        with self._lock:
            if self._state is ConnectionState.READY:
                return self._handle
            return None

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def connect(self) -> bool:
        with self._lock:
            if self._state not in _INACTIVE:
                LOGGER.warning("Connect ignored, attempt already in progress (%s)", self._state.value)
                return False
            if self._state.is_terminal:
                self._state = ConnectionState.IDLE
            self._handle = None
            self._last_error = None
            self._link.set_listener(self.on_link_event)

            if not self._link.is_available():
                status = self._fail(RadioUnavailableError("radio unavailable"))
            else:
                status = self._transition(
                    ConnectionState.CONNECTING,
                    f"Connecting to {self._config.address}",
                )
                try:
                    self._link.connect(self._config.address, timeout_s=self._config.connect_timeout_s)
                except TransportError as exc:
                    LOGGER.error("Could not start connection: %s", exc)
                    status = self._fail(RadioUnavailableError("radio unavailable"))
        self._notify(status)
        return status is not None and status.state is ConnectionState.CONNECTING

    def disconnect(self) -> None:
        """Release the link from any state and settle in DISCONNECTED."""
        with self._lock:
            self._handle = None
            status = None
            if self._state is not ConnectionState.DISCONNECTED:
                status = self._transition(ConnectionState.DISCONNECTED, "Disconnected from device")
            self._link.set_listener(None)
        try:
            self._link.disconnect()
        finally:
            self._link.close()
        self._notify(status)

    def on_link_event(self, event: LinkEvent) -> None:
        handler = self._handlers.get(event.kind)
        if handler is None:
            LOGGER.warning("Unhandled link event: %r", event)
            return
        with self._lock:
            if self._state in _INACTIVE:
                LOGGER.debug("Ignoring %s while %s", event.kind, self._state.value)
                return
            previous = self._state
            status = handler(event)
        if (
            previous is ConnectionState.DISCOVERING_SERVICES
            and status is not None
            and status.state is ConnectionState.FAILED
        ):
            # The link came up for this attempt; let go of it.
            self._link.disconnect()
        self._notify(status)

    def _on_link_state(self, event: LinkStateChanged) -> Optional[StatusEvent]:
        state = self._state
        if event.connected:
            if state is not ConnectionState.CONNECTING:
                LOGGER.debug("Duplicate connected event while %s", state.value)
                return None
            LOGGER.debug("Connected to %s", self._config.address)
            status = self._transition(ConnectionState.DISCOVERING_SERVICES, "Discovering services")
            self._link.discover_services()
            return status

        if state is ConnectionState.CONNECTING:
            if event.status == LINK_RADIO_UNAVAILABLE:
                return self._fail(RadioUnavailableError("radio unavailable"))
            if event.status == LINK_TIMEOUT:
                return self._fail(LinkDroppedError("connection timed out"))
            detail = f" ({event.detail})" if event.detail else ""
            return self._fail(LinkDroppedError(f"connection failed{detail}"))
        if state is ConnectionState.DISCOVERING_SERVICES:
            return self._fail(LinkDroppedError("link dropped"))

        self._handle = None
        self._last_error = LinkDroppedError("link dropped")
        return self._transition(
            ConnectionState.DISCONNECTED,
            "Disconnected from device",
            reason="link dropped",
        )

    def _on_services_discovered(self, event: ServicesDiscovered) -> Optional[StatusEvent]:
        if self._state is not ConnectionState.DISCOVERING_SERVICES:
            LOGGER.debug("Unexpected service discovery result while %s", self._state.value)
            return None
        if event.status != GATT_SUCCESS:
            LOGGER.error("Service discovery failed with status %s", event.status)
            return self._fail(DiscoveryFailureError("characteristic not found"))

        wanted_service = self._config.service_uuid.lower()
        wanted_char = self._config.characteristic_uuid.lower()
        for service in event.services:
            LOGGER.debug("Service: %s", service.uuid)
            if service.uuid.lower() != wanted_service:
                continue
            if any(c.lower() == wanted_char for c in service.characteristics):
                self._handle = CharacteristicHandle(
                    service_uuid=self._config.service_uuid,
                    characteristic_uuid=self._config.characteristic_uuid,
                )
                status = self._transition(ConnectionState.READY, "Connected")
                try:
                    self._link.start_notify(self._handle.service_uuid, self._handle.characteristic_uuid)
                except TransportError as exc:
                    LOGGER.warning("Could not subscribe to notifications: %s", exc)
                return status

        return self._fail(DiscoveryFailureError("characteristic not found"))

    def _on_characteristic_read(self, event: CharacteristicRead) -> None:
        if not self._is_target(event.characteristic_uuid):
            return None
        if event.status != GATT_SUCCESS:
            LOGGER.warning("Read of %s failed with status %s", event.characteristic_uuid, event.status)
            return None
        self._router.on_characteristic_data(event.data, solicited=True)
        return None

    def _on_characteristic_changed(self, event: CharacteristicChanged) -> None:
        if self._is_target(event.characteristic_uuid):
            self._router.on_characteristic_data(event.data)
        return None

    def _on_write_completed(self, event: WriteCompleted) -> None:
        if event.status == GATT_SUCCESS:
            LOGGER.debug("Write to %s confirmed", event.characteristic_uuid)
            return None
        detail = event.detail or f"status {event.status}"
        LOGGER.warning("Write to %s failed: %s", event.characteristic_uuid, detail)
        self._sink.append(StatusEvent(text=f"Write failed: {detail}", state=self._state, reason=detail))
        return None

    def _is_target(self, characteristic_uuid: str) -> bool:
        if characteristic_uuid.lower() == self._config.characteristic_uuid.lower():
            return True
        LOGGER.debug("Ignoring data from characteristic %s", characteristic_uuid)
        return False

    def _fail(self, error: LockctlError) -> Optional[StatusEvent]:
        self._handle = None
        self._last_error = error
        return self._transition(
            ConnectionState.FAILED,
            f"Connection failed: {error}",
            reason=str(error),
        )

    def _transition(
        self,
        new_state: ConnectionState,
        text: str,
        *,
        reason: Optional[str] = None,
    ) -> Optional[StatusEvent]:
        old_state = self._state
        if new_state not in _VALID_TRANSITIONS[old_state]:
            LOGGER.warning("Invalid state transition: %s -> %s", old_state.value, new_state.value)
            return None
        self._state = new_state
        LOGGER.debug("State transition: %s -> %s", old_state.value, new_state.value)
        status = StatusEvent(text=text, state=new_state, reason=reason)
        self._sink.append(status)
        return status

    def _notify(self, status: Optional[StatusEvent]) -> None:
        if status is None:
            return
        for listener in list(self._listeners):
            listener(status)
