"""Stable public API for building tooling on top of lockctl.

This module is the supported integration surface for third-party callers
(GUI/TUI/services/scripts). Avoid importing from private/internal modules
unless intentionally depending on non-stable internals.
"""

from __future__ import annotations

import dataclasses

from lockctl.core.errors import (
    CommandResolutionError,
    DiscoveryFailureError,
    DispatchError,
    DispatchNotReadyError,
    InvalidCommandError,
    LinkDroppedError,
    LockctlError,
    ProfileLoadError,
    ProfileValidationError,
    RadioUnavailableError,
    TransportConnectError,
    TransportError,
    TransportSendError,
)
from lockctl.core.model import (
    CLOSE,
    OPEN,
    Command,
    ConnectionState,
    NotificationEvent,
    PeripheralConfig,
    ReconnectSpec,
    StatusEvent,
)
from lockctl.core.profile_loader import LoadedProfiles, load_profiles, normalize_address, select_profile
from lockctl.core.session import DoorSession
from lockctl.core.sink import FanOutSink, MessageLog, MessageSink, QueueSink
from lockctl.transports.base import RadioLink
from lockctl.transports.ble_gatt import BleakRadioLink

__all__ = [
    "LockctlError",
    "CommandResolutionError",
    "DiscoveryFailureError",
    "DispatchError",
    "DispatchNotReadyError",
    "InvalidCommandError",
    "LinkDroppedError",
    "ProfileLoadError",
    "ProfileValidationError",
    "RadioUnavailableError",
    "TransportError",
    "TransportConnectError",
    "TransportSendError",
    "Command",
    "OPEN",
    "CLOSE",
    "ConnectionState",
    "NotificationEvent",
    "PeripheralConfig",
    "ReconnectSpec",
    "StatusEvent",
    "LoadedProfiles",
    "MessageLog",
    "MessageSink",
    "QueueSink",
    "FanOutSink",
    "RadioLink",
    "BleakRadioLink",
    "list_profiles",
    "Client",
]


def list_profiles() -> LoadedProfiles:
    return load_profiles()


class Client:
    """Public client for controlling the door lock peripheral.

    A `Client` resolves a peripheral profile (optionally overriding its
    address) and drives one `DoorSession`. Status and notification events are
    kept in `messages` and, when given, mirrored into `sink`.
    """

    def __init__(
        self,
        *,
        profile_id: str | None = None,
        address: str | None = None,
        link: RadioLink | None = None,
        sink: MessageSink | None = None,
    ) -> None:
        loaded = load_profiles()
        self.load_warnings = loaded.warnings
        config = select_profile(loaded, profile_id)
        if address:
            config = dataclasses.replace(config, address=normalize_address(address))
        self._session = DoorSession(config, link=link, sink=sink)

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.disconnect()

    @property
    def config(self) -> PeripheralConfig:
        return self._session.config

    @property
    def state(self) -> ConnectionState:
        return self._session.state

    @property
    def is_ready(self) -> bool:
        return self._session.is_ready

    @property
    def messages(self) -> MessageLog:
        return self._session.messages

    def connect(self) -> bool:
        return self._session.connect()

    def disconnect(self) -> None:
        self._session.disconnect()

    def wait_until_ready(self, timeout_s: float = 15.0) -> None:
        """Block until the session is READY, raising the recorded failure otherwise."""
        state = self._session.wait_until_settled(timeout_s)
        if state is ConnectionState.READY:
            return
        error = self._session.state_machine.last_error
        if error is not None:
            raise error
        if state is ConnectionState.DISCONNECTED:
            raise LinkDroppedError(f"Disconnected from {self.config.address}")
        raise TransportConnectError(
            f"Timed out after {timeout_s:g}s waiting for {self.config.address} (state: {state.value})"
        )

    def send(self, command: Command) -> None:
        self._session.send(command)

    def send_intent(self, intent: str) -> Command:
        return self._session.send_intent(intent)

    def open(self) -> Command:
        return self._session.open()

    def close_door(self) -> Command:
        return self._session.close_door()

    def read(self) -> None:
        self._session.read()

    def clear(self) -> None:
        self._session.clear()
