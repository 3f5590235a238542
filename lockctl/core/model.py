"""Core data models used across the profile loader, connection core, and CLI."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from lockctl.core.errors import InvalidCommandError

GATT_SUCCESS = 0
GATT_FAILURE = 0x101
LINK_RADIO_UNAVAILABLE = -1
LINK_TIMEOUT = -2


class ConnectionState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    DISCOVERING_SERVICES = "discovering_services"
    READY = "ready"
    DISCONNECTED = "disconnected"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ConnectionState.DISCONNECTED, ConnectionState.FAILED)


@dataclass(frozen=True)
class ReconnectSpec:
    max_retries: int = 0
    initial_delay_s: float = 1.0
    max_delay_s: float = 30.0
    backoff: float = 2.0
    jitter_ratio: float = 0.1

    @property
    def enabled(self) -> bool:
        return self.max_retries > 0


@dataclass(frozen=True)
class PeripheralConfig:
    address: str
    service_uuid: str
    characteristic_uuid: str
    id: str = "default"
    name: str = "Door lock"
    commands: dict[str, str] = field(default_factory=lambda: {"open": "O", "close": "F"})
    write_with_response: bool = False
    connect_timeout_s: float = 10.0
    reconnect: ReconnectSpec = ReconnectSpec()


@dataclass(frozen=True)
class Command:
    """A single-character intent plus optional trailing payload."""

    code: str
    payload: bytes = b""

    def __post_init__(self) -> None:
        if len(self.code) != 1 or not self.code.isascii():
            raise InvalidCommandError(
                f"Command code must be a single ASCII character, got {self.code!r}"
            )

    def encode(self) -> bytes:
        return self.code.encode("ascii") + self.payload


OPEN = Command("O")
CLOSE = Command("F")


@dataclass(frozen=True)
class CharacteristicHandle:
    service_uuid: str
    characteristic_uuid: str


@dataclass(frozen=True)
class NotificationEvent:
    text: str
    received_at: float = field(default_factory=time.monotonic)
    solicited: bool = False

    @property
    def line(self) -> str:
        return f"\n{self.text}"


@dataclass(frozen=True)
class StatusEvent:
    text: str
    state: ConnectionState
    received_at: float = field(default_factory=time.monotonic)
    reason: str | None = None

    @property
    def line(self) -> str:
        return f"\n{self.text}"


SinkEvent = Union[NotificationEvent, StatusEvent]


@dataclass(frozen=True)
class DiscoveredService:
    uuid: str
    characteristics: tuple[str, ...] = ()


@dataclass(frozen=True)
class LinkStateChanged:
    connected: bool
    status: int = GATT_SUCCESS
    detail: str | None = None
    kind: str = field(default="link_state", init=False)


@dataclass(frozen=True)
class ServicesDiscovered:
    status: int
    services: tuple[DiscoveredService, ...] = ()
    kind: str = field(default="services_discovered", init=False)


@dataclass(frozen=True)
class CharacteristicRead:
    characteristic_uuid: str
    status: int
    data: bytes = b""
    kind: str = field(default="characteristic_read", init=False)


@dataclass(frozen=True)
class CharacteristicChanged:
    characteristic_uuid: str
    data: bytes
    kind: str = field(default="characteristic_changed", init=False)


@dataclass(frozen=True)
class WriteCompleted:
    characteristic_uuid: str
    status: int
    detail: str | None = None
    kind: str = field(default="write_completed", init=False)


LinkEvent = Union[
    LinkStateChanged,
    ServicesDiscovered,
    CharacteristicRead,
    CharacteristicChanged,
    WriteCompleted,
]
