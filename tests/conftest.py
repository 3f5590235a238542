from __future__ import annotations

from typing import Any

import pytest

from lockctl.core.model import (
    DiscoveredService,
    LinkStateChanged,
    PeripheralConfig,
    ServicesDiscovered,
    GATT_SUCCESS,
)

SERVICE_UUID = "0000ffe0-0000-1000-8000-00805f9b34fb"
CHAR_UUID = "0000ffe1-0000-1000-8000-00805f9b34fb"
ADDRESS = "00:15:85:14:9C:09"


class FakeRadioLink:
    def __init__(self, *, available: bool = True) -> None:
        self.available = available
        self.listener: Any = None
        self.calls: list[tuple[Any, ...]] = []

    def set_listener(self, listener: Any) -> None:
        self.listener = listener

    def is_available(self) -> bool:
        return self.available

    def connect(self, address: str, *, timeout_s: float) -> None:
        self.calls.append(("connect", address, timeout_s))

    def discover_services(self) -> None:
        self.calls.append(("discover_services",))

    def start_notify(self, service_uuid: str, characteristic_uuid: str) -> None:
        self.calls.append(("start_notify", service_uuid, characteristic_uuid))

    def write_characteristic(
        self,
        service_uuid: str,
        characteristic_uuid: str,
        data: bytes,
        *,
        response: bool,
    ) -> None:
        self.calls.append(("write", service_uuid, characteristic_uuid, data, response))

    def read_characteristic(self, service_uuid: str, characteristic_uuid: str) -> None:
        self.calls.append(("read", service_uuid, characteristic_uuid))

    def disconnect(self) -> None:
        self.calls.append(("disconnect",))

    def close(self) -> None:
        self.calls.append(("close",))
        self.listener = None

    def emit(self, event: Any) -> None:
        if self.listener is not None:
            self.listener(event)

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]

    @property
    def writes(self) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == "write"]


def matching_services() -> ServicesDiscovered:
    return ServicesDiscovered(
        status=GATT_SUCCESS,
        services=(
            DiscoveredService(uuid="00001800-0000-1000-8000-00805f9b34fb", characteristics=()),
            DiscoveredService(uuid=SERVICE_UUID, characteristics=(CHAR_UUID,)),
        ),
    )


def bring_up(link: FakeRadioLink) -> None:
    link.emit(LinkStateChanged(connected=True))
    link.emit(matching_services())


@pytest.fixture
def config() -> PeripheralConfig:
    return PeripheralConfig(
        id="cc2541_door",
        address=ADDRESS,
        service_uuid=SERVICE_UUID,
        characteristic_uuid=CHAR_UUID,
    )


@pytest.fixture
def link() -> FakeRadioLink:
    return FakeRadioLink()
