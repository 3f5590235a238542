from __future__ import annotations

import asyncio
import threading
from typing import Any

import bleak
import pytest
from bleak.exc import BleakError

from lockctl.core.connection import ConnectionStateMachine
from lockctl.core.model import (
    GATT_FAILURE,
    GATT_SUCCESS,
    LINK_TIMEOUT,
    CharacteristicChanged,
    ConnectionState,
    LinkEvent,
    LinkStateChanged,
    PeripheralConfig,
    ServicesDiscovered,
    WriteCompleted,
)
from lockctl.core.router import NotificationRouter
from lockctl.core.sink import MessageLog
from lockctl.transports.ble_gatt import BleakRadioLink

SERVICE_UUID = "0000ffe0-0000-1000-8000-00805f9b34fb"
CHAR_UUID = "0000ffe1-0000-1000-8000-00805f9b34fb"


class FakeCharacteristic:
    def __init__(self, uuid: str) -> None:
        self.uuid = uuid


class FakeService:
    def __init__(self, uuid: str, characteristics: list[FakeCharacteristic]) -> None:
        self.uuid = uuid
        self.characteristics = characteristics

    def get_characteristic(self, uuid: str) -> FakeCharacteristic | None:
        return next((c for c in self.characteristics if c.uuid.lower() == uuid.lower()), None)


class FakeServices:
    def __init__(self, services: list[FakeService]) -> None:
        self._services = services

    def __iter__(self):
        return iter(self._services)

    def get_service(self, uuid: str) -> FakeService | None:
        return next((s for s in self._services if s.uuid.lower() == uuid.lower()), None)


class FakeBleakClient:
    connect_error: Exception | None = None
    write_error: Exception | None = None
    expose_services = True
    hang_on_connect = False
    last: "FakeBleakClient | None" = None

    def __init__(self, address: str, disconnected_callback: Any = None, timeout: float = 10.0) -> None:
        self.address = address
        self.disconnected_callback = disconnected_callback
        self.timeout = timeout
        services = []
        if FakeBleakClient.expose_services:
            services.append(FakeService(SERVICE_UUID.upper(), [FakeCharacteristic(CHAR_UUID.upper())]))
        self.services = FakeServices(services)
        self.writes: list[tuple[Any, bytes, bool]] = []
        self.notify_callback: Any = None
        self.connect_started = threading.Event()
        self.released = threading.Event()
        FakeBleakClient.last = self

    @property
    def disconnected(self) -> bool:
        return self.released.is_set()

    async def connect(self) -> None:
        self.connect_started.set()
        if FakeBleakClient.hang_on_connect:
            await asyncio.sleep(60)
        if FakeBleakClient.connect_error is not None:
            raise FakeBleakClient.connect_error

    async def write_gatt_char(self, char: Any, data: bytes, response: bool = False) -> None:
        if FakeBleakClient.write_error is not None:
            raise FakeBleakClient.write_error
        self.writes.append((char, data, response))

    async def start_notify(self, char: Any, callback: Any) -> None:
        self.notify_callback = callback

    async def disconnect(self) -> None:
        self.released.set()
        if self.disconnected_callback is not None:
            self.disconnected_callback(self)


class Recorder:
    def __init__(self) -> None:
        self.events: list[LinkEvent] = []
        self._cond = threading.Condition()

    def __call__(self, event: LinkEvent) -> None:
        with self._cond:
            self.events.append(event)
            self._cond.notify_all()

    def wait_for(self, count: int, timeout: float = 2.0) -> list[LinkEvent]:
        with self._cond:
            assert self._cond.wait_for(lambda: len(self.events) >= count, timeout=timeout)
            return list(self.events)


@pytest.fixture
def radio(monkeypatch: pytest.MonkeyPatch):
    FakeBleakClient.connect_error = None
    FakeBleakClient.write_error = None
    FakeBleakClient.expose_services = True
    FakeBleakClient.hang_on_connect = False
    FakeBleakClient.last = None
    monkeypatch.setattr(bleak, "BleakClient", FakeBleakClient)
    link = BleakRadioLink(close_timeout_s=1.0)
    recorder = Recorder()
    link.set_listener(recorder)
    yield link, recorder
    link.close()


def test_connect_and_discover(radio) -> None:
    link, recorder = radio
    assert link.is_available()

    link.connect("00:15:85:14:9C:09", timeout_s=3.0)
    events = recorder.wait_for(1)
    assert events[0] == LinkStateChanged(connected=True, status=GATT_SUCCESS)
    assert FakeBleakClient.last is not None
    assert FakeBleakClient.last.timeout == 3.0

    link.discover_services()
    discovered = recorder.wait_for(2)[1]
    assert isinstance(discovered, ServicesDiscovered)
    assert discovered.services[0].uuid == SERVICE_UUID
    assert discovered.services[0].characteristics == (CHAR_UUID,)


def test_connect_failure_maps_to_status(radio) -> None:
    link, recorder = radio
    FakeBleakClient.connect_error = BleakError("Device with address 00:15:85:14:9C:09 was not found")

    link.connect("00:15:85:14:9C:09", timeout_s=1.0)

    event = recorder.wait_for(1)[0]
    assert isinstance(event, LinkStateChanged)
    assert event.connected is False
    assert event.status == GATT_FAILURE
    assert "not found" in (event.detail or "")


def test_connect_timeout_maps_to_status(radio) -> None:
    link, recorder = radio
    FakeBleakClient.connect_error = TimeoutError()

    link.connect("00:15:85:14:9C:09", timeout_s=1.0)

    event = recorder.wait_for(1)[0]
    assert event == LinkStateChanged(connected=False, status=LINK_TIMEOUT, detail="timeout")


def test_write_reports_completion(radio) -> None:
    link, recorder = radio
    link.connect("00:15:85:14:9C:09", timeout_s=1.0)
    recorder.wait_for(1)

    link.write_characteristic(SERVICE_UUID, CHAR_UUID, b"O", response=False)
    event = recorder.wait_for(2)[1]

    assert event == WriteCompleted(CHAR_UUID, status=GATT_SUCCESS)
    char, data, response = FakeBleakClient.last.writes[0]
    assert char.uuid == CHAR_UUID.upper()
    assert data == b"O"
    assert response is False


def test_write_failure_reports_status(radio) -> None:
    link, recorder = radio
    link.connect("00:15:85:14:9C:09", timeout_s=1.0)
    recorder.wait_for(1)
    FakeBleakClient.write_error = BleakError("write not permitted")

    link.write_characteristic(SERVICE_UUID, CHAR_UUID, b"F", response=True)
    event = recorder.wait_for(2)[1]

    assert isinstance(event, WriteCompleted)
    assert event.status == GATT_FAILURE
    assert event.detail == "write not permitted"


def test_notifications_and_drop_are_forwarded(radio) -> None:
    link, recorder = radio
    link.connect("00:15:85:14:9C:09", timeout_s=1.0)
    recorder.wait_for(1)
    client = FakeBleakClient.last

    link.start_notify(SERVICE_UUID, CHAR_UUID)
    link.discover_services()
    recorder.wait_for(2)
    assert client.notify_callback is not None

    client.notify_callback(FakeCharacteristic(CHAR_UUID.upper()), bytearray(b"Door open"))
    client.disconnected_callback(client)

    events = recorder.wait_for(4)
    assert events[2] == CharacteristicChanged(CHAR_UUID, b"Door open")
    assert events[3] == LinkStateChanged(connected=False, status=GATT_SUCCESS, detail="disconnected")


def test_close_detaches_listener(radio) -> None:
    link, recorder = radio
    link.connect("00:15:85:14:9C:09", timeout_s=1.0)
    recorder.wait_for(1)
    client = FakeBleakClient.last

    link.disconnect()
    link.close()
    client.disconnected_callback(client)

    assert client.disconnected is True
    assert len(recorder.events) == 1


def test_reconnect_releases_previous_client(radio) -> None:
    link, recorder = radio
    link.connect("00:15:85:14:9C:09", timeout_s=1.0)
    recorder.wait_for(1)
    first = FakeBleakClient.last

    link.connect("00:15:85:14:9C:09", timeout_s=1.0)
    events = recorder.wait_for(2)

    assert first.released.wait(2.0)
    assert FakeBleakClient.last is not first
    assert events == [LinkStateChanged(connected=True, status=GATT_SUCCESS)] * 2


def test_disconnect_cancels_pending_connect(radio) -> None:
    link, recorder = radio
    FakeBleakClient.hang_on_connect = True
    link.connect("00:15:85:14:9C:09", timeout_s=1.0)
    client = FakeBleakClient.last
    assert client is not None
    assert client.connect_started.wait(2.0)

    link.disconnect()

    assert client.disconnected is True
    assert recorder.events == []


def _wait_for_state(machine: ConnectionStateMachine, state: ConnectionState) -> threading.Event:
    reached = threading.Event()
    machine.add_listener(lambda status: reached.set() if status.state is state else None)
    return reached


def test_failed_discovery_releases_link(radio, config: PeripheralConfig) -> None:
    link, _ = radio
    FakeBleakClient.expose_services = False
    log = MessageLog()
    machine = ConnectionStateMachine(link, log, NotificationRouter(log), config)
    failed = _wait_for_state(machine, ConnectionState.FAILED)
    ready = _wait_for_state(machine, ConnectionState.READY)

    machine.connect()
    assert failed.wait(2.0)
    first = FakeBleakClient.last
    assert first.released.wait(2.0)
    assert log.lines[-1] == "Connection failed: characteristic not found"

    FakeBleakClient.expose_services = True
    machine.connect()
    assert ready.wait(2.0)
    second = FakeBleakClient.last
    assert second is not first

    machine.disconnect()
    assert second.disconnected is True
    assert machine.state is ConnectionState.DISCONNECTED


def test_close_from_loop_thread_closes_event_loop(radio) -> None:
    link, _ = radio
    closed = threading.Event()
    captured: list[Any] = []

    def close_on_connect(event: LinkEvent) -> None:
        captured.append((link._loop, link._thread))
        link.close()
        closed.set()

    link.set_listener(close_on_connect)
    link.connect("00:15:85:14:9C:09", timeout_s=1.0)
    assert closed.wait(2.0)
    loop, thread = captured[0]

    thread.join(timeout=2.0)
    assert not thread.is_alive()
    assert loop.is_closed()
