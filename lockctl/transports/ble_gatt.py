"""BLE GATT radio link backed by bleak."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Coroutine
from concurrent.futures import Future
from typing import Any, Optional

from lockctl.core.errors import TransportConnectError, TransportSendError
from lockctl.core.model import (
    GATT_FAILURE,
    GATT_SUCCESS,
    LINK_RADIO_UNAVAILABLE,
    LINK_TIMEOUT,
    CharacteristicChanged,
    CharacteristicRead,
    DiscoveredService,
    LinkEvent,
    LinkStateChanged,
    ServicesDiscovered,
    WriteCompleted,
)
from lockctl.transports.base import LinkListener

LOGGER = logging.getLogger(__name__)


class BleakRadioLink:
    """Runs bleak on a private event loop thread and reports results as link events.

    Every public method schedules a coroutine and returns immediately. Events
    are delivered on the loop thread; ``close`` detaches the listener before
    tearing the loop down, so nothing is delivered after release.
    """

    def __init__(self, *, close_timeout_s: float = 5.0) -> None:
        self._close_timeout_s = close_timeout_s
        self._listener: Optional[LinkListener] = None
        self._listener_lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._client: Any = None
        self._connect_task: Optional[asyncio.Task[None]] = None

    def set_listener(self, listener: Optional[LinkListener]) -> None:
        with self._listener_lock:
            self._listener = listener

    def is_available(self) -> bool:
        try:
            import bleak  # type: ignore  # noqa: F401
        except ImportError:
            LOGGER.error("BLE transport requires 'bleak'. Install dependency and retry.")
            return False
        return True

    def connect(self, address: str, *, timeout_s: float) -> None:
        try:
            import bleak  # type: ignore  # noqa: F401
        except ImportError as exc:
            raise TransportConnectError(
                "BLE transport requires 'bleak'. Install dependency and retry."
            ) from exc
        self._submit(self._connect(address, timeout_s))

    def discover_services(self) -> None:
        self._submit(self._discover_services())

    def start_notify(self, service_uuid: str, characteristic_uuid: str) -> None:
        self._submit(self._start_notify(service_uuid, characteristic_uuid))

    def write_characteristic(
        self,
        service_uuid: str,
        characteristic_uuid: str,
        data: bytes,
        *,
        response: bool,
    ) -> None:
        self._submit(self._write(service_uuid, characteristic_uuid, bytes(data), response))

    def read_characteristic(self, service_uuid: str, characteristic_uuid: str) -> None:
        self._submit(self._read(service_uuid, characteristic_uuid))

    def disconnect(self) -> None:
        """Cancel a pending connect and disconnect the current client."""
        if self._loop is None:
            return
        future = self._submit(self._disconnect())
        if threading.current_thread() is not self._thread:
            try:
                future.result(timeout=self._close_timeout_s)
            except Exception as exc:
                LOGGER.debug("Disconnect did not complete cleanly: %s", exc)

    def close(self) -> None:
        self.set_listener(None)
        loop, thread = self._loop, self._thread
        self._loop = None
        self._thread = None
        self._client = None
        if loop is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self._close_timeout_s)

    def _emit(self, event: LinkEvent) -> None:
        with self._listener_lock:
            listener = self._listener
        if listener is None:
            LOGGER.debug("Dropping %s, link released", event.kind)
            return
        listener(event)

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            loop = asyncio.new_event_loop()
            thread = threading.Thread(target=_run_loop, args=(loop,), name="lockctl-ble", daemon=True)
            thread.start()
            self._loop, self._thread = loop, thread
        return self._loop

    def _submit(self, coro: Coroutine[Any, Any, None]) -> Future[None]:
        loop = self._ensure_loop()
        try:
            return asyncio.run_coroutine_threadsafe(coro, loop)
        except RuntimeError as exc:
            coro.close()
            raise TransportSendError(f"BLE event loop unavailable: {exc}") from exc

    def _on_disconnected(self, client: Any) -> None:
        if client is not self._client:
            LOGGER.debug("Released client disconnected")
            return
        LOGGER.debug("Link to peripheral dropped")
        self._emit(LinkStateChanged(connected=False, status=GATT_SUCCESS, detail="disconnected"))

    async def _connect(self, address: str, timeout_s: float) -> None:
        task = asyncio.current_task()
        self._connect_task = task
        try:
            await self._release_client()
            await self._open_client(address, timeout_s)
        finally:
            if self._connect_task is task:
                self._connect_task = None

    async def _open_client(self, address: str, timeout_s: float) -> None:
        from bleak import BleakClient  # type: ignore
        from bleak.exc import BleakBluetoothNotAvailableError, BleakError  # type: ignore

        client = BleakClient(address, disconnected_callback=self._on_disconnected, timeout=timeout_s)
        try:
            await client.connect()
        except asyncio.CancelledError:
            LOGGER.debug("Connect to %s cancelled", address)
            await self._disconnect_client(client)
            raise
        except BleakBluetoothNotAvailableError as exc:
            LOGGER.error("Bluetooth not available: %s", exc)
            self._emit(LinkStateChanged(connected=False, status=LINK_RADIO_UNAVAILABLE, detail=str(exc)))
            return
        except (asyncio.TimeoutError, TimeoutError):
            self._emit(LinkStateChanged(connected=False, status=LINK_TIMEOUT, detail="timeout"))
            return
        except (BleakError, OSError) as exc:
            LOGGER.error("BLE connect failed for %s: %s", address, exc)
            self._emit(LinkStateChanged(connected=False, status=GATT_FAILURE, detail=str(exc)))
            return

        self._client = client
        self._emit(LinkStateChanged(connected=True, status=GATT_SUCCESS))

    async def _discover_services(self) -> None:
        client = self._client
        if client is None:
            self._emit(ServicesDiscovered(status=GATT_FAILURE))
            return
        services = tuple(
            DiscoveredService(
                uuid=str(service.uuid).lower(),
                characteristics=tuple(str(char.uuid).lower() for char in service.characteristics),
            )
            for service in client.services
        )
        self._emit(ServicesDiscovered(status=GATT_SUCCESS, services=services))

    def _characteristic(self, service_uuid: str, characteristic_uuid: str) -> Any:
        service = self._client.services.get_service(service_uuid)
        if service is None:
            return characteristic_uuid
        return service.get_characteristic(characteristic_uuid) or characteristic_uuid

    async def _start_notify(self, service_uuid: str, characteristic_uuid: str) -> None:
        def _notify_handler(sender: Any, data: bytearray) -> None:
            uuid = getattr(sender, "uuid", characteristic_uuid)
            self._emit(CharacteristicChanged(characteristic_uuid=str(uuid).lower(), data=bytes(data)))

        try:
            await self._client.start_notify(
                self._characteristic(service_uuid, characteristic_uuid),
                _notify_handler,
            )
        except Exception as exc:
            LOGGER.warning("Could not subscribe to %s: %s", characteristic_uuid, exc)

    async def _write(self, service_uuid: str, characteristic_uuid: str, data: bytes, response: bool) -> None:
        try:
            await self._client.write_gatt_char(
                self._characteristic(service_uuid, characteristic_uuid),
                data,
                response=response,
            )
        except Exception as exc:
            self._emit(WriteCompleted(characteristic_uuid, status=GATT_FAILURE, detail=str(exc)))
            return
        self._emit(WriteCompleted(characteristic_uuid, status=GATT_SUCCESS))

    async def _read(self, service_uuid: str, characteristic_uuid: str) -> None:
        try:
            data = await self._client.read_gatt_char(self._characteristic(service_uuid, characteristic_uuid))
        except Exception as exc:
            LOGGER.warning("BLE read of %s failed: %s", characteristic_uuid, exc)
            self._emit(CharacteristicRead(characteristic_uuid, status=GATT_FAILURE))
            return
        self._emit(CharacteristicRead(characteristic_uuid, status=GATT_SUCCESS, data=bytes(data)))

    async def _disconnect(self) -> None:
        task = self._connect_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
        await self._release_client()

    async def _release_client(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await self._disconnect_client(client)

    async def _disconnect_client(self, client: Any) -> None:
        try:
            await client.disconnect()
        except Exception as exc:
            LOGGER.debug("BLE disconnect raised: %s", exc)


def _run_loop(loop: asyncio.AbstractEventLoop) -> None:
    try:
        loop.run_forever()
    finally:
        loop.close()
