"""Radio link interface the connection core depends on."""

from __future__ import annotations

from collections.abc import Callable
from typing import Optional, Protocol

from lockctl.core.model import LinkEvent

LinkListener = Callable[[LinkEvent], None]


class RadioLink(Protocol):
    """Non-blocking BLE primitives; every result comes back as a link event."""

    def set_listener(self, listener: Optional[LinkListener]) -> None:
        """Install the single receiver of link events (None detaches it)."""

    def is_available(self) -> bool:
        """Return False when the Bluetooth stack is missing or disabled."""

    def connect(self, address: str, *, timeout_s: float) -> None: ...

    def discover_services(self) -> None: ...

    def start_notify(self, service_uuid: str, characteristic_uuid: str) -> None: ...

    def write_characteristic(
        self,
        service_uuid: str,
        characteristic_uuid: str,
        data: bytes,
        *,
        response: bool,
    ) -> None: ...

    def read_characteristic(self, service_uuid: str, characteristic_uuid: str) -> None: ...

    def disconnect(self) -> None: ...

    def close(self) -> None:
        """Release the link; no events may be delivered afterwards."""
