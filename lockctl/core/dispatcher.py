"""Command dispatch onto the discovered characteristic."""

from __future__ import annotations

import logging

from lockctl.core.connection import ConnectionStateMachine
from lockctl.core.errors import CommandResolutionError, DispatchNotReadyError
from lockctl.core.model import CharacteristicHandle, Command, PeripheralConfig
from lockctl.transports.base import RadioLink

LOGGER = logging.getLogger(__name__)


class CommandDispatcher:
    def __init__(
        self,
        state_machine: ConnectionStateMachine,
        link: RadioLink,
        config: PeripheralConfig,
    ) -> None:
        self._state_machine = state_machine
        self._link = link
        self._config = config

    def send(self, command: Command) -> None:
        """Write the command bytes without waiting for confirmation.

        Raises DispatchNotReadyError, with no radio I/O, unless the
        connection is READY with a resolved characteristic.
        """
        handle = self._require_handle()
        payload = command.encode()
        self._link.write_characteristic(
            handle.service_uuid,
            handle.characteristic_uuid,
            payload,
            response=self._config.write_with_response,
        )
        LOGGER.debug("Command sent: %s (%s)", command.code, payload.hex())

    def resolve_intent(self, intent: str) -> Command:
        code = self._config.commands.get(intent)
        if code is None:
            available = ", ".join(sorted(self._config.commands))
            raise CommandResolutionError(
                f"Profile '{self._config.id}' does not define command '{intent}'. Available: {available}"
            )
        return Command(code)

    def send_intent(self, intent: str) -> Command:
        command = self.resolve_intent(intent)
        self.send(command)
        return command

    def request_read(self) -> None:
        handle = self._require_handle()
        self._link.read_characteristic(handle.service_uuid, handle.characteristic_uuid)

    def _require_handle(self) -> CharacteristicHandle:
        handle = self._state_machine.ready_handle()
        if handle is None:
            raise DispatchNotReadyError(
                f"Not connected to {self._config.address} (state: {self._state_machine.state.value})"
            )
        return handle
