"""Domain-specific errors for lockctl."""


class LockctlError(Exception):
    """Base error for lockctl."""


class ProfileValidationError(LockctlError):
    """Raised when a profile file does not conform to schema or semantics."""


class ProfileLoadError(LockctlError):
    """Raised when loading profile sources fails."""


class RadioUnavailableError(LockctlError):
    """Bluetooth adapter missing or disabled at connect time."""


class DiscoveryFailureError(LockctlError):
    """Raised when the expected service/characteristic is absent."""


class LinkDroppedError(LockctlError):
    """Raised when the peripheral link drops unexpectedly."""


class DispatchError(LockctlError):
    """Base error for command dispatch."""


class DispatchNotReadyError(DispatchError):
    """Raised when a command is sent while the connection is not ready."""


class InvalidCommandError(DispatchError):
    """Raised when a command code is not a single ASCII character."""


class CommandResolutionError(LockctlError):
    """Raised when an intent name cannot be found in the profile."""


class TransportError(LockctlError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised when the BLE link cannot be established."""


class TransportSendError(TransportError):
    """Raised when a GATT operation cannot be scheduled."""
