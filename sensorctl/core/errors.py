"""Domain-specific errors for sensorctl."""


class SensorctlError(Exception):
    """Base error for sensorctl."""


class DecoderValidationError(SensorctlError):
    """Raised when a decoder catalog file does not conform to schema or semantics."""


class DecoderLoadError(SensorctlError):
    """Raised when loading decoder catalog sources fails."""


class DecoderSelectionError(SensorctlError):
    """Raised when a decoder cannot be resolved for a request."""


class TruncatedFrameError(SensorctlError):
    """Raised when a field read runs past the end of a frame."""

    def __init__(self, offset: int, width: int, length: int) -> None:
        super().__init__(
            f"Read of {width} byte(s) at offset {offset} exceeds frame length {length}"
        )
        self.offset = offset
        self.width = width
        self.length = length


class SessionInProgressError(SensorctlError):
    """Raised when a streaming session is started twice for one device."""


class TransportError(SensorctlError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised on BLE connect failures."""


class TransportSendError(TransportError):
    """Raised when writing to a characteristic fails."""
