"""Stable public API for building tooling on top of sensorctl.

This module is the supported integration surface for third-party callers
(scanners, gateways, notebooks). Avoid importing from private/internal modules
unless intentionally depending on non-stable internals.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from sensorctl.core.context import AxisScale, DeviceContext, DeviceContextStore, ScaleParameters
from sensorctl.core.errors import (
    DecoderLoadError,
    DecoderSelectionError,
    DecoderValidationError,
    SensorctlError,
    SessionInProgressError,
    TransportConnectError,
    TransportError,
    TransportSendError,
    TruncatedFrameError,
)
from sensorctl.core.model import (
    Capability,
    DecodeResult,
    DecoderDescriptor,
    ManufacturerCodeMatch,
    NameMatch,
    Plottable,
    RawFrame,
    SensorReading,
    ServiceIdMatch,
    StreamingSpec,
)
from sensorctl.core.service import SensorService
from sensorctl.transports.base import WriteChannel
from sensorctl.transports.ble_gatt import BLEGATTWriteChannel

__all__ = [
    "SensorctlError",
    "DecoderLoadError",
    "DecoderSelectionError",
    "DecoderValidationError",
    "SessionInProgressError",
    "TruncatedFrameError",
    "TransportError",
    "TransportConnectError",
    "TransportSendError",
    "AxisScale",
    "Capability",
    "DecodeResult",
    "DecoderDescriptor",
    "DeviceContext",
    "DeviceContextStore",
    "ManufacturerCodeMatch",
    "NameMatch",
    "Plottable",
    "RawFrame",
    "ScaleParameters",
    "SensorReading",
    "ServiceIdMatch",
    "StreamingSpec",
    "WriteChannel",
    "BLEGATTWriteChannel",
    "Client",
]


class Client:
    """Public client for sensorctl decoding capabilities.

    A `Client` wraps catalog loading, decoder matching, stateless advertisement
    decoding and the streaming decoder session lifecycle behind a stable API.
    """

    def __init__(self, *, store: DeviceContextStore | None = None) -> None:
        self._service = SensorService(store=store)

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    @property
    def store(self) -> DeviceContextStore:
        return self._service.store

    def list_decoders(self) -> list[DecoderDescriptor]:
        return self._service.list_decoders()

    def find_decoder(
        self,
        *,
        device_name: str | None = None,
        manufacturer_prefix_hex: str | None = None,
        service_identifiers: Iterable[str] | None = None,
    ) -> DecoderDescriptor | None:
        return self._service.registry.find_decoder(
            device_name=device_name,
            manufacturer_prefix_hex=manufacturer_prefix_hex,
            service_identifiers=service_identifiers,
        )

    def decode_advertisement(
        self,
        manufacturer_data: bytes | None = None,
        service_data: Mapping[str, bytes] | None = None,
        *,
        device_name: str | None = None,
        decoder_id: str | None = None,
    ) -> DecodeResult | None:
        frame = RawFrame(
            manufacturer_data=manufacturer_data,
            service_data=dict(service_data or {}),
            device_name=device_name,
        )
        return self._service.decode_advertisement(frame, decoder_id=decoder_id)

    def handle_notification(
        self,
        decoder_id: str,
        device_id: str,
        service_uuid: str,
        characteristic_uuid: str,
        data: bytes,
    ) -> SensorReading | None:
        return self._service.handle_notification(
            decoder_id,
            device_id,
            service_uuid,
            characteristic_uuid,
            data,
        )

    async def start(
        self,
        decoder_id: str,
        device_id: str,
        channel: WriteChannel,
        *,
        preview: bool = False,
    ) -> None:
        await self._service.start(decoder_id, device_id, channel, preview=preview)

    async def stop(self, decoder_id: str, device_id: str, channel: WriteChannel) -> None:
        await self._service.stop(decoder_id, device_id, channel)

    def evict(self, device_id: str) -> bool:
        return self._service.evict(device_id)
