"""Service layer used by the CLI and the public API."""

from __future__ import annotations

import logging

from sensorctl.core.catalog_loader import load_catalog
from sensorctl.core.context import DeviceContextStore
from sensorctl.core.errors import DecoderSelectionError
from sensorctl.core.model import (
    Capability,
    DecodeResult,
    DecoderDescriptor,
    RawFrame,
    SensorReading,
    normalize_service_id,
)
from sensorctl.core.registry import DecoderRegistry
from sensorctl.decoders import CODECS
from sensorctl.decoders.muse_v3 import MuseV3Decoder
from sensorctl.transports.base import WriteChannel

LOGGER = logging.getLogger(__name__)


class SensorService:
    def __init__(self, *, store: DeviceContextStore | None = None) -> None:
        loaded = load_catalog()
        self.registry = DecoderRegistry(loaded.descriptors.values())
        self.load_warnings = loaded.warnings
        self.store = store if store is not None else DeviceContextStore()
        self._streaming: dict[str, MuseV3Decoder] = {}

    def list_decoders(self) -> list[DecoderDescriptor]:
        return sorted(self.registry, key=lambda d: d.id)

    def get_decoder(self, decoder_id: str) -> DecoderDescriptor:
        descriptor = self.registry.get(decoder_id)
        if descriptor is None:
            available = ", ".join(d.id for d in self.list_decoders())
            raise DecoderSelectionError(f"Unknown decoder '{decoder_id}'. Available: {available}")
        return descriptor

    def match(self, frame: RawFrame) -> DecoderDescriptor | None:
        return self.registry.match(frame)

    def decode_advertisement(self, frame: RawFrame, *, decoder_id: str | None = None) -> DecodeResult | None:
        """Decode an advertisement with the named decoder, or the one the frame matches.

        Returns ``None`` when nothing matches or the decoder rejects the frame.
        """
        descriptor = self.get_decoder(decoder_id) if decoder_id else self.match(frame)
        if descriptor is None:
            return None

        decode = CODECS[descriptor.codec].decode
        if decode is None:
            return None

        if descriptor.supports(Capability.SERVICE_DATA_DECODE):
            payload = frame.service_data.get(descriptor.service_uuid or "")
        elif descriptor.supports(Capability.ADVERTISEMENT_DECODE):
            payload = frame.manufacturer_data
        else:
            payload = None
        if payload is None:
            return None

        reading = decode(payload)
        if reading is None:
            LOGGER.debug("Decoder %s rejected payload %s", descriptor.id, payload.hex())
            return None
        return DecodeResult(descriptor=descriptor, reading=reading)

    def streaming_decoder(self, decoder_id: str) -> MuseV3Decoder:
        descriptor = self.get_decoder(decoder_id)
        if not descriptor.supports(Capability.STREAMING_DECODE) or descriptor.streaming is None:
            raise DecoderSelectionError(f"Decoder '{decoder_id}' does not support streaming")
        decoder = self._streaming.get(decoder_id)
        if decoder is None:
            factory = CODECS[descriptor.codec].streaming
            if factory is None:
                raise DecoderSelectionError(f"Codec '{descriptor.codec}' has no streaming decoder")
            decoder = factory(descriptor.streaming, self.store)
            self._streaming[decoder_id] = decoder
        return decoder

    def handle_notification(
        self,
        decoder_id: str,
        device_id: str,
        service_uuid: str,
        characteristic_uuid: str,
        data: bytes,
    ) -> SensorReading | None:
        decoder = self.streaming_decoder(decoder_id)
        if normalize_service_id(service_uuid) != decoder.spec.service_uuid:
            raise DecoderSelectionError(
                f"Decoder '{decoder_id}' has no handler for service {service_uuid}"
            )
        handler = decoder.handlers().get(normalize_service_id(characteristic_uuid))
        if handler is None:
            raise DecoderSelectionError(
                f"Decoder '{decoder_id}' has no handler for characteristic {characteristic_uuid}"
            )
        return handler(device_id, data)

    async def start(self, decoder_id: str, device_id: str, channel: WriteChannel, *, preview: bool = False) -> None:
        await self.streaming_decoder(decoder_id).start(device_id, preview, channel)

    async def stop(self, decoder_id: str, device_id: str, channel: WriteChannel) -> None:
        await self.streaming_decoder(decoder_id).stop(device_id, channel)

    def evict(self, device_id: str) -> bool:
        return self.store.evict(device_id)
