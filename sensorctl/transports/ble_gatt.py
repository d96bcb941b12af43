"""BLE GATT transport implementation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from sensorctl.core.errors import SensorctlError, TransportConnectError, TransportSendError
from sensorctl.core.model import RawFrame, SensorReading
from sensorctl.decoders.muse_v3 import MuseV3Decoder

LOGGER = logging.getLogger(__name__)


def _bleak() -> Any:
    try:
        import bleak  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise TransportConnectError(
            "BLE transport requires 'bleak'. Install dependency and retry."
        ) from exc
    return bleak


class BLEGATTWriteChannel:
    """Write channel bound to one connected ``BleakClient``."""

    def __init__(self, client: Any, *, write_with_response: bool = False) -> None:
        self._client = client
        self._write_with_response = write_with_response

    async def write(
        self,
        device_id: str,
        service_uuid: str,
        characteristic_uuid: str,
        payload: bytes,
    ) -> None:
        if device_id.upper() != str(self._client.address).upper():
            raise TransportSendError(
                f"Write for {device_id} issued on connection to {self._client.address}"
            )
        LOGGER.debug("Writing %s to %s/%s on %s", payload.hex(), service_uuid, characteristic_uuid, device_id)
        try:
            await self._client.write_gatt_char(
                characteristic_uuid,
                payload,
                response=self._write_with_response,
            )
        except Exception as exc:
            raise TransportSendError(f"BLE GATT write failed: {exc}") from exc


def frame_from_advertisement(advertisement: Any) -> RawFrame:
    """Convert bleak ``AdvertisementData`` into a :class:`RawFrame`.

    bleak strips the company identifier from manufacturer data; it is put back
    in front (little-endian) so decoders see the payload as broadcast.
    """
    manufacturer_data: bytes | None = None
    for company_id, data in advertisement.manufacturer_data.items():
        manufacturer_data = company_id.to_bytes(2, "little") + bytes(data)
        break
    return RawFrame(
        manufacturer_data=manufacturer_data,
        service_data=dict(advertisement.service_data),
        device_name=advertisement.local_name,
    )


async def scan(duration_s: float, on_frame: Callable[[str, RawFrame], None]) -> None:
    """Passively scan for ``duration_s`` seconds, handing every advertisement to ``on_frame``."""
    bleak = _bleak()

    def _detection(device: Any, advertisement: Any) -> None:
        on_frame(device.address, frame_from_advertisement(advertisement))

    try:
        async with bleak.BleakScanner(detection_callback=_detection):
            await asyncio.sleep(duration_s)
    except SensorctlError:
        raise
    except Exception as exc:
        raise TransportConnectError(f"BLE scan failed: {exc}") from exc


async def stream(
    address: str,
    decoder: MuseV3Decoder,
    *,
    duration_s: float,
    preview: bool,
    on_reading: Callable[[SensorReading], None],
    timeout_s: float = 10.0,
) -> None:
    """Connect, subscribe to the decoder's characteristics, and stream for ``duration_s`` seconds."""
    bleak = _bleak()
    handlers = decoder.handlers()

    def _subscriber(handler: Callable[[str, bytes], SensorReading | None]) -> Callable[[Any, bytearray], None]:
        def _notify(_: Any, data: bytearray) -> None:
            reading = handler(address, bytes(data))
            if reading is not None:
                on_reading(reading)

        return _notify

    try:
        async with bleak.BleakClient(address, timeout=timeout_s) as client:
            if not client.is_connected:
                raise TransportConnectError(f"BLE connect failed for {address}")
            for char_uuid, handler in handlers.items():
                await client.start_notify(char_uuid, _subscriber(handler))
            channel = BLEGATTWriteChannel(client)
            try:
                await decoder.start(address, preview, channel)
                await asyncio.sleep(duration_s)
                await decoder.stop(address, channel)
            finally:
                for char_uuid in handlers:
                    try:
                        await client.stop_notify(char_uuid)
                    except Exception as exc:
                        LOGGER.debug("stop_notify failed for %s: %s", char_uuid, exc)
    except SensorctlError:
        raise
    except Exception as exc:
        raise TransportConnectError(f"BLE streaming failed for {address}: {exc}") from exc
