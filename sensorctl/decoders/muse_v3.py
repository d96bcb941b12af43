"""221e Muse v3 IMU streaming decoder.

Protocol reference: https://docs.221e.com/documentation/muse-protocols/muse-v3_-communication/

Data frames can only be scaled once the device has answered the scale query,
so the decoder keeps that configuration in a :class:`DeviceContextStore`.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable

from sensorctl.core.context import AxisScale, DeviceContextStore, ScaleParameters
from sensorctl.core.fields import read_int, read_uint
from sensorctl.core.model import SensorReading, StreamingSpec
from sensorctl.transports.base import WriteChannel

LOGGER = logging.getLogger(__name__)

GYROSCOPE_MASK = 0x03
ACCELEROMETER_MASK = 0x0C
HDR_ACCELEROMETER_MASK = 0x30
MAGNETOMETER_MASK = 0xC0

GYROSCOPE_SCALES: dict[int, AxisScale] = {
    0x00: AxisScale(245, 0.00875),
    0x01: AxisScale(500, 0.0175),
    0x02: AxisScale(1000, 0.035),
    0x03: AxisScale(2000, 0.07),
}
ACCELEROMETER_SCALES: dict[int, AxisScale] = {
    0x00: AxisScale(4, 0.122),
    0x08: AxisScale(8, 0.244),
    0x0C: AxisScale(16, 0.488),
    0x04: AxisScale(32, 0.976),
}
MAGNETOMETER_SCALES: dict[int, AxisScale] = {
    0x00: AxisScale(4, 1000.0 / 6842.0),
    0x40: AxisScale(8, 1000.0 / 3421.0),
    0x80: AxisScale(12, 1000.0 / 2281.0),
    0xC0: AxisScale(16, 1000.0 / 1711.0),
}
HDR_ACCELEROMETER_SCALES: dict[int, AxisScale] = {
    0x00: AxisScale(100, 49.0),
    0x10: AxisScale(200, 98.0),
    0x30: AxisScale(400, 195.0),
}

SCALE_REPLY_HEADER = bytes.fromhex("0005c0")
CAPABILITY_REPLY_HEADER = bytes.fromhex("000a8f")

CAPABILITY_QUERY = bytes([0x8F, 0x00])
SCALE_QUERY = bytes([0xC0, 0x00])
STOP_STREAMING = bytes([0x02, 0x01, 0x02])

DATA_DIRECT = 0x08
FREQ_25HZ = 0x01
FREQ_100HZ = 0x04

_DATA_OFFSET = 8
_SEGMENT = 6
_QUATERNION_SCALE = 32767

# Infrared to visible ratio thresholds selecting the illuminance formula.
LUX_THRESHOLDS = (0.109, 0.429, 1.3775, 2.175, 3.625)


def start_streaming_command(preview: bool) -> bytes:
    return bytes([0x02, 0x05, DATA_DIRECT, 0xFF, 0x03, 0x00, FREQ_25HZ if preview else FREQ_100HZ])


def decode_scale(code: int) -> ScaleParameters:
    params = ScaleParameters(
        gyroscope=GYROSCOPE_SCALES.get(code & GYROSCOPE_MASK),
        accelerometer=ACCELEROMETER_SCALES.get(code & ACCELEROMETER_MASK),
        magnetometer=MAGNETOMETER_SCALES.get(code & MAGNETOMETER_MASK),
        hdr_accelerometer=HDR_ACCELEROMETER_SCALES.get(code & HDR_ACCELEROMETER_MASK),
    )
    if None in (params.gyroscope, params.accelerometer, params.magnetometer, params.hdr_accelerometer):
        LOGGER.warning("Scale code 0x%02x contains an unknown full-scale setting", code)
    return params


def illuminance(visible: int, infrared: int) -> float:
    if visible <= 0:
        return 0.0
    ratio = infrared / visible
    if ratio < LUX_THRESHOLDS[0]:
        return 1.534 * visible - 3.759 * infrared
    if ratio < LUX_THRESHOLDS[1]:
        return 1.339 * visible - 1.972 * infrared
    if ratio < LUX_THRESHOLDS[2]:
        return 0.701 * visible - 0.483 * infrared
    if ratio < LUX_THRESHOLDS[3]:
        return 2.0 * 0.701 * visible - 1.18 * 0.483 * infrared
    if ratio < LUX_THRESHOLDS[4]:
        return 4.0 * 0.701 * visible - 1.33 * 0.483 * infrared
    return 8.0 * 0.701 * visible


def _vector(data: bytes, offset: int, scale: AxisScale | None) -> list[float | None]:
    if scale is None:
        return [None, None, None]
    return [read_int(data, offset + i * 2, 2) * scale.sensitivity for i in range(3)]


def _orientation(data: bytes, offset: int) -> tuple[float | None, float, float, float]:
    x, y, z = (read_int(data, offset + i * 2, 2) / _QUATERNION_SCALE for i in range(3))
    remainder = 1 - (x * x + y * y + z * z)
    if remainder < 0:
        LOGGER.debug("Quaternion vector part exceeds unit norm (%f), scalar part unavailable", 1 - remainder)
        return None, x, y, z
    return math.sqrt(remainder), x, y, z


def decode_data_frame(data: bytes, scale: ScaleParameters) -> SensorReading:
    offset = _DATA_OFFSET
    gyro = _vector(data, offset, scale.gyroscope)
    offset += _SEGMENT
    accel = _vector(data, offset, scale.accelerometer)
    offset += _SEGMENT
    mag = _vector(data, offset, scale.magnetometer)
    offset += _SEGMENT
    hdr_accel = _vector(data, offset, scale.hdr_accelerometer)
    offset += _SEGMENT
    w, x, y, z = _orientation(data, offset)
    offset += _SEGMENT
    # Relative device time; the absolute offset is ignored to avoid clock drift.
    timestamp = read_uint(data, offset, 6)
    offset += _SEGMENT
    temperature = read_uint(data, offset, 2) * 0.00267 - 45
    humidity = read_uint(data, offset + 2, 2) * 0.001907 - 6
    offset += _SEGMENT
    pressure = read_uint(data, offset, 3) / 4096
    temperature2 = read_uint(data, offset + 3, 2) / 100
    offset += _SEGMENT
    distance = read_uint(data, offset, 2)
    visible = read_uint(data, offset + 2, 2)
    infrared = read_uint(data, offset + 4, 2)

    return {
        "gyro_x": gyro[0],
        "gyro_y": gyro[1],
        "gyro_z": gyro[2],
        "accel_x": accel[0],
        "accel_y": accel[1],
        "accel_z": accel[2],
        "mag_x": mag[0],
        "mag_y": mag[1],
        "mag_z": mag[2],
        "hdr_accel_x": hdr_accel[0],
        "hdr_accel_y": hdr_accel[1],
        "hdr_accel_z": hdr_accel[2],
        "orientation_w": w,
        "orientation_x": x,
        "orientation_y": y,
        "orientation_z": z,
        "temperature": temperature,
        "humidity": humidity,
        "temperature2": temperature2,
        "pressure": pressure,
        "range": distance,
        "range_vis": visible,
        "range_ir": infrared,
        "range_lux": illuminance(visible, infrared),
        "timestamp": timestamp,
    }


class MuseV3Decoder:
    def __init__(self, spec: StreamingSpec, store: DeviceContextStore) -> None:
        self.spec = spec
        self.store = store

    async def start(self, device_id: str, preview: bool, channel: WriteChannel) -> None:
        """Query configuration, wait for the capability reply, then start streaming.

        There is no timeout; wrap the call in ``asyncio.wait_for`` if one is needed.
        """
        waiter = self.store.expect_capabilities(device_id)
        try:
            await self._write(channel, device_id, CAPABILITY_QUERY)
            await self._write(channel, device_id, SCALE_QUERY)
            await waiter
        except BaseException:
            waiter.cancel()
            raise
        await self._write(channel, device_id, start_streaming_command(preview))

    async def stop(self, device_id: str, channel: WriteChannel) -> None:
        await self._write(channel, device_id, STOP_STREAMING)

    async def _write(self, channel: WriteChannel, device_id: str, payload: bytes) -> None:
        await channel.write(device_id, self.spec.service_uuid, self.spec.command_char_uuid, payload)

    def handlers(self) -> dict[str, Callable[[str, bytes], SensorReading | None]]:
        return {
            self.spec.command_char_uuid: self.on_command,
            self.spec.data_char_uuid: self.on_data,
        }

    def on_command(self, device_id: str, data: bytes) -> SensorReading | None:
        header = bytes(data[:3])
        if header == SCALE_REPLY_HEADER:
            self.store.update_scale(device_id, decode_scale(read_uint(data, 4, 1)))
        elif header == CAPABILITY_REPLY_HEADER:
            self.store.update_capabilities(device_id, read_uint(data, 4, 4))
        else:
            LOGGER.debug("Ignoring command reply %s from %s", bytes(data).hex(), device_id)
        return None

    def on_data(self, device_id: str, data: bytes) -> SensorReading | None:
        context = self.store.get(device_id)
        if context is None or context.scale is None:
            LOGGER.warning("No scale configuration for %s, cannot decode data frame", device_id)
            return None
        return decode_data_frame(bytes(data), context.scale)
