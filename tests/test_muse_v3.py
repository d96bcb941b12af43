from __future__ import annotations

import asyncio
import logging

import pytest

from sensorctl.core.context import AxisScale, DeviceContextStore
from sensorctl.core.errors import SessionInProgressError, TruncatedFrameError
from sensorctl.core.model import StreamingSpec
from sensorctl.decoders import muse_v3
from sensorctl.decoders.muse_v3 import MuseV3Decoder

SPEC = StreamingSpec(
    service_uuid="c8c0a708-e361-4b5e-a365-98fa6b0a836f",
    command_char_uuid="d5913036-2d8a-41ee-85b9-4e361aa5c8a7",
    data_char_uuid="09bf2c52-d1d9-c0b7-4145-475964544307",
)
DEVICE = "00:80:E1:26:AA:01"

CAPABILITY_REPLY = bytes.fromhex("000a8f00ff070000000000000000000000000000")
SCALE_REPLY = bytes.fromhex("0005c00047000000000000000000000000000000")
DATA_FRAME = bytes.fromhex(
    "b2b6645726470000feff0600faff0b001e00e2032b00c6f9de0080ff70ffa0ff3a0146000a00"
    "b3b6645726005362e85f0000aa373d100900000055000000"
)


class FakeWriteChannel:
    """Records writes and answers configuration queries the way a device would."""

    def __init__(self, decoder: MuseV3Decoder, *, reply_to_capability_query: bool = True) -> None:
        self.decoder = decoder
        self.reply_to_capability_query = reply_to_capability_query
        self.writes: list[tuple[str, str, str, bytes]] = []

    async def write(self, device_id: str, service_uuid: str, characteristic_uuid: str, payload: bytes) -> None:
        self.writes.append((device_id, service_uuid, characteristic_uuid, payload))
        if payload == muse_v3.SCALE_QUERY:
            self.decoder.on_command(device_id, SCALE_REPLY)
        elif payload == muse_v3.CAPABILITY_QUERY and self.reply_to_capability_query:
            self.decoder.on_command(device_id, CAPABILITY_REPLY)


class FailingWriteChannel:
    async def write(self, device_id: str, service_uuid: str, characteristic_uuid: str, payload: bytes) -> None:
        raise OSError("link lost")


def _configured_decoder() -> MuseV3Decoder:
    decoder = MuseV3Decoder(SPEC, DeviceContextStore())
    decoder.on_command(DEVICE, CAPABILITY_REPLY)
    decoder.on_command(DEVICE, SCALE_REPLY)
    return decoder


def test_decode_scale_code() -> None:
    scale = muse_v3.decode_scale(0x47)
    assert scale.gyroscope == AxisScale(2000, 0.07)
    assert scale.accelerometer == AxisScale(32, 0.976)
    assert scale.magnetometer is not None and scale.magnetometer.full_scale == 8
    assert scale.hdr_accelerometer == AxisScale(100, 49.0)


def test_unknown_hdr_scale_leaves_axes_empty(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="sensorctl.decoders.muse_v3"):
        scale = muse_v3.decode_scale(0x20)
    assert scale.hdr_accelerometer is None
    assert "0x20" in caplog.text

    reading = muse_v3.decode_data_frame(DATA_FRAME, scale)
    assert reading["hdr_accel_x"] is None
    assert reading["gyro_x"] is not None


def test_start_streaming_command_frequency() -> None:
    assert muse_v3.start_streaming_command(False).hex() == "020508ff030004"
    assert muse_v3.start_streaming_command(True).hex() == "020508ff030001"


def test_data_frame_decodes_with_configured_scale() -> None:
    decoder = _configured_decoder()
    reading = decoder.on_data(DEVICE, DATA_FRAME)

    assert reading == {
        "gyro_x": -0.14,
        "gyro_y": 0.42000000000000004,
        "gyro_z": -0.42000000000000004,
        "accel_x": 10.736,
        "accel_y": 29.28,
        "accel_z": 970.144,
        "mag_x": 12.569424144986845,
        "mag_y": -465.94562993276816,
        "mag_z": 64.89330605086232,
        "hdr_accel_x": -6272,
        "hdr_accel_y": -7056,
        "hdr_accel_z": -4704,
        "orientation_w": 0.9999517552449917,
        "orientation_x": 0.009582811975463118,
        "orientation_y": 0.0021362956633198035,
        "orientation_z": 0.0003051850947599719,
        "temperature": 22.20657,
        "humidity": 40.820664,
        "temperature2": 23.2,
        "pressure": 979.47900390625,
        "range": 0,
        "range_vis": 85,
        "range_ir": 0,
        "range_lux": 130.39000000000001,
        "timestamp": 164674975411,
    }


def test_data_frame_decoding_is_repeatable() -> None:
    decoder = _configured_decoder()
    first = decoder.on_data(DEVICE, DATA_FRAME)
    second = decoder.on_data(DEVICE, DATA_FRAME)

    assert first is not None
    assert first == second
    assert first is not second
    assert decoder.store.get(DEVICE).capabilities == 0x7FF


def test_capability_reply_is_stored_raw() -> None:
    decoder = _configured_decoder()
    context = decoder.store.get(DEVICE)
    assert context is not None
    assert context.capabilities == 0x7FF
    assert context.scale is not None


def test_data_before_configuration_is_dropped(caplog: pytest.LogCaptureFixture) -> None:
    decoder = MuseV3Decoder(SPEC, DeviceContextStore())
    with caplog.at_level(logging.WARNING, logger="sensorctl.decoders.muse_v3"):
        assert decoder.on_data(DEVICE, DATA_FRAME) is None
    assert DEVICE in caplog.text


def test_short_data_frame_raises() -> None:
    decoder = _configured_decoder()
    with pytest.raises(TruncatedFrameError):
        decoder.on_data(DEVICE, DATA_FRAME[:40])


def test_unrecognized_command_reply_is_ignored() -> None:
    decoder = MuseV3Decoder(SPEC, DeviceContextStore())
    assert decoder.on_command(DEVICE, bytes.fromhex("0002ff00")) is None
    assert DEVICE not in decoder.store


def test_orientation_scalar_unavailable_when_vector_exceeds_unit_norm() -> None:
    frame = bytearray(DATA_FRAME)
    frame[32:38] = bytes.fromhex("ff7fff7fff7f")
    reading = muse_v3.decode_data_frame(bytes(frame), muse_v3.decode_scale(0x47))
    assert reading["orientation_w"] is None
    assert reading["orientation_x"] == pytest.approx(1.0)


def test_illuminance_regions() -> None:
    assert muse_v3.illuminance(0, 10) == 0.0
    assert muse_v3.illuminance(100, 0) == pytest.approx(153.4)
    assert muse_v3.illuminance(100, 1000) == pytest.approx(560.8)


def test_start_writes_queries_then_start_command() -> None:
    decoder = MuseV3Decoder(SPEC, DeviceContextStore())
    channel = FakeWriteChannel(decoder)

    asyncio.run(decoder.start(DEVICE, False, channel))

    assert [payload.hex() for _, _, _, payload in channel.writes] == ["8f00", "c000", "020508ff030004"]
    assert all(device == DEVICE for device, _, _, _ in channel.writes)
    assert all(service == SPEC.service_uuid for _, service, _, _ in channel.writes)
    assert all(char == SPEC.command_char_uuid for _, _, char, _ in channel.writes)
    assert not decoder.store.is_pending(DEVICE)


def test_start_waits_for_capability_reply() -> None:
    async def scenario() -> list[str]:
        decoder = MuseV3Decoder(SPEC, DeviceContextStore())
        channel = FakeWriteChannel(decoder, reply_to_capability_query=False)
        task = asyncio.create_task(decoder.start(DEVICE, True, channel))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert not task.done()
        assert decoder.store.is_pending(DEVICE)
        written_before_reply = [payload.hex() for _, _, _, payload in channel.writes]

        decoder.on_command(DEVICE, CAPABILITY_REPLY)
        await task
        assert channel.writes[-1][3].hex() == "020508ff030001"
        return written_before_reply

    assert asyncio.run(scenario()) == ["8f00", "c000"]


def test_second_start_for_same_device_is_rejected() -> None:
    async def scenario() -> None:
        decoder = MuseV3Decoder(SPEC, DeviceContextStore())
        channel = FakeWriteChannel(decoder, reply_to_capability_query=False)
        first = asyncio.create_task(decoder.start(DEVICE, False, channel))
        await asyncio.sleep(0)
        with pytest.raises(SessionInProgressError):
            await decoder.start(DEVICE, False, channel)
        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        assert not decoder.store.is_pending(DEVICE)

    asyncio.run(scenario())


def test_start_propagates_write_failure() -> None:
    async def scenario() -> None:
        decoder = MuseV3Decoder(SPEC, DeviceContextStore())
        with pytest.raises(OSError):
            await decoder.start(DEVICE, False, FailingWriteChannel())
        assert not decoder.store.is_pending(DEVICE)

    asyncio.run(scenario())


def test_stop_writes_stop_command() -> None:
    decoder = MuseV3Decoder(SPEC, DeviceContextStore())
    channel = FakeWriteChannel(decoder)
    asyncio.run(decoder.stop(DEVICE, channel))
    assert channel.writes == [(DEVICE, SPEC.service_uuid, SPEC.command_char_uuid, bytes.fromhex("020102"))]


def test_devices_are_isolated() -> None:
    decoder = _configured_decoder()
    assert decoder.on_data("other-device", DATA_FRAME) is None
    assert decoder.on_data(DEVICE, DATA_FRAME) is not None
