from __future__ import annotations

import asyncio

import pytest

from sensorctl.core.context import DeviceContextStore
from sensorctl.core.errors import DecoderSelectionError, SessionInProgressError
from sensorctl.core.model import RawFrame
from sensorctl.core.service import SensorService

MUSE_SERVICE = "c8c0a708-e361-4b5e-a365-98fa6b0a836f"
MUSE_COMMAND = "d5913036-2d8a-41ee-85b9-4e361aa5c8a7"
MUSE_DATA = "09bf2c52-d1d9-c0b7-4145-475964544307"

CAPABILITY_REPLY = bytes.fromhex("000a8f00ff070000000000000000000000000000")
SCALE_REPLY = bytes.fromhex("0005c00047000000000000000000000000000000")
DATA_FRAME = bytes.fromhex(
    "b2b6645726470000feff0600faff0b001e00e2032b00c6f9de0080ff70ffa0ff3a0146000a00"
    "b3b6645726005362e85f0000aa373d100900000055000000"
)


class FakeWriteChannel:
    def __init__(self, service: SensorService, *, reply: bool = True) -> None:
        self.service = service
        self.reply = reply
        self.calls: list[tuple[str, str, str, bytes]] = []

    async def write(self, device_id: str, service_uuid: str, characteristic_uuid: str, payload: bytes) -> None:
        self.calls.append((device_id, service_uuid, characteristic_uuid, payload))
        if not self.reply:
            return
        if payload == bytes.fromhex("8f00"):
            self.service.handle_notification("musev3", device_id, service_uuid, characteristic_uuid, CAPABILITY_REPLY)
        elif payload == bytes.fromhex("c000"):
            self.service.handle_notification("musev3", device_id, service_uuid, characteristic_uuid, SCALE_REPLY)


def test_decode_advertisement_matches_manufacturer_code() -> None:
    service = SensorService()
    frame = RawFrame(manufacturer_data=bytes.fromhex("59000c543573c8f2eb441413"))

    result = service.decode_advertisement(frame)
    assert result is not None
    assert result.descriptor.id == "mopeka"
    assert result.reading["raw_level_mm"] == 2163


def test_decode_advertisement_uses_service_data() -> None:
    service = SensorService()
    frame = RawFrame(service_data={"0000fcd2-0000-1000-8000-00805f9b34fb": bytes.fromhex("4400ca01643a00")})

    result = service.decode_advertisement(frame)
    assert result is not None
    assert result.descriptor.id == "bthome"
    assert result.reading["packet_id"] == 202


def test_decode_advertisement_returns_none_when_nothing_matches() -> None:
    service = SensorService()
    assert service.decode_advertisement(RawFrame(manufacturer_data=bytes.fromhex("ffff0102"))) is None


def test_decode_advertisement_returns_none_on_rejected_payload() -> None:
    service = SensorService()
    frame = RawFrame(manufacturer_data=bytes.fromhex("9904030102"))
    assert service.decode_advertisement(frame) is None


def test_explicit_decoder_overrides_matching() -> None:
    service = SensorService()
    frame = RawFrame(manufacturer_data=bytes.fromhex("4c00071901142071aa9631000848e46443887f0a000000611fb4fd3a53"))

    assert service.decode_advertisement(frame, decoder_id="ruuvi") is None
    result = service.decode_advertisement(frame, decoder_id="airpods")
    assert result is not None
    assert result.reading["model"] == "AirPodsPro2 Lightning"


def test_unknown_decoder_lists_available() -> None:
    service = SensorService()
    with pytest.raises(DecoderSelectionError) as exc:
        service.get_decoder("nope")
    assert "Available:" in str(exc.value)
    assert "ruuvi" in str(exc.value)


def test_list_decoders_sorted() -> None:
    ids = [d.id for d in SensorService().list_decoders()]
    assert ids == sorted(ids)
    assert "musev3" in ids


def test_streaming_requires_streaming_decoder() -> None:
    with pytest.raises(DecoderSelectionError):
        SensorService().streaming_decoder("ruuvi")


def test_handle_notification_routes_by_characteristic() -> None:
    service = SensorService()
    assert service.handle_notification("musev3", "dev", MUSE_SERVICE, MUSE_COMMAND, CAPABILITY_REPLY) is None
    assert service.handle_notification("musev3", "dev", MUSE_SERVICE, MUSE_COMMAND.upper(), SCALE_REPLY) is None

    reading = service.handle_notification("musev3", "dev", MUSE_SERVICE, MUSE_DATA, DATA_FRAME)
    assert reading is not None
    assert reading["range_vis"] == 85
    assert service.store.get("dev").capabilities == 0x7FF


def test_handle_notification_rejects_unknown_endpoints() -> None:
    service = SensorService()
    with pytest.raises(DecoderSelectionError):
        service.handle_notification("musev3", "dev", "180f", MUSE_DATA, DATA_FRAME)
    with pytest.raises(DecoderSelectionError):
        service.handle_notification("musev3", "dev", MUSE_SERVICE, "2a19", DATA_FRAME)


def test_streaming_decoder_is_cached_and_shares_store() -> None:
    store = DeviceContextStore()
    service = SensorService(store=store)
    assert service.store is store
    decoder = service.streaming_decoder("musev3")
    assert service.streaming_decoder("musev3") is decoder
    assert decoder.store is store


def test_start_and_stop_session() -> None:
    service = SensorService()
    channel = FakeWriteChannel(service)

    asyncio.run(service.start("musev3", "dev", channel, preview=True))
    asyncio.run(service.stop("musev3", "dev", channel))

    assert [payload.hex() for *_, payload in channel.calls] == [
        "8f00",
        "c000",
        "020508ff030001",
        "020102",
    ]
    assert {(service_uuid, char) for _, service_uuid, char, _ in channel.calls} == {(MUSE_SERVICE, MUSE_COMMAND)}


def test_concurrent_start_for_same_device_rejected() -> None:
    async def scenario() -> None:
        service = SensorService()
        channel = FakeWriteChannel(service, reply=False)
        first = asyncio.create_task(service.start("musev3", "dev", channel))
        await asyncio.sleep(0)
        with pytest.raises(SessionInProgressError):
            await service.start("musev3", "dev", channel)
        assert service.evict("dev") is False
        with pytest.raises(asyncio.CancelledError):
            await first

    asyncio.run(scenario())


def test_evict_forgets_device_context() -> None:
    service = SensorService()
    service.handle_notification("musev3", "dev", MUSE_SERVICE, MUSE_COMMAND, SCALE_REPLY)
    assert service.evict("dev") is True
    assert service.handle_notification("musev3", "dev", MUSE_SERVICE, MUSE_DATA, DATA_FRAME) is None
