"""BTHome v2 service data decoder.

Object ids and scaling follow https://bthome.io/format/. Decoded objects are
collected into buckets because one object id may repeat within a frame.
"""

from __future__ import annotations

import datetime as dt
import enum
import logging
from dataclasses import dataclass, field

from sensorctl.core.fields import format_mac, read_bytes, read_int, read_uint
from sensorctl.core.model import SensorReading

LOGGER = logging.getLogger(__name__)

SERVICE_ID = "fcd2"
SUPPORTED_VERSION = 2

_MIN_LENGTH = 7
_ENCRYPTED_FLAG = 0x01
_MAC_INCLUDED_FLAG = 0x02
_VERSION_MASK = 0x60

PACKET_ID = 0x00
BUTTON_EVENT = 0x3A
DIMMER_EVENT = 0x3C
TIMESTAMP = 0x50
TEXT = 0x53
RAW = 0x54
DEVICE_TYPE_ID = 0xF0
FIRMWARE_VERSION_4 = 0xF1
FIRMWARE_VERSION_3 = 0xF2

BUTTON_EVENTS = (
    "press",
    "double_press",
    "triple_press",
    "long_press",
    "long_double_press",
    "long_triple_press",
)
DIMMER_EVENTS = ("rotate left", "rotate right")


class FieldKind(enum.Enum):
    MULTILEVEL = "multilevel"
    BINARY = "binary"
    SPECIAL = "special"


@dataclass(frozen=True)
class FieldDefinition:
    object_id: int
    kind: FieldKind
    label: str
    width: int = 1
    signed: bool = False
    factor: float | None = None
    unit: str | None = None
    states: tuple[str, str] | None = None


def _multilevel(
    object_id: int,
    label: str,
    width: int,
    *,
    signed: bool = False,
    factor: float | None = None,
    unit: str | None = None,
) -> FieldDefinition:
    return FieldDefinition(object_id, FieldKind.MULTILEVEL, label, width, signed, factor, unit)


def _binary(object_id: int, label: str, off: str, on: str) -> FieldDefinition:
    return FieldDefinition(object_id, FieldKind.BINARY, label, states=(off, on))


MULTILEVEL_SENSORS: dict[int, FieldDefinition] = {
    d.object_id: d
    for d in (
        _multilevel(0x01, "battery", 1, unit="%"),
        _multilevel(0x02, "temperature", 2, signed=True, factor=0.01, unit="°C"),
        _multilevel(0x03, "humidity", 2, factor=0.01, unit="%"),
        _multilevel(0x04, "pressure", 3, factor=0.01, unit="hPa"),
        _multilevel(0x05, "illuminance", 3, factor=0.01, unit="lux"),
        _multilevel(0x06, "mass", 2, factor=0.01, unit="kg"),
        _multilevel(0x07, "mass", 2, factor=0.01, unit="lb"),
        _multilevel(0x08, "dewpoint", 2, signed=True, factor=0.01, unit="°C"),
        _multilevel(0x09, "count", 1),
        _multilevel(0x0A, "energy", 3, factor=0.001, unit="kWh"),
        _multilevel(0x0B, "power", 3, factor=0.01, unit="W"),
        _multilevel(0x0C, "voltage", 2, factor=0.001, unit="V"),
        _multilevel(0x0D, "pm2.5", 2, unit="ug/m3"),
        _multilevel(0x0E, "pm10", 2, unit="ug/m3"),
        _multilevel(0x12, "co2", 2, unit="ppm"),
        _multilevel(0x13, "tvoc", 2, unit="ug/m3"),
        _multilevel(0x14, "moisture", 2, factor=0.01, unit="%"),
        _multilevel(0x2E, "humidity", 1, unit="%"),
        _multilevel(0x2F, "moisture", 1, unit="%"),
        _multilevel(0x3D, "count", 2),
        _multilevel(0x3E, "count", 4),
        _multilevel(0x3F, "rotation", 2, signed=True, factor=0.1, unit="°"),
        _multilevel(0x40, "distance", 2, unit="mm"),
        _multilevel(0x41, "distance", 2, factor=0.1, unit="m"),
        _multilevel(0x42, "duration", 3, factor=0.001, unit="s"),
        _multilevel(0x43, "current", 2, factor=0.001, unit="A"),
        _multilevel(0x44, "speed", 2, factor=0.01, unit="m/s"),
        _multilevel(0x45, "temperature", 2, signed=True, factor=0.1, unit="°C"),
        _multilevel(0x46, "uv index", 1, factor=0.1),
        _multilevel(0x47, "volume", 2, factor=0.1, unit="L"),
        _multilevel(0x48, "volume", 2, unit="mL"),
        _multilevel(0x49, "volume flow rate", 2, factor=0.001, unit="m3/hr"),
        _multilevel(0x4A, "voltage", 2, factor=0.1, unit="V"),
        _multilevel(0x4B, "gas", 3, factor=0.001, unit="m3"),
        _multilevel(0x4C, "gas", 4, factor=0.001, unit="m3"),
        _multilevel(0x4D, "energy", 4, factor=0.001, unit="kWh"),
        _multilevel(0x4E, "volume", 4, factor=0.001, unit="L"),
        _multilevel(0x4F, "water", 4, factor=0.001, unit="L"),
        _multilevel(0x51, "acceleration", 2, factor=0.001, unit="m/s²"),
        _multilevel(0x52, "gyroscope", 2, factor=0.001, unit="°/s"),
    )
}

BINARY_SENSORS: dict[int, FieldDefinition] = {
    d.object_id: d
    for d in (
        _binary(0x0F, "generic boolean", "Off", "On"),
        _binary(0x10, "power", "Off", "On"),
        _binary(0x11, "opening", "Closed", "Open"),
        _binary(0x15, "battery", "Normal", "Low"),
        _binary(0x16, "battery charging", "Not Charging", "Charging"),
        _binary(0x17, "carbon monoxide", "Not detected", "Detected"),
        _binary(0x18, "cold", "Normal", "Cold"),
        _binary(0x19, "connectivity", "Disconnected", "Connected"),
        _binary(0x1A, "door", "Closed", "Open"),
        _binary(0x1B, "garage door", "Closed", "Open"),
        _binary(0x1C, "gas", "Clear", "Detected"),
        _binary(0x1D, "heat", "Normal", "Hot"),
        _binary(0x1E, "light", "No light", "Light detected"),
        _binary(0x1F, "lock", "Locked", "Unlocked"),
        _binary(0x20, "moisture", "Dry", "Wet"),
        _binary(0x21, "motion", "Clear", "Detected"),
        _binary(0x22, "moving", "Not moving", "Moving"),
        _binary(0x23, "occupancy", "Clear", "Detected"),
        _binary(0x24, "plug", "Unplugged", "Plugged in"),
        _binary(0x25, "presence", "Away", "Home"),
        _binary(0x26, "problem", "OK", "Problem"),
        _binary(0x27, "running", "Not Running", "Running"),
        _binary(0x28, "safety", "Unsafe", "Safe"),
        _binary(0x29, "smoke", "Clear", "Detected"),
        _binary(0x2A, "sound", "Clear", "Detected"),
        _binary(0x2B, "tamper", "Off", "On"),
        _binary(0x2C, "vibration", "Clear", "Detected"),
        _binary(0x2D, "window", "Closed", "Open"),
    )
}


SPECIAL_SENSORS: dict[int, FieldDefinition] = {
    d.object_id: d
    for d in (
        FieldDefinition(TIMESTAMP, FieldKind.SPECIAL, "timestamp", 4),
        FieldDefinition(TEXT, FieldKind.SPECIAL, "text", 0),
        FieldDefinition(RAW, FieldKind.SPECIAL, "raw", 0),
        FieldDefinition(DEVICE_TYPE_ID, FieldKind.SPECIAL, "device_type_id", 2),
        FieldDefinition(FIRMWARE_VERSION_4, FieldKind.SPECIAL, "firmware_version", 4),
        FieldDefinition(FIRMWARE_VERSION_3, FieldKind.SPECIAL, "firmware_version", 3),
    )
}

OBJECT_DEFINITIONS: dict[int, FieldDefinition] = {
    **MULTILEVEL_SENSORS,
    **BINARY_SENSORS,
    **SPECIAL_SENSORS,
}


@dataclass
class _Buckets:
    sensors: list[dict] = field(default_factory=list)
    binary_sensors: list[dict] = field(default_factory=list)
    special_sensors: list[dict] = field(default_factory=list)
    events: list[dict] = field(default_factory=list)

    def merge_into(self, reading: SensorReading) -> SensorReading:
        for name in ("sensors", "binary_sensors", "special_sensors", "events"):
            bucket = getattr(self, name)
            if bucket:
                reading[name] = bucket
        return reading


def parse_header(header: int) -> tuple[bool, bool, int]:
    """Return (encrypted, mac_included, version) for a BTHome header byte."""
    return (
        bool(header & _ENCRYPTED_FLAG),
        bool(header & _MAC_INCLUDED_FLAG),
        (header & _VERSION_MASK) >> 5,
    )


def decode(data: bytes) -> SensorReading | None:
    """Decode BTHome v2 service data.

    Returns ``None`` when the frame is not plain BTHome v2, and an empty
    reading when the object stream contains an id this decoder does not know,
    since the width of anything after it cannot be determined.
    """
    if len(data) < _MIN_LENGTH:
        return None
    encrypted, mac_included, version = parse_header(data[0])
    if encrypted or version != SUPPORTED_VERSION:
        return None

    reading: SensorReading = {}
    offset = 1
    if mac_included:
        reading["mac_address"] = format_mac(read_bytes(data, 1, 6), reverse=True)
        offset = 7

    buckets = _Buckets()
    while offset < len(data):
        next_offset = _decode_object(data, offset, reading, buckets)
        if next_offset is None:
            LOGGER.debug("Unsupported BTHome object id 0x%02x in %s", data[offset], data.hex())
            return {}
        offset = next_offset
    return buckets.merge_into(reading)


def _decode_object(data: bytes, offset: int, reading: SensorReading, buckets: _Buckets) -> int | None:
    """Decode one object starting at ``offset`` and return the next offset."""
    object_id = data[offset]
    offset += 1

    if object_id == PACKET_ID:
        reading["packet_id"] = read_uint(data, offset, 1)
        return offset + 1
    if object_id == BUTTON_EVENT:
        buckets.events.append(_button_event(read_uint(data, offset, 1)))
        return offset + 1
    if object_id == DIMMER_EVENT:
        buckets.events.append(_dimmer_event(read_uint(data, offset, 1), read_uint(data, offset + 1, 1)))
        return offset + 2

    definition = OBJECT_DEFINITIONS.get(object_id)
    if definition is None:
        return None

    match definition.kind:
        case FieldKind.MULTILEVEL:
            buckets.sensors.append(_multilevel_entry(definition, data, offset))
            return offset + definition.width
        case FieldKind.BINARY:
            value = read_uint(data, offset, 1) == 0x01
            off, on = definition.states or ("Off", "On")
            buckets.binary_sensors.append(
                {"label": definition.label, "value": value, "state": on if value else off}
            )
            return offset + 1
        case FieldKind.SPECIAL:
            value, offset = _special_value(definition, data, offset)
            buckets.special_sensors.append({"label": definition.label, "value": value})
            return offset


def _multilevel_entry(definition: FieldDefinition, data: bytes, offset: int) -> dict:
    if definition.signed:
        raw = read_int(data, offset, definition.width)
    else:
        raw = read_uint(data, offset, definition.width)
    entry: dict = {
        "label": definition.label,
        "value": raw * definition.factor if definition.factor is not None else raw,
    }
    if definition.unit is not None:
        entry["unit"] = definition.unit
    return entry


def _special_value(definition: FieldDefinition, data: bytes, offset: int) -> tuple[object, int]:
    object_id = definition.object_id
    if object_id in (TEXT, RAW):
        length = read_uint(data, offset, 1)
        payload = read_bytes(data, offset + 1, length)
        value = payload.decode("utf-8", errors="replace") if object_id == TEXT else payload.hex()
        return value, offset + 1 + length
    if object_id == TIMESTAMP:
        seconds = read_uint(data, offset, definition.width)
        return dt.datetime.fromtimestamp(seconds, tz=dt.timezone.utc), offset + definition.width
    if object_id == DEVICE_TYPE_ID:
        return read_uint(data, offset, definition.width), offset + definition.width
    # Firmware versions are little-endian, most significant part last.
    parts = reversed(read_bytes(data, offset, definition.width))
    return ".".join(str(p) for p in parts), offset + definition.width


def _button_event(code: int) -> dict:
    event: dict = {"type": "button"}
    if 0 < code <= len(BUTTON_EVENTS):
        event["event"] = BUTTON_EVENTS[code - 1]
    elif code:
        event["event_code"] = code
    return event


def _dimmer_event(code: int, steps: int) -> dict:
    event: dict = {"type": "dimmer"}
    if 0 < code <= len(DIMMER_EVENTS):
        event["event"] = DIMMER_EVENTS[code - 1]
        event["steps"] = steps
    elif code:
        event["event_code"] = code
    return event
