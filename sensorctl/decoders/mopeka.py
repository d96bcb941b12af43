"""Mopeka Pro tank level sensor manufacturer data decoder."""

from __future__ import annotations

import math

from sensorctl.core.fields import format_mac, read_bytes, read_uint
from sensorctl.core.model import SensorReading

_HEADER = bytes.fromhex("5900")
_LENGTH = 12

# Propane speed-of-sound correction, evaluated at the sensor temperature.
PROPANE_COEFFICIENTS = (0.573045, -0.002822, -0.00000535)


def propane_level_mm(raw_level_mm: int, temperature_c: int) -> float:
    c0, c1, c2 = PROPANE_COEFFICIENTS
    factor = c0 + (c1 * temperature_c) + (c2 * temperature_c * temperature_c)
    return math.floor(raw_level_mm * factor * 100 + 0.5) / 100


def decode(data: bytes) -> SensorReading | None:
    if len(data) != _LENGTH or data[: len(_HEADER)] != _HEADER:
        return None

    status = data[4]
    temperature_c = (status & 0x7F) - 40
    raw_level = read_uint(data, 5, 2) & 0x3FFF

    return {
        "battery_voltage_V": (data[3] & 0x7F) / 32.0,
        "sync_pressed": (status & 0x80) > 0,
        "temperature_C": temperature_c,
        "quality_stars": data[6] >> 6,
        "acceleration_x": data[10],
        "acceleration_y": data[11],
        "raw_level_mm": raw_level,
        "propane_level_mm": propane_level_mm(raw_level, temperature_c),
        "mac_address": format_mac(read_bytes(data, 7, 3)),
    }
