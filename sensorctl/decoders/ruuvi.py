"""RuuviTag data format 5 (RAWv2) manufacturer data decoder.

Layout: https://github.com/ruuvi/ruuvi-sensor-protocols/blob/master/dataformat_05.md
All multi-byte fields are big-endian.
"""

from __future__ import annotations

from sensorctl.core.fields import format_mac, read_bytes, read_field, read_uint
from sensorctl.core.model import SensorReading

_HEADER = bytes.fromhex("990405")
_MIN_LENGTH = 26
_BODY = len(_HEADER)


def decode(data: bytes) -> SensorReading | None:
    if len(data) < _MIN_LENGTH or data[: len(_HEADER)] != _HEADER:
        return None

    power_info = read_uint(data, _BODY + 12, 2, byteorder="big")
    voltage_raw = power_info >> 5
    tx_power_raw = power_info & 0x1F

    return {
        "temperature_C": read_field(data, _BODY, 2, signed=True, byteorder="big", factor=0.005, sentinel=0x8000),
        "humidity_percent": read_field(data, _BODY + 2, 2, byteorder="big", factor=0.0025, sentinel=0xFFFF),
        "pressure_Pa": _offset(read_field(data, _BODY + 4, 2, byteorder="big", sentinel=0xFFFF), 50000),
        "acceleration_x_mg": read_field(data, _BODY + 6, 2, signed=True, byteorder="big", sentinel=0x8000),
        "acceleration_y_mg": read_field(data, _BODY + 8, 2, signed=True, byteorder="big", sentinel=0x8000),
        "acceleration_z_mg": read_field(data, _BODY + 10, 2, signed=True, byteorder="big", sentinel=0x8000),
        "battery_voltage_mV": None if voltage_raw == 0x07FF else 1600 + voltage_raw,
        "tx_power_dBm": None if tx_power_raw == 0x1F else -40 + tx_power_raw * 2,
        "movement_counter": read_field(data, _BODY + 14, 1, sentinel=0xFF),
        "measurement_sequence": read_field(data, _BODY + 15, 2, byteorder="big", sentinel=0xFFFF),
        "mac_address": format_mac(read_bytes(data, _BODY + 17, 6)),
    }


def _offset(value: int | float | None, delta: int) -> int | float | None:
    return None if value is None else value + delta
