"""Apple proximity pairing (AirPods / Beats) manufacturer data decoder."""

from __future__ import annotations

from sensorctl.core.fields import nibbles, read_uint
from sensorctl.core.model import SensorReading

_PROXIMITY_PAIRING = bytes.fromhex("071901")
_MIN_LENGTH = 29

MODELS: dict[int, str] = {
    0x0220: "AirPods1",
    0x0F20: "AirPods2",
    0x1320: "AirPods3",
    0x0E20: "AirPodsPro1",
    0x1420: "AirPodsPro2 Lightning",
    0x2420: "AirPodsPro2 USB-C",
    0x0A20: "AirPodsMax Lightning",
    0x0320: "Powerbeats3",
    0x0520: "BeatsX",
    0x0620: "Beats Solo3",
}


def is_flipped(data: bytes) -> bool:
    high, _ = nibbles(data[5])
    return (high & 0x02) == 0


def decode(data: bytes) -> SensorReading | None:
    if len(data) < _MIN_LENGTH or data[2:5] != _PROXIMITY_PAIRING:
        return None

    flip = is_flipped(data)
    _, in_ear = nibbles(data[5])
    pod_high, pod_low = nibbles(data[6])
    charge, case_status = nibbles(data[7])

    # Flipped orientation swaps every left/right pair, not only the status nibbles.
    left_status, right_status = (pod_high, pod_low) if flip else (pod_low, pod_high)
    charge_left_mask, charge_right_mask = (0b10, 0b01) if flip else (0b01, 0b10)
    in_ear_left_mask, in_ear_right_mask = (0b1000, 0b10) if flip else (0b10, 0b1000)

    return {
        "left_status": left_status,
        "right_status": right_status,
        "case_status": case_status,
        "single_status": pod_low,
        "charge_left": (charge & charge_left_mask) != 0,
        "charge_right": (charge & charge_right_mask) != 0,
        "charge_case": (charge & 0b100) != 0,
        "charge_single": (charge & 0b01) != 0,
        "in_ear_left": (in_ear & in_ear_left_mask) != 0,
        "in_ear_right": (in_ear & in_ear_right_mask) != 0,
        "model": MODELS.get(read_uint(data, 5, 2, byteorder="big"), "Unknown"),
    }
