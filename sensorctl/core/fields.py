"""Byte and bit level field readers shared by all decoders."""

from __future__ import annotations

from typing import Literal

from sensorctl.core.errors import TruncatedFrameError

ByteOrder = Literal["little", "big"]


def _check_bounds(data: bytes, offset: int, width: int) -> None:
    if offset < 0 or width <= 0 or offset + width > len(data):
        raise TruncatedFrameError(offset, width, len(data))


def read_uint(data: bytes, offset: int, width: int, *, byteorder: ByteOrder = "little") -> int:
    _check_bounds(data, offset, width)
    return int.from_bytes(data[offset : offset + width], byteorder)


def read_int(data: bytes, offset: int, width: int, *, byteorder: ByteOrder = "little") -> int:
    _check_bounds(data, offset, width)
    return int.from_bytes(data[offset : offset + width], byteorder, signed=True)


def read_bytes(data: bytes, offset: int, length: int) -> bytes:
    if length == 0:
        return b""
    _check_bounds(data, offset, length)
    return bytes(data[offset : offset + length])


def read_field(
    data: bytes,
    offset: int,
    width: int,
    *,
    signed: bool = False,
    byteorder: ByteOrder = "little",
    factor: float | None = None,
    sentinel: int | None = None,
) -> int | float | None:
    """Read a numeric field, mapping the sentinel pattern to ``None``.

    The sentinel is compared against the unsigned raw bit pattern so that
    signed fields can declare patterns such as ``0x8000``.
    """
    raw = read_uint(data, offset, width, byteorder=byteorder)
    if sentinel is not None and raw == sentinel:
        return None
    value = read_int(data, offset, width, byteorder=byteorder) if signed else raw
    if factor is not None:
        return value * factor
    return value


def nibbles(value: int) -> tuple[int, int]:
    """Split a byte into its (high, low) nibbles."""
    return (value >> 4) & 0x0F, value & 0x0F


def format_mac(raw: bytes, *, reverse: bool = False) -> str:
    ordered = bytes(reversed(raw)) if reverse else bytes(raw)
    return ":".join(f"{b:02x}" for b in ordered)
