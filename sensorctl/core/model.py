"""Core data models used across loader, registry, decoders, and CLI."""

from __future__ import annotations

import datetime as dt
import enum
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Union

_BASE_UUID_SUFFIX = "-0000-1000-8000-00805f9b34fb"

SensorValue = Union[int, float, bool, str, bytes, dt.datetime, None]
SensorReading = dict[str, Any]


def normalize_service_id(value: str) -> str:
    """Lowercase a service identifier and collapse base UUIDs to 16-bit form."""
    normalized = value.strip().lower()
    if normalized.startswith("0000") and normalized.endswith(_BASE_UUID_SUFFIX):
        return normalized[4:8]
    return normalized


class Capability(str, enum.Enum):
    ADVERTISEMENT_DECODE = "advertisement"
    SERVICE_DATA_DECODE = "service_data"
    STREAMING_DECODE = "streaming"


@dataclass(frozen=True)
class NameMatch:
    name: str


@dataclass(frozen=True)
class ManufacturerCodeMatch:
    code: str


@dataclass(frozen=True)
class ServiceIdMatch:
    service_id: str


MatchRule = Union[NameMatch, ManufacturerCodeMatch, ServiceIdMatch]


@dataclass(frozen=True)
class StreamingSpec:
    service_uuid: str
    command_char_uuid: str
    data_char_uuid: str


@dataclass(frozen=True)
class Plottable:
    """A group of reading fields that share a unit and are charted together."""

    name: str
    unit: str | None
    fields: tuple[str, ...]


@dataclass(frozen=True)
class DecoderDescriptor:
    id: str
    name: str
    codec: str
    match: MatchRule
    capabilities: frozenset[Capability]
    service_uuid: str | None = None
    streaming: StreamingSpec | None = None
    units: str | None = None
    frequency: str | None = None
    plottables: tuple[Plottable, ...] = ()

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities


@dataclass(frozen=True)
class RawFrame:
    """Advertisement payload as delivered by the transport, plus its metadata."""

    manufacturer_data: bytes | None = None
    service_data: Mapping[str, bytes] = field(default_factory=dict)
    device_name: str | None = None

    def __post_init__(self) -> None:
        normalized = {normalize_service_id(key): bytes(value) for key, value in self.service_data.items()}
        object.__setattr__(self, "service_data", normalized)

    @property
    def manufacturer_prefix(self) -> str | None:
        if not self.manufacturer_data or len(self.manufacturer_data) < 2:
            return None
        return self.manufacturer_data[:2].hex()


@dataclass(frozen=True)
class DecodeResult:
    descriptor: DecoderDescriptor
    reading: SensorReading
