"""Advertisement-to-decoder matching logic."""

from __future__ import annotations

from collections.abc import Iterable

from sensorctl.core.model import (
    DecoderDescriptor,
    ManufacturerCodeMatch,
    NameMatch,
    RawFrame,
    ServiceIdMatch,
    normalize_service_id,
)

# Rule kinds in the order they are tried.
_PRIORITY = (NameMatch, ManufacturerCodeMatch, ServiceIdMatch)


def _name_match(device_name: str | None, descriptor: DecoderDescriptor) -> bool:
    rule = descriptor.match
    return isinstance(rule, NameMatch) and device_name is not None and rule.name == device_name


def _manufacturer_match(prefix_hex: str | None, descriptor: DecoderDescriptor) -> bool:
    rule = descriptor.match
    return isinstance(rule, ManufacturerCodeMatch) and prefix_hex is not None and rule.code == prefix_hex.lower()


def _service_match(service_ids: frozenset[str], descriptor: DecoderDescriptor) -> bool:
    rule = descriptor.match
    return isinstance(rule, ServiceIdMatch) and rule.service_id in service_ids


class DecoderRegistry:
    """Immutable, ordered set of decoder descriptors."""

    def __init__(self, descriptors: Iterable[DecoderDescriptor]) -> None:
        self._descriptors = tuple(descriptors)
        self._by_id = {d.id: d for d in self._descriptors}

    def __iter__(self):
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)

    def get(self, decoder_id: str) -> DecoderDescriptor | None:
        return self._by_id.get(decoder_id)

    def find_decoder(
        self,
        device_name: str | None = None,
        manufacturer_prefix_hex: str | None = None,
        service_identifiers: Iterable[str] | None = None,
    ) -> DecoderDescriptor | None:
        service_ids = frozenset(normalize_service_id(s) for s in service_identifiers or ())
        for kind in _PRIORITY:
            for descriptor in self._descriptors:
                if not isinstance(descriptor.match, kind):
                    continue
                if (
                    _name_match(device_name, descriptor)
                    or _manufacturer_match(manufacturer_prefix_hex, descriptor)
                    or _service_match(service_ids, descriptor)
                ):
                    return descriptor
        return None

    def match(self, frame: RawFrame) -> DecoderDescriptor | None:
        return self.find_decoder(
            device_name=frame.device_name,
            manufacturer_prefix_hex=frame.manufacturer_prefix,
            service_identifiers=frame.service_data.keys(),
        )
