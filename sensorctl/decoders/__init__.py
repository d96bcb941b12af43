"""Built-in codec implementations, keyed by the codec name used in catalog files."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from sensorctl.core.context import DeviceContextStore
from sensorctl.core.model import Capability, SensorReading, StreamingSpec
from sensorctl.decoders import airpods, bthome, mopeka, muse_v3, ruuvi


@dataclass(frozen=True)
class Codec:
    name: str
    decode: Callable[[bytes], SensorReading | None] | None = None
    streaming: Callable[[StreamingSpec, DeviceContextStore], muse_v3.MuseV3Decoder] | None = None
    capabilities: frozenset[Capability] = frozenset()


CODECS: dict[str, Codec] = {
    "ruuvi": Codec("ruuvi", decode=ruuvi.decode, capabilities=frozenset({Capability.ADVERTISEMENT_DECODE})),
    "mopeka": Codec("mopeka", decode=mopeka.decode, capabilities=frozenset({Capability.ADVERTISEMENT_DECODE})),
    "airpods": Codec("airpods", decode=airpods.decode, capabilities=frozenset({Capability.ADVERTISEMENT_DECODE})),
    "bthome": Codec("bthome", decode=bthome.decode, capabilities=frozenset({Capability.SERVICE_DATA_DECODE})),
    "muse_v3": Codec(
        "muse_v3",
        streaming=muse_v3.MuseV3Decoder,
        capabilities=frozenset({Capability.STREAMING_DECODE}),
    ),
}
