"""Decoder catalog loading and validation for YAML-based sensorctl descriptors."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from sensorctl.core.errors import DecoderLoadError, DecoderValidationError
from sensorctl.core.model import (
    Capability,
    DecoderDescriptor,
    ManufacturerCodeMatch,
    MatchRule,
    NameMatch,
    Plottable,
    ServiceIdMatch,
    StreamingSpec,
    normalize_service_id,
)
from sensorctl.decoders import CODECS

_UUID_RE = re.compile(r"^[0-9a-f]{4}$|^[0-9a-f]{8}$|^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise DecoderValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedCatalog:
    descriptors: dict[str, DecoderDescriptor]
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("sensorctl.schemas").joinpath("decoder.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _catalog_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "sensorctl/decoders", xdg_data / "sensorctl/decoders"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise DecoderLoadError(f"Could not read decoder file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise DecoderValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise DecoderValidationError(f"Decoder file {path} must contain a mapping at root")
    return loaded


def _normalize_uuid(value: str, *, context: str) -> str:
    normalized = normalize_service_id(value)
    if not _UUID_RE.match(normalized):
        raise DecoderValidationError(
            f"{context} must be a 16-bit, 32-bit, or 128-bit UUID string"
        )
    return normalized


def _build_match(doc: dict[str, Any]) -> MatchRule:
    match = doc["match"]
    if "name" in match:
        return NameMatch(name=match["name"])
    if "manufacturer" in match:
        return ManufacturerCodeMatch(code=match["manufacturer"].lower())
    return ServiceIdMatch(
        service_id=_normalize_uuid(match["service_uuid"], context=f"{doc['id']}.match.service_uuid")
    )


def _build_descriptor(doc: dict[str, Any], source: Path | Traversable) -> DecoderDescriptor:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise DecoderValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    codec = CODECS.get(doc["codec"])
    if codec is None:
        available = ", ".join(sorted(CODECS))
        raise DecoderValidationError(
            f"Unknown codec '{doc['codec']}' in {source}. Available: {available}"
        )

    capabilities = frozenset(Capability(c) for c in doc["capabilities"])
    unsupported = capabilities - codec.capabilities
    if unsupported:
        names = ", ".join(sorted(c.value for c in unsupported))
        raise DecoderValidationError(
            f"Codec '{codec.name}' does not support capabilities declared in {source}: {names}"
        )

    match = _build_match(doc)

    service_uuid: str | None = None
    if "service_uuid" in doc:
        service_uuid = _normalize_uuid(doc["service_uuid"], context=f"{doc['id']}.service_uuid")
    elif isinstance(match, ServiceIdMatch):
        service_uuid = match.service_id
    if Capability.SERVICE_DATA_DECODE in capabilities and service_uuid is None:
        raise DecoderValidationError(
            f"Decoder '{doc['id']}' decodes service data but declares no service_uuid"
        )

    streaming: StreamingSpec | None = None
    if Capability.STREAMING_DECODE in capabilities:
        if "streaming" not in doc:
            raise DecoderValidationError(
                f"Decoder '{doc['id']}' streams but declares no streaming endpoints"
            )
        streaming = StreamingSpec(
            **{
                key: _normalize_uuid(doc["streaming"][key], context=f"{doc['id']}.streaming.{key}")
                for key in ("service_uuid", "command_char_uuid", "data_char_uuid")
            }
        )

    return DecoderDescriptor(
        id=doc["id"],
        name=doc["name"],
        codec=codec.name,
        match=match,
        capabilities=capabilities,
        service_uuid=service_uuid,
        streaming=streaming,
        units=doc.get("units"),
        frequency=doc.get("frequency"),
        plottables=tuple(
            Plottable(name=name, unit=group.get("unit"), fields=tuple(group["fields"]))
            for name, group in doc.get("plottables", {}).items()
        ),
    )


def _iter_packaged_catalog_paths() -> list[Traversable]:
    catalog_root = resources.files("sensorctl.catalog")
    return [item for item in catalog_root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_catalog_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _catalog_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def load_catalog() -> LoadedCatalog:
    descriptors: dict[str, DecoderDescriptor] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_catalog_paths(), key=lambda p: p.name):
        doc = _read_yaml(path)
        descriptor = _build_descriptor(doc, path)
        descriptors[descriptor.id] = descriptor

    for path in _iter_user_catalog_paths():
        doc = _read_yaml(path)
        descriptor = _build_descriptor(doc, path)
        if descriptor.id in descriptors:
            warning = f"User decoder '{descriptor.id}' overrides packaged decoder"
            LOGGER.warning(warning)
            warnings.append(warning)
        descriptors[descriptor.id] = descriptor

    return LoadedCatalog(descriptors=descriptors, warnings=tuple(warnings))
