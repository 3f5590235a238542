"""Profile loading and validation for YAML-based peripheral profiles."""

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

from lockctl.core.errors import ProfileLoadError, ProfileValidationError
from lockctl.core.model import PeripheralConfig, ReconnectSpec

DEFAULT_PROFILE_ID = "cc2541_door"

_MAC_RE = re.compile(r"^[0-9A-F]{2}(?::[0-9A-F]{2}){5}$")
_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

# Intent names and codes such as "on" or "Y" stay strings, not YAML 1.1 booleans.
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
            raise ProfileValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedProfiles:
    profiles: dict[str, PeripheralConfig]
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("lockctl.schemas").joinpath("profile.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _profile_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "lockctl/profiles", xdg_data / "lockctl/profiles"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ProfileLoadError(f"Could not read profile file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ProfileValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ProfileValidationError(f"Profile file {path} must contain a mapping at root")
    return loaded


def normalize_address(value: str, *, context: str = "address") -> str:
    normalized = value.strip().upper().replace("-", ":")
    if not _MAC_RE.match(normalized):
        raise ProfileValidationError(f"{context} must look like AA:BB:CC:DD:EE:FF, got '{value}'")
    return normalized


def _normalize_uuid(value: str, *, context: str) -> str:
    normalized = value.strip().lower()
    if not _UUID_RE.match(normalized):
        raise ProfileValidationError(f"{context} must be a 128-bit UUID string")
    return normalized


def _normalize_code(value: Any, *, context: str) -> str:
    if not isinstance(value, str) or len(value) != 1 or not value.isascii():
        raise ProfileValidationError(f"{context} must be a single ASCII character")
    return value


def _normalize_bool(value: Any, *, context: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    raise ProfileValidationError(f"{context} must be boolean true/false")


def _build_reconnect(doc: dict[str, Any], *, context: str) -> ReconnectSpec:
    spec = ReconnectSpec(
        max_retries=int(doc.get("max_retries", 0)),
        initial_delay_s=float(doc.get("initial_delay_s", 1.0)),
        max_delay_s=float(doc.get("max_delay_s", 30.0)),
        backoff=float(doc.get("backoff", 2.0)),
        jitter_ratio=float(doc.get("jitter_ratio", 0.1)),
    )
    if spec.max_delay_s < spec.initial_delay_s:
        raise ProfileValidationError(f"{context}.max_delay_s must be >= initial_delay_s")
    return spec


def _build_profile(doc: dict[str, Any], source: Path | Traversable) -> PeripheralConfig:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ProfileValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    profile_id = doc["id"]
    gatt = doc["gatt"]
    commands = {
        intent: _normalize_code(code, context=f"{profile_id}.commands.{intent}")
        for intent, code in doc["commands"].items()
    }
    return PeripheralConfig(
        id=profile_id,
        name=doc["name"],
        address=normalize_address(doc["address"], context=f"{profile_id}.address"),
        service_uuid=_normalize_uuid(gatt["service_uuid"], context=f"{profile_id}.gatt.service_uuid"),
        characteristic_uuid=_normalize_uuid(
            gatt["characteristic_uuid"],
            context=f"{profile_id}.gatt.characteristic_uuid",
        ),
        commands=commands,
        write_with_response=_normalize_bool(
            gatt.get("write_with_response", False),
            context=f"{profile_id}.gatt.write_with_response",
        ),
        connect_timeout_s=float(doc.get("connect_timeout_s", 10.0)),
        reconnect=_build_reconnect(doc.get("reconnect", {}), context=f"{profile_id}.reconnect"),
    )


def _iter_packaged_profile_paths() -> list[Traversable]:
    profile_root = resources.files("lockctl.profiles")
    return [item for item in profile_root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_profile_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _profile_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def load_profiles() -> LoadedProfiles:
    profiles: dict[str, PeripheralConfig] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_profile_paths(), key=lambda p: p.name):
        profile = _build_profile(_read_yaml(path), path)
        profiles[profile.id] = profile

    for path in _iter_user_profile_paths():
        profile = _build_profile(_read_yaml(path), path)
        if profile.id in profiles:
            warning = f"User profile '{profile.id}' overrides packaged profile"
            LOGGER.warning(warning)
            warnings.append(warning)
        profiles[profile.id] = profile

    return LoadedProfiles(profiles=profiles, warnings=tuple(warnings))


def select_profile(loaded: LoadedProfiles, profile_id: str | None = None) -> PeripheralConfig:
    wanted = profile_id or DEFAULT_PROFILE_ID
    profile = loaded.profiles.get(wanted)
    if profile is None:
        available = ", ".join(sorted(loaded.profiles)) or "<none>"
        raise ProfileLoadError(f"Unknown profile '{wanted}'. Available: {available}")
    return profile
