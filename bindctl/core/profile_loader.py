"""Profile loading and validation for YAML-based bindctl configuration."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from bindctl.core.errors import ProfileLoadError, ProfileValidationError
from bindctl.core.model import DaemonSpec, PathSpec, PollSpec, Profile, TimingSpec

LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


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
class LoadedProfile:
    profile: Profile
    sources: tuple[str, ...]
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("bindctl.schemas").joinpath("profile.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def user_profile_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "bindctl/profile.yaml"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ProfileLoadError(f"Could not read profile {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ProfileValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ProfileValidationError(f"Profile {path} must contain a mapping at root")
    return loaded


def _merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _poll(doc: dict[str, Any], default: PollSpec) -> PollSpec:
    if not doc:
        return default
    return PollSpec(interval_s=float(doc["interval_s"]), max_attempts=int(doc["max_attempts"]))


def _build_profile(doc: dict[str, Any], sources: str, base_dir: Path | None) -> Profile:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ProfileValidationError(f"Schema validation failed for {sources}{where}: {exc.message}") from exc

    daemon_doc = doc["daemon"]
    executable: Path | None = None
    if "executable" in daemon_doc:
        executable = Path(daemon_doc["executable"]).expanduser()
        if not executable.is_absolute() and base_dir is not None:
            executable = base_dir / executable

    paths_doc = doc.get("paths", {})
    timing_doc = doc.get("timing", {})
    defaults = TimingSpec()
    default_paths = PathSpec()

    return Profile(
        class_code=doc["class_code"].lower(),
        kernel_driver=doc["kernel_driver"],
        kernel_module=doc["kernel_module"],
        passthrough_driver=doc["passthrough_driver"],
        passthrough_module=doc["passthrough_module"],
        daemon=DaemonSpec(
            name=daemon_doc["name"],
            executable=executable,
            readiness_timeout_s=float(daemon_doc.get("readiness_timeout_s", 30.0)),
            readiness_interval_s=float(daemon_doc.get("readiness_interval_s", 0.1)),
        ),
        paths=PathSpec(
            sysfs_root=Path(paths_doc.get("sysfs_root", default_paths.sysfs_root)),
            run_dir=Path(paths_doc.get("run_dir", default_paths.run_dir)),
            artifact_dir=Path(paths_doc.get("artifact_dir", default_paths.artifact_dir)),
            artifact_prefix=paths_doc.get("artifact_prefix", default_paths.artifact_prefix),
        ),
        timing=TimingSpec(
            terminate=_poll(timing_doc.get("terminate", {}), defaults.terminate),
            unbind=_poll(timing_doc.get("unbind", {}), defaults.unbind),
            bind=_poll(timing_doc.get("bind", {}), defaults.bind),
            settle_s=float(timing_doc.get("settle_s", defaults.settle_s)),
        ),
    )


def load_profile(path: Path | None = None) -> LoadedProfile:
    """Load the packaged profile, overlaid by ``path`` or the user profile."""
    packaged = resources.files("bindctl.profiles").joinpath("default.yaml")
    doc = _read_yaml(packaged)
    sources = ["packaged:default.yaml"]
    warnings: list[str] = []
    base_dir: Path | None = None

    overlay_path = path
    if overlay_path is None:
        candidate = user_profile_path()
        if candidate.is_file():
            overlay_path = candidate
    elif not overlay_path.is_file():
        raise ProfileLoadError(f"Profile {overlay_path} does not exist")

    if overlay_path is not None:
        overlay = _read_yaml(overlay_path)
        overridden = sorted(key for key in overlay if key in doc)
        if overridden:
            warning = f"Profile {overlay_path} overrides packaged settings: {', '.join(overridden)}"
            LOGGER.warning(warning)
            warnings.append(warning)
        doc = _merge(doc, overlay)
        sources.append(str(overlay_path))
        base_dir = overlay_path.parent

    profile = _build_profile(doc, " + ".join(sources), base_dir)
    return LoadedProfile(profile=profile, sources=tuple(sources), warnings=tuple(warnings))
