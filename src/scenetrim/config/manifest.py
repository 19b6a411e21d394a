from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Type

import yaml

from ..dedup import MaterialCompareConfig
from ..instancer import InstancerConfig
from ..merger import MergerConfig
from ..pipeline import OptimizationOptions

log = logging.getLogger(__name__)

_SECTIONS = ("materials", "instancing", "merging", "stages")

_STAGE_SWITCHES = {
    "deduplicate": "enable_material_dedup",
    "instance": "enable_instancing",
    "merge": "enable_merging",
}


def _coerce(context: str, name: str, expected: Any, value: Any) -> Any:
    """Check ``value`` against the declared field type without silent conversion."""
    if expected in (bool, "bool"):
        if not isinstance(value, bool):
            raise ValueError(f"{context}.{name} must be a boolean, got {value!r}")
        return value
    if expected in (int, "int"):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{context}.{name} must be an integer, got {value!r}")
        return value
    if expected in (float, "float"):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{context}.{name} must be a number, got {value!r}")
        return float(value)
    if not isinstance(value, str):
        raise ValueError(f"{context}.{name} must be a string, got {value!r}")
    return value


def _section_to_config(context: str, data: Any, config_cls: Type[Any]) -> Any:
    if data is None:
        return config_cls()
    if not isinstance(data, dict):
        raise ValueError(f"Manifest section '{context}' must be a mapping")
    known = {f.name: f.type for f in fields(config_cls) if f.init}
    values: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            log.warning("Ignoring unknown manifest key '%s.%s'", context, key)
            continue
        values[key] = _coerce(context, key, known[key], value)
    try:
        return config_cls(**values)
    except ValueError as exc:
        raise ValueError(f"Manifest section '{context}': {exc}") from exc


def _parse_stages(data: Any) -> Dict[str, bool]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("Manifest section 'stages' must be a mapping")
    switches: Dict[str, bool] = {}
    for key, value in data.items():
        target = _STAGE_SWITCHES.get(key)
        if target is None:
            log.warning("Ignoring unknown manifest key 'stages.%s'", key)
            continue
        switches[target] = _coerce("stages", key, bool, value)
    return switches


@dataclass
class OptimizationManifest:
    """Per-pass settings read from a YAML or JSON document."""

    materials: MaterialCompareConfig = field(default_factory=MaterialCompareConfig)
    instancing: InstancerConfig = field(default_factory=InstancerConfig)
    merging: MergerConfig = field(default_factory=MergerConfig)
    stages: Dict[str, bool] = field(default_factory=dict)
    source: Optional[Path] = None

    def options(self, base: Optional[OptimizationOptions] = None) -> OptimizationOptions:
        """Build :class:`OptimizationOptions`, stage switches applied on top of ``base``."""
        seed = base if base is not None else OptimizationOptions()
        return replace(
            seed,
            materials=replace(self.materials),
            instancing=replace(self.instancing),
            merging=replace(self.merging),
            **self.stages,
        )

    @classmethod
    def from_mapping(cls, data: Optional[Dict[str, Any]]) -> "OptimizationManifest":
        data = data or {}
        for key in data:
            if key not in _SECTIONS:
                log.warning("Ignoring unknown manifest section '%s'", key)
        return cls(
            materials=_section_to_config("materials", data.get("materials"), MaterialCompareConfig),
            instancing=_section_to_config("instancing", data.get("instancing"), InstancerConfig),
            merging=_section_to_config("merging", data.get("merging"), MergerConfig),
            stages=_parse_stages(data.get("stages")),
        )

    @classmethod
    def from_file(cls, path: Path) -> "OptimizationManifest":
        text = path.read_text(encoding="utf-8")
        data = cls._load_data_from_text(text, suffix=path.suffix)
        manifest = cls.from_mapping(data)
        manifest.source = path
        return manifest

    @classmethod
    def from_text(cls, text: str, *, suffix: str) -> "OptimizationManifest":
        data = cls._load_data_from_text(text, suffix=suffix)
        return cls.from_mapping(data)

    def as_dict(self) -> Dict[str, Any]:
        stages = {stage: self.stages[attr] for stage, attr in _STAGE_SWITCHES.items() if attr in self.stages}
        return {
            "materials": _config_dict(self.materials),
            "instancing": _config_dict(self.instancing),
            "merging": _config_dict(self.merging),
            "stages": stages,
        }

    @staticmethod
    def _load_data_from_text(text: str, *, suffix: str) -> Dict[str, Any]:
        ext = (suffix or "").lower()
        if ext in {".yaml", ".yml"}:
            try:
                loaded = yaml.safe_load(text)
            except yaml.YAMLError as exc:
                raise ValueError(f"Invalid YAML manifest: {exc}") from exc
            if loaded is None:
                return {}
            if not isinstance(loaded, dict):
                raise ValueError("YAML manifest must define a mapping at the top level")
            return loaded
        if ext == ".json":
            try:
                loaded = json.loads(text)
            except json.JSONDecodeError as exc:
                raise ValueError(f"Invalid JSON manifest: {exc}") from exc
            if not isinstance(loaded, dict):
                raise ValueError("JSON manifest must define a mapping at the top level")
            return loaded
        raise ValueError(f"Unsupported manifest type: {suffix}")


def _config_dict(config: Any) -> Dict[str, Any]:
    return {f.name: getattr(config, f.name) for f in fields(config) if f.init}


def load_manifest(path: Optional[Path]) -> OptimizationManifest:
    if path is None:
        return OptimizationManifest()
    return OptimizationManifest.from_file(Path(path))


__all__ = [
    "OptimizationManifest",
    "load_manifest",
]
