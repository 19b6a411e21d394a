"""Collapse near-identical materials into one shared material.

Clustering is greedy in discovery order: every unclustered material opens a
cluster and absorbs each later unclustered material that is similar to it.
Later members are never re-tested against each other, so clusters need not be
transitive (A~B and A~C does not imply B~C).
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple

from .materials import (
    VARIANT_LABELS,
    Material,
    Texture,
    clone_material,
    iter_textures,
    require_kind,
)
from .scene import Mesh, SceneGraph

LOG = logging.getLogger(__name__)

TextureIdentityMode = Literal["source_url", "object"]
TEXTURE_IDENTITY_MODES: Tuple[str, ...] = ("source_url", "object")

MERGED_NAME_PREFIX = "Merged_"


@dataclass
class MaterialCompareConfig:
    """Similarity thresholds; colour distance is the L1 sum over R, G, B."""

    color_threshold: float = 0.1
    alpha_threshold: float = 0.05
    metallic_threshold: float = 0.1
    roughness_threshold: float = 0.1
    compare_textures: bool = True
    texture_identity_mode: TextureIdentityMode = "source_url"

    def __post_init__(self) -> None:
        if self.texture_identity_mode not in TEXTURE_IDENTITY_MODES:
            raise ValueError(
                f"texture_identity_mode must be one of {', '.join(TEXTURE_IDENTITY_MODES)}; "
                f"got {self.texture_identity_mode!r}"
            )


@dataclass(eq=False)
class MaterialInfo:
    material: Material
    meshes: List[Mesh] = field(default_factory=list)
    signature: Tuple[Any, ...] = ()

    def describe(self) -> Dict[str, Any]:
        return {
            "id": self.material.id,
            "name": self.material.name,
            "kind": self.material.kind,
            "meshes": [mesh.id for mesh in self.meshes],
        }


@dataclass
class OptimizationResult:
    original_count: int = 0
    optimized_count: int = 0
    removed_count: int = 0
    groups: List[List[MaterialInfo]] = field(default_factory=list)
    merged_materials: List[Material] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "original_count": self.original_count,
            "optimized_count": self.optimized_count,
            "removed_count": self.removed_count,
            "groups": [[info.describe() for info in group] for group in self.groups],
            "merged_materials": [material.id for material in self.merged_materials],
        }


def _round_color(color: Optional[Tuple[float, float, float]]) -> Optional[Tuple[float, ...]]:
    if color is None:
        return None
    return tuple(round(c, 2) for c in color)


def texture_key(texture: Texture, mode: TextureIdentityMode) -> Any:
    """Identity of ``texture`` for comparisons: its URL (falling back to the id) or the object."""
    if mode == "source_url":
        return texture.url or f"id:{texture.id}"
    if mode == "object":
        return id(texture)
    raise ValueError(f"Unknown texture identity mode: {mode!r}")


def material_signature(material: Material, config: Optional[MaterialCompareConfig] = None) -> Tuple[Any, ...]:
    """Rounded feature tuple used to label materials in diagnostics."""
    cfg = config or MaterialCompareConfig()
    kind = require_kind(material)
    if kind == "standard":
        features: List[Any] = [
            VARIANT_LABELS[kind],
            ("diffuse", _round_color(material.diffuse_color)),
            ("specular", _round_color(material.specular_color)),
            ("emissive", _round_color(material.emissive_color)),
            ("alpha", round(material.alpha, 2)),
        ]
    elif kind == "pbr":
        features = [
            VARIANT_LABELS[kind],
            ("albedo", _round_color(material.albedo_color)),
            ("metallic", round(material.metallic, 2)),
            ("roughness", round(material.roughness, 2)),
            ("alpha", round(material.alpha, 2)),
        ]
    else:  # pragma: no cover - require_kind rejects other tags
        raise TypeError(f"Unsupported material variant: {kind!r}")
    if cfg.compare_textures:
        for slot, texture in iter_textures(material):
            if texture is not None:
                key = texture.url or texture.id if cfg.texture_identity_mode == "source_url" else texture.id
                features.append((slot, key))
    return tuple(features)


def _colors_similar(a: Optional[Tuple[float, ...]], b: Optional[Tuple[float, ...]], threshold: float) -> bool:
    if a is None and b is None:
        return True
    if a is None or b is None:
        return False
    diff = abs(a[0] - b[0]) + abs(a[1] - b[1]) + abs(a[2] - b[2])
    return diff <= threshold * 3


def _textures_match(a: Material, b: Material, mode: TextureIdentityMode) -> bool:
    for (_, tex_a), (_, tex_b) in zip(iter_textures(a), iter_textures(b)):
        if tex_a is None and tex_b is None:
            continue
        if tex_a is None or tex_b is None:
            return False
        if texture_key(tex_a, mode) != texture_key(tex_b, mode):
            return False
    return True


def materials_similar(a: Material, b: Material, config: Optional[MaterialCompareConfig] = None) -> bool:
    """Symmetric similarity test; different variants are never similar."""
    cfg = config or MaterialCompareConfig()
    kind = require_kind(a)
    if kind != require_kind(b):
        return False
    if kind == "standard":
        if not _colors_similar(a.diffuse_color, b.diffuse_color, cfg.color_threshold):
            return False
        if not _colors_similar(a.specular_color, b.specular_color, cfg.color_threshold):
            return False
        if not _colors_similar(a.emissive_color, b.emissive_color, cfg.color_threshold):
            return False
    elif kind == "pbr":
        if not _colors_similar(a.albedo_color, b.albedo_color, cfg.color_threshold):
            return False
        if abs(a.metallic - b.metallic) > cfg.metallic_threshold:
            return False
        if abs(a.roughness - b.roughness) > cfg.roughness_threshold:
            return False
    else:  # pragma: no cover - require_kind rejects other tags
        raise TypeError(f"Unsupported material variant: {kind!r}")
    if abs(a.alpha - b.alpha) > cfg.alpha_threshold:
        return False
    if cfg.compare_textures:
        return _textures_match(a, b, cfg.texture_identity_mode)
    return True


class MaterialDeduplicator:
    """Material de-dup pass over one :class:`SceneGraph`."""

    def __init__(
        self,
        graph: SceneGraph,
        config: Optional[MaterialCompareConfig] = None,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.graph = graph
        self.config = config or MaterialCompareConfig()
        self.log = logger or LOG

    # ------------------------------------------------------------------
    # analysis
    # ------------------------------------------------------------------
    def analyze(self) -> List[MaterialInfo]:
        """Map every referenced material to the meshes using it, in discovery order."""
        infos: Dict[str, MaterialInfo] = {}
        for mesh in self.graph.meshes:
            material = mesh.material
            if material is None:
                continue
            info = infos.get(material.id)
            if info is None:
                info = MaterialInfo(material=material, signature=material_signature(material, self.config))
                infos[material.id] = info
            info.meshes.append(mesh)
        return list(infos.values())

    def cluster(self, infos: Sequence[MaterialInfo]) -> List[List[MaterialInfo]]:
        groups: List[List[MaterialInfo]] = []
        clustered = set()
        for info in infos:
            if info.material.id in clustered:
                continue
            group = [info]
            clustered.add(info.material.id)
            for other in infos:
                if other.material.id in clustered:
                    continue
                if materials_similar(info.material, other.material, self.config):
                    group.append(other)
                    clustered.add(other.material.id)
            if len(group) > 2:
                self._log_non_transitive(group)
            groups.append(group)
        return groups

    def _log_non_transitive(self, group: Sequence[MaterialInfo]) -> None:
        members = [info.material for info in group[1:]]
        for i, first in enumerate(members):
            for second in members[i + 1:]:
                if not materials_similar(first, second, self.config):
                    self.log.debug(
                        "Cluster led by %s groups %s and %s although they differ beyond the thresholds",
                        group[0].material.name,
                        first.name,
                        second.name,
                    )
                    return

    # ------------------------------------------------------------------
    # mutation
    # ------------------------------------------------------------------
    def deduplicate(self) -> OptimizationResult:
        with self.graph.exclusive("deduplicate"):
            infos = self.analyze()
            original_count = len(infos)
            self.log.info("Material dedup: %d material(s) in use", original_count)
            groups = self.cluster(infos)
            merged = self._merge_groups(groups)
        optimized_count = len(merged)
        self.log.info(
            "Material dedup finished: %d -> %d (removed %d)",
            original_count,
            optimized_count,
            original_count - optimized_count,
        )
        return OptimizationResult(
            original_count=original_count,
            optimized_count=optimized_count,
            removed_count=original_count - optimized_count,
            groups=groups,
            merged_materials=merged,
        )

    def _merge_groups(self, groups: Sequence[List[MaterialInfo]]) -> List[Material]:
        survivors: List[Material] = []
        for index, group in enumerate(groups):
            if len(group) == 1:
                survivors.append(group[0].material)
                continue
            name = f"{MERGED_NAME_PREFIX}{index + 1}"
            self.log.debug("Merging material group %d: %d materials -> %s", index + 1, len(group), name)
            merged = clone_material(group[0].material, name=name)
            self.graph.add_material(merged)
            for info in group:
                for mesh in info.meshes:
                    self.graph.assign_material(mesh, merged)
            for info in group:
                if not self.graph.release_material(info.material):
                    self.log.warning(
                        "Material %s is still referenced after repointing; leaving it in place",
                        info.material.name,
                    )
            survivors.append(merged)
        return survivors

    # ------------------------------------------------------------------
    # dry run
    # ------------------------------------------------------------------
    def suggestions(self) -> List[str]:
        infos = self.analyze()
        lines = [f"Found {len(infos)} material(s)"]
        kinds = Counter(VARIANT_LABELS[require_kind(info.material)] for info in infos)
        lines.extend(f"  - {label}: {count}" for label, count in kinds.items())
        mergeable = [group for group in self.cluster(infos) if len(group) > 1]
        if mergeable:
            reduction = sum(len(group) - 1 for group in mergeable)
            lines.append(f"Mergeable material groups: {len(mergeable)}")
            lines.append(f"Expected material reduction: {reduction}")
        else:
            lines.append("No mergeable materials found")
        return lines


def deduplicate_materials(
    graph: SceneGraph,
    config: Optional[MaterialCompareConfig] = None,
    *,
    logger: Optional[logging.Logger] = None,
) -> OptimizationResult:
    return MaterialDeduplicator(graph, config, logger=logger).deduplicate()


__all__ = [
    "MaterialCompareConfig",
    "MaterialInfo",
    "OptimizationResult",
    "MaterialDeduplicator",
    "TEXTURE_IDENTITY_MODES",
    "deduplicate_materials",
    "material_signature",
    "materials_similar",
    "texture_key",
]
