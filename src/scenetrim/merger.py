"""Concatenate meshes that share a material into fewer, larger meshes.

Members of a group are baked into the merged mesh's parent frame, so the
merged mesh carries an identity transform.  Attribute sets are unified first:
a member missing a vertex attribute another member has receives the default
value for that attribute (see :data:`scenetrim.geometry.DEFAULT_VALUES`).
Padding happens on copies; source geometry is never modified.

Each group (or batch of a group) ends up with either a merged mesh or a
:class:`MergeError` record.  Incompatible members are recorded, not raised; a
corrupt buffer still raises :class:`~scenetrim.errors.CorruptGeometryError`.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .geometry import NORMAL, POSITION, TANGENT, Geometry, padded_buffers, union_kinds
from .materials import Material
from .scene import Mesh, MeshSection, Parent, SceneGraph
from .transforms import Transform, is_identity, transform_directions, transform_normals, transform_points

LOG = logging.getLogger(__name__)

NO_MATERIAL = "no-material"
MERGED_FLAG = "scenetrim:merged"
MERGED_SOURCES = "scenetrim:merged_from"
MERGED_NAME_PREFIX = "Merged_Material_"


@dataclass
class MergerConfig:
    preserve_original_meshes: bool = False
    merge_limit_per_group: int = 1000
    respect_hierarchy: bool = True
    merge_collision_meshes: bool = False
    create_bounding_boxes: bool = True

    def __post_init__(self) -> None:
        if int(self.merge_limit_per_group) < 1:
            raise ValueError("merge_limit_per_group must be a positive integer")
        self.merge_limit_per_group = int(self.merge_limit_per_group)


@dataclass
class MergeError:
    """Why a group (or batch) was left unmerged."""

    group: str
    reason: str
    member_ids: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {"group": self.group, "reason": self.reason, "member_ids": list(self.member_ids)}


class MergeIncompatibleError(Exception):
    """Members of one batch cannot be concatenated."""


@dataclass(eq=False)
class MergeGroup:
    material_id: str
    material: Optional[Material]
    meshes: List[Mesh] = field(default_factory=list)
    label: str = ""
    batch_index: Optional[int] = None
    original_vertex_count: int = 0
    merged_vertex_count: int = 0
    merged_mesh: Optional[Mesh] = None
    error: Optional[MergeError] = None

    @property
    def ok(self) -> bool:
        return self.merged_mesh is not None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label or self.material_id,
            "material_id": self.material_id,
            "batch_index": self.batch_index,
            "meshes": [mesh.id for mesh in self.meshes],
            "original_vertex_count": self.original_vertex_count,
            "merged_vertex_count": self.merged_vertex_count,
            "merged_mesh": self.merged_mesh.id if self.merged_mesh is not None else None,
            "error": self.error.as_dict() if self.error is not None else None,
        }


@dataclass
class MergeResult:
    original_mesh_count: int = 0
    merged_mesh_count: int = 0
    groups: List[MergeGroup] = field(default_factory=list)
    total_vertex_reduction: int = 0
    mesh_reduction_percent: float = 0.0
    draw_call_reduction_percent: float = 0.0

    @property
    def failed_groups(self) -> List[MergeGroup]:
        return [group for group in self.groups if group.error is not None]

    @property
    def merged_meshes(self) -> List[Mesh]:
        return [group.merged_mesh for group in self.groups if group.merged_mesh is not None]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "original_mesh_count": self.original_mesh_count,
            "merged_mesh_count": self.merged_mesh_count,
            "groups": [group.as_dict() for group in self.groups],
            "total_vertex_reduction": self.total_vertex_reduction,
            "mesh_reduction_percent": self.mesh_reduction_percent,
            "draw_call_reduction_percent": self.draw_call_reduction_percent,
            "failed_groups": [group.error.as_dict() for group in self.failed_groups],
        }


@dataclass
class MergeStatistics:
    total_materials: int
    mergeable_groups: int
    current_merged_meshes: int
    potential_mesh_reduction: int


def is_merged_mesh(mesh: Mesh) -> bool:
    return bool(mesh.metadata.get(MERGED_FLAG))


def split_batches(items: Sequence[Any], size: int) -> List[List[Any]]:
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class MeshMerger:
    """Material-keyed mesh merge pass over one :class:`SceneGraph`."""

    def __init__(
        self,
        graph: SceneGraph,
        config: Optional[MergerConfig] = None,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.graph = graph
        self.config = config or MergerConfig()
        self.log = logger or LOG

    # ------------------------------------------------------------------
    # analysis
    # ------------------------------------------------------------------
    def is_mergeable(self, mesh: Mesh, masters: Optional[set] = None) -> bool:
        if mesh.kind != "mesh":
            return False
        if mesh.geometry is None or mesh.geometry.vertex_count == 0:
            return False
        if not mesh.visible or mesh.animated:
            return False
        if mesh.collidable and not self.config.merge_collision_meshes:
            return False
        if masters is None:
            masters = {id(instance.master) for instance in self.graph.instances}
        # a master must outlive its instances
        return id(mesh) not in masters

    def eligible_meshes(self) -> List[Mesh]:
        masters = {id(instance.master) for instance in self.graph.instances}
        return [mesh for mesh in self.graph.meshes if self.is_mergeable(mesh, masters)]

    def analyze(self) -> List[MergeGroup]:
        """Material groups with more than one eligible mesh, in discovery order."""
        groups: "OrderedDict[str, MergeGroup]" = OrderedDict()
        for mesh in self.eligible_meshes():
            material_id = mesh.material.id if mesh.material is not None else NO_MATERIAL
            group = groups.get(material_id)
            if group is None:
                group = MergeGroup(material_id=material_id, material=mesh.material, label=material_id)
                groups[material_id] = group
            group.meshes.append(mesh)
            group.original_vertex_count += mesh.vertex_count
        return [group for group in groups.values() if len(group.meshes) > 1]

    # ------------------------------------------------------------------
    # merging
    # ------------------------------------------------------------------
    def merge_meshes(self) -> MergeResult:
        with self.graph.exclusive("merge"):
            eligible = len(self.eligible_meshes())
            groups = self.analyze()
            self.log.info(
                "Mesh merge: %d eligible mesh(es) in %d material group(s)",
                eligible,
                len(groups),
            )
            outcomes: List[MergeGroup] = []
            limit = self.config.merge_limit_per_group
            for index, group in enumerate(groups):
                if len(group.meshes) > limit:
                    batches = split_batches(group.meshes, limit)
                    self.log.debug(
                        "Material group %s split into %d batch(es) of at most %d",
                        group.label,
                        len(batches),
                        limit,
                    )
                    for batch_index, batch in enumerate(batches):
                        part = MergeGroup(
                            material_id=group.material_id,
                            material=group.material,
                            meshes=batch,
                            label=f"{group.material_id}_batch_{batch_index}",
                            batch_index=batch_index,
                            original_vertex_count=sum(m.vertex_count for m in batch),
                        )
                        self._merge_group(part, f"{MERGED_NAME_PREFIX}{index + 1}_{batch_index + 1}")
                        outcomes.append(part)
                else:
                    self._merge_group(group, f"{MERGED_NAME_PREFIX}{index + 1}")
                    outcomes.append(group)
        return self._summarize(eligible, outcomes)

    def _summarize(self, eligible: int, outcomes: List[MergeGroup]) -> MergeResult:
        merged = [group for group in outcomes if group.ok]
        consumed = sum(len(group.meshes) for group in merged)
        if self.config.preserve_original_meshes:
            removed = 0
        else:
            removed = consumed - len(merged)
        percent = round(removed / eligible * 100.0, 1) if eligible else 0.0
        vertex_reduction = sum(g.original_vertex_count - g.merged_vertex_count for g in merged)
        failed = [group for group in outcomes if group.error is not None]
        self.log.info(
            "Mesh merge finished: %d mesh(es) merged into %d, %d group(s) failed",
            consumed,
            len(merged),
            len(failed),
        )
        return MergeResult(
            original_mesh_count=eligible,
            merged_mesh_count=len(merged),
            groups=outcomes,
            total_vertex_reduction=vertex_reduction,
            mesh_reduction_percent=percent,
            # one draw call per mesh
            draw_call_reduction_percent=percent,
        )

    def _merge_group(self, group: MergeGroup, name: str) -> None:
        self.log.debug("Merging %s: %d mesh(es)", group.label, len(group.meshes))
        for mesh in group.meshes:
            mesh.geometry.validate()
        parent = group.meshes[0].parent if self.config.respect_hierarchy else None
        try:
            geometry, sections = self.concatenate(group.meshes, parent)
        except MergeIncompatibleError as exc:
            group.error = MergeError(
                group=group.label,
                reason=str(exc),
                member_ids=[mesh.id for mesh in group.meshes],
            )
            self.log.warning("Skipping merge of group %s: %s", group.label, exc)
            return

        first = group.meshes[0]
        merged = Mesh(
            name=name,
            geometry=geometry,
            material=group.material,
            transform=Transform(),
            pickable=first.pickable,
            collidable=first.collidable,
            parent=parent,
            metadata={MERGED_FLAG: True, MERGED_SOURCES: [mesh.id for mesh in group.meshes]},
            sections=sections,
            bounds=geometry.compute_bounds() if self.config.create_bounding_boxes else None,
        )
        self.graph.add_mesh(merged)
        if not self.config.preserve_original_meshes:
            for mesh in group.meshes:
                self.graph.dispose(mesh)
        group.merged_mesh = merged
        group.merged_vertex_count = geometry.vertex_count
        self.log.debug("Merged %d mesh(es) into %s", len(group.meshes), merged.name)

    def concatenate(self, meshes: Sequence[Mesh], parent: Optional[Parent]) -> Tuple[Geometry, List[MeshSection]]:
        """Build one geometry from ``meshes`` expressed in ``parent``'s frame.

        Raises :class:`MergeIncompatibleError` when the members cannot share
        one vertex layout.
        """
        geometries = [mesh.geometry for mesh in meshes]
        primitives = sorted({geometry.primitive for geometry in geometries})
        if len(primitives) > 1:
            raise MergeIncompatibleError(f"mixed primitive types: {', '.join(primitives)}")

        try:
            to_parent = np.linalg.inv(self.graph.world_matrix(parent))
        except np.linalg.LinAlgError as exc:
            raise MergeIncompatibleError(f"parent transform is not invertible: {exc}") from exc

        kinds = union_kinds(geometries)
        missing = {kind for geometry in geometries for kind in kinds if not geometry.has(kind)}
        if missing:
            self.log.debug("Filling missing attribute(s) with defaults: %s", ", ".join(sorted(missing)))
        indexed = any(geometry.indices is not None for geometry in geometries)
        multi_material = len({id(mesh.material) for mesh in meshes}) > 1

        parts: Dict[str, List[np.ndarray]] = {kind: [] for kind in kinds}
        index_parts: List[np.ndarray] = []
        sections: List[MeshSection] = []
        vertex_offset = 0
        index_offset = 0
        for mesh, geometry in zip(meshes, geometries):
            buffers = padded_buffers(geometry, kinds)
            matrix = to_parent @ self.graph.world_matrix(mesh)
            if not is_identity(matrix):
                _bake(buffers, matrix)
            for kind in kinds:
                parts[kind].append(buffers[kind])

            count = geometry.vertex_count
            index_count = 0
            if indexed:
                local = geometry.indices if geometry.indices is not None else np.arange(count, dtype=np.uint32)
                index_parts.append(local.astype(np.uint32) + np.uint32(vertex_offset))
                index_count = int(local.size)
            if multi_material:
                sections.append(
                    MeshSection(
                        material_id=mesh.material.id if mesh.material is not None else None,
                        vertex_start=vertex_offset,
                        vertex_count=count,
                        index_start=index_offset,
                        index_count=index_count,
                    )
                )
            vertex_offset += count
            index_offset += index_count

        merged_buffers = {kind: np.concatenate(parts[kind]).astype(np.float32) for kind in kinds}
        indices = np.concatenate(index_parts) if indexed else None
        geometry = Geometry(
            buffers=merged_buffers,
            indices=indices,
            primitive=primitives[0],
            name="merged",
        )
        return geometry, _coalesce_sections(sections)

    # ------------------------------------------------------------------
    # reporting
    # ------------------------------------------------------------------
    def revert_merging(self) -> List[Mesh]:
        """List merged meshes; merging cannot be undone in place."""
        merged = [mesh for mesh in self.graph.meshes if is_merged_mesh(mesh)]
        if not merged:
            self.log.info("No merged meshes found")
            return merged
        self.log.warning(
            "Mesh merging is not reversible; reload the original scene to restore it. "
            "%d merged mesh(es) can be deleted manually.",
            len(merged),
        )
        return merged

    def merge_statistics(self) -> MergeStatistics:
        groups = self.analyze()
        return MergeStatistics(
            total_materials=len(self.graph.materials),
            mergeable_groups=len(groups),
            current_merged_meshes=sum(1 for mesh in self.graph.meshes if is_merged_mesh(mesh)),
            potential_mesh_reduction=sum(len(group.meshes) - 1 for group in groups),
        )

    def describe_material_groups(self) -> List[str]:
        lines: List[str] = []
        for index, group in enumerate(self.analyze()):
            name = group.material.name if group.material is not None else "unnamed material"
            lines.append(f"Group {index + 1}: {name}")
            lines.append(f"  material id: {group.material_id}")
            lines.append(f"  meshes: {len(group.meshes)}")
            lines.append(f"  vertices: {group.original_vertex_count:,}")
            for number, mesh in enumerate(group.meshes, start=1):
                lines.append(f"    {number}. {mesh.name} ({mesh.vertex_count} vertices)")
        return lines

    def suggestions(self) -> List[str]:
        groups = self.analyze()
        lines = [f"Found {len(self.eligible_meshes())} mergeable mesh(es)"]
        if not groups:
            lines.append("No mergeable mesh groups found")
            lines.append("Merging needs several visible, static meshes sharing one material")
            return lines
        lines.append(f"Mergeable material groups: {len(groups)}")
        total = 0
        for index, group in enumerate(groups):
            name = group.material.name if group.material is not None else "unnamed material"
            lines.append(f"  Group {index + 1}: {len(group.meshes)} mesh(es) (material: {name})")
            total += len(group.meshes)
        reduction = total - len(groups)
        lines.append(f"Expected mesh reduction: {reduction}")
        lines.append(f"Expected draw call reduction: {reduction}")
        return lines


def _bake(buffers: Dict[str, np.ndarray], matrix: np.ndarray) -> None:
    buffers[POSITION] = transform_points(matrix, buffers[POSITION]).astype(np.float32).reshape(-1)
    if NORMAL in buffers:
        buffers[NORMAL] = transform_normals(matrix, buffers[NORMAL]).astype(np.float32).reshape(-1)
    if TANGENT in buffers:
        tangents = buffers[TANGENT].reshape(-1, 4).copy()
        tangents[:, :3] = transform_directions(matrix, tangents[:, :3])
        buffers[TANGENT] = tangents.astype(np.float32).reshape(-1)


def _coalesce_sections(sections: List[MeshSection]) -> List[MeshSection]:
    """Join adjacent sections that use the same material."""
    out: List[MeshSection] = []
    for section in sections:
        if out and out[-1].material_id == section.material_id:
            prev = out[-1]
            prev.vertex_count += section.vertex_count
            prev.index_count += section.index_count
        else:
            out.append(section)
    return out


def merge_meshes(
    graph: SceneGraph,
    config: Optional[MergerConfig] = None,
    *,
    logger: Optional[logging.Logger] = None,
) -> MergeResult:
    return MeshMerger(graph, config, logger=logger).merge_meshes()


__all__ = [
    "NO_MATERIAL",
    "MERGED_FLAG",
    "MergerConfig",
    "MergeError",
    "MergeGroup",
    "MergeResult",
    "MergeStatistics",
    "MeshMerger",
    "is_merged_mesh",
    "merge_meshes",
    "split_batches",
]
