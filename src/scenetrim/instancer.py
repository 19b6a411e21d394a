from __future__ import annotations

import copy
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .scene import InstancedMesh, Mesh, SceneGraph

LOG = logging.getLogger(__name__)

NO_MATERIAL = "no-material"

GroupKey = Tuple[str, str]


@dataclass
class InstancerConfig:
    min_instance_count: int = 2
    preserve_hierarchy: bool = True
    # animated meshes are excluded whatever this says
    preserve_animations: bool = False
    merge_sub_meshes: bool = False

    def __post_init__(self) -> None:
        if int(self.min_instance_count) < 2:
            raise ValueError("min_instance_count must be at least 2")
        self.min_instance_count = int(self.min_instance_count)


@dataclass(eq=False)
class InstanceGroup:
    geometry_id: str
    material_id: str
    meshes: List[Mesh] = field(default_factory=list)
    master: Optional[Mesh] = None
    instances: List[InstancedMesh] = field(default_factory=list)

    @property
    def key(self) -> GroupKey:
        return (self.geometry_id, self.material_id)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "geometry_id": self.geometry_id,
            "material_id": self.material_id,
            "meshes": [mesh.id for mesh in self.meshes],
            "master": self.master.id if self.master is not None else None,
            "instances": [instance.id for instance in self.instances],
        }


@dataclass
class InstancerResult:
    original_mesh_count: int = 0
    optimized_mesh_count: int = 0
    groups: List[InstanceGroup] = field(default_factory=list)
    total_instances_created: int = 0
    memory_reduction_percent: float = 0.0

    @property
    def meshes_removed(self) -> int:
        return self.original_mesh_count - self.optimized_mesh_count

    def as_dict(self) -> Dict[str, Any]:
        return {
            "original_mesh_count": self.original_mesh_count,
            "optimized_mesh_count": self.optimized_mesh_count,
            "groups": [group.as_dict() for group in self.groups],
            "total_instances_created": self.total_instances_created,
            "memory_reduction_percent": self.memory_reduction_percent,
        }


def instancing_candidate(mesh: Mesh) -> bool:
    """True when ``mesh`` may take part in an instance cluster."""
    if mesh.kind != "mesh":
        return False
    if mesh.geometry is None:
        return False
    return not mesh.animated


def group_key(mesh: Mesh) -> GroupKey:
    material_id = mesh.material.id if mesh.material is not None else NO_MATERIAL
    return (mesh.geometry.id, material_id)


class MeshInstancer:
    """Turns repeated (geometry, material) meshes into instances of one master."""

    def __init__(
        self,
        graph: SceneGraph,
        config: Optional[InstancerConfig] = None,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.graph = graph
        self.config = config or InstancerConfig()
        self.log = logger or LOG

    def analyze(self) -> List[InstanceGroup]:
        """Candidate groups that reach ``min_instance_count``, in discovery order."""
        groups: "OrderedDict[GroupKey, InstanceGroup]" = OrderedDict()
        skipped_animated = 0
        for mesh in self.graph.meshes:
            if mesh.geometry is not None and mesh.animated:
                skipped_animated += 1
            if not instancing_candidate(mesh):
                continue
            key = group_key(mesh)
            group = groups.get(key)
            if group is None:
                group = InstanceGroup(geometry_id=key[0], material_id=key[1])
                groups[key] = group
            group.meshes.append(mesh)
        if skipped_animated:
            self.log.debug("Skipped %d animated mesh(es) for instancing", skipped_animated)
        return [g for g in groups.values() if len(g.meshes) >= self.config.min_instance_count]

    def create_instances(self) -> InstancerResult:
        if self.config.preserve_animations:
            self.log.debug("preserve_animations is set; animated meshes are still never instanced")
        with self.graph.exclusive("instance"):
            original = len(self.graph.meshes)
            self.log.info("Mesh instancing: %d mesh(es) in scene", original)
            groups = self.analyze()
            for index, group in enumerate(groups):
                self.log.debug("Instancing group %d: %d identical meshes", index + 1, len(group.meshes))
                self._instance_group(group)
            optimized = len(self.graph.meshes)
        created = sum(len(group.instances) for group in groups)
        reduction = (original - optimized) / original * 100.0 if original else 0.0
        self.log.info(
            "Mesh instancing finished: %d -> %d mesh(es), %d instance(s) created",
            original,
            optimized,
            created,
        )
        return InstancerResult(
            original_mesh_count=original,
            optimized_mesh_count=optimized,
            groups=groups,
            total_instances_created=created,
            memory_reduction_percent=round(reduction, 1),
        )

    def _instance_group(self, group: InstanceGroup) -> None:
        master = group.meshes[0]
        group.master = master
        for i, source in enumerate(group.meshes[1:], start=1):
            instance = InstancedMesh(
                master=master,
                name=f"{master.name}_instance_{i}",
                transform=source.transform.copy(),
                visible=source.visible,
                pickable=source.pickable,
                collidable=source.collidable,
                parent=source.parent if self.config.preserve_hierarchy else None,
                metadata=copy.deepcopy(source.metadata),
            )
            self.graph.add_instance(instance)
            # instances of the source render the same geometry and material
            for existing in self.graph.instances_of(source):
                existing.master = master
            self.graph.reparent_children(source, instance)
            self.graph.dispose(source)
            group.instances.append(instance)

    def revert_instancing(self) -> int:
        """Replace every instance with a standalone mesh sharing its master's geometry.

        Original mesh ids are not restored.  Returns the number of meshes created.
        """
        with self.graph.exclusive("revert_instancing"):
            reverted = 0
            for instance in self.graph.instances:
                master = instance.master
                mesh = Mesh(
                    name=f"{instance.name}_reverted",
                    geometry=master.geometry,
                    material=master.material,
                    transform=instance.transform.copy(),
                    visible=instance.visible,
                    pickable=instance.pickable,
                    collidable=instance.collidable,
                    parent=instance.parent,
                    metadata=copy.deepcopy(instance.metadata),
                    bounds=master.bounds,
                )
                self.graph.add_mesh(mesh)
                self.graph.reparent_children(instance, mesh)
                self.graph.dispose(instance)
                reverted += 1
        self.log.info("Reverted %d instance(s) to standalone meshes", reverted)
        return reverted

    def suggestions(self) -> List[str]:
        groups = self.analyze()
        candidates = [mesh for mesh in self.graph.meshes if instancing_candidate(mesh)]
        lines = [f"Found {len(candidates)} mesh(es) eligible for instancing"]
        if not groups:
            lines.append("No instanceable mesh groups found")
            lines.append(
                f"Meshes sharing geometry and material occur fewer than {self.config.min_instance_count} times"
            )
            return lines
        total = 0
        for index, group in enumerate(groups):
            lines.append(f"Group {index + 1}: {len(group.meshes)} identical meshes")
            total += len(group.meshes) - 1
        lines.append(f"Expected instances: {total}")
        lines.append(f"Expected mesh reduction: {total}")
        return lines


def create_instances(
    graph: SceneGraph,
    config: Optional[InstancerConfig] = None,
    *,
    logger: Optional[logging.Logger] = None,
) -> InstancerResult:
    return MeshInstancer(graph, config, logger=logger).create_instances()


__all__ = [
    "NO_MATERIAL",
    "InstancerConfig",
    "InstanceGroup",
    "InstancerResult",
    "MeshInstancer",
    "create_instances",
    "group_key",
    "instancing_candidate",
]
