"""In-memory scene graph: nodes, meshes, instances and the registries owning them.

The :class:`SceneGraph` is the single owner of every entity.  Meshes and
instances are a tagged union (``kind == "mesh"`` / ``kind == "instance"``);
materials and geometries are reference counted by the meshes pointing at them
and only leave the graph once the last reference is gone.
"""

from __future__ import annotations

import itertools
import logging
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Literal, Optional, Sequence, Union

import numpy as np

from .errors import CorruptGeometryError, DisposedEntityError, GraphBusyError
from .geometry import BoundingBox, Geometry
from .materials import Material, Texture, bound_textures, require_kind
from .transforms import Transform

LOG = logging.getLogger(__name__)

ENTITY_KINDS = ("mesh", "instance")


@dataclass(eq=False)
class TransformNode:
    """Grouping node without geometry; loaders hang their meshes below one."""

    name: str = "node"
    transform: Transform = field(default_factory=Transform)
    parent: Optional["Parent"] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = ""
    disposed: bool = field(default=False, init=False, repr=False)


@dataclass
class MeshSection:
    """Material range inside a merged mesh's index (or vertex) buffer."""

    material_id: Optional[str]
    vertex_start: int
    vertex_count: int
    index_start: int
    index_count: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            "material_id": self.material_id,
            "vertex_start": self.vertex_start,
            "vertex_count": self.vertex_count,
            "index_start": self.index_start,
            "index_count": self.index_count,
        }


@dataclass(eq=False)
class Mesh:
    name: str = "mesh"
    geometry: Optional[Geometry] = None
    material: Optional[Material] = None
    transform: Transform = field(default_factory=Transform)
    visible: bool = True
    pickable: bool = True
    collidable: bool = False
    animated: bool = False
    parent: Optional["Parent"] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    sections: List[MeshSection] = field(default_factory=list)
    bounds: Optional[BoundingBox] = None
    id: str = ""
    disposed: bool = field(default=False, init=False, repr=False)

    kind: Literal["mesh"] = field(default="mesh", init=False)

    @property
    def vertex_count(self) -> int:
        return 0 if self.geometry is None else self.geometry.vertex_count

    @property
    def triangle_count(self) -> int:
        return 0 if self.geometry is None else self.geometry.triangle_count


@dataclass(eq=False)
class InstancedMesh:
    """Transform and flags only; geometry and material are read through ``master``."""

    master: Mesh
    name: str = "instance"
    transform: Transform = field(default_factory=Transform)
    visible: bool = True
    pickable: bool = True
    collidable: bool = False
    parent: Optional["Parent"] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = ""
    disposed: bool = field(default=False, init=False, repr=False)

    kind: Literal["instance"] = field(default="instance", init=False)

    @property
    def geometry(self) -> Optional[Geometry]:
        return self.master.geometry

    @property
    def material(self) -> Optional[Material]:
        return self.master.material

    @property
    def animated(self) -> bool:
        return False


Entity = Union[Mesh, InstancedMesh]
Parent = Union[TransformNode, Mesh, InstancedMesh]


def entity_kind(entity: Any) -> str:
    kind = getattr(entity, "kind", None)
    if kind not in ENTITY_KINDS:
        raise TypeError(f"Unsupported scene entity: {kind!r}")
    return kind


class SceneGraph:
    """Registry and owner of every node, mesh, material, geometry and texture."""

    def __init__(self, name: str = "scene") -> None:
        self.name = name
        self._nodes: Dict[str, TransformNode] = {}
        self._entities: Dict[str, Entity] = {}
        self._materials: Dict[str, Material] = {}
        self._geometries: Dict[str, Geometry] = {}
        self._textures: Dict[str, Texture] = {}
        self._material_refs: Counter = Counter()
        self._geometry_refs: Counter = Counter()
        self._counters: Dict[str, Iterator[int]] = {}
        self._active_pass: Optional[str] = None

    # ------------------------------------------------------------------
    # enumeration
    # ------------------------------------------------------------------
    @property
    def entities(self) -> List[Entity]:
        return list(self._entities.values())

    @property
    def meshes(self) -> List[Mesh]:
        return [e for e in self._entities.values() if e.kind == "mesh"]

    @property
    def instances(self) -> List[InstancedMesh]:
        return [e for e in self._entities.values() if e.kind == "instance"]

    @property
    def materials(self) -> List[Material]:
        return list(self._materials.values())

    @property
    def geometries(self) -> List[Geometry]:
        return list(self._geometries.values())

    @property
    def textures(self) -> List[Texture]:
        return list(self._textures.values())

    @property
    def nodes(self) -> List[TransformNode]:
        return list(self._nodes.values())

    @property
    def active_pass(self) -> Optional[str]:
        return self._active_pass

    def get(self, entity_id: str) -> Optional[Entity]:
        return self._entities.get(entity_id)

    def get_material(self, material_id: str) -> Optional[Material]:
        return self._materials.get(material_id)

    def get_geometry(self, geometry_id: str) -> Optional[Geometry]:
        return self._geometries.get(geometry_id)

    def get_node(self, node_id: str) -> Optional[TransformNode]:
        return self._nodes.get(node_id)

    def contains(self, item: Any) -> bool:
        item_id = getattr(item, "id", "")
        if not item_id:
            return False
        for registry in (self._entities, self._materials, self._geometries, self._nodes, self._textures):
            if registry.get(item_id) is item:
                return True
        return False

    def children_of(self, parent: Parent) -> List[Union[TransformNode, Entity]]:
        found: List[Union[TransformNode, Entity]] = [n for n in self._nodes.values() if n.parent is parent]
        found.extend(e for e in self._entities.values() if e.parent is parent)
        return found

    def instances_of(self, master: Mesh) -> List[InstancedMesh]:
        return [e for e in self._entities.values() if e.kind == "instance" and e.master is master]

    def material_users(self, material: Material) -> List[Mesh]:
        return [m for m in self.meshes if m.material is material]

    def material_refcount(self, material: Material) -> int:
        return self._material_refs.get(material.id, 0)

    def geometry_refcount(self, geometry: Geometry) -> int:
        return self._geometry_refs.get(geometry.id, 0)

    def world_matrix(self, item: Union[TransformNode, Entity, None]) -> np.ndarray:
        """Compose local transforms from the root down to ``item``."""
        matrix = np.eye(4, dtype=np.float64)
        seen = set()
        current = item
        while current is not None:
            if id(current) in seen:
                raise ValueError(f"Parent cycle detected at {current.name!r}")
            seen.add(id(current))
            matrix = current.transform.matrix() @ matrix
            current = current.parent
        return matrix

    # ------------------------------------------------------------------
    # pass guard
    # ------------------------------------------------------------------
    @contextmanager
    def exclusive(self, pass_name: str) -> Iterator["SceneGraph"]:
        """Claim the graph for one optimization pass at a time."""
        if self._active_pass is not None:
            raise GraphBusyError(
                f"Cannot start '{pass_name}': pass '{self._active_pass}' is still running on {self.name!r}."
            )
        self._active_pass = pass_name
        self.refresh_references()
        try:
            yield self
        finally:
            self._active_pass = None

    # ------------------------------------------------------------------
    # registration
    # ------------------------------------------------------------------
    def _next_id(self, prefix: str, registry: Dict[str, Any]) -> str:
        counter = self._counters.setdefault(prefix, itertools.count(1))
        while True:
            candidate = f"{prefix}_{next(counter)}"
            if candidate not in registry:
                return candidate

    def _claim_id(self, item: Any, prefix: str, registry: Dict[str, Any]) -> None:
        if getattr(item, "disposed", False):
            raise DisposedEntityError(f"{prefix} {item.id or item.name!r} has been disposed.")
        if not item.id:
            item.id = self._next_id(prefix, registry)
        elif item.id in registry and registry[item.id] is not item:
            raise ValueError(f"Duplicate {prefix} id {item.id!r}.")

    def add_texture(self, texture: Texture) -> Texture:
        existing = self._textures.get(texture.id) if texture.id else None
        if existing is texture:
            return texture
        self._claim_id(texture, "texture", self._textures)
        self._textures[texture.id] = texture
        return texture

    def add_material(self, material: Material) -> Material:
        require_kind(material)
        if material.id and self._materials.get(material.id) is material:
            return material
        self._claim_id(material, "material", self._materials)
        for texture in bound_textures(material):
            self.add_texture(texture)
        self._materials[material.id] = material
        return material

    def add_geometry(self, geometry: Geometry) -> Geometry:
        if geometry.id and self._geometries.get(geometry.id) is geometry:
            return geometry
        self._claim_id(geometry, "geometry", self._geometries)
        geometry.validate()
        self._geometries[geometry.id] = geometry
        return geometry

    def add_node(self, node: TransformNode) -> TransformNode:
        if node.id and self._nodes.get(node.id) is node:
            return node
        self._check_parent(node.parent)
        self._claim_id(node, "node", self._nodes)
        self._nodes[node.id] = node
        return node

    def add_mesh(self, mesh: Mesh) -> Mesh:
        """Register ``mesh`` together with the geometry and material it points at."""
        if mesh.kind != "mesh":
            raise TypeError(f"add_mesh expects a full mesh, got {mesh.kind!r}")
        if mesh.id and self._entities.get(mesh.id) is mesh:
            return mesh
        self._check_parent(mesh.parent)
        self._check_usable(mesh.geometry, "Geometry")
        self._check_usable(mesh.material, "Material")
        self._claim_id(mesh, "mesh", self._entities)
        if mesh.geometry is not None:
            self.add_geometry(mesh.geometry)
            self._geometry_refs[mesh.geometry.id] += 1
        if mesh.material is not None:
            self.add_material(mesh.material)
            self._material_refs[mesh.material.id] += 1
        self._entities[mesh.id] = mesh
        return mesh

    def add_instance(self, instance: InstancedMesh) -> InstancedMesh:
        if instance.kind != "instance":
            raise TypeError(f"add_instance expects an instance, got {instance.kind!r}")
        if instance.id and self._entities.get(instance.id) is instance:
            return instance
        master = instance.master
        if master.disposed or self._entities.get(master.id) is not master:
            raise DisposedEntityError(f"Instance master {master.name!r} is not a live mesh of this graph.")
        self._check_parent(instance.parent)
        self._claim_id(instance, "instance", self._entities)
        self._entities[instance.id] = instance
        return instance

    def _check_usable(self, item: Any, label: str) -> None:
        if item is not None and item.disposed:
            raise DisposedEntityError(f"{label} {item.id or item.name!r} has been disposed.")

    def _check_parent(self, parent: Optional[Parent]) -> None:
        if parent is None:
            return
        if parent.disposed:
            raise DisposedEntityError(f"Parent {parent.name!r} has been disposed.")
        if not self.contains(parent):
            raise ValueError(f"Parent {parent.name!r} is not registered with graph {self.name!r}.")

    def attach_loaded(self, root: TransformNode, meshes: Sequence[Mesh]) -> TransformNode:
        """Register a loader's output (root node plus meshes) all-or-nothing.

        Everything is validated before the first registration, so a failure
        leaves the graph exactly as it was.
        """
        if root.disposed:
            raise DisposedEntityError(f"Root node {root.name!r} has been disposed.")
        batch_ids = {id(root)} | {id(mesh) for mesh in meshes}
        if root.id and root.id in self._nodes and self._nodes[root.id] is not root:
            raise ValueError(f"Duplicate node id {root.id!r}.")
        claimed: set = set()
        for mesh in meshes:
            if mesh.kind != "mesh":
                raise TypeError(f"Loader output may only contain meshes, got {mesh.kind!r}")
            if mesh.disposed:
                raise DisposedEntityError(f"Mesh {mesh.name!r} has been disposed.")
            if mesh.id:
                if mesh.id in claimed or (mesh.id in self._entities and self._entities[mesh.id] is not mesh):
                    raise ValueError(f"Duplicate mesh id {mesh.id!r}.")
                claimed.add(mesh.id)
            if mesh.geometry is not None:
                self._check_usable(mesh.geometry, "Geometry")
                try:
                    mesh.geometry.validate()
                except CorruptGeometryError as exc:
                    raise CorruptGeometryError(f"Mesh {mesh.name!r}: {exc}") from exc
            if mesh.material is not None:
                self._check_usable(mesh.material, "Material")
                require_kind(mesh.material)
            parent = mesh.parent
            if parent is not None and id(parent) not in batch_ids and not self.contains(parent):
                raise ValueError(f"Mesh {mesh.name!r} has a parent outside the loaded subtree.")
        if root.parent is not None:
            self._check_parent(root.parent)

        pending = list(meshes)
        self.add_node(root)
        # parents must be registered before their children
        while pending:
            progressed = False
            for mesh in list(pending):
                if mesh.parent is None or self.contains(mesh.parent):
                    self.add_mesh(mesh)
                    pending.remove(mesh)
                    progressed = True
            if not progressed:
                raise ValueError("Loaded meshes contain a parent cycle.")
        LOG.debug("Attached %d mesh(es) under %s", len(meshes), root.name)
        return root

    # ------------------------------------------------------------------
    # reference management
    # ------------------------------------------------------------------
    def assign_material(self, mesh: Mesh, material: Optional[Material]) -> None:
        """Point ``mesh`` at ``material``; the previous material loses one reference."""
        self._require_live(mesh)
        if mesh.kind != "mesh":
            raise TypeError("Instances read their material from the master mesh.")
        self._check_usable(material, "Material")
        previous = mesh.material
        if previous is material:
            return
        if material is not None:
            self.add_material(material)
            self._material_refs[material.id] += 1
        mesh.material = material
        if previous is not None and self._material_refs[previous.id] > 0:
            self._material_refs[previous.id] -= 1

    def assign_geometry(self, mesh: Mesh, geometry: Optional[Geometry]) -> None:
        self._require_live(mesh)
        if mesh.kind != "mesh":
            raise TypeError("Instances read their geometry from the master mesh.")
        self._check_usable(geometry, "Geometry")
        previous = mesh.geometry
        if previous is geometry:
            return
        if geometry is not None:
            self.add_geometry(geometry)
            self._geometry_refs[geometry.id] += 1
        mesh.geometry = geometry
        if previous is not None and self._geometry_refs[previous.id] > 0:
            self._geometry_refs[previous.id] -= 1

    def release_material(self, material: Material) -> bool:
        """Remove ``material`` if nothing references it any more.

        Returns True when the material was disposed by this call.
        """
        if material.disposed:
            return False
        if self._material_refs.get(material.id, 0) > 0:
            return False
        self._materials.pop(material.id, None)
        self._material_refs.pop(material.id, None)
        material.disposed = True
        self._drop_orphan_textures(material)
        LOG.debug("Disposed material %s (%s)", material.id, material.name)
        return True

    def release_geometry(self, geometry: Geometry) -> bool:
        if geometry.disposed:
            return False
        if self._geometry_refs.get(geometry.id, 0) > 0:
            return False
        self._geometries.pop(geometry.id, None)
        self._geometry_refs.pop(geometry.id, None)
        geometry.disposed = True
        LOG.debug("Disposed geometry %s", geometry.id)
        return True

    def _drop_orphan_textures(self, material: Material) -> None:
        still_bound = {id(t) for m in self._materials.values() for t in bound_textures(m)}
        for texture in bound_textures(material):
            if id(texture) not in still_bound and self._textures.get(texture.id) is texture:
                del self._textures[texture.id]

    def refresh_references(self) -> None:
        """Recount material/geometry references from the live meshes.

        Keeps the counters honest when callers mutated ``mesh.material`` or
        ``mesh.geometry`` directly instead of using the ``assign_*`` methods.
        """
        materials: Counter = Counter()
        geometries: Counter = Counter()
        for mesh in self.meshes:
            if mesh.material is not None:
                self._check_usable(mesh.material, "Material")
                self.add_material(mesh.material)
                materials[mesh.material.id] += 1
            if mesh.geometry is not None:
                self._check_usable(mesh.geometry, "Geometry")
                self.add_geometry(mesh.geometry)
                geometries[mesh.geometry.id] += 1
        self._material_refs = materials
        self._geometry_refs = geometries

    def _require_live(self, entity: Entity) -> None:
        if entity.disposed or self._entities.get(entity.id) is not entity:
            raise DisposedEntityError(f"{entity_kind(entity).capitalize()} {entity.name!r} is not live in this graph.")

    # ------------------------------------------------------------------
    # disposal
    # ------------------------------------------------------------------
    def reparent_children(self, old: Parent, new: Optional[Parent]) -> int:
        """Move the direct children of ``old`` under ``new`` keeping their local transforms."""
        moved = 0
        for child in self.children_of(old):
            child.parent = new
            moved += 1
        return moved

    def dispose(self, item: Any) -> bool:
        """Dispose a mesh, instance, material, geometry or node.

        Meshes and instances leave the graph immediately and release their
        references; a master's instances go with it.  Materials and geometries
        are only removed when unreferenced.  Children of a disposed mesh or node
        are re-attached to its parent with the disposed transform folded in.
        """
        kind = getattr(item, "kind", None)
        if kind in ENTITY_KINDS:
            return self._dispose_entity(item)
        if kind in ("standard", "pbr"):
            return self.release_material(item)
        if isinstance(item, Geometry):
            return self.release_geometry(item)
        if isinstance(item, TransformNode):
            return self._dispose_node(item)
        raise TypeError(f"Cannot dispose object of type {type(item).__name__}")

    def _dispose_entity(self, entity: Entity) -> bool:
        if entity.disposed or self._entities.get(entity.id) is not entity:
            return False
        kind = entity_kind(entity)
        if kind == "mesh":
            for instance in self.instances_of(entity):
                LOG.debug("Disposing instance %s with its master %s", instance.name, entity.name)
                self._dispose_entity(instance)
        self._fold_children(entity)
        del self._entities[entity.id]
        entity.disposed = True
        if kind == "mesh":
            if entity.material is not None and self._material_refs[entity.material.id] > 0:
                self._material_refs[entity.material.id] -= 1
            if entity.geometry is not None and self._geometry_refs[entity.geometry.id] > 0:
                self._geometry_refs[entity.geometry.id] -= 1
                self.release_geometry(entity.geometry)
        return True

    def _dispose_node(self, node: TransformNode) -> bool:
        if node.disposed or self._nodes.get(node.id) is not node:
            return False
        self._fold_children(node)
        del self._nodes[node.id]
        node.disposed = True
        return True

    def _fold_children(self, parent: Parent) -> None:
        children = self.children_of(parent)
        if not children:
            return
        local = parent.transform.matrix()
        for child in children:
            child.transform = Transform.from_matrix(local @ child.transform.matrix())
            child.parent = parent.parent
        LOG.debug("Re-attached %d child(ren) of %s to its parent", len(children), parent.name)


__all__ = [
    "TransformNode",
    "MeshSection",
    "Mesh",
    "InstancedMesh",
    "Entity",
    "Parent",
    "SceneGraph",
    "entity_kind",
]
