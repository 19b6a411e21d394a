"""Plain mapping (JSON / YAML) form of a scene graph.

A snapshot is the hand-over format between a loader and the optimizer: it is
read into a fresh :class:`~scenetrim.scene.SceneGraph` in one go, so a bad
document never leaves a half-populated graph behind.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .errors import SceneTrimError, SnapshotError
from .geometry import Geometry, BoundingBox, buffers_from_mapping
from .materials import PBRMaterial, StandardMaterial, Texture, material_as_dict, Material
from .scene import InstancedMesh, Mesh, MeshSection, SceneGraph, TransformNode
from .transforms import Transform

LOG = logging.getLogger(__name__)

PathLike = Union[str, Path]

SNAPSHOT_VERSION = 1


# ----------------------------------------------------------------------
# writing
# ----------------------------------------------------------------------
def _parent_id(item: Any) -> Optional[str]:
    return item.parent.id if item.parent is not None else None


def graph_to_mapping(graph: SceneGraph) -> Dict[str, Any]:
    nodes = [
        {
            "id": node.id,
            "name": node.name,
            "parent": _parent_id(node),
            "transform": node.transform.as_dict(),
            "metadata": dict(node.metadata),
        }
        for node in graph.nodes
    ]
    geometries = []
    for geometry in graph.geometries:
        entry: Dict[str, Any] = {
            "id": geometry.id,
            "name": geometry.name,
            "primitive": geometry.primitive,
            "buffers": {kind: geometry.buffers[kind].tolist() for kind in geometry.kinds},
        }
        if geometry.indices is not None:
            entry["indices"] = geometry.indices.tolist()
        geometries.append(entry)

    entities = []
    for entity in graph.entities:
        record: Dict[str, Any] = {
            "id": entity.id,
            "name": entity.name,
            "kind": entity.kind,
            "parent": _parent_id(entity),
            "transform": entity.transform.as_dict(),
            "visible": entity.visible,
            "pickable": entity.pickable,
            "collidable": entity.collidable,
            "metadata": dict(entity.metadata),
        }
        if entity.kind == "instance":
            record["master"] = entity.master.id
        else:
            record["geometry"] = entity.geometry.id if entity.geometry is not None else None
            record["material"] = entity.material.id if entity.material is not None else None
            record["animated"] = entity.animated
            if entity.sections:
                record["sections"] = [section.as_dict() for section in entity.sections]
            if entity.bounds is not None:
                record["bounds"] = entity.bounds.as_dict()
        entities.append(record)

    return {
        "version": SNAPSHOT_VERSION,
        "name": graph.name,
        "nodes": nodes,
        "textures": [texture.as_dict() for texture in graph.textures],
        "materials": [material_as_dict(material) for material in graph.materials],
        "geometries": geometries,
        "meshes": entities,
    }


def write_snapshot(graph: SceneGraph, path: PathLike) -> Path:
    target = Path(path)
    data = graph_to_mapping(graph)
    suffix = target.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        text = yaml.safe_dump(data, sort_keys=False)
    elif suffix == ".json":
        text = json.dumps(data, indent=2)
    else:
        raise SnapshotError(f"Unsupported snapshot type: {target.suffix}")
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(text, encoding="utf-8")
    LOG.info("Wrote snapshot %s", target)
    return target


# ----------------------------------------------------------------------
# reading
# ----------------------------------------------------------------------
def _texture(data: Dict[str, Any]) -> Texture:
    return Texture(
        id=str(data["id"]),
        name=data.get("name"),
        url=data.get("url"),
        width=int(data.get("width", 0)),
        height=int(data.get("height", 0)),
        kind=str(data.get("kind", "Texture")),
    )


def _material(data: Dict[str, Any], textures: Dict[str, Texture]) -> Material:
    slots = {}
    for slot, texture_id in (data.get("textures") or {}).items():
        if texture_id not in textures:
            raise SnapshotError(f"Material {data.get('id')!r} references unknown texture {texture_id!r}")
        slots[slot] = textures[texture_id]
    kind = data.get("kind", "standard")
    common = {
        "id": str(data["id"]),
        "name": str(data.get("name") or "Material"),
        "alpha": float(data.get("alpha", 1.0)),
        "textures": slots,
        "metadata": dict(data.get("metadata") or {}),
    }
    if kind == "standard":
        return StandardMaterial(
            diffuse_color=data.get("diffuse_color", (1.0, 1.0, 1.0)),
            specular_color=data.get("specular_color", (1.0, 1.0, 1.0)),
            emissive_color=data.get("emissive_color", (0.0, 0.0, 0.0)),
            **common,
        )
    if kind == "pbr":
        return PBRMaterial(
            albedo_color=data.get("albedo_color", (1.0, 1.0, 1.0)),
            metallic=float(data.get("metallic", 0.0)),
            roughness=float(data.get("roughness", 1.0)),
            **common,
        )
    raise SnapshotError(f"Material {data.get('id')!r} has unknown kind {kind!r}")


def _geometry(data: Dict[str, Any]) -> Geometry:
    return Geometry(
        buffers=buffers_from_mapping(data.get("buffers") or {}),
        indices=data.get("indices"),
        primitive=data.get("primitive", "triangles"),
        id=str(data["id"]),
        name=data.get("name"),
    )


def _bounds(data: Optional[Dict[str, Any]]) -> Optional[BoundingBox]:
    if not data:
        return None
    lo = tuple(float(v) for v in data["min"])
    hi = tuple(float(v) for v in data["max"])
    return BoundingBox(minimum=lo, maximum=hi)  # type: ignore[arg-type]


def _lookup(table: Dict[str, Any], key: Optional[str], what: str, owner: str) -> Any:
    if key is None:
        return None
    try:
        return table[key]
    except KeyError:
        raise SnapshotError(f"{owner} references unknown {what} {key!r}") from None


def graph_from_mapping(data: Dict[str, Any], *, name: Optional[str] = None) -> SceneGraph:
    """Build a new graph from ``data``; raises :class:`SnapshotError` on any inconsistency."""
    if not isinstance(data, dict):
        raise SnapshotError("Snapshot must be a mapping at the top level")
    try:
        return _build(data, name)
    except SnapshotError:
        raise
    except (KeyError, TypeError, ValueError, SceneTrimError) as exc:
        raise SnapshotError(f"Invalid snapshot: {exc}") from exc


def _build(data: Dict[str, Any], name: Optional[str]) -> SceneGraph:
    textures = {t.id: t for t in (_texture(entry) for entry in data.get("textures") or [])}
    materials = {m.id: m for m in (_material(entry, textures) for entry in data.get("materials") or [])}
    geometries = {g.id: g for g in (_geometry(entry) for entry in data.get("geometries") or [])}

    items: Dict[str, Any] = {}
    parents: Dict[str, Optional[str]] = {}
    for entry in data.get("nodes") or []:
        node = TransformNode(
            id=str(entry["id"]),
            name=str(entry.get("name") or entry["id"]),
            transform=Transform.from_mapping(entry.get("transform")),
            metadata=dict(entry.get("metadata") or {}),
        )
        _claim(items, node)
        parents[node.id] = entry.get("parent")

    mesh_entries = list(data.get("meshes") or [])
    for entry in mesh_entries:
        if entry.get("kind", "mesh") != "mesh":
            continue
        owner = f"Mesh {entry.get('id')!r}"
        mesh = Mesh(
            id=str(entry["id"]),
            name=str(entry.get("name") or entry["id"]),
            geometry=_lookup(geometries, entry.get("geometry"), "geometry", owner),
            material=_lookup(materials, entry.get("material"), "material", owner),
            transform=Transform.from_mapping(entry.get("transform")),
            visible=bool(entry.get("visible", True)),
            pickable=bool(entry.get("pickable", True)),
            collidable=bool(entry.get("collidable", False)),
            animated=bool(entry.get("animated", False)),
            metadata=dict(entry.get("metadata") or {}),
            sections=[MeshSection(**section) for section in entry.get("sections") or []],
            bounds=_bounds(entry.get("bounds")),
        )
        _claim(items, mesh)
        parents[mesh.id] = entry.get("parent")

    for entry in mesh_entries:
        kind = entry.get("kind", "mesh")
        if kind == "mesh":
            continue
        if kind != "instance":
            raise SnapshotError(f"Entity {entry.get('id')!r} has unknown kind {kind!r}")
        owner = f"Instance {entry.get('id')!r}"
        master = _lookup(items, entry.get("master"), "master mesh", owner)
        if getattr(master, "kind", None) != "mesh":
            raise SnapshotError(f"{owner} master {entry.get('master')!r} is not a mesh")
        instance = InstancedMesh(
            master=master,
            id=str(entry["id"]),
            name=str(entry.get("name") or entry["id"]),
            transform=Transform.from_mapping(entry.get("transform")),
            visible=bool(entry.get("visible", True)),
            pickable=bool(entry.get("pickable", True)),
            collidable=bool(entry.get("collidable", False)),
            metadata=dict(entry.get("metadata") or {}),
        )
        _claim(items, instance)
        parents[instance.id] = entry.get("parent")

    for item_id, parent_id in parents.items():
        items[item_id].parent = _lookup(items, parent_id, "parent", f"Entity {item_id!r}")

    graph = SceneGraph(name=name or str(data.get("name") or "scene"))
    for material in materials.values():
        graph.add_material(material)
    for texture in textures.values():
        graph.add_texture(texture)
    _register(graph, list(items.values()))
    # geometries nobody points at are still part of the document
    for geometry in geometries.values():
        graph.add_geometry(geometry)
    graph.refresh_references()
    LOG.debug(
        "Loaded snapshot: %d node(s), %d entity(ies), %d material(s)",
        len(graph.nodes),
        len(graph.entities),
        len(graph.materials),
    )
    return graph


def _claim(items: Dict[str, Any], item: Any) -> None:
    if item.id in items:
        raise SnapshotError(f"Duplicate id {item.id!r} in snapshot")
    items[item.id] = item


def _register(graph: SceneGraph, pending: List[Any]) -> None:
    """Register parents before children and masters before instances."""
    while pending:
        remaining = []
        for item in pending:
            ready = item.parent is None or graph.contains(item.parent)
            if isinstance(item, InstancedMesh):
                ready = ready and graph.contains(item.master)
            if not ready:
                remaining.append(item)
                continue
            if isinstance(item, TransformNode):
                graph.add_node(item)
            elif isinstance(item, InstancedMesh):
                graph.add_instance(item)
            else:
                graph.add_mesh(item)
        if len(remaining) == len(pending):
            raise SnapshotError("Snapshot hierarchy contains a parent cycle")
        pending = remaining


def read_snapshot(path: PathLike) -> SceneGraph:
    source = Path(path)
    try:
        text = source.read_text(encoding="utf-8")
    except OSError as exc:
        raise SnapshotError(f"Cannot read snapshot {source}: {exc}") from exc
    suffix = source.suffix.lower()
    try:
        if suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(text)
        elif suffix == ".json":
            data = json.loads(text)
        else:
            raise SnapshotError(f"Unsupported snapshot type: {source.suffix}")
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise SnapshotError(f"Cannot parse snapshot {source}: {exc}") from exc
    fallback = None if isinstance(data, dict) and data.get("name") else source.stem
    return graph_from_mapping(data, name=fallback)


__all__ = [
    "SNAPSHOT_VERSION",
    "graph_to_mapping",
    "graph_from_mapping",
    "read_snapshot",
    "write_snapshot",
]
