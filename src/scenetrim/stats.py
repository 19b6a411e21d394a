from __future__ import annotations

import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from .materials import VARIANT_LABELS, bound_textures, require_kind
from .scene import SceneGraph

LOG = logging.getLogger(__name__)

# position(3) + normal(3) + uv(2) float32 per vertex
BYTES_PER_VERTEX = 32
BYTES_PER_INDEX = 4
BYTES_PER_TEXEL = 4

_MB = 1024.0 * 1024.0


@dataclass
class MemoryUsage:
    vertices: int = 0
    indices: int = 0
    textures: int = 0

    @property
    def total(self) -> int:
        return self.vertices + self.indices + self.textures


@dataclass
class SceneStatistics:
    material_count: int = 0
    material_types: Dict[str, int] = field(default_factory=dict)
    geometry_count: int = 0
    geometry_types: Dict[str, int] = field(default_factory=dict)
    total_triangles: int = 0
    texture_count: int = 0
    texture_types: Dict[str, int] = field(default_factory=dict)
    mesh_count: int = 0
    instance_count: int = 0
    node_count: int = 0
    memory_usage: MemoryUsage = field(default_factory=MemoryUsage)

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["memory_usage"]["total"] = self.memory_usage.total
        return data


@dataclass
class MaterialDetail:
    name: str
    type: str
    id: str
    texture_count: int


@dataclass
class GeometryDetail:
    name: str
    type: str
    id: str
    vertices: int
    indices: int
    triangles: int


@dataclass
class TextureDetail:
    name: str
    type: str
    url: str
    width: int
    height: int
    format: str


def collect_statistics(graph: SceneGraph) -> SceneStatistics:
    """Measure ``graph`` without touching it."""
    material_types: Counter = Counter()
    for material in graph.materials:
        material_types[VARIANT_LABELS[require_kind(material)]] += 1

    geometry_types: Counter = Counter()
    geometry_count = 0
    triangles = 0
    memory = MemoryUsage()
    meshes = graph.meshes
    for mesh in meshes:
        geometry = mesh.geometry
        if geometry is None:
            continue
        geometry_count += 1
        geometry_types[geometry.primitive] += 1
        triangles += geometry.index_count // 3
        memory.vertices += geometry.vertex_count * BYTES_PER_VERTEX
        memory.indices += geometry.index_count * BYTES_PER_INDEX

    texture_types: Counter = Counter()
    seen = set()
    for texture in graph.textures:
        if id(texture) in seen:
            continue
        seen.add(id(texture))
        texture_types[texture.format] += 1
        memory.textures += int(texture.width) * int(texture.height) * BYTES_PER_TEXEL

    instances = graph.instances
    return SceneStatistics(
        material_count=len(graph.materials),
        material_types=dict(material_types),
        geometry_count=geometry_count,
        geometry_types=dict(geometry_types),
        total_triangles=triangles,
        texture_count=len(seen),
        texture_types=dict(texture_types),
        mesh_count=len(meshes),
        instance_count=len(instances),
        node_count=len(graph.nodes) + len(meshes) + len(instances),
        memory_usage=memory,
    )


def material_details(graph: SceneGraph) -> List[MaterialDetail]:
    return [
        MaterialDetail(
            name=material.name or "Unnamed Material",
            type=VARIANT_LABELS[require_kind(material)],
            id=material.id,
            texture_count=len(bound_textures(material)),
        )
        for material in graph.materials
    ]


def geometry_details(graph: SceneGraph) -> List[GeometryDetail]:
    details: List[GeometryDetail] = []
    for mesh in graph.meshes:
        geometry = mesh.geometry
        if geometry is None:
            continue
        details.append(
            GeometryDetail(
                name=mesh.name or "Unnamed Mesh",
                type=geometry.primitive,
                id=mesh.id,
                vertices=geometry.vertex_count,
                indices=geometry.index_count,
                triangles=geometry.index_count // 3,
            )
        )
    return details


def texture_details(graph: SceneGraph) -> List[TextureDetail]:
    return [
        TextureDetail(
            name=texture.name or "Unnamed Texture",
            type=texture.kind,
            url=texture.url or "",
            width=int(texture.width),
            height=int(texture.height),
            format=texture.format,
        )
        for texture in graph.textures
    ]


def format_statistics(stats: SceneStatistics) -> List[str]:
    """Render ``stats`` as indented report lines (memory in MB)."""
    lines = [
        "Scene statistics",
        f"  nodes: {stats.node_count}",
        f"  meshes: {stats.mesh_count}",
        f"  instances: {stats.instance_count}",
        f"  triangles: {stats.total_triangles:,}",
        f"  materials: {stats.material_count}",
    ]
    lines.extend(f"    {name}: {count}" for name, count in sorted(stats.material_types.items()))
    lines.append(f"  geometries: {stats.geometry_count}")
    lines.extend(f"    {name}: {count}" for name, count in sorted(stats.geometry_types.items()))
    lines.append(f"  textures: {stats.texture_count}")
    lines.extend(f"    {name}: {count}" for name, count in sorted(stats.texture_types.items()))
    memory = stats.memory_usage
    lines.extend(
        [
            "  memory:",
            f"    vertices: {memory.vertices / _MB:.2f} MB",
            f"    indices: {memory.indices / _MB:.2f} MB",
            f"    textures: {memory.textures / _MB:.2f} MB",
            f"    total: {memory.total / _MB:.2f} MB",
        ]
    )
    return lines


def log_statistics(stats: SceneStatistics, logger: Optional[logging.Logger] = None) -> None:
    log = logger or LOG
    for line in format_statistics(stats):
        log.info("%s", line)


__all__ = [
    "MemoryUsage",
    "SceneStatistics",
    "MaterialDetail",
    "GeometryDetail",
    "TextureDetail",
    "collect_statistics",
    "material_details",
    "geometry_details",
    "texture_details",
    "format_statistics",
    "log_statistics",
]
