"""Vertex buffer containers shared by the optimization passes.

A :class:`Geometry` keeps flat ``float32`` buffers keyed by vertex attribute kind
plus an optional ``uint32`` index buffer.  Every buffer must describe the same
number of vertices; the position buffer is mandatory.  The layout mirrors what
GPU vertex buffers expect so concatenation is a plain ``np.concatenate`` once the
attribute sets of all members agree.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Literal, Mapping, Optional, Tuple

import numpy as np

from .errors import CorruptGeometryError

LOG = logging.getLogger(__name__)

POSITION = "position"
NORMAL = "normal"
UV0 = "uv0"
UV1 = "uv1"
COLOR = "color"
TANGENT = "tangent"

VERTEX_KINDS: Tuple[str, ...] = (POSITION, NORMAL, UV0, UV1, COLOR, TANGENT)

_COMPONENTS: Dict[str, int] = {
    POSITION: 3,
    NORMAL: 3,
    UV0: 2,
    UV1: 2,
    COLOR: 4,
    TANGENT: 4,
}

# Per-vertex fill used when a merge member lacks an attribute the group needs.
DEFAULT_VALUES: Dict[str, Tuple[float, ...]] = {
    NORMAL: (0.0, 1.0, 0.0),
    UV0: (0.0, 0.0),
    UV1: (0.0, 0.0),
    COLOR: (1.0, 1.0, 1.0, 1.0),
    TANGENT: (1.0, 0.0, 0.0, 1.0),
}

Primitive = Literal["triangles", "points", "lines"]
PRIMITIVES: Tuple[str, ...] = ("triangles", "points", "lines")


def components_for(kind: str) -> int:
    """Return the number of float components stored per vertex for ``kind``."""
    try:
        return _COMPONENTS[kind]
    except KeyError:
        raise ValueError(f"Unknown vertex attribute kind: {kind!r}") from None


def default_buffer(kind: str, vertex_count: int) -> np.ndarray:
    """Build a flat buffer of ``vertex_count`` copies of the default value for ``kind``."""
    if kind == POSITION:
        raise ValueError("Positions have no default; every geometry must carry them.")
    try:
        value = DEFAULT_VALUES[kind]
    except KeyError:
        raise ValueError(f"Unknown vertex attribute kind: {kind!r}") from None
    return np.tile(np.asarray(value, dtype=np.float32), int(vertex_count))


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned bounds in the owning mesh's local space."""

    minimum: Tuple[float, float, float]
    maximum: Tuple[float, float, float]

    @classmethod
    def from_points(cls, points: np.ndarray) -> Optional["BoundingBox"]:
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        if pts.size == 0:
            return None
        mins = pts.min(axis=0)
        maxs = pts.max(axis=0)
        return cls(
            minimum=(float(mins[0]), float(mins[1]), float(mins[2])),
            maximum=(float(maxs[0]), float(maxs[1]), float(maxs[2])),
        )

    @property
    def center(self) -> Tuple[float, float, float]:
        return tuple((lo + hi) * 0.5 for lo, hi in zip(self.minimum, self.maximum))  # type: ignore[return-value]

    @property
    def extent(self) -> Tuple[float, float, float]:
        return tuple(hi - lo for lo, hi in zip(self.minimum, self.maximum))  # type: ignore[return-value]

    def as_dict(self) -> Dict[str, Any]:
        return {"min": list(self.minimum), "max": list(self.maximum)}


def _as_flat_float(kind: str, data: Any) -> np.ndarray:
    try:
        arr = np.asarray(data, dtype=np.float32)
    except (TypeError, ValueError) as exc:
        raise CorruptGeometryError(f"Buffer '{kind}' is not numeric: {exc}") from exc
    return np.ascontiguousarray(arr.reshape(-1))


def _as_flat_index(data: Any) -> np.ndarray:
    try:
        arr = np.asarray(data)
    except (TypeError, ValueError) as exc:
        raise CorruptGeometryError(f"Index buffer is not numeric: {exc}") from exc
    arr = arr.reshape(-1)
    if arr.size == 0:
        return np.zeros(0, dtype=np.uint32)
    if not np.issubdtype(arr.dtype, np.integer):
        if not np.issubdtype(arr.dtype, np.floating) or not np.all(np.mod(arr, 1) == 0):
            raise CorruptGeometryError("Index buffer must contain integers.")
    if arr.min() < 0:
        raise CorruptGeometryError("Index buffer must not contain negative values.")
    return np.ascontiguousarray(arr.astype(np.uint32))


@dataclass(eq=False)
class Geometry:
    """Parallel vertex buffers plus optional indices.

    ``id`` may be left empty; :class:`~scenetrim.scene.SceneGraph` assigns one
    when the geometry is registered.
    """

    buffers: Dict[str, np.ndarray]
    indices: Optional[np.ndarray] = None
    primitive: Primitive = "triangles"
    id: str = ""
    name: Optional[str] = None
    disposed: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.primitive not in PRIMITIVES:
            raise ValueError(f"Unsupported primitive type: {self.primitive!r}")
        converted: Dict[str, np.ndarray] = {}
        for kind, data in dict(self.buffers).items():
            components_for(kind)
            if data is None:
                continue
            converted[kind] = _as_flat_float(kind, data)
        self.buffers = converted
        if self.indices is not None:
            self.indices = _as_flat_index(self.indices)
        self.validate()

    # ------------------------------------------------------------------
    # sizes
    # ------------------------------------------------------------------
    @property
    def vertex_count(self) -> int:
        positions = self.buffers.get(POSITION)
        if positions is None:
            return 0
        return int(positions.size // _COMPONENTS[POSITION])

    @property
    def index_count(self) -> int:
        return 0 if self.indices is None else int(self.indices.size)

    @property
    def triangle_count(self) -> int:
        return self.index_count // 3

    @property
    def kinds(self) -> Tuple[str, ...]:
        return tuple(kind for kind in VERTEX_KINDS if kind in self.buffers)

    def has(self, kind: str) -> bool:
        return kind in self.buffers

    def get(self, kind: str) -> Optional[np.ndarray]:
        return self.buffers.get(kind)

    def view(self, kind: str) -> np.ndarray:
        """Return ``kind`` reshaped to ``(vertex_count, components)``."""
        return self.buffers[kind].reshape(-1, components_for(kind))

    # ------------------------------------------------------------------
    # mutation / validation
    # ------------------------------------------------------------------
    def set_buffer(self, kind: str, data: Any) -> None:
        components_for(kind)
        previous = self.buffers.get(kind)
        self.buffers[kind] = _as_flat_float(kind, data)
        try:
            self.validate()
        except CorruptGeometryError:
            if previous is None:
                self.buffers.pop(kind, None)
            else:
                self.buffers[kind] = previous
            raise

    def set_indices(self, data: Any) -> None:
        previous = self.indices
        self.indices = None if data is None else _as_flat_index(data)
        try:
            self.validate()
        except CorruptGeometryError:
            self.indices = previous
            raise

    def validate(self) -> None:
        """Raise :class:`CorruptGeometryError` when the buffer layout is inconsistent."""
        label = self.id or self.name or "<unregistered>"
        positions = self.buffers.get(POSITION)
        if positions is None:
            raise CorruptGeometryError(f"Geometry {label} has no position buffer.")
        vertex_count: Optional[int] = None
        for kind in self.kinds:
            size = int(self.buffers[kind].size)
            comps = _COMPONENTS[kind]
            if size % comps != 0:
                raise CorruptGeometryError(
                    f"Geometry {label}: buffer '{kind}' length {size} is not a multiple of {comps}."
                )
            count = size // comps
            if vertex_count is None:
                vertex_count = count
            elif count != vertex_count:
                raise CorruptGeometryError(
                    f"Geometry {label}: buffer '{kind}' holds {count} vertices, expected {vertex_count}."
                )
        if self.indices is not None and self.indices.size:
            if int(self.indices.max()) >= (vertex_count or 0):
                raise CorruptGeometryError(
                    f"Geometry {label}: index {int(self.indices.max())} out of range for {vertex_count} vertices."
                )

    # ------------------------------------------------------------------
    # derived data
    # ------------------------------------------------------------------
    def compute_bounds(self) -> Optional[BoundingBox]:
        if self.vertex_count == 0:
            return None
        return BoundingBox.from_points(self.view(POSITION))

    def copy(self, *, id: str = "", name: Optional[str] = None) -> "Geometry":
        """Deep copy the buffers into a new, unregistered geometry."""
        return Geometry(
            buffers={kind: buf.copy() for kind, buf in self.buffers.items()},
            indices=None if self.indices is None else self.indices.copy(),
            primitive=self.primitive,
            id=id,
            name=name if name is not None else self.name,
        )

    @classmethod
    def from_arrays(
        cls,
        positions: Iterable[float],
        *,
        indices: Optional[Iterable[int]] = None,
        primitive: Primitive = "triangles",
        name: Optional[str] = None,
        id: str = "",
        **attributes: Any,
    ) -> "Geometry":
        """Convenience constructor: ``Geometry.from_arrays(pos, indices=idx, normal=n, uv0=uv)``."""
        buffers: Dict[str, Any] = {POSITION: positions}
        for kind, data in attributes.items():
            if data is not None:
                buffers[kind] = data
        return cls(buffers=buffers, indices=indices, primitive=primitive, id=id, name=name)


def union_kinds(geometries: Iterable[Geometry]) -> Tuple[str, ...]:
    """Return every attribute kind present on any geometry, in canonical order."""
    present = set()
    for geometry in geometries:
        present.update(geometry.kinds)
    present.add(POSITION)
    return tuple(kind for kind in VERTEX_KINDS if kind in present)


def padded_buffers(geometry: Geometry, kinds: Iterable[str]) -> Dict[str, np.ndarray]:
    """Return copies of ``geometry``'s buffers with missing ``kinds`` filled by defaults.

    The source geometry is left untouched.
    """
    out: Dict[str, np.ndarray] = {}
    count = geometry.vertex_count
    for kind in kinds:
        existing = geometry.get(kind)
        if existing is not None:
            out[kind] = existing.copy()
        else:
            out[kind] = default_buffer(kind, count)
    return out


def buffers_from_mapping(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Pick the known vertex attribute buffers out of an arbitrary mapping."""
    return {kind: data[kind] for kind in VERTEX_KINDS if data.get(kind) is not None}


__all__ = [
    "POSITION",
    "NORMAL",
    "UV0",
    "UV1",
    "COLOR",
    "TANGENT",
    "VERTEX_KINDS",
    "DEFAULT_VALUES",
    "PRIMITIVES",
    "BoundingBox",
    "Geometry",
    "components_for",
    "default_buffer",
    "union_kinds",
    "padded_buffers",
    "buffers_from_mapping",
]
