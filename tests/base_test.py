"""
Base test class for scenetrim tests.

Provides a fresh scene graph per test plus small factories for geometry,
materials and meshes.
"""
import unittest
from typing import Optional, Sequence

import numpy as np

from scenetrim.geometry import Geometry
from scenetrim.materials import PBRMaterial, StandardMaterial
from scenetrim.scene import Mesh, SceneGraph, TransformNode
from scenetrim.transforms import Transform

QUAD_POSITIONS = [0, 0, 0, 1, 0, 0, 1, 1, 0, 0, 1, 0]
QUAD_INDICES = [0, 1, 2, 0, 2, 3]
QUAD_NORMALS = [0, 0, 1] * 4
QUAD_UVS = [0, 0, 1, 0, 1, 1, 0, 1]


def quad_geometry(
    *,
    normals: bool = False,
    uvs: bool = False,
    indexed: bool = True,
    name: Optional[str] = None,
) -> Geometry:
    """Unit quad in the XY plane: 4 vertices, 2 triangles."""
    return Geometry.from_arrays(
        QUAD_POSITIONS,
        indices=QUAD_INDICES if indexed else None,
        name=name,
        normal=QUAD_NORMALS if normals else None,
        uv0=QUAD_UVS if uvs else None,
    )


def point_geometry(count: int = 3) -> Geometry:
    positions = np.arange(count * 3, dtype=np.float32)
    return Geometry.from_arrays(positions, primitive="points")


class SceneTrimTestCase(unittest.TestCase):
    """Base class for all scenetrim test cases."""

    def setUp(self):
        self.graph = SceneGraph("test")

    # ------------------------------------------------------------------
    # factories
    # ------------------------------------------------------------------
    def standard(self, name: str = "std", color: Sequence[float] = (1.0, 0.0, 0.0), **kwargs) -> StandardMaterial:
        material = StandardMaterial(name=name, diffuse_color=tuple(color), **kwargs)
        return self.graph.add_material(material)

    def pbr(self, name: str = "pbr", color: Sequence[float] = (0.5, 0.5, 0.5), **kwargs) -> PBRMaterial:
        material = PBRMaterial(name=name, albedo_color=tuple(color), **kwargs)
        return self.graph.add_material(material)

    def mesh(
        self,
        name: str = "mesh",
        geometry: Optional[Geometry] = None,
        material=None,
        *,
        position: Sequence[float] = (0.0, 0.0, 0.0),
        **kwargs,
    ) -> Mesh:
        mesh = Mesh(
            name=name,
            geometry=geometry if geometry is not None else quad_geometry(),
            material=material,
            transform=Transform(position=tuple(position)),
            **kwargs,
        )
        return self.graph.add_mesh(mesh)

    def node(self, name: str = "node", *, position: Sequence[float] = (0.0, 0.0, 0.0), parent=None) -> TransformNode:
        return self.graph.add_node(TransformNode(name=name, transform=Transform(position=tuple(position)), parent=parent))

    # ------------------------------------------------------------------
    # assertions
    # ------------------------------------------------------------------
    def assertDisposed(self, item, msg: str = None):
        if not item.disposed:
            raise AssertionError(msg or f"{item!r} is not disposed")
        if self.graph.contains(item):
            raise AssertionError(msg or f"{item!r} is disposed but still registered")

    def assertLive(self, item, msg: str = None):
        if item.disposed or not self.graph.contains(item):
            raise AssertionError(msg or f"{item!r} is not live in the graph")

    def assertArrayAlmostEqual(self, actual, expected, places: int = 5, msg: str = None):
        np.testing.assert_array_almost_equal(np.asarray(actual), np.asarray(expected), decimal=places, err_msg=msg or "")
