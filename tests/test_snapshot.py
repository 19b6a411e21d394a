import json
import tempfile
import unittest
from pathlib import Path

import numpy as np

from scenetrim.errors import SnapshotError
from scenetrim.geometry import NORMAL, POSITION
from scenetrim.materials import Texture
from scenetrim.merger import merge_meshes
from scenetrim.scene import InstancedMesh
from scenetrim.snapshot import (
    SNAPSHOT_VERSION,
    graph_from_mapping,
    graph_to_mapping,
    read_snapshot,
    write_snapshot,
)
from scenetrim.transforms import Transform

from base_test import SceneTrimTestCase, quad_geometry


class SnapshotTestCase(SceneTrimTestCase):
    def build_scene(self):
        texture = Texture(name="bark", url="bark.jpg", width=64, height=64)
        bark = self.standard("bark", (0.4, 0.3, 0.2), textures={"diffuse": texture})
        leaves = self.pbr("leaves", (0.1, 0.6, 0.1), metallic=0.0, roughness=0.8)
        root = self.node("__root__")
        trunk = self.mesh("trunk", quad_geometry(normals=True), bark, parent=root, collidable=True)
        crown = self.mesh("crown", quad_geometry(uvs=True), leaves, parent=trunk, position=(0, 3, 0))
        crown.transform = Transform(position=(0, 3, 0), rotation_quaternion=(0, 0, 0, 1), scale=(2, 2, 2))
        self.graph.add_instance(InstancedMesh(master=trunk, name="trunk_copy", transform=Transform(position=(5, 0, 0))))
        return trunk, crown


class SnapshotRoundTripTest(SnapshotTestCase):
    def test_mapping_round_trip(self):
        trunk, crown = self.build_scene()
        data = graph_to_mapping(self.graph)
        self.assertEqual(data["version"], SNAPSHOT_VERSION)

        loaded = graph_from_mapping(data)

        self.assertEqual(loaded.name, "test")
        self.assertEqual(graph_to_mapping(loaded), data)
        loaded_trunk = loaded.get(trunk.id)
        loaded_crown = loaded.get(crown.id)
        self.assertIs(loaded_crown.parent, loaded_trunk)
        self.assertTrue(loaded_trunk.collidable)
        self.assertEqual(loaded_crown.transform.scale, (2.0, 2.0, 2.0))
        np.testing.assert_array_equal(loaded_trunk.geometry.buffers[NORMAL], trunk.geometry.buffers[NORMAL])
        (instance,) = loaded.instances
        self.assertIs(instance.master, loaded_trunk)
        self.assertEqual(loaded.material_refcount(loaded_trunk.material), 1)
        self.assertEqual(loaded_trunk.material.textures["diffuse"].url, "bark.jpg")

    def test_file_round_trip(self):
        self.build_scene()
        for suffix in (".json", ".yaml"):
            with self.subTest(suffix=suffix), tempfile.TemporaryDirectory() as tmp:
                path = write_snapshot(self.graph, Path(tmp) / f"nested/scene{suffix}")
                loaded = read_snapshot(path)
                self.assertEqual(graph_to_mapping(loaded), graph_to_mapping(self.graph))

    def test_merged_mesh_survives(self):
        material = self.standard("brick")
        self.mesh("a", quad_geometry(), material)
        self.mesh("b", quad_geometry(), material, position=(2, 0, 0))
        merged = merge_meshes(self.graph).merged_meshes[0]
        loaded = graph_from_mapping(graph_to_mapping(self.graph))
        copy = loaded.get(merged.id)
        self.assertEqual(copy.bounds, merged.bounds)
        self.assertEqual(copy.metadata, merged.metadata)
        np.testing.assert_array_equal(copy.geometry.buffers[POSITION], merged.geometry.buffers[POSITION])

    def test_name_falls_back_to_file_stem(self):
        self.build_scene()
        data = graph_to_mapping(self.graph)
        data.pop("name")
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "forest.json"
            path.write_text(json.dumps(data), encoding="utf-8")
            self.assertEqual(read_snapshot(path).name, "forest")


class SnapshotErrorTest(SnapshotTestCase):
    def setUp(self):
        super().setUp()
        self.build_scene()
        self.data = graph_to_mapping(self.graph)

    def test_unknown_material_reference(self):
        self.data["meshes"][0]["material"] = "material_99"
        with self.assertRaises(SnapshotError):
            graph_from_mapping(self.data)

    def test_corrupt_buffer(self):
        self.data["geometries"][0]["buffers"]["position"] = [0.0, 1.0]
        with self.assertRaises(SnapshotError):
            graph_from_mapping(self.data)

    def test_duplicate_ids(self):
        self.data["meshes"][1]["id"] = self.data["meshes"][0]["id"]
        with self.assertRaises(SnapshotError):
            graph_from_mapping(self.data)

    def test_parent_cycle(self):
        self.data["nodes"][0]["parent"] = self.data["meshes"][0]["id"]
        with self.assertRaises(SnapshotError):
            graph_from_mapping(self.data)

    def test_unknown_kinds(self):
        self.data["materials"][0]["kind"] = "toon"
        with self.assertRaises(SnapshotError):
            graph_from_mapping(self.data)

    def test_not_a_mapping(self):
        with self.assertRaises(SnapshotError):
            graph_from_mapping([1, 2, 3])

    def test_unreadable_files(self):
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(SnapshotError):
                read_snapshot(Path(tmp) / "missing.json")
            bad = Path(tmp) / "bad.yaml"
            bad.write_text("meshes: [", encoding="utf-8")
            with self.assertRaises(SnapshotError):
                read_snapshot(bad)
            other = Path(tmp) / "scene.obj"
            other.write_text("v 0 0 0", encoding="utf-8")
            with self.assertRaises(SnapshotError):
                read_snapshot(other)
            with self.assertRaises(SnapshotError):
                write_snapshot(self.graph, Path(tmp) / "scene.glb")


if __name__ == "__main__":
    unittest.main()
