import logging
import unittest

from scenetrim.dedup import (
    MaterialCompareConfig,
    MaterialDeduplicator,
    deduplicate_materials,
    material_signature,
    materials_similar,
)
from scenetrim.materials import PBRMaterial, StandardMaterial, Texture

from base_test import SceneTrimTestCase


class SimilarityTest(unittest.TestCase):
    def test_color_distance_is_l1_sum(self):
        a = StandardMaterial(diffuse_color=(0.5, 0.5, 0.5))
        near = StandardMaterial(diffuse_color=(0.6, 0.6, 0.55))
        far = StandardMaterial(diffuse_color=(0.7, 0.6, 0.6))
        self.assertTrue(materials_similar(a, near))
        self.assertFalse(materials_similar(a, far))

    def test_variants_never_match(self):
        self.assertFalse(materials_similar(StandardMaterial(), PBRMaterial()))

    def test_missing_color_matches_only_missing(self):
        a = StandardMaterial(emissive_color=None)
        self.assertTrue(materials_similar(a, StandardMaterial(emissive_color=None)))
        self.assertFalse(materials_similar(a, StandardMaterial()))

    def test_pbr_scalars(self):
        base = PBRMaterial(metallic=0.5, roughness=0.5)
        self.assertTrue(materials_similar(base, PBRMaterial(metallic=0.55, roughness=0.45)))
        self.assertFalse(materials_similar(base, PBRMaterial(metallic=0.7, roughness=0.5)))
        self.assertFalse(materials_similar(base, PBRMaterial(metallic=0.5, roughness=0.5, alpha=0.9)))

    def test_texture_identity_modes(self):
        a = StandardMaterial(textures={"diffuse": Texture(id="t1", url="wood.jpg")})
        b = StandardMaterial(textures={"diffuse": Texture(id="t2", url="wood.jpg")})
        self.assertTrue(materials_similar(a, b, MaterialCompareConfig(texture_identity_mode="source_url")))
        self.assertFalse(materials_similar(a, b, MaterialCompareConfig(texture_identity_mode="object")))
        self.assertTrue(materials_similar(a, b, MaterialCompareConfig(compare_textures=False)))

    def test_texture_presence_must_agree(self):
        a = StandardMaterial(textures={"bump": Texture(url="n.png")})
        self.assertFalse(materials_similar(a, StandardMaterial()))

    def test_invalid_identity_mode(self):
        with self.assertRaises(ValueError):
            MaterialCompareConfig(texture_identity_mode="pixels")

    def test_signature_is_rounded(self):
        signature = material_signature(StandardMaterial(diffuse_color=(0.123, 0.456, 0.789)))
        self.assertEqual(signature[0], "StandardMaterial")
        self.assertEqual(signature[1], ("diffuse", (0.12, 0.46, 0.79)))


class DeduplicateTest(SceneTrimTestCase):
    def _scene(self):
        reds = [self.standard(f"red_{i}", (1.0 - i * 0.01, 0.0, 0.0)) for i in range(3)]
        blue = self.standard("blue", (0.0, 0.0, 1.0))
        metal = self.pbr("metal")
        meshes = [self.mesh(f"red_mesh_{i}", material=material) for i, material in enumerate(reds)]
        meshes.append(self.mesh("blue_mesh", material=blue))
        meshes.append(self.mesh("metal_mesh", material=metal))
        meshes.append(self.mesh("bare_mesh"))
        return reds, blue, metal, meshes

    def test_material_count_conservation(self):
        reds, blue, metal, meshes = self._scene()
        result = MaterialDeduplicator(self.graph).deduplicate()

        self.assertEqual(result.original_count, 5)
        self.assertEqual(result.optimized_count, 3)
        self.assertEqual(result.removed_count, 2)
        self.assertEqual(len(self.graph.materials), 3)

    def test_meshes_point_at_merged_material(self):
        reds, blue, metal, meshes = self._scene()
        result = MaterialDeduplicator(self.graph).deduplicate()

        merged = meshes[0].material
        self.assertEqual(merged.name, "Merged_1")
        self.assertIn(merged, result.merged_materials)
        self.assertEqual(merged.diffuse_color, (1.0, 0.0, 0.0))
        for mesh in meshes[:3]:
            self.assertIs(mesh.material, merged)
        self.assertEqual(self.graph.material_refcount(merged), 3)
        for material in reds:
            self.assertDisposed(material)
        self.assertIs(meshes[3].material, blue)
        self.assertIs(meshes[4].material, metal)
        self.assertIsNone(meshes[5].material)

    def test_unused_materials_are_ignored(self):
        self.standard("orphan")
        self.mesh("a", material=self.standard("used"))
        result = deduplicate_materials(self.graph)
        self.assertEqual(result.original_count, 1)

    def test_clustering_is_not_transitive(self):
        lead = self.standard("lead", (0.2, 0.0, 0.0))
        low = self.standard("low", (0.0, 0.0, 0.0))
        high = self.standard("high", (0.4, 0.0, 0.0))
        for material in (lead, low, high):
            self.mesh(material.name, material=material)
        self.assertFalse(materials_similar(low, high))

        with self.assertLogs("scenetrim.dedup", level=logging.DEBUG) as captured:
            result = MaterialDeduplicator(self.graph).deduplicate()

        self.assertEqual(result.optimized_count, 1)
        self.assertTrue(any("differ beyond the thresholds" in line for line in captured.output))

    def test_discovery_order_picks_template(self):
        low = self.standard("low", (0.0, 0.0, 0.0))
        lead = self.standard("lead", (0.2, 0.0, 0.0))
        high = self.standard("high", (0.4, 0.0, 0.0))
        for material in (low, lead, high):
            self.mesh(material.name, material=material)
        result = MaterialDeduplicator(self.graph).deduplicate()
        # low absorbs lead only; high stays on its own
        self.assertEqual(result.optimized_count, 2)

    def test_shared_texture_survives(self):
        texture = Texture(url="wood.jpg", width=2, height=2)
        a = self.standard("a", textures={"diffuse": texture})
        b = self.standard("b", textures={"diffuse": texture})
        self.mesh("a", material=a)
        self.mesh("b", material=b)
        MaterialDeduplicator(self.graph).deduplicate()
        self.assertEqual(self.graph.textures, [texture])
        self.assertIs(self.graph.meshes[0].material.textures["diffuse"], texture)

    def test_suggestions_do_not_mutate(self):
        self._scene()
        before = list(self.graph.materials)
        lines = MaterialDeduplicator(self.graph).suggestions()
        self.assertEqual(self.graph.materials, before)
        self.assertEqual(lines[0], "Found 5 material(s)")
        self.assertIn("Mergeable material groups: 1", lines)
        self.assertIn("Expected material reduction: 2", lines)

    def test_suggestions_without_candidates(self):
        self.mesh("a", material=self.standard("a", (1, 0, 0)))
        self.mesh("b", material=self.standard("b", (0, 1, 0)))
        lines = MaterialDeduplicator(self.graph).suggestions()
        self.assertEqual(lines[-1], "No mergeable materials found")


if __name__ == "__main__":
    unittest.main()
