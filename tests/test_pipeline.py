import threading
import unittest

from scenetrim.dedup import MaterialCompareConfig
from scenetrim.errors import GraphBusyError, OptimizationCancelledError
from scenetrim.instancer import InstancerConfig
from scenetrim.pipeline import STAGES, OptimizationOptions, SceneOptimizer, optimize_scene
from scenetrim.stats import collect_statistics

from base_test import SceneTrimTestCase, quad_geometry


class PipelineTestCase(SceneTrimTestCase):
    def build_street(self):
        """Four lamp posts sharing one geometry, split over two near-identical materials."""
        geometry = quad_geometry()
        warm = self.standard("warm", (1.0, 0.9, 0.8))
        warmer = self.standard("warmer", (1.0, 0.89, 0.8))
        lamps = [
            self.mesh(f"lamp_{i}", geometry, warm if i % 2 == 0 else warmer, position=(i * 5, 0, 0))
            for i in range(4)
        ]
        walls = [self.mesh(f"wall_{i}", quad_geometry(), self.standard(f"wall_{i}", (0.2, 0.2, 0.2))) for i in range(2)]
        return geometry, lamps, walls


class StageOrderTest(PipelineTestCase):
    def test_stage_order_is_fixed(self):
        self.build_street()
        stages = [progress.stage for progress in SceneOptimizer(self.graph).iter_run()]
        self.assertEqual(stages, list(STAGES))

    def test_dedup_before_instancing_enlarges_clusters(self):
        instancing = InstancerConfig(min_instance_count=3)

        self.build_street()
        alone = SceneOptimizer(
            self.graph,
            OptimizationOptions(instancing=instancing, enable_material_dedup=False, enable_merging=False),
        ).run()

        self.setUp()
        self.build_street()
        combined = SceneOptimizer(
            self.graph,
            OptimizationOptions(instancing=instancing, enable_merging=False),
        ).run()

        self.assertEqual(alone.instancing.total_instances_created, 0)
        self.assertEqual(combined.instancing.total_instances_created, 3)
        self.assertGreaterEqual(
            combined.instancing.total_instances_created,
            alone.instancing.total_instances_created,
        )

    def test_full_run_report(self):
        geometry, lamps, walls = self.build_street()
        report = optimize_scene(self.graph)

        self.assertEqual(report.stages_run, list(STAGES))
        self.assertEqual(report.before.mesh_count, 6)
        # lamps become one master plus instances; the walls merge into one mesh
        self.assertEqual(report.materials.optimized_count, 2)
        self.assertEqual(report.instancing.total_instances_created, 3)
        self.assertEqual(report.merging.merged_mesh_count, 1)
        self.assertEqual(report.after.mesh_count, 2)
        self.assertEqual(report.after.instance_count, 3)
        self.assertEqual(report.after, collect_statistics(self.graph))
        self.assertTrue(report.summary())
        self.assertEqual(report.as_dict()["stages_run"], list(STAGES))

    def test_disabled_stages_are_skipped(self):
        self.build_street()
        options = OptimizationOptions(enable_instancing=False, enable_merging=False)
        progress = list(SceneOptimizer(self.graph, options).iter_run())
        skipped = [p.stage for p in progress if p.skipped]
        self.assertEqual(skipped, ["instance", "merge"])
        report = progress[-1].result
        self.assertIsNone(report.instancing)
        self.assertEqual(report.stages_run, ["deduplicate", "measure"])
        self.assertEqual(len(self.graph.instances), 0)

    def test_unknown_stage_name(self):
        with self.assertRaises(ValueError):
            OptimizationOptions().enabled("compress")


class CancellationTest(PipelineTestCase):
    def test_cancel_between_stages(self):
        self.build_street()
        cancel = threading.Event()
        runner = SceneOptimizer(self.graph).iter_run(cancel)

        first = next(runner)
        self.assertEqual(first.stage, "deduplicate")
        cancel.set()
        with self.assertRaises(OptimizationCancelledError):
            next(runner)

        # the finished stage stays applied, later ones never ran
        self.assertEqual(len(self.graph.materials), 2)
        self.assertEqual(len(self.graph.instances), 0)
        self.assertIsNone(self.graph.active_pass)

    def test_cancel_before_start(self):
        cancel = threading.Event()
        cancel.set()
        with self.assertRaises(OptimizationCancelledError):
            next(SceneOptimizer(self.graph).iter_run(cancel))


class SingleStageTest(PipelineTestCase):
    def test_stage_override_config(self):
        self.build_street()
        optimizer = SceneOptimizer(self.graph)
        result = optimizer.deduplicate(MaterialCompareConfig(color_threshold=0.0))
        self.assertEqual(result.removed_count, 1)

    def test_passes_cannot_overlap(self):
        self.build_street()
        optimizer = SceneOptimizer(self.graph)
        with self.graph.exclusive("deduplicate"):
            with self.assertRaises(GraphBusyError):
                optimizer.merge()


class AnalyzeTest(PipelineTestCase):
    def test_analyze_is_a_dry_run(self):
        self.build_street()
        before = collect_statistics(self.graph)
        suggestions = SceneOptimizer(self.graph).analyze()
        self.assertEqual(set(suggestions), {"deduplicate", "instance", "merge"})
        self.assertEqual(collect_statistics(self.graph), before)

    def test_analyze_respects_switches(self):
        self.build_street()
        suggestions = SceneOptimizer(self.graph, OptimizationOptions(enable_merging=False)).analyze()
        self.assertNotIn("merge", suggestions)


if __name__ == "__main__":
    unittest.main()
