import contextlib
import io
import json
import tempfile
import unittest
from pathlib import Path

from scenetrim.__main__ import main
from scenetrim.api import OptimizationSettings, analyze, optimize, statistics
from scenetrim.cli import parse_args
from scenetrim.config import OptimizationManifest
from scenetrim.snapshot import read_snapshot, write_snapshot

from base_test import SceneTrimTestCase, quad_geometry


class ApiTestCase(SceneTrimTestCase):
    def setUp(self):
        super().setUp()
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        geometry = quad_geometry()
        for i in range(3):
            self.mesh(f"chair_{i}", geometry, self.standard(f"oak_{i}", (0.5, 0.3 + i * 0.01, 0.1)))
        self.scene_path = write_snapshot(self.graph, self.tmp / "room.json")

    def tearDown(self):
        self._tmp.cleanup()


class OptimizeApiTest(ApiTestCase):
    def test_optimize_in_memory_graph(self):
        report = optimize(OptimizationSettings(graph=self.graph))
        self.assertEqual(report.materials.optimized_count, 1)
        self.assertEqual(report.instancing.total_instances_created, 2)
        self.assertEqual(len(self.graph.instances), 2)

    def test_optimize_writes_output(self):
        output = self.tmp / "out" / "room.yaml"
        report = optimize(OptimizationSettings(scene_path=self.scene_path, output_path=output))
        loaded = read_snapshot(output)
        self.assertEqual(len(loaded.instances), report.after.instance_count)
        self.assertEqual(len(loaded.meshes), report.after.mesh_count)

    def test_settings_switches_and_manifest_combine(self):
        manifest = OptimizationManifest.from_text("stages:\n  deduplicate: false\n", suffix=".yaml")
        settings = OptimizationSettings(graph=self.graph, manifest=manifest, enable_merging=False)
        report = optimize(settings)
        self.assertEqual(report.stages_run, ["instance", "measure"])
        # three distinct materials: nothing to instance
        self.assertEqual(report.instancing.total_instances_created, 0)

    def test_manifest_path(self):
        config = self.tmp / "optimize.json"
        config.write_text(json.dumps({"instancing": {"min_instance_count": 4}}), encoding="utf-8")
        report = optimize(OptimizationSettings(graph=self.graph, manifest_path=config))
        self.assertEqual(report.instancing.total_instances_created, 0)

    def test_requires_a_scene(self):
        with self.assertRaises(ValueError):
            optimize(OptimizationSettings())

    def test_analyze_and_statistics(self):
        settings = OptimizationSettings(scene_path=self.scene_path)
        stats = statistics(settings)
        self.assertEqual(stats.mesh_count, 3)
        suggestions = analyze(settings)
        self.assertIn("Expected material reduction: 2", suggestions["deduplicate"])
        self.assertEqual(statistics(settings), stats)


class CliTest(ApiTestCase):
    def run_main(self, *argv):
        out = io.StringIO()
        err = io.StringIO()
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            code = main(list(argv))
        return code, out.getvalue(), err.getvalue()

    def test_parse_args(self):
        args = parse_args(["optimize", "scene.json", "--output", "my", "scene.yaml", "--skip-merge"])
        self.assertEqual(args.command, "optimize")
        self.assertEqual(args.output_path, "my scene.yaml")
        self.assertFalse(args.enable_merging)
        self.assertTrue(args.enable_instancing)
        self.assertIsNone(args.config_path)

    def test_stats_command(self):
        code, out, _ = self.run_main("stats", str(self.scene_path))
        self.assertEqual(code, 0)
        self.assertIn("  meshes: 3", out.splitlines())

    def test_stats_json(self):
        code, out, _ = self.run_main("stats", str(self.scene_path), "--json")
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(out)["mesh_count"], 3)

    def test_analyze_command(self):
        code, out, _ = self.run_main("analyze", str(self.scene_path))
        self.assertEqual(code, 0)
        self.assertIn("[deduplicate]", out)

    def test_optimize_command(self):
        output = self.tmp / "optimized.json"
        code, out, _ = self.run_main("optimize", str(self.scene_path), "--output", str(output), "--json")
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(out)["stages_run"], ["deduplicate", "instance", "merge", "measure"])
        self.assertTrue(output.exists())

    def test_missing_scene_exits_with_code_two(self):
        with self.assertRaises(SystemExit) as ctx:
            self.run_main("stats", str(self.tmp / "missing.json"))
        self.assertEqual(ctx.exception.code, 2)

    def test_bad_manifest_exits_with_code_two(self):
        config = self.tmp / "broken.yaml"
        config.write_text("instancing:\n  min_instance_count: 1\n", encoding="utf-8")
        err = io.StringIO()
        with self.assertRaises(SystemExit) as ctx, contextlib.redirect_stderr(err), contextlib.redirect_stdout(io.StringIO()):
            main(["optimize", str(self.scene_path), "--config", str(config)])
        self.assertEqual(ctx.exception.code, 2)
        self.assertTrue(err.getvalue().startswith("Error:"))


if __name__ == "__main__":
    unittest.main()
