from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .dedup import MaterialCompareConfig, MaterialDeduplicator, OptimizationResult
from .errors import OptimizationCancelledError
from .instancer import InstancerConfig, InstancerResult, MeshInstancer
from .merger import MergeResult, MergerConfig, MeshMerger
from .scene import SceneGraph
from .stats import SceneStatistics, collect_statistics

LOG = logging.getLogger(__name__)

# Order is fixed: deduplicated materials enlarge the instancing and merge clusters.
STAGES: Tuple[str, ...] = ("deduplicate", "instance", "merge", "measure")


@dataclass
class OptimizationOptions:
    materials: MaterialCompareConfig = field(default_factory=MaterialCompareConfig)
    instancing: InstancerConfig = field(default_factory=InstancerConfig)
    merging: MergerConfig = field(default_factory=MergerConfig)
    enable_material_dedup: bool = True
    enable_instancing: bool = True
    enable_merging: bool = True

    def enabled(self, stage: str) -> bool:
        if stage == "deduplicate":
            return self.enable_material_dedup
        if stage == "instance":
            return self.enable_instancing
        if stage == "merge":
            return self.enable_merging
        if stage == "measure":
            return True
        raise ValueError(f"Unknown pipeline stage: {stage!r}")


@dataclass(slots=True)
class StageProgress:
    stage: str
    index: int
    total: int
    skipped: bool = False
    result: Any = None


@dataclass(slots=True)
class PipelineReport:
    before: SceneStatistics
    after: Optional[SceneStatistics] = None
    materials: Optional[OptimizationResult] = None
    instancing: Optional[InstancerResult] = None
    merging: Optional[MergeResult] = None
    stages_run: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "before": self.before.as_dict(),
            "after": self.after.as_dict() if self.after is not None else None,
            "materials": self.materials.as_dict() if self.materials is not None else None,
            "instancing": self.instancing.as_dict() if self.instancing is not None else None,
            "merging": self.merging.as_dict() if self.merging is not None else None,
            "stages_run": list(self.stages_run),
        }

    def summary(self) -> List[str]:
        lines: List[str] = []
        if self.materials is not None:
            lines.append(
                f"materials: {self.materials.original_count} -> {self.materials.optimized_count}"
            )
        if self.instancing is not None:
            lines.append(
                f"meshes after instancing: {self.instancing.original_mesh_count} -> "
                f"{self.instancing.optimized_mesh_count} ({self.instancing.total_instances_created} instances)"
            )
        if self.merging is not None:
            lines.append(
                f"merged: {self.merging.original_mesh_count} eligible -> {self.merging.merged_mesh_count} merged "
                f"({len(self.merging.failed_groups)} failed)"
            )
        if self.after is not None:
            lines.append(f"meshes: {self.before.mesh_count} -> {self.after.mesh_count}")
            lines.append(f"triangles: {self.before.total_triangles} -> {self.after.total_triangles}")
        return lines


def _is_cancelled(cancel_event: Any | None) -> bool:
    if cancel_event is None:
        return False
    is_set = getattr(cancel_event, "is_set", None)
    if callable(is_set):
        return bool(is_set())
    return bool(cancel_event)


def _ensure_not_cancelled(cancel_event: Any | None, *, message: str | None = None) -> None:
    if _is_cancelled(cancel_event):
        raise OptimizationCancelledError(message or "Optimization cancelled.")


class SceneOptimizer:
    """Runs the optimization passes over one graph in their fixed order.

    Each stage can also be called on its own with a one-off config override.
    """

    def __init__(
        self,
        graph: SceneGraph,
        options: Optional[OptimizationOptions] = None,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.graph = graph
        self.options = options or OptimizationOptions()
        self.log = logger or LOG

    def deduplicate(self, config: Optional[MaterialCompareConfig] = None) -> OptimizationResult:
        return MaterialDeduplicator(self.graph, config or self.options.materials, logger=self.log).deduplicate()

    def instance(self, config: Optional[InstancerConfig] = None) -> InstancerResult:
        return MeshInstancer(self.graph, config or self.options.instancing, logger=self.log).create_instances()

    def merge(self, config: Optional[MergerConfig] = None) -> MergeResult:
        return MeshMerger(self.graph, config or self.options.merging, logger=self.log).merge_meshes()

    def measure(self) -> SceneStatistics:
        return collect_statistics(self.graph)

    def run(self) -> PipelineReport:
        report: Optional[PipelineReport] = None
        for progress in self.iter_run():
            if progress.stage == "measure":
                report = progress.result
        assert report is not None
        return report

    def iter_run(self, cancel_event: Any | None = None) -> Iterator[StageProgress]:
        """Run stage by stage, yielding after each one.

        ``cancel_event`` (anything with ``is_set()``) is checked before every
        stage; a set event raises :class:`OptimizationCancelledError` and leaves
        the stages already run applied.  The final ``measure`` progress carries
        the :class:`PipelineReport`.
        """
        _ensure_not_cancelled(cancel_event)
        report = PipelineReport(before=self.measure())
        total = len(STAGES)
        for index, stage in enumerate(STAGES):
            _ensure_not_cancelled(cancel_event, message=f"Optimization cancelled before '{stage}'.")
            if not self.options.enabled(stage):
                self.log.info("Stage %s disabled; skipping", stage)
                yield StageProgress(stage=stage, index=index, total=total, skipped=True)
                continue
            self.log.debug("Running stage %d/%d: %s", index + 1, total, stage)
            if stage == "deduplicate":
                report.materials = self.deduplicate()
                result: Any = report.materials
            elif stage == "instance":
                report.instancing = self.instance()
                result = report.instancing
            elif stage == "merge":
                report.merging = self.merge()
                result = report.merging
            else:
                report.after = self.measure()
                result = report
            report.stages_run.append(stage)
            yield StageProgress(stage=stage, index=index, total=total, result=result)
        for line in report.summary():
            self.log.info("%s", line)

    def analyze(self) -> Dict[str, List[str]]:
        """Dry run: per-stage suggestions, graph untouched."""
        out: Dict[str, List[str]] = {}
        if self.options.enable_material_dedup:
            out["deduplicate"] = MaterialDeduplicator(self.graph, self.options.materials, logger=self.log).suggestions()
        if self.options.enable_instancing:
            out["instance"] = MeshInstancer(self.graph, self.options.instancing, logger=self.log).suggestions()
        if self.options.enable_merging:
            out["merge"] = MeshMerger(self.graph, self.options.merging, logger=self.log).suggestions()
        return out


def optimize_scene(
    graph: SceneGraph,
    options: Optional[OptimizationOptions] = None,
    *,
    logger: Optional[logging.Logger] = None,
) -> PipelineReport:
    return SceneOptimizer(graph, options, logger=logger).run()


__all__ = [
    "STAGES",
    "OptimizationOptions",
    "StageProgress",
    "PipelineReport",
    "SceneOptimizer",
    "optimize_scene",
]
