from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .config.manifest import OptimizationManifest
from .pipeline import OptimizationOptions, PipelineReport, SceneOptimizer
from .scene import SceneGraph
from .snapshot import read_snapshot, write_snapshot
from .stats import SceneStatistics, collect_statistics

PathLike = Union[str, Path]

__all__ = [
    "OptimizationDefaults",
    "OptimizationSettings",
    "OPTIMIZATION_DEFAULTS",
    "analyze",
    "optimize",
    "statistics",
]


@dataclass(frozen=True)
class OptimizationDefaults:
    enable_material_dedup: bool = True
    enable_instancing: bool = True
    enable_merging: bool = True

    def options(self) -> OptimizationOptions:
        return OptimizationOptions(
            enable_material_dedup=self.enable_material_dedup,
            enable_instancing=self.enable_instancing,
            enable_merging=self.enable_merging,
        )


OPTIMIZATION_DEFAULTS = OptimizationDefaults()


@dataclass(slots=True)
class OptimizationSettings:
    """Inputs that drive an optimization run via :func:`optimize`.

    Either ``graph`` (already loaded) or ``scene_path`` (a snapshot file) must
    be given.  Stage switches here can only turn stages off; a manifest may
    turn them off as well.
    """

    scene_path: Optional[PathLike] = None
    graph: Optional[SceneGraph] = None
    output_path: Optional[PathLike] = None
    manifest: Optional[OptimizationManifest] = None
    manifest_path: Optional[PathLike] = None
    enable_material_dedup: bool = OPTIMIZATION_DEFAULTS.enable_material_dedup
    enable_instancing: bool = OPTIMIZATION_DEFAULTS.enable_instancing
    enable_merging: bool = OPTIMIZATION_DEFAULTS.enable_merging
    logger: Optional[logging.Logger] = None

    def resolve_graph(self) -> SceneGraph:
        if self.graph is not None:
            return self.graph
        if self.scene_path is None:
            raise ValueError("OptimizationSettings requires either 'graph' or 'scene_path'.")
        self.graph = read_snapshot(Path(self.scene_path))
        return self.graph


def _resolve_manifest(manifest: Optional[OptimizationManifest], manifest_path: Optional[PathLike]) -> OptimizationManifest:
    if manifest is not None:
        return manifest
    if manifest_path is None:
        return OptimizationManifest()
    path_obj = Path(manifest_path) if not isinstance(manifest_path, Path) else manifest_path
    return OptimizationManifest.from_file(path_obj.resolve())


def _resolve_options(settings: OptimizationSettings, options: Optional[OptimizationOptions]) -> OptimizationOptions:
    if options is not None:
        return options
    resolved = _resolve_manifest(settings.manifest, settings.manifest_path).options()
    return replace(
        resolved,
        enable_material_dedup=resolved.enable_material_dedup and settings.enable_material_dedup,
        enable_instancing=resolved.enable_instancing and settings.enable_instancing,
        enable_merging=resolved.enable_merging and settings.enable_merging,
    )


def optimize(
    settings: OptimizationSettings,
    *,
    options: Optional[OptimizationOptions] = None,
    cancel_event: Any | None = None,
) -> PipelineReport:
    """Optimize the scene described by ``settings`` and optionally write it back out."""

    log = settings.logger or logging.getLogger(__name__)
    effective_options = _resolve_options(settings, options)
    graph = settings.resolve_graph()
    optimizer = SceneOptimizer(graph, effective_options, logger=log)
    report: Optional[PipelineReport] = None
    for progress in optimizer.iter_run(cancel_event):
        if progress.stage == "measure":
            report = progress.result
        elif not progress.skipped:
            log.debug("Stage %s done (%d/%d)", progress.stage, progress.index + 1, progress.total)
    if report is None:
        raise RuntimeError("Optimization finished without measuring the scene")
    if settings.output_path is not None:
        write_snapshot(graph, settings.output_path)
    return report


def analyze(
    settings: OptimizationSettings,
    *,
    options: Optional[OptimizationOptions] = None,
) -> Dict[str, List[str]]:
    """Dry run: suggestion lines per stage; the scene is not modified."""

    effective_options = _resolve_options(settings, options)
    return SceneOptimizer(settings.resolve_graph(), effective_options, logger=settings.logger).analyze()


def statistics(settings: OptimizationSettings) -> SceneStatistics:
    return collect_statistics(settings.resolve_graph())
