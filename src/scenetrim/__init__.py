"""Post-load scene optimization: material dedup, mesh instancing and mesh merging."""

from . import api
from .api import (
    OPTIMIZATION_DEFAULTS,
    OptimizationDefaults,
    OptimizationSettings,
    analyze,
    optimize,
    statistics,
)
from .config.manifest import OptimizationManifest
from .dedup import MaterialCompareConfig, MaterialDeduplicator, OptimizationResult
from .errors import (
    CorruptGeometryError,
    DisposedEntityError,
    GraphBusyError,
    OptimizationCancelledError,
    SceneTrimError,
    SnapshotError,
)
from .geometry import BoundingBox, Geometry
from .instancer import InstancerConfig, InstancerResult, MeshInstancer
from .materials import PBRMaterial, StandardMaterial, Texture
from .merger import MergeError, MergeResult, MergerConfig, MeshMerger
from .pipeline import OptimizationOptions, PipelineReport, SceneOptimizer
from .scene import InstancedMesh, Mesh, SceneGraph, TransformNode
from .stats import SceneStatistics, collect_statistics
from .transforms import Transform

__version__ = "0.1.0"

__all__ = [
    "api",
    "OPTIMIZATION_DEFAULTS",
    "OptimizationDefaults",
    "OptimizationSettings",
    "analyze",
    "optimize",
    "statistics",
    "OptimizationManifest",
    "MaterialCompareConfig",
    "MaterialDeduplicator",
    "OptimizationResult",
    "CorruptGeometryError",
    "DisposedEntityError",
    "GraphBusyError",
    "OptimizationCancelledError",
    "SceneTrimError",
    "SnapshotError",
    "BoundingBox",
    "Geometry",
    "InstancerConfig",
    "InstancerResult",
    "MeshInstancer",
    "PBRMaterial",
    "StandardMaterial",
    "Texture",
    "MergeError",
    "MergeResult",
    "MergerConfig",
    "MeshMerger",
    "OptimizationOptions",
    "PipelineReport",
    "SceneOptimizer",
    "InstancedMesh",
    "Mesh",
    "SceneGraph",
    "TransformNode",
    "SceneStatistics",
    "collect_statistics",
    "Transform",
    "__version__",
]
