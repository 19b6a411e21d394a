from __future__ import annotations


class SceneTrimError(Exception):
    """Base class for errors raised by scenetrim."""


class CorruptGeometryError(SceneTrimError):
    """Raised when a geometry's buffers disagree on vertex count or layout."""


class DisposedEntityError(SceneTrimError):
    """Raised when a disposed mesh, material or geometry is referenced again."""


class GraphBusyError(SceneTrimError):
    """Raised when a pass starts while another pass owns the graph."""


class OptimizationCancelledError(SceneTrimError):
    """Raised when an optimization run is cancelled by the caller."""


class SnapshotError(SceneTrimError):
    """Raised when a scene snapshot cannot be turned into a graph."""


__all__ = [
    "SceneTrimError",
    "CorruptGeometryError",
    "DisposedEntityError",
    "GraphBusyError",
    "OptimizationCancelledError",
    "SnapshotError",
]
