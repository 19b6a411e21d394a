from .manifest import OptimizationManifest, load_manifest

__all__ = ["OptimizationManifest", "load_manifest"]
