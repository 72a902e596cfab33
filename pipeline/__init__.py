"""
Pipeline — georectify a map's placed images and publish them as a tile pyramid.

This package provides:
- scale: histogram-based choice of a common cm/pixel resolution
- reaper: removal of uploads that were never placed on the map
- distort: per-image perspective warps with "warping k of n" progress
- composite: bbox-clipped merge, single-layer mosaic and JPEG preview
- tiles: tile pyramid + atomically replaced zip archive
- export_state: Queued → Warping → Merging → Tiling → Packaging → Complete / Failed
- runner: single-flight export job tying the stages together

Entry point:
    python -m pipeline.runner --config config/params.yaml --manifest map.json
"""
from .runner import ExportOutcome, ExportRunner

__all__ = ["ExportOutcome", "ExportRunner"]
