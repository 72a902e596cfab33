"""
Raster — the toolkit port the export pipeline calls into.

- RasterToolkit: distort / merge / mosaic / tile / archive / flatten_preview
- WorkLayout: slug-keyed output paths under the work root
- GdalToolkit: subprocess implementation (GDAL utilities + raster.warp / raster.preview)
"""
from .toolkit import RasterToolkit, WorkLayout
from .gdal_cli import GdalToolkit

__all__ = ["RasterToolkit", "WorkLayout", "GdalToolkit"]
