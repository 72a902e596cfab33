from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Tuple

from common.geo import BBox


Corner = Tuple[float, float]  # (lat, lon)


@dataclass(frozen=True)
class WorkLayout:
    """
    Slug-keyed output paths under one work root:

        workroot/
          ├─ warps/<slug>/<warpable_id>-geo.tif   (per-image warp)
          ├─ warps/<slug>/<slug>-geo.tif          (clipped composite)
          ├─ warps/<slug>/<slug>-geo-merge.tif    (mosaic of all warps)
          ├─ warps/<slug>/<slug>.jpg              (preview)
          ├─ tms/<slug>/                          (tile pyramid)
          └─ tms/<slug>.zip                       (packaged tiles)
    """
    root: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "root", Path(self.root))

    def warp_dir(self, slug: str) -> Path:
        return self.root / "warps" / slug

    def warp_tif(self, slug: str, warpable_id: int) -> Path:
        return self.warp_dir(slug) / f"{warpable_id}-geo.tif"

    def composite_tif(self, slug: str) -> Path:
        return self.warp_dir(slug) / f"{slug}-geo.tif"

    def mosaic_tif(self, slug: str) -> Path:
        return self.warp_dir(slug) / f"{slug}-geo-merge.tif"

    def preview_jpg(self, slug: str) -> Path:
        return self.warp_dir(slug) / f"{slug}.jpg"

    def tile_dir(self, slug: str) -> Path:
        return self.root / "tms" / slug

    def archive_zip(self, slug: str) -> Path:
        return self.root / "tms" / f"{slug}.zip"


class RasterToolkit(ABC):
    """
    Raster operations the export pipeline delegates to. Every method blocks until
    the output is written and raises ExternalToolError on failure or timeout.
    """

    @abstractmethod
    def distort(self, scale_cm: float, source: Path, corners: Sequence[Corner], dest: Path) -> Tuple[float, float]:
        """
        Perspective-warp `source` onto its footprint at `scale_cm` cm/pixel and write a
        geotiff to `dest`. Returns the upper-left origin (x, y) in output coordinates.
        """

    @abstractmethod
    def merge(self, sources: Sequence[Path], dest: Path, bbox: Optional[BBox] = None) -> None:
        """Warp `sources` into `dest`; with `bbox`, crop/align `dest` to that extent."""

    @abstractmethod
    def mosaic(self, sources: Sequence[Path], dest: Path) -> None:
        """Merge `sources` into a fresh single-layer raster at `dest`."""

    @abstractmethod
    def tile(self, api_key: str, title: str, source: Path, dest_dir: Path) -> None:
        """Write a zoomable tile pyramid of `source` under `dest_dir`."""

    @abstractmethod
    def archive(self, src_dir: Path, zip_path: Path) -> None:
        """Replace `zip_path` with a fresh archive of `src_dir`."""

    @abstractmethod
    def flatten_preview(self, source: Path, dest: Path) -> None:
        """Flatten `source` onto white and write a browser-viewable image."""
