from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

from common.errors import DataError
from common.geo import BBox, bbox_of
from common.logging_setup import get_logger
from common.types import Map, Warpable
from raster.toolkit import RasterToolkit, WorkLayout
from store.base import Store


log = get_logger("pipeline.composite")


@dataclass(slots=True)
class CompositeResult:
    bbox: BBox
    composite: Path  # <slug>-geo.tif, input to tiling and preview
    mosaic: Path     # <slug>-geo-merge.tif
    preview: Path    # <slug>.jpg


def map_bbox(store: Store, warpables: Sequence[Warpable]) -> BBox:
    """Extent of every footprint node of the given warpables."""
    points = [
        (n.lat, n.lon)
        for w in warpables
        for n in store.nodes.get_many(w.nodes)
    ]
    box = bbox_of(points)
    if box is None:
        raise DataError("map has no placed points")
    return box


class CompositeBuilder:
    def __init__(self, store: Store, toolkit: RasterToolkit, layout: WorkLayout):
        self.store = store
        self.toolkit = toolkit
        self.layout = layout

    def build(self, m: Map, warpables: Sequence[Warpable]) -> CompositeResult:
        """
        The first warp is cropped/aligned to the map's bbox and becomes the base of
        the composite; each later warp is merged into it as-is. All warps are then
        mosaicked into one layer, and a white-background preview is made from the
        composite.
        """
        if not warpables:
            raise DataError("nothing to merge")
        box = map_bbox(self.store, warpables)
        composite = self.layout.composite_tif(m.name)
        sources: List[Path] = [self.layout.warp_tif(m.name, w.id) for w in warpables]

        log.info("merging", extra={"extra": {"map": m.name, "images": len(sources), "bbox": box.as_te()}})
        self.toolkit.merge([sources[0]], composite, bbox=box)
        for src in sources[1:]:
            self.toolkit.merge([src], composite)

        mosaic = self.layout.mosaic_tif(m.name)
        self.toolkit.mosaic(sources, mosaic)

        preview = self.layout.preview_jpg(m.name)
        self.toolkit.flatten_preview(composite, preview)
        return CompositeResult(bbox=box, composite=composite, mosaic=mosaic, preview=preview)
