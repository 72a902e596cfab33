from __future__ import annotations

import shutil
from pathlib import Path

from common.logging_setup import get_logger
from common.types import Map
from pipeline.export_state import ExportTracker
from raster.toolkit import RasterToolkit, WorkLayout


log = get_logger("pipeline.tiles")


class TileBuilder:
    """
    Tiles the composite into tms/<slug>/ and packages it as tms/<slug>.zip.

    The tile directory is emptied first so a re-run never ships tiles left over
    from an earlier composite; the archive itself is swapped in atomically by the
    toolkit.
    """

    def __init__(self, toolkit: RasterToolkit, layout: WorkLayout, api_key: str = ""):
        self.toolkit = toolkit
        self.layout = layout
        self.api_key = api_key

    def generate_tiles(self, m: Map, composite: Path) -> Path:
        dest = self.layout.tile_dir(m.name)
        if dest.exists():
            shutil.rmtree(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        self.toolkit.tile(self.api_key, m.name, composite, dest)
        return dest

    def zip_tiles(self, m: Map) -> Path:
        zip_path = self.layout.archive_zip(m.name)
        self.toolkit.archive(self.layout.tile_dir(m.name), zip_path)
        log.info("packaged tiles", extra={"extra": {"map": m.name, "zip": str(zip_path)}})
        return zip_path

    def build(self, m: Map, composite: Path, tracker: ExportTracker) -> Path:
        tracker.tiling()
        self.generate_tiles(m, composite)
        tracker.packaging()
        return self.zip_tiles(m)
