from __future__ import annotations

from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import List, Optional, Tuple

from common.errors import NotFoundError
from common.logging_setup import get_logger
from common.types import Map, Warpable
from pipeline.export_state import ExportTracker
from raster.toolkit import RasterToolkit, WorkLayout
from store.base import Store


log = get_logger("pipeline.distort")


@dataclass(slots=True)
class DistortResult:
    """
    min_x, min_y: component-wise minimum over every per-image origin
    origins: per-image origins in warpable creation order
    warpables: the placed warpables that were warped, same order
    """
    min_x: float
    min_y: float
    origins: List[Tuple[float, float]]
    warpables: List[Warpable]


def placed_warpables(store: Store, map_id: int) -> List[Warpable]:
    return [w for w in store.warpables.for_map(map_id) if w.placed]


class DistortionOrchestrator:
    """
    Warps every placed image of a map at one target scale.

    With workers > 1 images are warped on a thread pool; progress still counts
    completed images and the origin minimum ignores completion order. The first
    failure cancels whatever has not started and propagates.
    """

    def __init__(self, store: Store, toolkit: RasterToolkit, layout: WorkLayout, workers: int = 1):
        self.store = store
        self.toolkit = toolkit
        self.layout = layout
        self.workers = max(1, int(workers))

    def _distort_one(self, m: Map, w: Warpable, scale: float) -> Tuple[float, float]:
        corners = [(n.lat, n.lon) for n in self.store.nodes.get_many(w.nodes)]
        origin = self.toolkit.distort(scale, w.image, corners, self.layout.warp_tif(m.name, w.id))
        log.debug("warped", extra={"extra": {"warpable_id": w.id, "origin": origin}})
        return origin

    def run(self, m: Map, scale: float, tracker: ExportTracker, warpables: Optional[List[Warpable]] = None) -> DistortResult:
        if self.store.exports.get_for_map(m.id) is None:
            raise NotFoundError("export", m.id)
        ws = placed_warpables(self.store, m.id) if warpables is None else list(warpables)
        n = len(ws)
        self.layout.warp_dir(m.name).mkdir(parents=True, exist_ok=True)
        log.info("generating geotiffs", extra={"extra": {"map": m.name, "images": n, "scale_cm": scale}})

        origins: List[Optional[Tuple[float, float]]] = [None] * n
        if self.workers == 1:
            for k, w in enumerate(ws):
                origins[k] = self._distort_one(m, w, scale)
                tracker.warping(k + 1, n)
        else:
            with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="warp") as pool:
                pending = {pool.submit(self._distort_one, m, w, scale): k for k, w in enumerate(ws)}
                done_count = 0
                while pending:
                    done, _ = wait(pending, return_when=FIRST_EXCEPTION)
                    for fut in done:
                        k = pending.pop(fut)
                        exc = fut.exception()
                        if exc is not None:
                            for other in pending:
                                other.cancel()
                            raise exc
                        origins[k] = fut.result()
                        done_count += 1
                        tracker.warping(done_count, n)

        lowest_x = min((o[0] for o in origins), default=0.0)
        lowest_y = min((o[1] for o in origins), default=0.0)
        return DistortResult(lowest_x, lowest_y, list(origins), ws)
