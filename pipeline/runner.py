"""
Export job: reap → scale → warp → merge → tile → package, one map at a time.

Entry point:
    python -m pipeline.runner --config config/params.yaml --manifest map.json
"""
from __future__ import annotations

import argparse
import json
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Set, Tuple

import cv2

from common.config import load_config, load_styles
from common.errors import ConcurrencyError, ExternalToolError, KnitterError
from common.logging_setup import get_logger, log_stage, setup_logging
from common.types import Map, Node, Warpable
from common.utils import parse_iso8601
from pipeline.composite import CompositeBuilder
from pipeline.distort import DistortionOrchestrator, placed_warpables
from pipeline.export_state import ExportState, ExportTracker, is_active
from pipeline.reaper import GRACE, flush_unplaced_warpables
from pipeline.scale import choose_scale
from pipeline.tiles import TileBuilder
from raster.gdal_cli import GdalToolkit
from raster.toolkit import RasterToolkit, WorkLayout
from store.base import Store
from store.memory import InMemoryStore


log = get_logger("pipeline.runner")


@dataclass(slots=True)
class ExportOutcome:
    map_id: int
    state: ExportState
    archive_path: Optional[Path] = None
    scale_cm: Optional[float] = None

    @property
    def ok(self) -> bool:
        return self.archive_path is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "map_id": self.map_id,
            "status": self.state.render(),
            "state": self.state.tag.value,
            "archive_path": str(self.archive_path) if self.archive_path else None,
            "scale_cm": self.scale_cm,
        }


class ExportRunner:
    """
    Runs export pipelines and guarantees at most one per map.

    Output paths are keyed by slug, so the guard is too: a request raises
    ConcurrencyError while any map with the same slug (e.g. an archived earlier
    version) is exporting, or while this map's export is not Complete/Failed.
    Warpables owned by a running export are reported through `in_flight()` so
    the reaper leaves them alone.
    """

    def __init__(
        self,
        store: Store,
        toolkit: RasterToolkit,
        layout: WorkLayout,
        *,
        api_key: str = "",
        workers: int = 1,
        grace: timedelta = GRACE,
    ):
        self.store = store
        self.layout = layout
        self.grace = grace
        self.distorter = DistortionOrchestrator(store, toolkit, layout, workers=workers)
        self.compositor = CompositeBuilder(store, toolkit, layout)
        self.tiler = TileBuilder(toolkit, layout, api_key=api_key)
        self._lock = threading.Lock()
        # slug -> (owning map id, warpable ids being exported)
        self._active: Dict[str, Tuple[int, Set[int]]] = {}

    # ----------------------------
    # Single-flight bookkeeping
    # ----------------------------
    def _claim(self, m: Map) -> ExportTracker:
        with self._lock:
            export = self.store.exports.ensure(m.id)
            if m.name in self._active:
                owner = self._active[m.name][0]
                raise ConcurrencyError(f"export already running for '{m.name}' (map {owner})")
            if is_active(export):
                raise ConcurrencyError(f"export already running for map {m.id} ({export.status})")
            tracker = ExportTracker(self.store.exports, m.id)
            tracker.queued()
            self._active[m.name] = (m.id, set())
        return tracker

    def _release(self, m: Map) -> None:
        with self._lock:
            self._active.pop(m.name, None)

    def in_flight(self) -> Set[int]:
        with self._lock:
            return set().union(*(ids for _, ids in self._active.values()))

    def is_running(self, map_id: int) -> bool:
        with self._lock:
            return any(owner == map_id for owner, _ in self._active.values())

    # ----------------------------
    # Public API
    # ----------------------------
    def reap(self, map_id: int):
        self.store.maps.get(map_id)
        return flush_unplaced_warpables(
            self.store.warpables, map_id, grace=self.grace, in_flight=self.in_flight()
        )

    def run(self, map_id: int) -> ExportOutcome:
        """Claim the map and run the whole pipeline in the calling thread."""
        m = self.store.maps.get(map_id)
        tracker = self._claim(m)
        return self._execute(m, tracker)

    def submit(self, map_id: int, on_done: Optional[Callable[[ExportOutcome], None]] = None) -> threading.Thread:
        """
        Claim synchronously (so conflicts surface to the caller), then run in a
        background thread. Pollers follow progress through the Export record.
        """
        m = self.store.maps.get(map_id)
        tracker = self._claim(m)

        def _target() -> None:
            outcome = self._execute(m, tracker)
            if on_done is not None:
                on_done(outcome)

        t = threading.Thread(target=_target, name=f"export-{map_id}", daemon=True)
        t.start()
        return t

    def _execute(self, m: Map, tracker: ExportTracker) -> ExportOutcome:
        t0 = time.perf_counter()
        scale: Optional[float] = None
        try:
            with log_stage(log, "reap", map=m.name):
                flush_unplaced_warpables(
                    self.store.warpables, m.id, grace=self.grace, in_flight=self.in_flight()
                )
            ws = placed_warpables(self.store, m.id)
            with self._lock:
                self._active[m.name] = (m.id, {w.id for w in ws})

            with log_stage(log, "scale", map=m.name, images=len(ws)) as fields:
                scale = choose_scale(ws)
                fields["scale_cm"] = scale

            # the composite's extent comes from the footprint bbox, not the warp origins
            with log_stage(log, "distort", map=m.name):
                self.distorter.run(m, scale, tracker, warpables=ws)
            tracker.merging()
            with log_stage(log, "composite", map=m.name):
                composite = self.compositor.build(m, ws)
            with log_stage(log, "tiles", map=m.name):
                zip_path = self.tiler.build(m, composite.composite, tracker)
            state = tracker.complete(str(zip_path))
            log.info(
                "export complete",
                extra={"extra": {"map": m.name, "zip": str(zip_path), "ms": int(1000.0 * (time.perf_counter() - t0))}},
            )
            return ExportOutcome(m.id, state, archive_path=zip_path, scale_cm=scale)
        except (KnitterError, OSError) as e:
            reason = e.detail() if isinstance(e, ExternalToolError) else str(e)
            log.error("export failed", extra={"extra": {"map": m.name, "reason": reason}})
            state = tracker.failed(reason)
            return ExportOutcome(m.id, state, scale_cm=scale)
        except Exception as e:
            tracker.failed(f"internal error: {e}")
            raise
        finally:
            try:
                # an error raised while handling a failure must not leave the export claimed
                if tracker.state is not None and not tracker.state.terminal:
                    tracker.failed("export aborted")
            finally:
                self._release(m)


# ----------------------------
# CLI
# ----------------------------
def load_manifest(store: Store, path: str) -> Map:
    """
    Populate `store` from a JSON manifest:

        {"map": {"title": ..., "author": ..., "lat": ..., "lon": ...},
         "warpables": [{"image": "a.jpg", "created_at": "...Z",
                        "corners": [[lat, lon] x4]  # omitted = unplaced
                       }, ...]}
    """
    doc = json.loads(Path(path).read_text())
    mj = doc["map"]
    m = store.maps.add(
        Map(
            id=None,
            name=mj.get("name", ""),
            title=mj.get("title", ""),
            author=mj.get("author", ""),
            lat=float(mj["lat"]),
            lon=float(mj["lon"]),
            zoom=int(mj.get("zoom", 12)),
            description=mj.get("description", ""),
        )
    )
    base = Path(path).parent
    for wj in doc.get("warpables", []):
        image = base / wj["image"]
        width, height = wj.get("width"), wj.get("height")
        if width is None or height is None:
            img = cv2.imread(str(image), cv2.IMREAD_UNCHANGED)
            if img is not None:
                height, width = img.shape[:2]
        kwargs = {}
        if "created_at" in wj:
            kwargs["created_at"] = parse_iso8601(wj["created_at"])
        w = store.warpables.add(
            Warpable(id=None, map_id=m.id, image_path=str(image), width=width, height=height, **kwargs)
        )
        corners = wj.get("corners") or []
        if corners:
            node_ids = [store.nodes.add(Node(id=None, lat=lat, lon=lon)).id for lat, lon in corners]
            store.warpables.place(w.id, node_ids)
    return m


def build_runner(P: Dict[str, Any], store: Store) -> ExportRunner:
    toolkit = GdalToolkit(timeout_s=P["toolkit"]["timeout_s"], gdal_bin=P["toolkit"].get("gdal_bin", ""))
    return ExportRunner(
        store,
        toolkit,
        WorkLayout(Path(P["workroot"])),
        api_key=P["tiles"].get("api_key", ""),
        workers=int(P["pipeline"].get("workers", 1)),
        grace=timedelta(seconds=float(P["reaper"].get("grace_s", 300))),
    )


def main() -> None:
    ap = argparse.ArgumentParser(description="Run a map export from a JSON manifest")
    ap.add_argument("--config", default="config/params.yaml")
    ap.add_argument("--manifest", required=True, help="Map + warpables JSON")
    ap.add_argument("--workers", type=int, default=None, help="Override pipeline.workers")
    ap.add_argument("--workroot", default=None, help="Override workroot")
    args = ap.parse_args()

    P = load_config(args.config)
    setup_logging(P["logging"].get("level", "INFO"), force=True)
    if args.workers is not None:
        P["pipeline"]["workers"] = args.workers
    if args.workroot:
        P["workroot"] = args.workroot

    store = InMemoryStore(styles=load_styles(P["styles_path"]))
    m = load_manifest(store, args.manifest)
    outcome = build_runner(P, store).run(m.id)
    print(json.dumps(outcome.to_dict()))
    raise SystemExit(0 if outcome.ok else 1)


if __name__ == "__main__":
    main()
