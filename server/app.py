from __future__ import annotations

from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from common.config import load_config, load_styles
from common.errors import ConcurrencyError, NotFoundError, ValidationError
from common.logging_setup import get_logger, setup_logging
from common.utils import iso_now_ms
from pipeline.export_state import is_active
from pipeline.runner import ExportRunner, build_runner
from store.base import Store, map_footprints
from store.memory import InMemoryStore


log = get_logger("server")


def create_app(store: Store, runner: ExportRunner) -> FastAPI:
    app = FastAPI(title="Map Knitter Export API", version="1.0.0")

    # (Optional) CORS for local dev tools
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten as needed
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(NotFoundError)
    def _not_found(_, exc: NotFoundError):
        return JSONResponse({"error": "not_found", "detail": str(exc)}, status_code=404)

    @app.exception_handler(ConcurrencyError)
    def _busy(_, exc: ConcurrencyError):
        return JSONResponse({"error": "export_in_progress", "detail": str(exc)}, status_code=409)

    @app.exception_handler(ValidationError)
    def _invalid(_, exc: ValidationError):
        return JSONResponse({"error": "invalid", "field": exc.field, "detail": str(exc)}, status_code=422)

    @app.get("/health")
    def health():
        return {"status": "ok", "time": iso_now_ms(), "in_flight": len(runner.in_flight())}

    @app.get("/maps")
    def maps(
        minlat: Optional[float] = Query(None),
        minlon: Optional[float] = Query(None),
        maxlat: Optional[float] = Query(None),
        maxlon: Optional[float] = Query(None),
    ):
        box = (minlat, minlon, maxlat, maxlon)
        if all(v is None for v in box):
            found = store.maps.new_maps()
        elif any(v is None for v in box):
            raise HTTPException(status_code=400, detail="bbox needs minlat, minlon, maxlat and maxlon")
        else:
            found = [m for m in store.maps.within_bbox(*box) if not m.is_private]
        return {"maps": [m.to_dict() for m in found]}

    @app.get("/maps/{map_id}/nodes")
    def nodes(map_id: int):
        store.maps.get(map_id)
        return map_footprints(store, map_id)

    @app.post("/maps/{map_id}/export", status_code=202)
    def start_export(map_id: int):
        runner.submit(map_id)
        return store.exports.ensure(map_id).to_dict()

    @app.get("/maps/{map_id}/export")
    def export_status(map_id: int):
        store.maps.get(map_id)
        export = store.exports.get_for_map(map_id)
        if export is None:
            raise NotFoundError("export", map_id)
        body = export.to_dict()
        body["active"] = is_active(export)
        return body

    @app.post("/maps/{map_id}/reap")
    def reap(map_id: int):
        survivors = runner.reap(map_id)
        return {"map_id": map_id, "warpables": [w.id for w in survivors]}

    return app


P = load_config()
setup_logging(P["logging"].get("level", "INFO"))
_store = InMemoryStore(styles=load_styles(P["styles_path"]))
app = create_app(_store, build_runner(P, _store))


# -------- local dev entrypoint --------
if __name__ == "__main__":
    uvicorn.run(app, host=P["server"]["host"], port=int(P["server"]["port"]))
