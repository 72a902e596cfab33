from __future__ import annotations

import logging
import os
import sys
import json
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line:
      { "t": 169, "lvl": "INFO", "name": "pipeline.runner", "thread": "export-3",
        "msg": "stage done", "extra": {"map": "park", "stage": "distort", "ms": 812} }

    `thread` tells parallel warp workers and background export threads apart.
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "t": int(time.time() * 1000),
            "lvl": record.levelname,
            "name": record.name,
            "thread": record.threadName,
            "msg": record.getMessage(),
        }
        fields = getattr(record, "extra", None)
        if isinstance(fields, dict) and fields:
            payload["extra"] = fields
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _level(name: Optional[str]) -> int:
    lvl = logging.getLevelName((name or os.environ.get("LOG_LEVEL") or "INFO").upper())
    return lvl if isinstance(lvl, int) else logging.INFO


def setup_logging(level: Optional[str] = None, force: bool = False) -> None:
    """
    Install the JSON handler on the root logger.

    Level: explicit `level` (usually `logging.level` from params.yaml), then env
    LOG_LEVEL, then INFO. Runs once per process; `force=True` re-levels after the
    config file has been read.
    """
    root = logging.getLogger()
    if getattr(root, "_knitter_configured", False) and not force:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_level(level))
    root._knitter_configured = True  # type: ignore[attr-defined]


def get_logger(name: str) -> logging.Logger:
    """Get a module logger; ensures root is configured."""
    setup_logging()
    return logging.getLogger(name)


@contextmanager
def log_stage(log: logging.Logger, stage: str, **fields: Any) -> Iterator[Dict[str, Any]]:
    """
    Time one export stage and log it as "stage done" or "stage failed" with `ms`.

    Yields the field dict so the stage can attach results (e.g. the chosen scale).
    """
    fields = {"stage": stage, **fields}
    t0 = time.perf_counter()
    try:
        yield fields
    except BaseException as e:
        fields["ms"] = int(1000.0 * (time.perf_counter() - t0))
        fields["error"] = type(e).__name__
        log.warning("stage failed", extra={"extra": fields})
        raise
    fields["ms"] = int(1000.0 * (time.perf_counter() - t0))
    log.info("stage done", extra={"extra": fields})
