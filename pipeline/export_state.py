"""
Export progress as a small state machine.

    Queued → Warping(i, n) → Merging → Tiling → Packaging → Complete
       └──────────┴────────────┴─────────┴──────────┴──→ Failed(reason)

Pollers only ever see `render()`; the pipeline branches on `tag`.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from common.errors import InvalidTransitionError
from common.logging_setup import get_logger
from common.types import Export
from store.base import ExportRepository


log = get_logger("pipeline.export_state")


class Phase(str, Enum):
    QUEUED = "queued"
    WARPING = "warping"
    MERGING = "merging"
    TILING = "tiling"
    PACKAGING = "packaging"
    COMPLETE = "complete"
    FAILED = "failed"


TERMINAL = frozenset({Phase.COMPLETE, Phase.FAILED})

_NEXT = {
    None: {Phase.QUEUED},
    Phase.QUEUED: {Phase.WARPING},
    Phase.WARPING: {Phase.WARPING, Phase.MERGING},
    Phase.MERGING: {Phase.TILING},
    Phase.TILING: {Phase.PACKAGING},
    Phase.PACKAGING: {Phase.COMPLETE},
    Phase.COMPLETE: {Phase.QUEUED},
    Phase.FAILED: {Phase.QUEUED},
}


@dataclass(frozen=True, slots=True)
class ExportState:
    tag: Phase
    current: int = 0
    total: int = 0
    reason: str = ""

    @property
    def terminal(self) -> bool:
        return self.tag in TERMINAL

    def render(self) -> str:
        if self.tag is Phase.WARPING:
            return f"warping {self.current} of {self.total}"
        if self.tag is Phase.FAILED:
            return f"failed: {self.reason}" if self.reason else "failed"
        return self.tag.value


def can_transition(prev: Optional[ExportState], nxt: ExportState) -> bool:
    if nxt.tag is Phase.FAILED:
        return prev is not None and not prev.terminal
    if prev is not None and prev.tag is Phase.WARPING and nxt.tag is Phase.WARPING:
        # progress counts never move backwards
        return nxt.current >= prev.current and nxt.total == prev.total
    return nxt.tag in _NEXT[prev.tag if prev else None]


def is_active(export: Optional[Export]) -> bool:
    """True while a pipeline owns this export (state set and not terminal)."""
    return export is not None and export.state is not None and Phase(export.state) not in TERMINAL


class ExportTracker:
    """
    Writes every transition straight through to the Export record so concurrent
    pollers see progress as it happens.
    """

    def __init__(self, exports: ExportRepository, map_id: int):
        self.exports = exports
        self.map_id = map_id
        self._lock = threading.Lock()
        self.state: Optional[ExportState] = None
        rec = exports.get_for_map(map_id)
        if rec is not None and rec.state is not None:
            self.state = ExportState(Phase(rec.state))

    def _move(self, nxt: ExportState, archive_path: Optional[str] = None) -> ExportState:
        with self._lock:
            if not can_transition(self.state, nxt):
                prev = self.state.render() if self.state else "none"
                raise InvalidTransitionError(f"cannot go from '{prev}' to '{nxt.render()}'")
            self.state = nxt
            rec = self.exports.ensure(self.map_id)
            self.exports.save(
                replace(
                    rec,
                    status=nxt.render(),
                    state=nxt.tag.value,
                    archive_path=rec.archive_path if archive_path is None else archive_path,
                )
            )
        log.info(nxt.render(), extra={"extra": {"map_id": self.map_id, "state": nxt.tag.value}})
        return nxt

    def queued(self) -> ExportState:
        return self._move(ExportState(Phase.QUEUED))

    def warping(self, current: int, total: int) -> ExportState:
        return self._move(ExportState(Phase.WARPING, current=current, total=total))

    def merging(self) -> ExportState:
        return self._move(ExportState(Phase.MERGING))

    def tiling(self) -> ExportState:
        return self._move(ExportState(Phase.TILING))

    def packaging(self) -> ExportState:
        return self._move(ExportState(Phase.PACKAGING))

    def complete(self, archive_path: str) -> ExportState:
        return self._move(ExportState(Phase.COMPLETE), archive_path=archive_path)

    def failed(self, reason: str) -> ExportState:
        return self._move(ExportState(Phase.FAILED, reason=reason))
