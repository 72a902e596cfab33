from __future__ import annotations

from datetime import datetime, timedelta
from typing import AbstractSet, List, Optional

from common.errors import KnitterError
from common.logging_setup import get_logger
from common.types import Warpable
from common.utils import utc_now
from store.base import WarpableRepository


log = get_logger("pipeline.reaper")

GRACE = timedelta(minutes=5)


def is_unplaced(w: Warpable) -> bool:
    """No footprint and never edited since upload."""
    return not w.placed and w.never_edited


def flush_unplaced_warpables(
    warpables: WarpableRepository,
    map_id: int,
    *,
    grace: timedelta = GRACE,
    now: Optional[datetime] = None,
    in_flight: AbstractSet[int] = frozenset(),
) -> List[Warpable]:
    """
    Soft-delete uploads that were never placed on the map and return the survivors.

    One pass in creation order. An unplaced warpable is removed when it is older
    than `grace`, or when another unplaced one was already met earlier in the
    pass, so at most one fresh unplaced upload survives. Warpables in `in_flight`
    (owned by a running export) are never touched. A failed delete is logged and
    the scan carries on.
    """
    now = now or utc_now()
    seen_unplaced = False
    removed = 0
    for w in warpables.for_map(map_id):
        if w.id in in_flight or not is_unplaced(w):
            continue
        if now - w.created_at > grace or seen_unplaced:
            try:
                warpables.soft_delete(w.id)
                removed += 1
            except (KnitterError, OSError):
                log.exception("could not remove unplaced warpable", extra={"extra": {"warpable_id": w.id}})
        seen_unplaced = True
    if removed:
        log.info("reaped unplaced uploads", extra={"extra": {"map_id": map_id, "removed": removed}})
    return warpables.for_map(map_id)
