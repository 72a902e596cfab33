from __future__ import annotations

import itertools
import threading
from dataclasses import replace
from datetime import timedelta
from typing import Callable, Dict, List, Optional, Sequence

from common.errors import NotFoundError, ValidationError
from common.geo import cm_per_pixel
from common.logging_setup import get_logger
from common.types import Export, Map, Node, Warpable, normalize_map, validate_map
from common.utils import utc_now
from store.base import (
    ExportRepository,
    MapRepository,
    NodeRepository,
    Store,
    WarpableRepository,
)


log = get_logger("store.memory")


class InMemoryMapRepository(MapRepository):
    def __init__(self, lock: threading.RLock, styles: str = ""):
        self._lock = lock
        self._rows: Dict[int, Map] = {}
        self._ids = itertools.count(1)
        self._styles = styles

    def add(self, m: Map) -> Map:
        m = normalize_map(m)
        validate_map(m)
        with self._lock:
            same = [r for r in self._rows.values() if r.name == m.name]
            if any(not r.archived for r in same):
                raise ValidationError(f"name already taken: {m.name}", field="name")
            version = max((r.version for r in same), default=0) + 1 if same else m.version
            stored = replace(
                m,
                id=next(self._ids),
                version=version,
                styles=m.styles or self._styles,
            )
            self._rows[stored.id] = stored
        log.info("map created", extra={"extra": {"map_id": stored.id, "name": stored.name, "version": stored.version}})
        return stored

    def get(self, map_id: int) -> Map:
        with self._lock:
            m = self._rows.get(int(map_id))
        if m is None:
            raise NotFoundError("map", map_id)
        return m

    def get_by_name(self, name: str) -> Optional[Map]:
        with self._lock:
            same = [r for r in self._rows.values() if r.name == name]
        return max(same, key=lambda r: r.version) if same else None

    def update(self, m: Map) -> Map:
        validate_map(m)
        with self._lock:
            if m.id not in self._rows:
                raise NotFoundError("map", m.id)
            if not m.archived and any(
                r.name == m.name and not r.archived and r.id != m.id for r in self._rows.values()
            ):
                raise ValidationError(f"name already taken: {m.name}", field="name")
            stored = replace(m, updated_at=utc_now())
            self._rows[m.id] = stored
        return stored

    def find(self, predicate: Callable[[Map], bool]) -> List[Map]:
        with self._lock:
            rows = list(self._rows.values())
        return [r for r in rows if predicate(r)]


class InMemoryNodeRepository(NodeRepository):
    def __init__(self, lock: threading.RLock):
        self._lock = lock
        self._rows: Dict[int, Node] = {}
        self._ids = itertools.count(1)

    def add(self, n: Node) -> Node:
        with self._lock:
            stored = replace(n, id=next(self._ids))
            self._rows[stored.id] = stored
        return stored

    def get(self, node_id: int) -> Node:
        with self._lock:
            n = self._rows.get(int(node_id))
        if n is None:
            raise NotFoundError("node", node_id)
        return n


class InMemoryWarpableRepository(WarpableRepository):
    def __init__(self, lock: threading.RLock, nodes: NodeRepository):
        self._lock = lock
        self._rows: Dict[int, Warpable] = {}
        self._ids = itertools.count(1)
        self._nodes = nodes

    def add(self, w: Warpable) -> Warpable:
        with self._lock:
            stored = replace(w, id=next(self._ids))
            self._rows[stored.id] = stored
        return stored

    def get(self, warpable_id: int) -> Warpable:
        with self._lock:
            w = self._rows.get(int(warpable_id))
        if w is None:
            raise NotFoundError("warpable", warpable_id)
        return w

    def for_map(self, map_id: int) -> List[Warpable]:
        with self._lock:
            rows = [w for w in self._rows.values() if w.map_id == map_id and not w.deleted]
        rows.sort(key=lambda w: (w.created_at, w.id))
        return rows

    def place(self, warpable_id: int, node_ids: Sequence[int]) -> Warpable:
        corners = [(n.lat, n.lon) for n in self._nodes.get_many(node_ids)]
        with self._lock:
            w = self.get(warpable_id)
            # an edit must be distinguishable from creation even within one clock tick
            edited = max(utc_now(), w.created_at + timedelta(microseconds=1))
            stored = replace(
                w,
                nodes=list(node_ids),
                cm_per_pixel=cm_per_pixel(corners, w.width),
                updated_at=edited,
            )
            self._rows[stored.id] = stored
        return stored

    def soft_delete(self, warpable_id: int) -> None:
        with self._lock:
            w = self.get(warpable_id)
            self._rows[w.id] = replace(w, deleted=True, updated_at=utc_now())


class InMemoryExportRepository(ExportRepository):
    def __init__(self, lock: threading.RLock):
        self._lock = lock
        self._rows: Dict[int, Export] = {}

    def get_for_map(self, map_id: int) -> Optional[Export]:
        with self._lock:
            return self._rows.get(int(map_id))

    def save(self, export: Export) -> Export:
        with self._lock:
            stored = replace(export, updated_at=utc_now())
            self._rows[export.map_id] = stored
        return stored


class InMemoryStore(Store):
    """
    Thread-safe, process-local store. One re-entrant lock guards all four tables.
    """

    def __init__(self, styles: str = ""):
        self._lock = threading.RLock()
        self.nodes = InMemoryNodeRepository(self._lock)
        self.maps = InMemoryMapRepository(self._lock, styles=styles)
        self.warpables = InMemoryWarpableRepository(self._lock, self.nodes)
        self.exports = InMemoryExportRepository(self._lock)
