"""
Repository interfaces. The pipeline depends only on these; storage engines plug in
behind them (see store.memory for the in-process implementation).
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Sequence, Union

from common.types import Export, Map, Node, Warpable


class MapRepository(ABC):

    @abstractmethod
    def add(self, m: Map) -> Map:
        """Normalize, validate, enforce uniqueness, bump version; returns the stored map."""

    @abstractmethod
    def get(self, map_id: int) -> Map:
        """Raises NotFoundError."""

    @abstractmethod
    def get_by_name(self, name: str) -> Optional[Map]:
        """Newest version of a map with this slug, archived or not."""

    @abstractmethod
    def update(self, m: Map) -> Map:
        """Raises ValidationError when another live map already uses the name."""

    @abstractmethod
    def find(self, predicate: Callable[[Map], bool]) -> List[Map]:
        pass

    def within_bbox(self, minlat: float, minlon: float, maxlat: float, maxlon: float) -> List[Map]:
        """Maps whose center lies strictly inside the box."""
        return self.find(lambda m: minlat < m.lat < maxlat and minlon < m.lon < maxlon)

    def authors(self) -> List[str]:
        """Distinct authors of public, non-archived maps."""
        seen: Dict[str, None] = {}
        for m in self.find(lambda m: not m.is_private and not m.archived):
            seen.setdefault(m.author, None)
        return list(seen)

    def new_maps(self, limit: int = 12) -> List[Map]:
        public = self.find(lambda m: not m.is_private and not m.archived)
        public.sort(key=lambda m: m.created_at, reverse=True)
        return public[:limit]


class WarpableRepository(ABC):

    @abstractmethod
    def add(self, w: Warpable) -> Warpable:
        pass

    @abstractmethod
    def get(self, warpable_id: int) -> Warpable:
        """Raises NotFoundError."""

    @abstractmethod
    def for_map(self, map_id: int) -> List[Warpable]:
        """Non-deleted warpables of a map in creation order."""

    @abstractmethod
    def place(self, warpable_id: int, node_ids: Sequence[int]) -> Warpable:
        """Attach a footprint; counts as an edit (bumps updated_at)."""

    @abstractmethod
    def soft_delete(self, warpable_id: int) -> None:
        pass


class NodeRepository(ABC):

    @abstractmethod
    def add(self, n: Node) -> Node:
        pass

    @abstractmethod
    def get(self, node_id: int) -> Node:
        """Raises NotFoundError."""

    def get_many(self, node_ids: Sequence[int]) -> List[Node]:
        return [self.get(i) for i in node_ids]


class ExportRepository(ABC):

    @abstractmethod
    def get_for_map(self, map_id: int) -> Optional[Export]:
        pass

    @abstractmethod
    def save(self, export: Export) -> Export:
        pass

    def ensure(self, map_id: int) -> Export:
        return self.get_for_map(map_id) or self.save(Export(map_id=map_id))


class Store(ABC):
    """Bundle of the four repositories handed to the pipeline."""
    maps: MapRepository
    warpables: WarpableRepository
    nodes: NodeRepository
    exports: ExportRepository


def map_footprints(store: Store, map_id: int) -> Dict[str, Union[List[List[float]], str]]:
    """
    {warpable_id: [[lon, lat], ...]} for every warpable of a map; unplaced ones map to 'none'.
    """
    out: Dict[str, Union[List[List[float]], str]] = {}
    for w in store.warpables.for_map(map_id):
        if w.placed:
            out[str(w.id)] = [[n.lon, n.lat] for n in store.nodes.get_many(w.nodes)]
        else:
            out[str(w.id)] = "none"
    return out
