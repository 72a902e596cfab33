"""
Store — repository interfaces for Map / Warpable / Node / Export and an
in-memory implementation.

Usage:
    from store import InMemoryStore
    store = InMemoryStore(styles=load_styles())
    m = store.maps.add(Map(id=None, name="", title="Park Survey", author="ana", lat=42.3, lon=-71.1))
"""
from .base import Store, map_footprints
from .memory import InMemoryStore

__all__ = ["Store", "InMemoryStore", "map_footprints"]
