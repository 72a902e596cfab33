from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple


# -------------------------
# Bounding boxes
# -------------------------
@dataclass(frozen=True, slots=True)
class BBox:
    """Geographic extent in WGS84 degrees."""
    min_lat: float
    min_lon: float
    max_lat: float
    max_lon: float

    def as_te(self) -> Tuple[float, float, float, float]:
        """gdalwarp -te order: xmin ymin xmax ymax (lon/lat)."""
        return (self.min_lon, self.min_lat, self.max_lon, self.max_lat)


def bbox_of(points: Iterable[Tuple[float, float]]) -> Optional[BBox]:
    """
    Extent over (lat, lon) pairs, or None when there are no points.
    """
    min_lat = min_lon = max_lat = max_lon = None
    for lat, lon in points:
        min_lat = lat if min_lat is None or lat < min_lat else min_lat
        min_lon = lon if min_lon is None or lon < min_lon else min_lon
        max_lat = lat if max_lat is None or lat > max_lat else max_lat
        max_lon = lon if max_lon is None or lon > max_lon else max_lon
    if min_lat is None:
        return None
    return BBox(float(min_lat), float(min_lon), float(max_lat), float(max_lon))


def valid_lat_lon(lat: float, lon: float) -> bool:
    return (-90.0 <= lat <= 90.0) and (-180.0 <= lon <= 180.0)


# -------------------------
# Great-circle
# -------------------------
def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine great-circle distance on WGS84 sphere approximation."""
    R = 6371008.8  # mean Earth radius (m)
    p1 = math.radians(lat1)
    p2 = math.radians(lat2)
    dphi = p2 - p1
    dl = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2.0) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2.0) ** 2
    return 2 * R * math.asin(math.sqrt(a))


def cm_per_pixel(corners: Sequence[Tuple[float, float]], width_px: Optional[int]) -> Optional[float]:
    """
    Ground resolution of a placed image.

    corners: (lat, lon) footprint in TL, TR, BR, BL order; the top edge (TL→TR)
    spans the image width. Returns None when the width is unknown or fewer than
    two corners are placed.
    """
    if not width_px or len(corners) < 2:
        return None
    (lat1, lon1), (lat2, lon2) = corners[0], corners[1]
    return 100.0 * haversine_m(lat1, lon1, lat2, lon2) / float(width_px)
