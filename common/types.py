from __future__ import annotations

import re
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from common.errors import ValidationError
from common.geo import valid_lat_lon
from common.utils import slugify, to_iso, utc_now


_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass(slots=True)
class Node:
    """A single footprint vertex (WGS84 degrees)."""
    id: Optional[int]
    lat: float
    lon: float

    def __post_init__(self) -> None:
        self.lat = float(self.lat)
        self.lon = float(self.lon)
        if not valid_lat_lon(self.lat, self.lon):
            raise ValidationError("node lat/lon out of range", field="lat/lon")


@dataclass(slots=True)
class Map:
    """
    A user's map. `name` is the slug that keys every output path.

    Attributes:
        title: free-form title the slug is derived from (kept for display).
        password: empty string means public.
        version: bumped on creation when an earlier map already used the name.
        styles: GSS style blob, loaded from a static asset when the map is created.
    """
    id: Optional[int]
    name: str
    author: str
    lat: float
    lon: float
    zoom: int = 12
    title: str = ""
    description: str = ""
    location: str = ""
    password: str = ""
    archived: bool = False
    version: int = 1
    styles: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def is_private(self) -> bool:
        return self.password != ""

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d.pop("password")
        d.pop("styles")
        d["private"] = self.is_private
        d["created_at"] = to_iso(self.created_at)
        d["updated_at"] = to_iso(self.updated_at)
        return d


@dataclass(slots=True)
class Warpable:
    """
    An uploaded source image and (once placed) its footprint.

    Attributes:
        nodes: ordered Node ids (TL, TR, BR, BL); empty while unplaced.
        width, height: image size in pixels; None until known.
        cm_per_pixel: ground resolution derived from the footprint when placed.
    """
    id: Optional[int]
    map_id: int
    image_path: str
    width: Optional[int] = None
    height: Optional[int] = None
    nodes: List[int] = field(default_factory=list)
    cm_per_pixel: Optional[float] = None
    deleted: bool = False
    created_at: datetime = field(default_factory=utc_now)
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        # a fresh upload has never been edited
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def placed(self) -> bool:
        return len(self.nodes) > 0

    @property
    def never_edited(self) -> bool:
        return self.updated_at == self.created_at

    @property
    def image(self) -> Path:
        return Path(self.image_path)


@dataclass(slots=True)
class Export:
    """
    One per map. `status` is the human-readable rendering pollers see;
    `state` is the machine tag the pipeline branches on (None = never run).
    """
    map_id: int
    status: str = ""
    state: Optional[str] = None
    archive_path: Optional[str] = None
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "map_id": self.map_id,
            "status": self.status,
            "state": self.state,
            "archive_path": self.archive_path,
            "updated_at": to_iso(self.updated_at),
        }


# -------------------------
# Explicit write-path helpers
# -------------------------
def normalize_map(m: Map) -> Map:
    """Return a copy with the slug derived from the title (or the given name)."""
    source = m.title or m.name
    return replace(m, name=slugify(source or ""), author=(m.author or "").strip())


def validate_map(m: Map) -> None:
    """
    Field-level checks only; uniqueness is the repository's job.
    Raises ValidationError on the first problem found.
    """
    if not m.name:
        raise ValidationError("name is required", field="name")
    if m.name == "untitled":
        raise ValidationError("name must not be 'untitled'", field="name")
    if not _NAME_RE.match(m.name):
        raise ValidationError(
            "name must be alphanumeric; dashes and underscores are allowed", field="name"
        )
    if not m.author:
        raise ValidationError("author is required", field="author")
    if m.lat is None or m.lon is None:
        raise ValidationError("lat and lon are required", field="lat/lon")
    if not valid_lat_lon(float(m.lat), float(m.lon)):
        raise ValidationError("lat must be in [-90,90] and lon in [-180,180]", field="lat/lon")
