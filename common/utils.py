from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Union


_NON_WORD = re.compile(r"\W")


def utc_now() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def iso_now_ms() -> str:
    """UTC ISO-8601 timestamp with millisecond precision."""
    return to_iso(utc_now())


def to_iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso8601(ts: Union[str, datetime]) -> datetime:
    """Parse a strict ISO-8601 timestamp with optional 'Z'. Naive values are taken as UTC."""
    if isinstance(ts, datetime):
        dt = ts
    else:
        if ts.endswith("Z"):
            ts = ts[:-1] + "+00:00"
        dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def slugify(title: str) -> str:
    """Map titles become URL-safe names: every non-word char → '-', lowercased."""
    return _NON_WORD.sub("-", title.strip()).lower()
