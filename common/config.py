from __future__ import annotations

import copy
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULTS: Dict[str, Any] = {
    "workroot": "public",
    "logging": {"level": "INFO"},
    "toolkit": {"timeout_s": 600, "gdal_bin": ""},
    "tiles": {"api_key": ""},
    "pipeline": {"workers": 1},
    "reaper": {"grace_s": 300},
    "styles_path": "config/styles.gss",
    "server": {"host": "0.0.0.0", "port": 8000},
}


def _merge(base: Dict[str, Any], over: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (over or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


def load_config(path: str = "config/params.yaml") -> Dict[str, Any]:
    """
    Load params.yaml over the built-in defaults. A missing file yields the defaults.

    The tiling API key falls back to env GOOGLE_MAPS_API_KEY when the file leaves it empty.
    """
    P = copy.deepcopy(DEFAULTS)
    if Path(path).exists():
        with open(path, "r") as f:
            P = _merge(P, yaml.safe_load(f) or {})
    if not P["tiles"].get("api_key"):
        P["tiles"]["api_key"] = os.getenv("GOOGLE_MAPS_API_KEY", "")
    return P


@lru_cache(maxsize=None)
def load_styles(path: Optional[str] = None) -> str:
    """Map style blob, read once per path."""
    p = Path(path or DEFAULTS["styles_path"])
    if not p.exists():
        return ""
    return p.read_text()
