#!/usr/bin/env python3
"""
Start (optionally) and follow a map export through the HTTP API.

Prints every status change ("queued", "warping 2 of 5", ...) and exits 0 on
"complete", 1 on "failed".

Examples:
  python scripts/poll_export.py --map 3 --start
  python scripts/poll_export.py --map 3 --base-url http://localhost:8000 --interval 2
"""
from __future__ import annotations

import argparse
import sys
import time
from typing import Dict, Optional

import requests


TERMINAL = ("complete", "failed")


def start_export(base_url: str, map_id: int, session: Optional[requests.Session] = None, timeout: float = 10.0) -> Dict:
    s = session or requests.Session()
    r = s.post(f"{base_url}/maps/{map_id}/export", timeout=timeout)
    if r.status_code == 409:
        raise RuntimeError(f"export already running for map {map_id}")
    if r.status_code != 202:
        raise RuntimeError(f"Export API error {r.status_code}: {r.text[:200]}")
    return r.json()


def fetch_status(base_url: str, map_id: int, session: Optional[requests.Session] = None, timeout: float = 10.0) -> Dict:
    s = session or requests.Session()
    r = s.get(f"{base_url}/maps/{map_id}/export", timeout=timeout)
    if r.status_code != 200:
        raise RuntimeError(f"Export API error {r.status_code}: {r.text[:200]}")
    return r.json()


def follow(
    base_url: str,
    map_id: int,
    *,
    interval: float = 1.0,
    max_wait: float = 3600.0,
    session: Optional[requests.Session] = None,
) -> Dict:
    """Poll until the export reaches a terminal state; returns the last status body."""
    s = session or requests.Session()
    deadline = time.monotonic() + max_wait
    last = None
    while True:
        body = fetch_status(base_url, map_id, session=s)
        if body.get("status") != last:
            last = body.get("status")
            print(last, flush=True)
        if body.get("state") in TERMINAL:
            return body
        if time.monotonic() > deadline:
            raise TimeoutError(f"export for map {map_id} still '{last}' after {max_wait:.0f}s")
        time.sleep(interval)


def main() -> None:
    ap = argparse.ArgumentParser(description="Follow a map export")
    ap.add_argument("--map", type=int, required=True, help="Map id")
    ap.add_argument("--base-url", default="http://localhost:8000")
    ap.add_argument("--start", action="store_true", help="Request a new export first")
    ap.add_argument("--interval", type=float, default=1.0, help="Seconds between polls")
    ap.add_argument("--max-wait", type=float, default=3600.0)
    args = ap.parse_args()

    s = requests.Session()
    if args.start:
        start_export(args.base_url, args.map, session=s)
    body = follow(args.base_url, args.map, interval=args.interval, max_wait=args.max_wait, session=s)
    if body.get("archive_path") and body.get("state") == "complete":
        print(f"archive: {body['archive_path']}")
    sys.exit(0 if body.get("state") == "complete" else 1)


if __name__ == "__main__":
    main()
