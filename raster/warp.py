"""
Perspective warp of one uploaded image onto its map footprint.

Maps the image corners (TL, TR, BR, BL) onto the footprint projected to Web
Mercator with a homography, at a fixed ground resolution, and writes an RGBA
GeoTIFF. Prints the raster's upper-left origin as JSON on stdout.

Example:
  python -m raster.warp --scale 4 \
      --corners '[[42.36,-71.06],[42.36,-71.05],[42.35,-71.05],[42.35,-71.06]]' \
      uploads/7.jpg public/warps/park/7-geo.tif
"""
from __future__ import annotations

import argparse
import json
import math
import sys
from pathlib import Path
from typing import Sequence, Tuple

import cv2
import numpy as np
import rasterio
from rasterio.errors import RasterioError
from rasterio.transform import from_origin
from rasterio.warp import transform as warp_transform


SRC_CRS = "EPSG:4326"
DST_CRS = "EPSG:3857"


def _to_bgra(img: np.ndarray) -> np.ndarray:
    """Any OpenCV image → BGRA uint8, opaque unless it already carries alpha."""
    if img.dtype != np.uint8:
        img = cv2.normalize(img, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)
    if img.ndim == 2:
        return cv2.cvtColor(img, cv2.COLOR_GRAY2BGRA)
    if img.shape[2] == 3:
        return cv2.cvtColor(img, cv2.COLOR_BGR2BGRA)
    return img


def perspective_warp(
    source: Path,
    corners: Sequence[Tuple[float, float]],
    scale_cm: float,
    dest: Path,
) -> Tuple[float, float]:
    """
    Warp `source` onto `corners` ((lat, lon), TL/TR/BR/BL) at `scale_cm` cm/pixel.

    Returns:
        (x, y) of the output's upper-left corner in EPSG:3857 meters.
    """
    if len(corners) != 4:
        raise ValueError(f"perspective warp needs 4 corners, got {len(corners)}")
    if scale_cm <= 0:
        raise ValueError(f"scale must be > 0 cm/px, got {scale_cm}")
    img = cv2.imread(str(source), cv2.IMREAD_UNCHANGED)
    if img is None:
        raise RuntimeError(f"Cannot read image: {source}")
    bgra = _to_bgra(img)
    H, W = bgra.shape[:2]

    lons = [float(lon) for _, lon in corners]
    lats = [float(lat) for lat, _ in corners]
    xs, ys = warp_transform(SRC_CRS, DST_CRS, lons, lats)
    res = float(scale_cm) / 100.0  # meters per output pixel
    min_x, max_y = min(xs), max(ys)
    out_w = max(1, int(math.ceil((max(xs) - min_x) / res)))
    out_h = max(1, int(math.ceil((max_y - min(ys)) / res)))

    src_pts = np.float32([[0, 0], [W, 0], [W, H], [0, H]])
    dst_pts = np.float32([[(x - min_x) / res, (max_y - y) / res] for x, y in zip(xs, ys)])
    M = cv2.getPerspectiveTransform(src_pts, dst_pts)
    warped = cv2.warpPerspective(
        bgra, M, (out_w, out_h), flags=cv2.INTER_LINEAR, borderMode=cv2.BORDER_CONSTANT, borderValue=(0, 0, 0, 0)
    )

    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    profile = {
        "driver": "GTiff",
        "height": out_h,
        "width": out_w,
        "count": 4,
        "dtype": rasterio.uint8,
        "crs": DST_CRS,
        "transform": from_origin(min_x, max_y, res, res),
        "photometric": "RGB",
        "alpha": "YES",
        "compress": "deflate",
    }
    with rasterio.open(dest, "w", **profile) as dst:
        # BGRA → bands R, G, B, A
        for band, ch in enumerate((2, 1, 0, 3), start=1):
            dst.write(warped[:, :, ch], band)
    return (float(min_x), float(max_y))


def main(argv: Sequence[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Perspective-warp one image onto its footprint")
    ap.add_argument("--scale", type=float, required=True, help="Output resolution (cm per pixel)")
    ap.add_argument("--corners", required=True, help="JSON [[lat,lon] x4] in TL,TR,BR,BL order")
    ap.add_argument("source", help="Input image")
    ap.add_argument("dest", help="Output GeoTIFF")
    args = ap.parse_args(argv)

    corners = [(float(lat), float(lon)) for lat, lon in json.loads(args.corners)]
    try:
        x, y = perspective_warp(Path(args.source), corners, args.scale, Path(args.dest))
    except (ValueError, RuntimeError, RasterioError, cv2.error) as e:
        print(f"warp failed: {e}", file=sys.stderr)
        return 1
    print(json.dumps({"origin": [x, y]}))
    return 0


if __name__ == "__main__":
    sys.exit(main())
