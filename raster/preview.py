"""
Flatten a composite GeoTIFF onto a white background and save a JPEG preview.

Example:
  python -m raster.preview public/warps/park/park-geo.tif public/warps/park/park.jpg
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Sequence

import cv2
import numpy as np
import rasterio
from rasterio.errors import RasterioError


def flatten_on_white(bands: np.ndarray, mask: np.ndarray) -> np.ndarray:
    """
    bands: (count, H, W) raster; mask: (H, W) 0..255 validity/alpha.
    Returns (H, W, 3) uint8 RGB with transparent pixels turned white.
    """
    if bands.shape[0] >= 3:
        rgb = np.stack([bands[0], bands[1], bands[2]], axis=-1)
    else:
        rgb = np.repeat(bands[0][..., None], 3, axis=-1)
    rgb = rgb.astype(np.float32)
    alpha = (mask.astype(np.float32) / 255.0)[..., None]
    return (rgb * alpha + 255.0 * (1.0 - alpha)).clip(0, 255).astype(np.uint8)


def write_preview(source: Path, dest: Path) -> None:
    with rasterio.open(source) as ds:
        bands = ds.read()
        mask = ds.dataset_mask()
    flat = flatten_on_white(bands, mask)
    Path(dest).parent.mkdir(parents=True, exist_ok=True)
    if not cv2.imwrite(str(dest), cv2.cvtColor(flat, cv2.COLOR_RGB2BGR)):
        raise RuntimeError(f"Cannot write preview: {dest}")


def main(argv: Sequence[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Flatten a GeoTIFF onto white as JPEG")
    ap.add_argument("source")
    ap.add_argument("dest")
    args = ap.parse_args(argv)
    try:
        write_preview(Path(args.source), Path(args.dest))
    except (RasterioError, RuntimeError, cv2.error) as e:
        print(f"preview failed: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
