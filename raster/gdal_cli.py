"""
Command-line RasterToolkit.

Every operation except `archive` runs as a subprocess bounded by `timeout_s`:
- distort: `python -m raster.warp` (OpenCV homography + rasterio GeoTIFF)
- merge:   gdalwarp (first call crops to the map's bbox via -te / -te_srs)
- mosaic:  gdal_merge.py
- tile:    gdal2tiles.py
- flatten_preview: `python -m raster.preview`
`archive` zips to a temp file beside the target and swaps it in with os.replace.
"""
from __future__ import annotations

import json
import os
import subprocess
import sys
import tempfile
import time
import zipfile
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from common.errors import ExternalToolError
from common.geo import BBox
from common.logging_setup import get_logger
from raster.toolkit import Corner, RasterToolkit


log = get_logger("raster.gdal")


def _tail(text: str, n: int = 8) -> str:
    lines = [line for line in (text or "").strip().splitlines() if line.strip()]
    return "\n".join(lines[-n:])


class GdalToolkit(RasterToolkit):
    def __init__(self, timeout_s: float = 600.0, gdal_bin: str = "", python: str = sys.executable):
        """
        Params:
            timeout_s: wall-clock limit for each external command
            gdal_bin: directory holding the GDAL executables (empty = resolve via PATH)
            python: interpreter used for the in-repo raster commands
        """
        self.timeout_s = float(timeout_s)
        self.gdal_bin = gdal_bin
        self.python = python

    # ----------------------------
    # Subprocess plumbing
    # ----------------------------
    def _exe(self, name: str) -> str:
        return str(Path(self.gdal_bin) / name) if self.gdal_bin else name

    def _run(self, cmd: List[str]) -> str:
        name = Path(cmd[0]).name if cmd[0] != self.python else " ".join(cmd[1:3])
        t0 = time.perf_counter()
        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                timeout=self.timeout_s,
            )
        except FileNotFoundError as e:
            raise ExternalToolError(f"{name} is not available", cmd=cmd) from e
        except subprocess.TimeoutExpired as e:
            out = e.stderr if isinstance(e.stderr, str) else ""
            raise ExternalToolError(
                f"{name} timed out after {self.timeout_s:g}s", cmd=cmd, output=_tail(out)
            ) from e
        dt_ms = int(1000.0 * (time.perf_counter() - t0))
        if result.returncode != 0:
            log.warning("raster tool failed", extra={"extra": {"cmd": cmd, "rc": result.returncode, "ms": dt_ms}})
            raise ExternalToolError(
                f"{name} failed",
                cmd=cmd,
                returncode=result.returncode,
                output=_tail((result.stderr or "") + "\n" + (result.stdout or "")),
            )
        log.debug("raster tool ok", extra={"extra": {"cmd": cmd, "ms": dt_ms}})
        return result.stdout or ""

    # ----------------------------
    # RasterToolkit
    # ----------------------------
    def distort(self, scale_cm: float, source: Path, corners: Sequence[Corner], dest: Path) -> Tuple[float, float]:
        out = self._run(
            [
                self.python, "-m", "raster.warp",
                "--scale", repr(float(scale_cm)),
                "--corners", json.dumps([[lat, lon] for lat, lon in corners]),
                str(source), str(dest),
            ]
        )
        try:
            x, y = json.loads(out.strip().splitlines()[-1])["origin"]
        except (ValueError, KeyError, IndexError) as e:
            raise ExternalToolError("raster.warp printed no origin", output=_tail(out)) from e
        return (float(x), float(y))

    def merge(self, sources: Sequence[Path], dest: Path, bbox: Optional[BBox] = None) -> None:
        cmd = [self._exe("gdalwarp"), "-q"]
        if bbox is not None:
            cmd += ["-overwrite", "-te", *[repr(v) for v in bbox.as_te()], "-te_srs", "EPSG:4326"]
        cmd += [str(s) for s in sources] + [str(dest)]
        self._run(cmd)

    def mosaic(self, sources: Sequence[Path], dest: Path) -> None:
        dest = Path(dest)
        if dest.exists():
            dest.unlink()
        self._run([self._exe("gdal_merge.py"), "-o", str(dest), *[str(s) for s in sources]])

    def tile(self, api_key: str, title: str, source: Path, dest_dir: Path) -> None:
        cmd = [self._exe("gdal2tiles.py"), "-k", "-t", title]
        if api_key:
            cmd += ["-g", api_key]
        cmd += [str(source), str(dest_dir) + os.sep]
        self._run(cmd)

    def archive(self, src_dir: Path, zip_path: Path) -> None:
        src_dir, zip_path = Path(src_dir), Path(zip_path)
        zip_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{zip_path.name}.", suffix=".part", dir=zip_path.parent)
        os.close(fd)
        tmp = Path(tmp_name)
        try:
            with zipfile.ZipFile(tmp, "w", zipfile.ZIP_DEFLATED) as zf:
                for p in sorted(src_dir.rglob("*")):
                    if p.is_file():
                        # entries keep the "<slug>/..." prefix
                        zf.write(p, p.relative_to(src_dir.parent).as_posix())
            os.replace(tmp, zip_path)
        except OSError as e:
            raise ExternalToolError(f"cannot archive {src_dir}: {e}") from e
        finally:
            if tmp.exists():
                tmp.unlink()

    def flatten_preview(self, source: Path, dest: Path) -> None:
        self._run([self.python, "-m", "raster.preview", str(source), str(dest)])
