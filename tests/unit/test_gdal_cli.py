"""
Unit tests for the command-line raster toolkit
"""

import os
import sys
import zipfile

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.errors import ExternalToolError
from common.geo import BBox
from raster.gdal_cli import GdalToolkit


class TestRun:
    """Subprocess outcomes map onto ExternalToolError"""

    def test_success_returns_stdout(self):
        out = GdalToolkit(timeout_s=30)._run([sys.executable, "-c", "print('ok')"])
        assert out.strip() == "ok"

    def test_nonzero_exit(self):
        tk = GdalToolkit(timeout_s=30)
        script = "import sys; sys.stderr.write('ERROR 4: cannot open a.tif\\n'); sys.exit(3)"
        with pytest.raises(ExternalToolError) as ei:
            tk._run([sys.executable, "-c", script])
        err = ei.value
        assert err.returncode == 3
        assert "cannot open a.tif" in err.output
        assert err.detail().endswith("ERROR 4: cannot open a.tif")
        assert "exit 3" in err.detail()

    def test_detail_ignores_blank_output(self):
        err = ExternalToolError("gdal died", returncode=1, output="\n  \n")
        assert err.detail() == "gdal died; exit 1"
        assert ExternalToolError("gdal died", output="").detail() == "gdal died"

    def test_detail_uses_last_non_blank_line(self):
        err = ExternalToolError("gdalwarp failed", returncode=2, output="Warning 1: x\nERROR 1: bad extent\n\n")
        assert err.detail() == "gdalwarp failed; exit 2; ERROR 1: bad extent"

    def test_timeout(self):
        tk = GdalToolkit(timeout_s=0.5)
        with pytest.raises(ExternalToolError) as ei:
            tk._run([sys.executable, "-c", "import time; time.sleep(10)"])
        assert "timed out" in str(ei.value)
        assert ei.value.returncode is None

    def test_missing_binary(self, tmp_path):
        tk = GdalToolkit(gdal_bin=str(tmp_path / "nowhere"))
        with pytest.raises(ExternalToolError) as ei:
            tk.merge([tmp_path / "a.tif"], tmp_path / "out.tif")
        assert "not available" in str(ei.value)


class TestCommands:
    """argv built for each GDAL tool"""

    def setup_method(self):
        self.tk = GdalToolkit(gdal_bin="/opt/gdal/bin")
        self.cmds = []

    def _capture(self, monkeypatch, stdout=""):
        def fake_run(cmd):
            self.cmds.append(cmd)
            return stdout

        monkeypatch.setattr(self.tk, "_run", fake_run)

    def test_first_merge_is_cropped_to_bbox(self, monkeypatch):
        self._capture(monkeypatch)
        self.tk.merge(["a.tif"], "out.tif", bbox=BBox(1.0, 0.0, 3.0, 2.0))
        assert self.cmds[0] == [
            "/opt/gdal/bin/gdalwarp", "-q", "-overwrite",
            "-te", "0.0", "1.0", "2.0", "3.0", "-te_srs", "EPSG:4326",
            "a.tif", "out.tif",
        ]

    def test_later_merge_has_no_extent(self, monkeypatch):
        self._capture(monkeypatch)
        self.tk.merge(["b.tif"], "out.tif")
        assert self.cmds[0] == ["/opt/gdal/bin/gdalwarp", "-q", "b.tif", "out.tif"]

    def test_mosaic_replaces_existing_output(self, monkeypatch, tmp_path):
        self._capture(monkeypatch)
        dest = tmp_path / "park-geo-merge.tif"
        dest.write_text("stale")
        self.tk.mosaic(["a.tif", "b.tif"], dest)
        assert not dest.exists()
        assert self.cmds[0] == ["/opt/gdal/bin/gdal_merge.py", "-o", str(dest), "a.tif", "b.tif"]

    def test_tile_with_and_without_key(self, monkeypatch):
        self._capture(monkeypatch)
        self.tk.tile("KEY", "park", "park-geo.tif", "tms/park")
        self.tk.tile("", "park", "park-geo.tif", "tms/park")
        assert self.cmds[0] == [
            "/opt/gdal/bin/gdal2tiles.py", "-k", "-t", "park", "-g", "KEY", "park-geo.tif", "tms/park" + os.sep,
        ]
        assert "-g" not in self.cmds[1]

    def test_distort_reads_origin(self, monkeypatch):
        self._capture(monkeypatch, stdout='warning: something\n{"origin": [1.5, -2.0]}\n')
        origin = self.tk.distort(10.0, "a.jpg", [(0.001, 0.0), (0.001, 0.001), (0.0, 0.001), (0.0, 0.0)], "1-geo.tif")
        assert origin == (1.5, -2.0)
        cmd = self.cmds[0]
        assert cmd[1:3] == ["-m", "raster.warp"]
        assert cmd[cmd.index("--scale") + 1] == "10.0"

    def test_distort_without_origin(self, monkeypatch):
        self._capture(monkeypatch, stdout="")
        with pytest.raises(ExternalToolError):
            self.tk.distort(10.0, "a.jpg", [], "1-geo.tif")


class TestArchive:
    """Zip is written beside the target and swapped in"""

    def _tiles(self, root, tag):
        d = root / "tms" / "park" / "3" / "1"
        d.mkdir(parents=True, exist_ok=True)
        (d / f"{tag}.png").write_text(tag)
        return root / "tms" / "park"

    def test_entries_keep_slug_prefix(self, tmp_path):
        src = self._tiles(tmp_path, "a")
        zip_path = tmp_path / "tms" / "park.zip"
        GdalToolkit().archive(src, zip_path)
        with zipfile.ZipFile(zip_path) as zf:
            assert zf.namelist() == ["park/3/1/a.png"]

    def test_failed_swap_keeps_previous_archive(self, tmp_path, monkeypatch):
        zip_path = tmp_path / "tms" / "park.zip"
        GdalToolkit().archive(self._tiles(tmp_path, "a"), zip_path)
        before = zip_path.read_bytes()

        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("raster.gdal_cli.os.replace", broken_replace)
        with pytest.raises(ExternalToolError):
            GdalToolkit().archive(self._tiles(tmp_path, "b"), zip_path)
        assert zip_path.read_bytes() == before
        assert sorted(p.name for p in (tmp_path / "tms").iterdir()) == ["park", "park.zip"]
