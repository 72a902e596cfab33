"""
Unit tests for the export polling client
"""

import os
import sys
from unittest.mock import Mock

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from scripts.poll_export import fetch_status, follow, start_export


def _response(status_code, body=None, text=""):
    r = Mock()
    r.status_code = status_code
    r.json.return_value = body or {}
    r.text = text
    return r


class TestPollExport:
    """HTTP client for /maps/{id}/export"""

    def test_start_export(self):
        session = Mock()
        session.post.return_value = _response(202, {"status": "queued", "state": "queued"})
        body = start_export("http://api", 3, session=session)
        assert body["status"] == "queued"
        session.post.assert_called_once_with("http://api/maps/3/export", timeout=10.0)

    def test_start_export_conflict(self):
        session = Mock()
        session.post.return_value = _response(409, text="busy")
        with pytest.raises(RuntimeError, match="already running"):
            start_export("http://api", 3, session=session)

    def test_fetch_status_error(self):
        session = Mock()
        session.get.return_value = _response(404, text="not found")
        with pytest.raises(RuntimeError, match="404"):
            fetch_status("http://api", 3, session=session)

    def test_follow_prints_each_change_once(self, capsys):
        bodies = [
            {"status": "queued", "state": "queued"},
            {"status": "warping 1 of 2", "state": "warping"},
            {"status": "warping 1 of 2", "state": "warping"},
            {"status": "warping 2 of 2", "state": "warping"},
            {"status": "complete", "state": "complete", "archive_path": "public/tms/park.zip"},
        ]
        session = Mock()
        session.get.side_effect = [_response(200, b) for b in bodies]
        last = follow("http://api", 3, interval=0, session=session)
        assert last["state"] == "complete"
        printed = capsys.readouterr().out.splitlines()
        assert printed == ["queued", "warping 1 of 2", "warping 2 of 2", "complete"]

    def test_follow_stops_on_failure(self):
        session = Mock()
        session.get.return_value = _response(200, {"status": "failed: gdalwarp failed", "state": "failed"})
        assert follow("http://api", 3, interval=0, session=session)["state"] == "failed"

    def test_follow_gives_up(self):
        session = Mock()
        session.get.return_value = _response(200, {"status": "tiling", "state": "tiling"})
        with pytest.raises(TimeoutError):
            follow("http://api", 3, interval=0, max_wait=0, session=session)
