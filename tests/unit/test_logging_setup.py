"""
Unit tests for JSON logging and stage timing
"""

import json
import logging
import os
import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.logging_setup import JsonFormatter, get_logger, log_stage


def _record(msg, fields=None):
    rec = logging.LogRecord("pipeline.runner", logging.INFO, __file__, 1, msg, None, None)
    if fields is not None:
        rec.extra = fields
    return rec


class TestJsonFormatter:
    def test_payload(self):
        out = json.loads(JsonFormatter().format(_record("stage done", {"map": "park", "ms": 12})))
        assert out["lvl"] == "INFO"
        assert out["name"] == "pipeline.runner"
        assert out["msg"] == "stage done"
        assert out["extra"] == {"map": "park", "ms": 12}
        assert "thread" in out

    def test_non_json_values_are_stringified(self):
        out = json.loads(JsonFormatter().format(_record("zip", {"zip": Path("tms/park.zip")})))
        assert out["extra"]["zip"] == "tms/park.zip"

    def test_no_extra(self):
        assert "extra" not in json.loads(JsonFormatter().format(_record("plain")))


class TestLogStage:
    """Per-stage timing records"""

    def test_done(self, caplog):
        log = get_logger("tests.stage")
        with caplog.at_level(logging.INFO, logger="tests.stage"):
            with log_stage(log, "scale", map="park") as fields:
                fields["scale_cm"] = 11.0
        rec = [r for r in caplog.records if r.name == "tests.stage"][-1]
        assert rec.getMessage() == "stage done"
        assert rec.extra["stage"] == "scale"
        assert rec.extra["scale_cm"] == 11.0
        assert rec.extra["ms"] >= 0

    def test_failed_reraises(self, caplog):
        log = get_logger("tests.stage")
        with caplog.at_level(logging.INFO, logger="tests.stage"):
            with pytest.raises(ValueError):
                with log_stage(log, "distort", map="park"):
                    raise ValueError("boom")
        rec = [r for r in caplog.records if r.name == "tests.stage"][-1]
        assert rec.levelno == logging.WARNING
        assert rec.getMessage() == "stage failed"
        assert rec.extra["error"] == "ValueError"
