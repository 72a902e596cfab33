"""
Unit tests for the export progress state machine
"""

import os
import sys

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.errors import InvalidTransitionError
from common.types import Export
from pipeline.export_state import ExportState, ExportTracker, Phase, can_transition, is_active
from store.memory import InMemoryStore


class TestRender:
    """What pollers see"""

    @pytest.mark.parametrize(
        "state, text",
        [
            (ExportState(Phase.QUEUED), "queued"),
            (ExportState(Phase.WARPING, current=2, total=5), "warping 2 of 5"),
            (ExportState(Phase.MERGING), "merging"),
            (ExportState(Phase.TILING), "tiling"),
            (ExportState(Phase.PACKAGING), "packaging"),
            (ExportState(Phase.COMPLETE), "complete"),
            (ExportState(Phase.FAILED, reason="gdalwarp failed"), "failed: gdalwarp failed"),
            (ExportState(Phase.FAILED), "failed"),
        ],
    )
    def test_render(self, state, text):
        assert state.render() == text


class TestTransitions:
    """Allowed edges"""

    def test_happy_path(self):
        path = [
            None,
            ExportState(Phase.QUEUED),
            ExportState(Phase.WARPING, 1, 2),
            ExportState(Phase.WARPING, 2, 2),
            ExportState(Phase.MERGING),
            ExportState(Phase.TILING),
            ExportState(Phase.PACKAGING),
            ExportState(Phase.COMPLETE),
        ]
        for prev, nxt in zip(path, path[1:]):
            assert can_transition(prev, nxt), (prev, nxt)

    def test_cannot_skip_phases(self):
        assert not can_transition(ExportState(Phase.QUEUED), ExportState(Phase.TILING))
        assert not can_transition(ExportState(Phase.MERGING), ExportState(Phase.COMPLETE))
        assert not can_transition(None, ExportState(Phase.WARPING, 1, 1))

    def test_warping_counts_never_go_backwards(self):
        prev = ExportState(Phase.WARPING, 3, 5)
        assert can_transition(prev, ExportState(Phase.WARPING, 3, 5))
        assert can_transition(prev, ExportState(Phase.WARPING, 4, 5))
        assert not can_transition(prev, ExportState(Phase.WARPING, 2, 5))
        assert not can_transition(prev, ExportState(Phase.WARPING, 4, 6))

    def test_failed_from_any_running_phase(self):
        for tag in (Phase.QUEUED, Phase.MERGING, Phase.TILING, Phase.PACKAGING):
            assert can_transition(ExportState(tag), ExportState(Phase.FAILED, reason="x"))
        assert can_transition(ExportState(Phase.WARPING, 1, 3), ExportState(Phase.FAILED))

    def test_terminal_states_only_restart(self):
        for tag in (Phase.COMPLETE, Phase.FAILED):
            assert can_transition(ExportState(tag), ExportState(Phase.QUEUED))
            assert not can_transition(ExportState(tag), ExportState(Phase.FAILED))
            assert not can_transition(ExportState(tag), ExportState(Phase.MERGING))

    def test_failed_needs_a_running_export(self):
        assert not can_transition(None, ExportState(Phase.FAILED))


class TestIsActive:
    def test_is_active(self):
        assert not is_active(None)
        assert not is_active(Export(map_id=1))
        assert is_active(Export(map_id=1, state="tiling"))
        assert not is_active(Export(map_id=1, state="complete"))
        assert not is_active(Export(map_id=1, state="failed"))


class TestExportTracker:
    """Transitions are written through to the Export record"""

    def setup_method(self):
        self.store = InMemoryStore()
        self.store.exports.ensure(7)
        self.tracker = ExportTracker(self.store.exports, 7)

    def _rec(self):
        return self.store.exports.get_for_map(7)

    def test_progress_persisted(self):
        self.tracker.queued()
        assert self._rec().status == "queued"
        self.tracker.warping(1, 3)
        assert self._rec().status == "warping 1 of 3"
        assert self._rec().state == "warping"

    def test_complete_records_archive(self):
        self.tracker.queued()
        self.tracker.warping(1, 1)
        self.tracker.merging()
        self.tracker.tiling()
        self.tracker.packaging()
        self.tracker.complete("public/tms/park.zip")
        rec = self._rec()
        assert rec.status == "complete"
        assert rec.archive_path == "public/tms/park.zip"

    def test_failed_keeps_previous_archive(self):
        self.store.exports.save(Export(map_id=7, status="complete", state="complete", archive_path="old.zip"))
        tracker = ExportTracker(self.store.exports, 7)
        tracker.queued()
        tracker.failed("gdalwarp failed; exit 1")
        rec = self._rec()
        assert rec.status == "failed: gdalwarp failed; exit 1"
        assert rec.archive_path == "old.zip"

    def test_illegal_transition_raises_and_leaves_record(self):
        self.tracker.queued()
        with pytest.raises(InvalidTransitionError):
            self.tracker.tiling()
        assert self._rec().status == "queued"

    def test_resumes_from_stored_state(self):
        self.store.exports.save(Export(map_id=7, status="failed: x", state="failed"))
        tracker = ExportTracker(self.store.exports, 7)
        assert tracker.state.tag is Phase.FAILED
        with pytest.raises(InvalidTransitionError):
            tracker.merging()
        tracker.queued()
