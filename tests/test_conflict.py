"""Tests for the conflict tracker gate."""

import pytest

from conftest import FIXED_NOW
from issue_sync.conflict import ConflictTracker, has_conflict_markers
from issue_sync.errors import ConflictBlockedError

MARKED = "- [ ] t\n<<<<<<< local\n\ta\n=======\n\tb\n>>>>>>> remote\n"


@pytest.fixture
def tracker(tmp_path):
    return ConflictTracker(tmp_path / "state")


@pytest.fixture
def conflicted(tmp_path):
    path = tmp_path / "issues" / "1_-_t.md"
    path.parent.mkdir(parents=True)
    path.write_text(MARKED)
    return path


class TestMarkers:
    def test_all_three_required(self):
        assert has_conflict_markers(MARKED)
        assert not has_conflict_markers("<<<<<<< local\n=======\n")
        assert not has_conflict_markers("a ======= b\n")


class TestTracker:
    def test_clean_state_passes(self, tracker):
        tracker.check_all()
        assert tracker.list_conflicts() == []

    def test_marked_file_blocks(self, tracker, conflicted):
        record = tracker.mark(conflicted)
        assert record.read_text().splitlines()[0] == str(conflicted.resolve())
        with pytest.raises(ConflictBlockedError) as exc_info:
            tracker.check_all()
        assert exc_info.value.path == conflicted.resolve()
        assert "Resolve the conflict markers" in str(exc_info.value)

    def test_resolution_clears_record(self, tracker, conflicted):
        record = tracker.mark(conflicted)
        conflicted.write_text("- [ ] t\n\tb\n")
        tracker.check_all()
        assert not record.exists()

    def test_deleted_file_clears_record(self, tracker, conflicted):
        record = tracker.mark(conflicted)
        conflicted.unlink()
        tracker.check_all()
        assert not record.exists()

    def test_list_conflicts(self, tracker, conflicted):
        tracker.mark(conflicted)
        (state,) = tracker.list_conflicts()
        assert state.path == str(conflicted.resolve())
        assert state.detected_at.endswith("+00:00")
        assert state.reason == "conflict markers present"

    def test_detected_at_from_clock(self, tmp_path, conflicted):
        tracker = ConflictTracker(tmp_path / "state", clock=lambda: FIXED_NOW)
        tracker.mark(conflicted)
        (state,) = tracker.list_conflicts()
        assert state.detected_at == FIXED_NOW.isoformat()

    def test_record_without_time_uses_mtime(self, tracker, conflicted):
        record = tracker.mark(conflicted)
        record.write_text(str(conflicted.resolve()))
        (state,) = tracker.list_conflicts()
        assert state.path == str(conflicted.resolve())
        assert state.detected_at.endswith("+00:00")

    def test_mark_is_idempotent(self, tracker, conflicted):
        assert tracker.mark(conflicted) == tracker.mark(conflicted)
        assert len(tracker.list_conflicts()) == 1

    def test_clear(self, tracker, conflicted):
        tracker.mark(conflicted)
        tracker.clear(conflicted)
        tracker.check_all()
        tracker.clear(conflicted)
