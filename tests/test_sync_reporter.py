"""Tests for sync reporter formatting functions.

Covers:
- format_sync_report with various report combinations
- format_status for conflicts and unsynced edits
- report_to_json structure and completeness
- An unchanged report produces concise output
"""

from __future__ import annotations

import json
from pathlib import Path

from issue_sync.models import ConflictState
from issue_sync.sync.models import MergeMode, Prefer, SyncReport
from issue_sync.sync.reporter import (
    format_status,
    format_sync_report,
    report_to_json,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_report(**kwargs) -> SyncReport:
    """Build a SyncReport with sensible defaults."""
    defaults = {
        "target": "octo/tools#1",
        "number": 1,
        "path": "/data/issues/octo/tools/1_-_Root.md",
    }
    defaults.update(kwargs)
    return SyncReport(**defaults)


# ---------------------------------------------------------------------------
# format_sync_report
# ---------------------------------------------------------------------------


class TestFormatSyncReport:
    """Tests for format_sync_report()."""

    def test_header_and_file(self):
        text = format_sync_report(_make_report())
        lines = text.split("\n")
        assert lines[0] == "Synced octo/tools#1"
        assert lines[1] == "File: /data/issues/octo/tools/1_-_Root.md"

    def test_mode_in_header(self):
        report = _make_report(mode=str(MergeMode.force(Prefer.REMOTE)))
        assert format_sync_report(report).startswith(
            "Synced octo/tools#1 [force(remote)]"
        )

    def test_offline_indicator(self):
        text = format_sync_report(_make_report(offline=True))
        assert "(offline)" in text.split("\n")[0]

    def test_unchanged_is_concise(self):
        text = format_sync_report(_make_report())
        assert "Already up to date." in text
        assert "Pulled" not in text
        assert "Pushed" not in text
        assert "Consensus updated." not in text

    def test_pulled_and_pushed_sections(self):
        report = _make_report(
            pulled=["octo/tools#1 title"],
            pushed=["updated body of #1", "commented on #1 (900)"],
            committed=True,
        )
        text = format_sync_report(report)
        assert "Already up to date." not in text
        assert "Pulled from remote:\n  octo/tools#1 title" in text
        assert (
            "Pushed to remote:\n  updated body of #1\n  commented on #1 (900)"
            in text
        )
        assert text.endswith("Consensus updated.")

    def test_removed_file(self):
        report = _make_report(path=None, removed=["/data/a.md"])
        text = format_sync_report(report)
        assert "File: (removed)" in text
        assert "Removed:\n  /data/a.md" in text

    def test_protected_and_conflicts(self):
        report = _make_report(
            protected=["/data/b.md"], conflicts=["octo/tools#1 body"]
        )
        text = format_sync_report(report)
        assert "Left alone (unsynced local edits):\n  /data/b.md" in text
        assert "Conflicts:\n  octo/tools#1 body" in text


# ---------------------------------------------------------------------------
# format_status
# ---------------------------------------------------------------------------


class TestFormatStatus:
    def test_nothing(self):
        assert format_status([], []) == "Nothing to sync."

    def test_conflicts_listed_first(self):
        conflicts = [
            ConflictState(path="/data/a.md", detected_at="2024-05-01T12:00:00Z")
        ]
        text = format_status(conflicts, [Path("/data/b.md")])
        assert text == (
            "Unresolved conflicts (resolve before any other command):\n"
            "  /data/a.md since 2024-05-01T12:00:00Z\n"
            "\n"
            "Unsynced local edits:\n"
            "  /data/b.md"
        )

    def test_conflict_without_timestamp(self):
        text = format_status([ConflictState(path="/data/a.md")], [])
        assert text.endswith("  /data/a.md")


# ---------------------------------------------------------------------------
# report_to_json
# ---------------------------------------------------------------------------


class TestReportToJson:
    def test_structure(self):
        report = _make_report(
            pulled=["octo/tools#1 body"],
            pushed=["retitled #1"],
            committed=True,
        )
        data = report_to_json(report)
        assert data["target"] == "octo/tools#1"
        assert data["number"] == 1
        assert data["mode"] == "normal"
        assert data["committed"] is True
        assert data["counts"] == {
            "pulled": 1,
            "pushed": 1,
            "removed": 0,
            "protected": 0,
            "conflicts": 0,
        }
        assert data["pushed"] == ["retitled #1"]

    def test_serialisable(self):
        data = report_to_json(_make_report(path=None, removed=["/x.md"]))
        assert json.loads(json.dumps(data))["removed"] == ["/x.md"]
