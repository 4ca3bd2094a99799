"""Sync report formatting functions.

- ``format_sync_report`` -- post-sync summary for the terminal.
- ``format_status`` -- unresolved conflicts and files with unsynced edits.
- ``report_to_json`` -- structured dict for ``--json`` output.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..models import ConflictState
    from .models import SyncReport

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_sync_report(report: SyncReport) -> str:
    """Format a sync report as human-readable text.

    Sections are only included when they contain at least one entry.

    Args:
        report: The completed sync report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = f"Synced {report.target}"
    if report.mode != "normal":
        header += f" [{report.mode}]"
    if report.offline:
        header += " (offline)"
    lines.append(header)
    if report.path:
        lines.append(f"File: {report.path}")
    else:
        lines.append("File: (removed)")
    lines.append("")

    if not report.changed:
        lines.append("Already up to date.")
        lines.append("")

    if report.pulled:
        lines.append("Pulled from remote:")
        for unit in report.pulled:
            lines.append(f"  {unit}")
        lines.append("")

    if report.pushed:
        lines.append("Pushed to remote:")
        for operation in report.pushed:
            lines.append(f"  {operation}")
        lines.append("")

    if report.removed:
        lines.append("Removed:")
        for path in report.removed:
            lines.append(f"  {path}")
        lines.append("")

    if report.protected:
        lines.append("Left alone (unsynced local edits):")
        for path in report.protected:
            lines.append(f"  {path}")
        lines.append("")

    if report.conflicts:
        lines.append("Conflicts:")
        for unit in report.conflicts:
            lines.append(f"  {unit}")
        lines.append("")

    if report.committed:
        lines.append("Consensus updated.")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Status
# ------------------------------------------------------------------


def format_status(
    conflicts: list[ConflictState], dirty: list[Path]
) -> str:
    """Format the output of ``status``.

    Args:
        conflicts: Unresolved conflicts.
        dirty: Issue files with edits that were never synced.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    if conflicts:
        lines.append("Unresolved conflicts (resolve before any other command):")
        for state in conflicts:
            since = f" since {state.detected_at}" if state.detected_at else ""
            lines.append(f"  {state.path}{since}")
        lines.append("")
    if dirty:
        lines.append("Unsynced local edits:")
        for path in dirty:
            lines.append(f"  {path}")
        lines.append("")
    if not lines:
        lines.append("Nothing to sync.")
    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for JSON serialisation.

    Args:
        report: The sync report.

    Returns:
        Dict with the target, counts and per-section details.
    """
    return {
        "target": report.target,
        "number": report.number,
        "path": report.path,
        "mode": report.mode,
        "offline": report.offline,
        "committed": report.committed,
        "counts": {
            "pulled": len(report.pulled),
            "pushed": len(report.pushed),
            "removed": len(report.removed),
            "protected": len(report.protected),
            "conflicts": len(report.conflicts),
        },
        "pulled": list(report.pulled),
        "pushed": list(report.pushed),
        "removed": list(report.removed),
        "protected": list(report.protected),
        "conflicts": list(report.conflicts),
    }
